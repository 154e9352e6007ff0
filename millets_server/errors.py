"""Exception types raised by the Nature Millets client."""

from typing import Optional


class MilletsError(Exception):
    """Base class for all client errors."""


class NoCredentialError(MilletsError):
    """No usable access token: the user must sign in again."""

    def __init__(self, message: str = "Not authenticated. Please sign in.") -> None:
        super().__init__(message)


class AuthenticationError(MilletsError):
    """Sign-in or sign-up was rejected by the backend."""


class ApiError(MilletsError):
    """Backend call failed (non-2xx, success=false or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CheckoutValidationError(MilletsError):
    """Checkout step cannot proceed with the current session state."""


class ReconciliationError(MilletsError):
    """Provider confirmed the payment but the backend did not create the order."""

    def __init__(self, payment_intent_id: str, detail: str) -> None:
        self.payment_intent_id = payment_intent_id
        self.detail = detail
        super().__init__(
            f"Your payment may have been processed but we could not confirm your order "
            f"({detail}). Please contact support and keep this payment reference: "
            f"{payment_intent_id}"
        )
