"""Checkout session orchestration: address -> payment -> success."""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from .errors import ApiError, CheckoutValidationError, NoCredentialError, ReconciliationError
from .millets_client import MilletsClient
from .models import CheckoutSession, CheckoutStep
from .payments import PaymentProvider

logger = logging.getLogger(__name__)

EMPTY_CART_MESSAGE = "Your cart is empty"
NO_ADDRESS_MESSAGE = "No saved addresses. Add a delivery address to continue."


class CheckoutOrchestrator:
    """Drives one checkout session.

    Errors never escape the public methods: they are written to
    ``session.error`` and the step is left unchanged, so the caller can
    simply retry the same action.
    """

    def __init__(
        self,
        client: MilletsClient,
        provider: PaymentProvider,
        confirmation_delay: float = 2.0,
    ) -> None:
        """
        Args:
            client: Storefront API client
            provider: Payment provider that confirms the intent
            confirmation_delay: Seconds to wait after provider confirmation before
                asking the backend to create the order
        """
        self.client = client
        self.provider = provider
        self.confirmation_delay = confirmation_delay
        self.session = CheckoutSession()

    async def start(self) -> CheckoutSession:
        """Begin a new session and load the cart and saved addresses."""
        self.session = CheckoutSession()
        logger.info("=== CHECKOUT START ===")

        try:
            cart, addresses = await asyncio.gather(
                self.client.get_cart(), self.client.get_addresses()
            )
        except NoCredentialError as e:
            return self._fail(str(e), auth_required=True)
        except ApiError as e:
            logger.error(f"Failed to load checkout data: {e}")
            return self._fail(f"Failed to load checkout data: {e.message}")

        self.session.cart = cart
        self.session.addresses = addresses
        default = next((a for a in addresses if a.is_default), None)
        if default:
            self.session.selected_address_id = default.id

        self.session.needs_address = not addresses
        if cart.is_empty:
            self.session.error = EMPTY_CART_MESSAGE
        elif not addresses:
            self.session.error = NO_ADDRESS_MESSAGE

        logger.info(
            f"Checkout loaded: items={len(cart.items)}, addresses={len(addresses)}, "
            f"selected={self.session.selected_address_id}"
        )
        return self.session

    def select_address(self, address_id: str) -> CheckoutSession:
        """Select one of the session's saved addresses."""
        try:
            self._require_step(CheckoutStep.ADDRESS)
            if not any(a.id == address_id for a in self.session.addresses):
                raise CheckoutValidationError(f"Unknown address: {address_id}")
        except CheckoutValidationError as e:
            return self._fail(str(e))

        self.session.selected_address_id = address_id
        self.session.error = None
        return self.session

    def fallback_subtotal(self) -> Decimal:
        """Subtotal shown in the address step, before backend figures exist."""
        if self.session.cart is None:
            return Decimal("0")
        return self.session.cart.subtotal

    async def proceed_to_payment(self, payment_method: str = "CARD") -> CheckoutSession:
        """Create the payment intent and move to the payment step."""
        try:
            self._require_step(CheckoutStep.ADDRESS)
            if self.session.cart is None or self.session.cart.is_empty:
                raise CheckoutValidationError(EMPTY_CART_MESSAGE)
            if not self.session.selected_address_id:
                raise CheckoutValidationError("Please select a delivery address")
        except CheckoutValidationError as e:
            return self._fail(str(e))

        try:
            intent = await self.client.create_payment_intent(
                self.session.selected_address_id, payment_method
            )
        except NoCredentialError as e:
            return self._fail(str(e), auth_required=True)
        except ApiError as e:
            logger.error(f"Payment intent creation failed: {e}")
            return self._fail(e.message or "Failed to initialize payment")

        self.session.payment_method = payment_method
        self.session.client_secret = intent.client_secret
        self.session.payment_intent_id = intent.payment_intent_id
        self.session.price_breakdown = intent.breakdown
        self.session.step = CheckoutStep.PAYMENT
        self.session.error = None
        logger.info(f"Checkout advanced to payment (intent={intent.payment_intent_id})")
        return self.session

    async def submit_payment(self, payment_method: str) -> CheckoutSession:
        """
        Confirm the payment with the provider, then create the order.

        Args:
            payment_method: Opaque provider payment method reference
        """
        try:
            self._require_step(CheckoutStep.PAYMENT)
        except CheckoutValidationError as e:
            return self._fail(str(e))

        payment_intent_id = self.session.payment_intent_id
        if self.session.payment_confirmed:
            # Never confirm the same intent twice.
            error = ReconciliationError(payment_intent_id, "the order was not confirmed")
            return self._fail(str(error))

        try:
            confirmation = await self.provider.confirm(self.session.client_secret, payment_method)
        except Exception as e:
            logger.error(f"Payment provider error: {e}", exc_info=True)
            return self._fail(f"Payment failed: {e}")
        if not confirmation.succeeded:
            return self._fail(confirmation.error or "Payment failed")
        self.session.payment_confirmed = True

        logger.info(
            f"Provider confirmed {payment_intent_id} (status={confirmation.status}); "
            f"waiting {self.confirmation_delay}s before order confirmation"
        )
        await asyncio.sleep(self.confirmation_delay)

        try:
            order_number = await self.client.confirm_payment(
                payment_intent_id, self.session.selected_address_id
            )
        except (ApiError, NoCredentialError) as e:
            error = ReconciliationError(payment_intent_id, str(e))
            logger.error(f"Order confirmation failed after successful payment: {error}")
            return self._fail(str(error), auth_required=isinstance(e, NoCredentialError))

        self.session.order_number = order_number
        self.session.step = CheckoutStep.SUCCESS
        self.session.error = None
        logger.info(f"✓ Order {order_number} confirmed")
        return self.session

    def _require_step(self, step: CheckoutStep) -> None:
        if self.session.step is CheckoutStep.SUCCESS:
            raise CheckoutValidationError(
                f"Checkout is already complete (order {self.session.order_number})"
            )
        if self.session.step is not step:
            raise CheckoutValidationError(
                f"Cannot do that in the {self.session.step.value} step"
            )

    def _fail(self, message: str, auth_required: Optional[bool] = None) -> CheckoutSession:
        self.session.error = message
        if auth_required is not None:
            self.session.auth_required = auth_required
        return self.session
