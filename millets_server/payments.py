"""Payment provider adapters."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import stripe

from .models import ProviderConfirmation

logger = logging.getLogger(__name__)

# Statuses that mean the provider accepted the payment and needs nothing more
# from the customer.
CONFIRMED_STATUSES = {"succeeded", "processing"}


def payment_intent_id_from_secret(client_secret: str) -> str:
    """Extract ``pi_...`` from a ``pi_..._secret_...`` client secret."""
    intent_id, sep, _ = client_secret.partition("_secret_")
    if not sep or not intent_id:
        raise ValueError("Malformed client secret")
    return intent_id


class PaymentProvider(ABC):
    """Confirms a payment intent on the customer's behalf."""

    @abstractmethod
    async def confirm(self, client_secret: str, payment_method: str) -> ProviderConfirmation:
        """Confirm the intent behind ``client_secret`` with ``payment_method``."""


class StripePaymentProvider(PaymentProvider):
    """Client-side Stripe confirmation using the publishable key."""

    def __init__(self, publishable_key: str, return_url: Optional[str] = None) -> None:
        """
        Args:
            publishable_key: Stripe publishable key (pk_...)
            return_url: Where Stripe sends the customer after a redirect-based method
        """
        if not publishable_key:
            raise ValueError("A Stripe publishable key is required")
        self.publishable_key = publishable_key
        self.return_url = return_url

    async def confirm(self, client_secret: str, payment_method: str) -> ProviderConfirmation:
        """
        Confirm the payment intent behind ``client_secret``.

        Args:
            client_secret: Secret returned by create-payment-intent
            payment_method: Stripe PaymentMethod id (e.g. pm_...) collected by the provider UI
        """
        try:
            intent_id = payment_intent_id_from_secret(client_secret)
        except ValueError as e:
            return ProviderConfirmation(succeeded=False, error=str(e))

        params = {
            "client_secret": client_secret,
            "payment_method": payment_method,
            "api_key": self.publishable_key,
        }
        if self.return_url:
            params["return_url"] = self.return_url

        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.confirm, intent_id, **params)
        except stripe.StripeError as e:
            message = e.user_message or str(e)
            logger.warning(f"Stripe confirmation failed for {intent_id}: {message}")
            return ProviderConfirmation(succeeded=False, error=message)

        status = intent.get("status")
        logger.info(f"Stripe payment intent {intent_id} status: {status}")
        if status in CONFIRMED_STATUSES:
            return ProviderConfirmation(succeeded=True, status=status)
        if status == "requires_action":
            return ProviderConfirmation(
                succeeded=False,
                status=status,
                error="Additional authentication is required to complete this payment",
            )
        return ProviderConfirmation(
            succeeded=False,
            status=status,
            error=f"Payment was not completed (status: {status})",
        )
