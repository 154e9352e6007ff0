"""Tests for the Stripe payment provider adapter."""
from unittest.mock import patch

import pytest
import stripe

from millets_server.payments import PaymentProvider, StripePaymentProvider, payment_intent_id_from_secret


def test_payment_intent_id_from_secret():
    assert payment_intent_id_from_secret("pi_3Abc_secret_XyZ") == "pi_3Abc"
    with pytest.raises(ValueError):
        payment_intent_id_from_secret("cs_1")


def test_requires_publishable_key():
    with pytest.raises(ValueError):
        StripePaymentProvider("")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["succeeded", "processing"])
async def test_confirmed_statuses(status):
    provider = StripePaymentProvider("pk_test_123", return_url="https://shop.test/done")

    with patch("millets_server.payments.stripe.PaymentIntent.confirm", return_value={"status": status}) as confirm:
        result = await provider.confirm("pi_1_secret_abc", "pm_card_visa")

    assert result.succeeded
    assert result.status == status
    confirm.assert_called_once_with(
        "pi_1",
        client_secret="pi_1_secret_abc",
        payment_method="pm_card_visa",
        api_key="pk_test_123",
        return_url="https://shop.test/done",
    )


@pytest.mark.asyncio
async def test_requires_action_is_not_confirmed():
    provider = StripePaymentProvider("pk_test_123")

    with patch("millets_server.payments.stripe.PaymentIntent.confirm", return_value={"status": "requires_action"}):
        result = await provider.confirm("pi_1_secret_abc", "pm_card_3ds")

    assert not result.succeeded
    assert "authentication" in result.error


@pytest.mark.asyncio
async def test_stripe_error_is_reported():
    provider = StripePaymentProvider("pk_test_123")

    with patch(
        "millets_server.payments.stripe.PaymentIntent.confirm",
        side_effect=stripe.StripeError("Your card was declined."),
    ):
        result = await provider.confirm("pi_1_secret_abc", "pm_card_declined")

    assert not result.succeeded
    assert "declined" in result.error


@pytest.mark.asyncio
async def test_malformed_secret_never_reaches_stripe():
    provider = StripePaymentProvider("pk_test_123")

    with patch("millets_server.payments.stripe.PaymentIntent.confirm") as confirm:
        result = await provider.confirm("garbage", "pm_card_visa")

    assert not result.succeeded
    confirm.assert_not_called()


def test_provider_interface_is_abstract():
    with pytest.raises(TypeError):
        PaymentProvider()
