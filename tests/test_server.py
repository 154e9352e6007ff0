"""Tests for MCP server tool registration and dispatch."""
import httpx
import pytest

import millets_server.server as server_module
from millets_server.checkout import CheckoutOrchestrator
from millets_server.config import Settings
from millets_server.server import call_tool, format_session, list_tools

from .conftest import FakeProvider, ok

EXPECTED_TOOLS = [
    "millets_login",
    "millets_signup",
    "millets_logout",
    "millets_whoami",
    "millets_get_cart",
    "millets_apply_coupon",
    "millets_get_addresses",
    "millets_get_orders",
    "millets_checkout_start",
    "millets_checkout_select_address",
    "millets_checkout_proceed",
    "millets_checkout_pay",
    "millets_checkout_status",
]


@pytest.fixture
def services(token_manager, client, monkeypatch):
    monkeypatch.setattr(server_module, "settings", Settings(confirm_delay=0), raising=False)
    monkeypatch.setattr(server_module, "token_manager", token_manager, raising=False)
    monkeypatch.setattr(server_module, "millets_client", client, raising=False)
    monkeypatch.setattr(server_module, "payment_provider", FakeProvider())
    monkeypatch.setattr(server_module, "orchestrator", None)


def _text(result):
    assert len(result) == 1
    return result[0].text


@pytest.mark.asyncio
async def test_list_tools_returns_all():
    tools = await list_tools()
    names = [t.name for t in tools]
    assert sorted(names) == sorted(EXPECTED_TOOLS)
    for tool in tools:
        assert tool.description, f"{tool.name} missing description"
        assert tool.inputSchema["type"] == "object"


@pytest.mark.asyncio
async def test_login_tool(services, backend, store):
    backend.on(
        "POST",
        "/auth/signin",
        json=ok({"accessToken": "a", "refreshToken": "r", "user": {"id": "u1", "email": "asha@example.com"}}),
    )

    text = _text(await call_tool("millets_login", {"email": "asha@example.com", "password": "secret1"}))

    assert "Successfully logged in as asha@example.com" in text
    assert store.get_access_token() == "a"


@pytest.mark.asyncio
async def test_login_without_credentials_configured(services):
    text = _text(await call_tool("millets_login", {}))
    assert "MILLETS_EMAIL" in text


@pytest.mark.asyncio
async def test_cart_tool_requires_authentication(services, backend):
    text = _text(await call_tool("millets_get_cart", {}))
    assert text.startswith("Error: Not authenticated")
    assert backend.requests == []


@pytest.mark.asyncio
async def test_auto_login_with_configured_credentials(services, backend, store, sample_cart, monkeypatch):
    monkeypatch.setattr(server_module, "settings", Settings(email="asha@example.com", password="secret1"))
    backend.on(
        "POST",
        "/auth/signin",
        json=ok({"accessToken": "a", "refreshToken": "r", "user": {"id": "u1", "email": "asha@example.com"}}),
    )
    backend.on("GET", "/auth/me", json=ok({"id": "u1"}))
    backend.on("GET", "/cart", json=ok({"cart": sample_cart}))

    text = _text(await call_tool("millets_get_cart", {}))

    assert "Foxtail Millet" in text
    assert "Subtotal: ₹100" in text
    assert len(backend.calls("POST", "/auth/signin")) == 1


@pytest.mark.asyncio
async def test_full_checkout_through_tools(services, backend, signed_in_store, sample_cart, sample_addresses, intent_payload):
    backend.on("GET", "/auth/me", json=ok({"id": "u1"}))
    backend.on("GET", "/cart", json=ok({"cart": sample_cart}))
    backend.on("GET", "/addresses", json=ok(sample_addresses))
    backend.on("POST", "/payments/create-payment-intent", json=ok(intent_payload))
    backend.on("POST", "/payments/confirm-payment", json=ok({"orderNumber": "ORD-1001"}))

    text = _text(await call_tool("millets_checkout_start", {}))
    assert "Checkout step: address" in text
    assert "* [a2]" in text

    text = _text(await call_tool("millets_checkout_select_address", {"address_id": "a1"}))
    assert "* [a1]" in text

    text = _text(await call_tool("millets_checkout_proceed", {}))
    assert "Checkout step: payment" in text
    assert "Total: ₹118" in text

    text = _text(await call_tool("millets_checkout_pay", {"payment_method_id": "pm_card_visa"}))
    assert "ORD-1001" in text

    text = _text(await call_tool("millets_checkout_status", {}))
    assert "Checkout step: success" in text


@pytest.mark.asyncio
async def test_checkout_without_payments_configured(services, signed_in_store, backend, monkeypatch):
    monkeypatch.setattr(server_module, "payment_provider", None)
    backend.on("GET", "/auth/me", json=ok({"id": "u1"}))

    text = _text(await call_tool("millets_checkout_start", {}))

    assert "STRIPE_PUBLISHABLE_KEY" in text


@pytest.mark.asyncio
async def test_logout_tool(services, signed_in_store, backend):
    backend.on("POST", "/auth/logout", json=ok())

    text = _text(await call_tool("millets_logout", {}))

    assert text == "Successfully logged out"
    assert not signed_in_store.is_authenticated()


@pytest.mark.asyncio
async def test_unknown_tool(services, signed_in_store, backend):
    backend.on("GET", "/auth/me", json=ok({"id": "u1"}))
    text = _text(await call_tool("millets_nope", {}))
    assert text == "Unknown tool: millets_nope"


@pytest.mark.asyncio
async def test_format_session_flags_sign_in(client):
    checkout = CheckoutOrchestrator(client, FakeProvider(), confirmation_delay=0)
    session = await checkout.start()
    text = format_session(session)
    assert "millets_login" in text


@pytest.mark.asyncio
async def test_logout_discards_checkout_session(services, backend, signed_in_store, sample_cart, sample_addresses, intent_payload):
    backend.on("GET", "/auth/me", json=ok({"id": "u1"}))
    backend.on("GET", "/cart", json=ok({"cart": sample_cart}))
    backend.on("GET", "/addresses", json=ok(sample_addresses))
    backend.on("POST", "/payments/create-payment-intent", json=ok(intent_payload))
    backend.on("POST", "/auth/logout", json=ok())
    await call_tool("millets_checkout_start", {})
    await call_tool("millets_checkout_proceed", {})

    await call_tool("millets_logout", {})

    text = _text(await call_tool("millets_checkout_status", {}))
    assert text.startswith("No checkout in progress")


@pytest.mark.asyncio
async def test_login_discards_previous_users_checkout(services, backend, signed_in_store, sample_cart, sample_addresses):
    backend.on("GET", "/auth/me", json=ok({"id": "u1"}))
    backend.on("GET", "/cart", json=ok({"cart": sample_cart}))
    backend.on("GET", "/addresses", json=ok(sample_addresses))
    backend.on(
        "POST",
        "/auth/signin",
        json=ok({"accessToken": "b", "refreshToken": "rb", "user": {"id": "u2", "email": "ravi@example.com"}}),
    )
    await call_tool("millets_checkout_start", {})

    await call_tool("millets_login", {"email": "ravi@example.com", "password": "secret2"})

    assert server_module.orchestrator is None


@pytest.mark.asyncio
async def test_tool_call_validates_token_once(services, backend, signed_in_store, sample_cart):
    backend.on("GET", "/auth/me", json=ok({"id": "u1"}))
    backend.on("GET", "/cart", json=ok({"cart": sample_cart}))

    await call_tool("millets_get_cart", {})

    assert len(backend.calls("GET", "/auth/me")) == 1


@pytest.mark.asyncio
async def test_rejected_session_falls_back_to_auto_login(services, backend, signed_in_store, sample_cart, monkeypatch):
    monkeypatch.setattr(server_module, "settings", Settings(email="asha@example.com", password="secret1"))

    def me(request):
        if request.headers.get("Authorization") == "Bearer fresh":
            return httpx.Response(200, json=ok({"id": "u1"}))
        return httpx.Response(401, json={"success": False})

    backend.on("GET", "/auth/me", respond=me)
    backend.on("POST", "/auth/refresh", status=401, json={"success": False, "message": "Invalid refresh token"})
    backend.on(
        "POST",
        "/auth/signin",
        json=ok({"accessToken": "fresh", "refreshToken": "r2", "user": {"id": "u1", "email": "asha@example.com"}}),
    )
    backend.on("GET", "/cart", json=ok({"cart": sample_cart}))

    text = _text(await call_tool("millets_get_cart", {}))

    assert "Foxtail Millet" in text
    assert len(backend.calls("POST", "/auth/signin")) == 1
    assert signed_in_store.get_access_token() == "fresh"
