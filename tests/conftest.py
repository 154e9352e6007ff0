"""Shared test fixtures."""
import asyncio
import json

import httpx
import pytest

from millets_server.auth import MemoryCredentialStore
from millets_server.millets_client import MilletsClient
from millets_server.models import ProviderConfirmation, User
from millets_server.payments import PaymentProvider
from millets_server.tokens import TokenManager

BASE_URL = "http://millets.test"


class FakeBackend:
    """Routes requests from httpx.MockTransport to canned responses."""

    def __init__(self):
        self.routes = {}
        self.requests = []
        # Seconds each response takes, so concurrent requests interleave
        self.latency = 0

    def on(self, method, path, status=200, json=None, error=None, respond=None):
        """Register a canned response, or a ``respond(request)`` callable."""
        self.routes[(method, "/api/v1" + path)] = (status, json, error, respond)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.latency:
            await asyncio.sleep(self.latency)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"success": False, "message": "Route not found"})
        status, body, error, respond = self.routes[key]
        if error is not None:
            raise error
        if respond is not None:
            return respond(request)
        return httpx.Response(status, json=body)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == "/api/v1" + path]


class FakeProvider(PaymentProvider):
    def __init__(self, result=None):
        self.result = result or ProviderConfirmation(succeeded=True, status="succeeded")
        self.calls = []

    async def confirm(self, client_secret, payment_method):
        self.calls.append((client_secret, payment_method))
        return self.result


def ok(data=None, message="OK"):
    return {"success": True, "message": message, "data": data}


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def http_client(backend):
    return httpx.AsyncClient(transport=httpx.MockTransport(backend.handler), base_url=BASE_URL)


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def sample_user():
    return User(id="u1", email="asha@example.com", username="asha", role="USER")


@pytest.fixture
def signed_in_store(store, sample_user):
    store.set_tokens("access-1", "refresh-1", sample_user)
    return store


@pytest.fixture
def token_manager(store, http_client):
    return TokenManager(store, BASE_URL, http_client=http_client)


@pytest.fixture
def client(token_manager, http_client):
    return MilletsClient(token_manager, BASE_URL, http_client=http_client)


@pytest.fixture
def sample_cart():
    return {
        "id": "cart1",
        "couponCode": None,
        "items": [
            {"id": "ci1", "quantity": 2, "price": 40, "product": {"id": "p1", "name": "Foxtail Millet", "images": []}},
            {"id": "ci2", "quantity": 1, "price": 20, "product": {"id": "p2", "name": "Ragi Flour", "images": []}},
        ],
    }


@pytest.fixture
def sample_addresses():
    return [
        {
            "id": "a1",
            "name": "Asha",
            "phone": "9000000000",
            "addressLine1": "12 MG Road",
            "city": "Bengaluru",
            "state": "KA",
            "postalCode": "560001",
            "isDefault": False,
        },
        {
            "id": "a2",
            "name": "Asha",
            "phone": "9000000000",
            "addressLine1": "4 Lake View",
            "addressLine2": "Flat 3",
            "city": "Mysuru",
            "state": "KA",
            "postalCode": "570001",
            "isDefault": True,
        },
    ]


@pytest.fixture
def intent_payload():
    return {
        "clientSecret": "cs_1",
        "paymentIntentId": "pi_1",
        "amount": 118,
        "breakdown": {"subtotal": 100, "tax": 18, "shippingFee": 0, "discount": 0, "total": 118},
    }


@pytest.fixture
def rotating_auth(signed_in_store, backend):
    """Backend whose stored access token has expired and whose refresh tokens are single-use."""
    current = {"access": None, "refresh": "refresh-1", "issued": 1}

    def me(request):
        if request.headers.get("Authorization") == f"Bearer {current['access']}":
            return httpx.Response(200, json=ok({"id": "u1"}))
        return httpx.Response(401, json={"success": False, "message": "Invalid or expired token"})

    def refresh(request):
        presented = json.loads(request.content).get("refreshToken")
        if presented != current["refresh"]:
            return httpx.Response(401, json={"success": False, "message": "Invalid refresh token"})
        current["issued"] += 1
        current["access"] = f"access-{current['issued']}"
        current["refresh"] = f"refresh-{current['issued']}"
        return httpx.Response(
            200, json=ok({"accessToken": current["access"], "refreshToken": current["refresh"]})
        )

    backend.latency = 0.01
    backend.on("GET", "/auth/me", respond=me)
    backend.on("POST", "/auth/refresh", respond=refresh)
    return backend
