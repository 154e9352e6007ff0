"""HTTP server for the Nature Millets MCP Server."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from . import __version__
from .auth import CredentialStore
from .checkout import CheckoutOrchestrator
from .config import Settings
from .errors import ApiError, AuthenticationError, NoCredentialError
from .millets_client import MilletsClient
from .models import CheckoutSession
from .payments import PaymentProvider, StripePaymentProvider
from .tokens import TokenManager

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("millets-http-server")


class Services:
    """Objects shared by all request handlers."""

    def __init__(
        self,
        settings: Settings,
        token_manager: TokenManager,
        client: MilletsClient,
        provider: Optional[PaymentProvider],
    ) -> None:
        self.settings = settings
        self.token_manager = token_manager
        self.client = client
        self.provider = provider
        self.orchestrator: Optional[CheckoutOrchestrator] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        token_manager = TokenManager(
            CredentialStore(settings.session_file), settings.api_url, timeout=settings.http_timeout
        )
        client = MilletsClient(token_manager, settings.api_url, timeout=settings.http_timeout)
        provider = (
            StripePaymentProvider(settings.stripe_publishable_key, settings.stripe_return_url)
            if settings.stripe_publishable_key
            else None
        )
        return cls(settings, token_manager, client, provider)

    def checkout(self) -> CheckoutOrchestrator:
        if self.orchestrator is None:
            if self.provider is None:
                raise HTTPException(status_code=503, detail="Payments are not configured")
            self.orchestrator = CheckoutOrchestrator(
                self.client, self.provider, confirmation_delay=self.settings.confirm_delay
            )
        return self.orchestrator

    async def close(self) -> None:
        await self.client.aclose()
        await self.token_manager.aclose()


# Global state
services: Optional[Services] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    global services

    # Startup
    logger.info("Starting Nature Millets HTTP Server...")
    if services is None:
        services = Services.from_settings(Settings.from_env())

    yield

    # Shutdown
    logger.info("Shutting down Nature Millets HTTP Server...")
    await services.close()


app = FastAPI(
    title="Nature Millets MCP Server",
    description="HTTP API for the Nature Millets storefront",
    version=__version__,
    lifespan=lifespan,
)


# Request/Response Models
class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    email: str
    password: str
    username: Optional[str] = None
    phone: Optional[str] = None


class LoginResponse(BaseModel):
    success: bool
    message: str


class CouponRequest(BaseModel):
    code: str


class SelectAddressRequest(BaseModel):
    address_id: str


class ProceedRequest(BaseModel):
    payment_method: str = "CARD"


class PayRequest(BaseModel):
    payment_method_id: str


def _session_body(session: CheckoutSession, checkout: CheckoutOrchestrator) -> dict:
    body = session.model_dump(mode="json")
    body["fallback_subtotal"] = str(checkout.fallback_subtotal())
    return body


def _raise_for(error: Exception, action: str):
    """Map client errors to HTTP errors."""
    if isinstance(error, HTTPException):
        raise error
    if isinstance(error, NoCredentialError):
        raise HTTPException(status_code=401, detail="Not authenticated")
    if isinstance(error, ValueError):
        raise HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ApiError):
        status = error.status_code if error.status_code and 400 <= error.status_code < 500 else 502
        raise HTTPException(status_code=status, detail=error.message)
    logger.error(f"{action} error: {error}", exc_info=True)
    raise HTTPException(status_code=500, detail=str(error))


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Nature Millets MCP Server",
        "version": __version__,
        "description": "HTTP API for the Nature Millets storefront",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "auth": {
                "login": "POST /auth/login",
                "signup": "POST /auth/signup",
                "logout": "POST /auth/logout",
                "status": "GET /auth/status",
            },
            "cart": {"get": "GET /cart", "coupon": "POST /cart/coupon"},
            "addresses": {"list": "GET /addresses"},
            "orders": {"list": "GET /orders"},
            "checkout": {
                "status": "GET /checkout",
                "start": "POST /checkout/start",
                "address": "POST /checkout/address",
                "proceed": "POST /checkout/proceed",
                "pay": "POST /checkout/pay",
            },
        },
        "authenticated": services.token_manager.store.is_authenticated() if services else False,
    }


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "authenticated": services.token_manager.store.is_authenticated() if services else False,
        "payments_configured": bool(services and services.provider),
    }


# Authentication endpoints
@app.post("/auth/login", response_model=LoginResponse)
async def login(request: LoginRequest):
    """Sign in to Nature Millets."""
    try:
        user = await services.token_manager.sign_in(request.email, request.password)
        services.orchestrator = None
        return LoginResponse(success=True, message=f"Successfully logged in as {user.email}")
    except AuthenticationError as e:
        return LoginResponse(success=False, message=str(e))


@app.post("/auth/signup", response_model=LoginResponse)
async def signup(request: SignupRequest):
    """Register a new account."""
    try:
        user = await services.token_manager.sign_up(
            request.email, request.password, username=request.username, phone=request.phone
        )
        services.orchestrator = None
        return LoginResponse(success=True, message=f"Account created for {user.email}")
    except AuthenticationError as e:
        return LoginResponse(success=False, message=str(e))


@app.post("/auth/logout")
async def logout():
    """Sign out and clear credentials."""
    await services.token_manager.logout()
    services.orchestrator = None
    return {"success": True, "message": "Successfully logged out"}


@app.get("/auth/status")
async def auth_status():
    """Get authentication status."""
    token = await services.token_manager.get_valid_access_token()
    user = services.token_manager.current_user() if token else None
    return {
        "authenticated": bool(token),
        "email": user.email if user else None,
        "role": user.role if user else None,
    }


# Cart endpoints
@app.get("/cart")
async def get_cart():
    """Get current shopping cart."""
    try:
        cart = await services.client.get_cart()
        body = cart.model_dump(mode="json")
        body["subtotal"] = str(cart.subtotal)
        return body
    except Exception as e:
        _raise_for(e, "Get cart")


@app.post("/cart/coupon")
async def apply_coupon(request: CouponRequest):
    """Apply a coupon code to the cart."""
    try:
        result = await services.client.apply_coupon(request.code)
        return result.model_dump(mode="json")
    except Exception as e:
        _raise_for(e, "Apply coupon")


@app.get("/addresses")
async def get_addresses():
    """List saved addresses."""
    try:
        addresses = await services.client.get_addresses()
        return {"count": len(addresses), "addresses": [a.model_dump(mode="json") for a in addresses]}
    except Exception as e:
        _raise_for(e, "Get addresses")


@app.get("/orders")
async def get_orders():
    """Get user's orders."""
    try:
        orders = await services.client.get_orders()
        return {"count": len(orders), "orders": [o.model_dump(mode="json") for o in orders]}
    except Exception as e:
        _raise_for(e, "Get orders")


# Checkout endpoints
@app.get("/checkout")
async def checkout_status():
    """Get the current checkout session."""
    checkout = services.checkout()
    return _session_body(checkout.session, checkout)


@app.post("/checkout/start")
async def checkout_start():
    """Start a new checkout session."""
    checkout = services.checkout()
    session = await checkout.start()
    if session.auth_required:
        raise HTTPException(status_code=401, detail=session.error)
    return _session_body(session, checkout)


@app.post("/checkout/address")
async def checkout_select_address(request: SelectAddressRequest):
    """Select the delivery address."""
    checkout = services.checkout()
    return _session_body(checkout.select_address(request.address_id), checkout)


@app.post("/checkout/proceed")
async def checkout_proceed(request: ProceedRequest):
    """Create the payment intent and move to the payment step."""
    checkout = services.checkout()
    session = await checkout.proceed_to_payment(request.payment_method)
    if session.auth_required:
        raise HTTPException(status_code=401, detail=session.error)
    return _session_body(session, checkout)


@app.post("/checkout/pay")
async def checkout_pay(request: PayRequest):
    """Confirm the payment and place the order."""
    checkout = services.checkout()
    session = await checkout.submit_payment(request.payment_method_id)
    return _session_body(session, checkout)


def run_http_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the HTTP server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_http_server()
