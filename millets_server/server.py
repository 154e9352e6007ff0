"""MCP Server for the Nature Millets storefront."""

import asyncio
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .auth import CredentialStore
from .checkout import CheckoutOrchestrator
from .config import Settings
from .errors import AuthenticationError, NoCredentialError
from .millets_client import MilletsClient
from .models import CheckoutSession, CheckoutStep
from .payments import PaymentProvider, StripePaymentProvider
from .tokens import TokenManager

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("millets-mcp-server")

# Initialize server
app = Server("millets-mcp-server")

# Global state
settings: Settings
token_manager: TokenManager
millets_client: MilletsClient
payment_provider: Optional[PaymentProvider] = None
orchestrator: Optional[CheckoutOrchestrator] = None

NOT_AUTHENTICATED = (
    "Error: Not authenticated. Use millets_login, or configure MILLETS_EMAIL and "
    "MILLETS_PASSWORD in the MCP settings."
)


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


async def auto_login() -> bool:
    """Sign in with MILLETS_EMAIL/MILLETS_PASSWORD if they are configured."""
    credentials = settings.credentials
    if not credentials:
        return False
    try:
        logger.info("Auto-logging in with configured credentials...")
        await token_manager.sign_in(credentials.email, credentials.password)
        reset_checkout()
        logger.info("Auto-login successful")
        return True
    except AuthenticationError as e:
        logger.error(f"Auto-login error: {e}")
        return False


async def ensure_authenticated() -> bool:
    """
    Ensure a token pair is stored, auto-login if credentials are configured.

    The token itself is validated by the request that uses it.
    """
    if token_manager.store.is_authenticated():
        return True
    return await auto_login()


def reset_checkout() -> None:
    """Drop the checkout session when the signed-in user changes."""
    global orchestrator
    orchestrator = None


def get_orchestrator() -> CheckoutOrchestrator:
    """Return the checkout orchestrator, creating it on first use."""
    global orchestrator
    if orchestrator is None:
        if payment_provider is None:
            raise ValueError("Payments are not configured. Set STRIPE_PUBLISHABLE_KEY.")
        orchestrator = CheckoutOrchestrator(
            millets_client, payment_provider, confirmation_delay=settings.confirm_delay
        )
    return orchestrator


def format_session(session: CheckoutSession, subtotal: Any = None) -> str:
    """Render a checkout session as readable text."""
    lines = [f"Checkout step: {session.step.value}"]

    if session.error:
        lines.append(f"Error: {session.error}")
    if session.auth_required:
        lines.append("Please sign in again with millets_login.")

    if session.step is CheckoutStep.ADDRESS:
        if session.cart is not None:
            lines.append(f"\nCart ({len(session.cart.items)} items):")
            for item in session.cart.items:
                lines.append(f"  - {item.product.name} x{item.quantity} (₹{item.line_total})")
            if subtotal is not None:
                lines.append(f"Subtotal: ₹{subtotal}")
        if session.addresses:
            lines.append("\nAddresses:")
            for address in session.addresses:
                marker = "*" if address.id == session.selected_address_id else " "
                default = " (default)" if address.is_default else ""
                lines.append(f" {marker} [{address.id}] {address.one_line()}{default}")
        elif session.needs_address:
            lines.append("\nAdd an address in your account, then start checkout again.")

    breakdown = session.price_breakdown
    if breakdown and session.step is not CheckoutStep.ADDRESS:
        lines.append(f"\nSubtotal: ₹{breakdown.subtotal}")
        lines.append(f"Tax: ₹{breakdown.tax}")
        lines.append(f"Shipping: ₹{breakdown.shipping_fee}")
        if breakdown.discount:
            lines.append(f"Discount: -₹{breakdown.discount}")
        lines.append(f"Total: ₹{breakdown.total}")

    if session.step is CheckoutStep.PAYMENT:
        lines.append(f"Payment reference: {session.payment_intent_id}")
    if session.step is CheckoutStep.SUCCESS:
        lines.append(f"\nOrder placed successfully! Order number: {session.order_number}")

    return "\n".join(lines)


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    resources = []

    # If authenticated, provide cart and orders as resources
    if token_manager.store.is_authenticated():
        resources.extend(
            [
                Resource(
                    uri=AnyUrl("millets://cart"),
                    name="Shopping Cart",
                    mimeType="application/json",
                    description="Current shopping cart contents",
                ),
                Resource(
                    uri=AnyUrl("millets://orders"),
                    name="Orders",
                    mimeType="application/json",
                    description="User's orders",
                ),
            ]
        )

    return resources


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    uri_str = str(uri)

    try:
        if uri_str == "millets://cart":
            cart = await millets_client.get_cart()
            return cart.model_dump_json(indent=2)

        elif uri_str == "millets://orders":
            orders = await millets_client.get_orders()
            return json.dumps([order.model_dump() for order in orders], indent=2, default=str)
    except NoCredentialError:
        return "Error: Not authenticated. Please login first."

    raise ValueError(f"Unknown resource: {uri}")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    empty = {"type": "object", "properties": {}}
    return [
        Tool(
            name="millets_login",
            description="Sign in to Nature Millets. Uses MILLETS_EMAIL/MILLETS_PASSWORD if not provided.",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {"type": "string", "description": "User email address"},
                    "password": {"type": "string", "description": "User password"},
                },
            },
        ),
        Tool(
            name="millets_signup",
            description="Create a Nature Millets account and sign in",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {"type": "string", "description": "User email address"},
                    "password": {"type": "string", "description": "Password (at least 6 characters)"},
                    "username": {"type": "string", "description": "Optional username"},
                    "phone": {"type": "string", "description": "Optional phone number"},
                },
                "required": ["email", "password"],
            },
        ),
        Tool(
            name="millets_logout",
            description="Sign out and clear stored credentials",
            inputSchema=empty,
        ),
        Tool(
            name="millets_whoami",
            description="Show the signed-in user",
            inputSchema=empty,
        ),
        Tool(
            name="millets_get_cart",
            description="Get current shopping cart contents",
            inputSchema=empty,
        ),
        Tool(
            name="millets_apply_coupon",
            description="Apply a coupon code to the cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "Coupon code"},
                },
                "required": ["code"],
            },
        ),
        Tool(
            name="millets_get_addresses",
            description="List saved delivery addresses",
            inputSchema=empty,
        ),
        Tool(
            name="millets_get_orders",
            description="List the user's orders",
            inputSchema=empty,
        ),
        Tool(
            name="millets_checkout_start",
            description="Start a new checkout: loads the cart and addresses, preselecting the default address",
            inputSchema=empty,
        ),
        Tool(
            name="millets_checkout_select_address",
            description="Select the delivery address for the current checkout",
            inputSchema={
                "type": "object",
                "properties": {
                    "address_id": {"type": "string", "description": "Address ID"},
                },
                "required": ["address_id"],
            },
        ),
        Tool(
            name="millets_checkout_proceed",
            description="Create the payment and move the checkout to the payment step",
            inputSchema={
                "type": "object",
                "properties": {
                    "payment_method": {
                        "type": "string",
                        "description": "Payment method type (default: CARD)",
                        "default": "CARD",
                    },
                },
            },
        ),
        Tool(
            name="millets_checkout_pay",
            description="Confirm the payment with the provider and place the order",
            inputSchema={
                "type": "object",
                "properties": {
                    "payment_method_id": {
                        "type": "string",
                        "description": "Stripe PaymentMethod id collected by the payment form",
                    },
                },
                "required": ["payment_method_id"],
            },
        ),
        Tool(
            name="millets_checkout_status",
            description="Show the current checkout session",
            inputSchema=empty,
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    arguments = arguments or {}
    try:
        if name == "millets_login":
            email = arguments.get("email")
            password = arguments.get("password")

            # If credentials not provided, use environment credentials
            if not email or not password:
                credentials = settings.credentials
                if not credentials:
                    return _text(
                        "Error: No credentials provided and MILLETS_EMAIL/MILLETS_PASSWORD not configured."
                    )
                email = email or credentials.email
                password = password or credentials.password

            try:
                user = await token_manager.sign_in(email, password)
            except AuthenticationError as e:
                return _text(f"Login failed: {e}")
            reset_checkout()
            return _text(f"Successfully logged in as {user.email}")

        elif name == "millets_signup":
            try:
                user = await token_manager.sign_up(
                    arguments["email"],
                    arguments["password"],
                    username=arguments.get("username"),
                    phone=arguments.get("phone"),
                )
            except AuthenticationError as e:
                return _text(f"Sign up failed: {e}")
            reset_checkout()
            return _text(f"Account created. Logged in as {user.email}")

        elif name == "millets_logout":
            await token_manager.logout()
            reset_checkout()
            return _text("Successfully logged out")

        elif name == "millets_whoami":
            user = token_manager.current_user()
            if not user or not await token_manager.get_valid_access_token():
                return _text("Not logged in")
            return _text(f"Logged in as {user.email} (role: {user.role})")

        elif name == "millets_checkout_status":
            if orchestrator is None:
                return _text("No checkout in progress. Use millets_checkout_start.")
            return _text(format_session(orchestrator.session, orchestrator.fallback_subtotal()))

        # Everything below needs a signed-in user
        if not await ensure_authenticated():
            return _text(NOT_AUTHENTICATED)

        try:
            return await call_authenticated_tool(name, arguments)
        except NoCredentialError:
            # Stored session was rejected and cleared; sign in again once
            if not await auto_login():
                raise
            return await call_authenticated_tool(name, arguments)

    except NoCredentialError:
        return _text(NOT_AUTHENTICATED)
    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return _text(f"Error: {str(e)}")


async def call_authenticated_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle the tools that need a signed-in user."""
    if name == "millets_get_cart":
        cart = await millets_client.get_cart()
        if cart.is_empty:
            return _text("Your cart is empty")

        result_lines = [f"Shopping Cart ({len(cart.items)} items):\n"]
        for i, item in enumerate(cart.items, 1):
            result_lines.append(f"\n{i}. {item.product.name}")
            result_lines.append(f"   Product ID: {item.product.id}")
            result_lines.append(f"   Price: ₹{item.price}")
            result_lines.append(f"   Quantity: {item.quantity}")
            result_lines.append(f"   Subtotal: ₹{item.line_total}")
        if cart.coupon_code:
            result_lines.append(f"\nCoupon: {cart.coupon_code}")
        result_lines.append(f"\n{'='*50}")
        result_lines.append(f"Subtotal: ₹{cart.subtotal}")
        return _text("\n".join(result_lines))

    elif name == "millets_apply_coupon":
        result = await millets_client.apply_coupon(arguments["code"])
        return _text(
            f"Coupon {result.code} applied: -₹{result.discount} "
            f"(cart ₹{result.cart_total} -> ₹{result.final_total})"
        )

    elif name == "millets_get_addresses":
        addresses = await millets_client.get_addresses()
        if not addresses:
            return _text("No saved addresses")
        result_lines = [f"Found {len(addresses)} address(es):\n"]
        for address in addresses:
            default = " (default)" if address.is_default else ""
            result_lines.append(f"- [{address.id}] {address.one_line()}{default}")
        return _text("\n".join(result_lines))

    elif name == "millets_get_orders":
        orders = await millets_client.get_orders()
        if not orders:
            return _text("No orders found")

        result_lines = [f"Found {len(orders)} order(s):\n"]
        for i, order in enumerate(orders, 1):
            result_lines.append(f"\n{i}. Order #{order.order_number}")
            result_lines.append(f"   Status: {order.status}")
            if order.created_at:
                result_lines.append(f"   Date: {order.created_at.strftime('%Y-%m-%d %H:%M')}")
            result_lines.append(f"   Total: ₹{order.total}")
            for item in order.items:
                result_lines.append(f"     - {item.product_name} x{item.quantity} (₹{item.price})")
        return _text("\n".join(result_lines))

    elif name == "millets_checkout_start":
        checkout = get_orchestrator()
        session = await checkout.start()
        if session.auth_required:
            raise NoCredentialError(session.error)
        return _text(format_session(session, checkout.fallback_subtotal()))

    elif name == "millets_checkout_select_address":
        checkout = get_orchestrator()
        session = checkout.select_address(arguments["address_id"])
        return _text(format_session(session, checkout.fallback_subtotal()))

    elif name == "millets_checkout_proceed":
        checkout = get_orchestrator()
        session = await checkout.proceed_to_payment(arguments.get("payment_method", "CARD"))
        return _text(format_session(session))

    elif name == "millets_checkout_pay":
        checkout = get_orchestrator()
        session = await checkout.submit_payment(arguments["payment_method_id"])
        return _text(format_session(session))

    else:
        return _text(f"Unknown tool: {name}")


def build_services(config: Settings) -> None:
    """Create the credential store, clients and payment provider."""
    global settings, token_manager, millets_client, payment_provider, orchestrator

    settings = config
    store = CredentialStore(config.session_file)
    token_manager = TokenManager(store, config.api_url, timeout=config.http_timeout)
    millets_client = MilletsClient(token_manager, config.api_url, timeout=config.http_timeout)
    payment_provider = (
        StripePaymentProvider(config.stripe_publishable_key, config.stripe_return_url)
        if config.stripe_publishable_key
        else None
    )
    orchestrator = None


async def main() -> None:
    """Main entry point for the MCP server."""
    build_services(Settings.from_env())

    if settings.credentials:
        logger.info(f"Credentials loaded from environment for: {settings.email}")
    else:
        logger.warning("No credentials found in environment variables (MILLETS_EMAIL, MILLETS_PASSWORD)")
        logger.warning("Cart and checkout operations will require manual login via millets_login tool")
    if payment_provider is None:
        logger.warning("STRIPE_PUBLISHABLE_KEY not set - checkout tools are disabled")

    logger.info("Starting Nature Millets MCP Server...")

    # Import and run the server
    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await millets_client.aclose()
        await token_manager.aclose()


if __name__ == "__main__":
    asyncio.run(main())
