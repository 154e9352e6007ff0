"""Nature Millets storefront API client."""

import logging
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from .errors import ApiError, NoCredentialError
from .models import Address, Cart, CouponResult, Order, OrderItem, PaymentIntent
from .tokens import API_PREFIX, TokenManager

logger = logging.getLogger(__name__)


class MilletsClient:
    """Client for the authenticated storefront endpoints."""

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: str = "http://localhost:8000",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the storefront client.

        Args:
            token_manager: Supplies a valid access token for every request
            base_url: Backend base URL
            http_client: Optional pre-built client (shared with the token manager in tests)
            timeout: Request timeout in seconds for the owned client
        """
        self.token_manager = token_manager
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        Issue an authenticated request and unwrap the response envelope.

        Returns:
            The envelope's ``data`` member

        Raises:
            NoCredentialError: If no valid access token could be obtained
            ApiError: On transport errors, non-2xx status or success=false
        """
        access_token = await self.token_manager.get_valid_access_token()
        if not access_token:
            raise NoCredentialError()

        request_headers = {"Authorization": f"Bearer {access_token}"}
        if headers:
            request_headers.update(headers)

        try:
            response = await self.client.request(
                method, f"{API_PREFIX}{path}", json=json, headers=request_headers
            )
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(f"Network error: {e}") from e

        logger.info(f"{method} {path}: status={response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if not response.is_success or not payload.get("success"):
            message = payload.get("message") or f"Request failed with status {response.status_code}"
            raise ApiError(message, response.status_code)

        return payload.get("data")

    async def get_cart(self) -> Cart:
        """
        Get current shopping cart contents.

        Returns:
            Cart with items and coupon code
        """
        data = await self._request("GET", "/cart") or {}
        return self._parse(Cart, data.get("cart") or {})

    async def get_addresses(self) -> list[Address]:
        """Get the user's saved addresses, default first."""
        data = await self._request("GET", "/addresses") or []
        return [self._parse(Address, item) for item in data]

    async def apply_coupon(self, code: str) -> CouponResult:
        """
        Apply a coupon code to the cart.

        Args:
            code: Coupon code (case-insensitive on the backend)

        Raises:
            ValueError: If the code is blank
        """
        if not code or not code.strip():
            raise ValueError("Coupon code is required")

        data = await self._request("POST", "/cart/apply-coupon", json={"couponCode": code.strip()}) or {}
        coupon = data.get("coupon") or {}
        return CouponResult(
            code=coupon.get("code", code.strip().upper()),
            description=coupon.get("description"),
            discount=Decimal(str(data.get("discountAmount", coupon.get("discount", 0)))),
            cart_total=Decimal(str(data.get("cartTotal", 0))),
            final_total=Decimal(str(data.get("finalTotal", 0))),
        )

    async def create_payment_intent(self, address_id: str, payment_method: str = "CARD") -> PaymentIntent:
        """
        Create a provider payment intent for the current cart.

        Returns:
            Client secret, payment intent id and the authoritative price breakdown
        """
        logger.info(f"=== CREATE PAYMENT INTENT: address_id={address_id}, method={payment_method} ===")
        data = await self._request(
            "POST",
            "/payments/create-payment-intent",
            json={"addressId": address_id, "paymentMethod": payment_method},
        )
        return self._parse(PaymentIntent, data or {})

    async def confirm_payment(self, payment_intent_id: str, address_id: str) -> str:
        """
        Ask the backend to turn a confirmed payment into an order.

        The payment intent id doubles as the idempotency key so a repeated call
        cannot create a second order.

        Returns:
            The new order number
        """
        logger.info(f"=== CONFIRM PAYMENT: payment_intent_id={payment_intent_id} ===")
        data = await self._request(
            "POST",
            "/payments/confirm-payment",
            json={"paymentIntentId": payment_intent_id, "addressId": address_id},
            headers={"Idempotency-Key": payment_intent_id},
        ) or {}
        order_number = data.get("orderNumber")
        if not order_number:
            raise ApiError("Order confirmation response did not include an order number")
        return str(order_number)

    async def get_orders(self) -> list[Order]:
        """Get user's orders, newest first."""
        data = await self._request("GET", "/orders") or []
        return self._parse_orders(data)

    def _parse(self, model: Any, data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Failed to parse {model.__name__}: {e}")
            raise ApiError(f"Unexpected {model.__name__} response from server") from e

    def _parse_orders(self, data: list[dict[str, Any]]) -> list[Order]:
        """Parse orders from API JSON response."""
        orders = []
        for order_data in data:
            try:
                items = [
                    OrderItem(
                        product_name=(item.get("product") or {}).get("name") or item.get("name", "Unknown"),
                        quantity=item.get("quantity", 1),
                        price=Decimal(str(item.get("price", 0))),
                    )
                    for item in order_data.get("items", [])
                ]
                orders.append(
                    Order.model_validate(
                        {
                            "id": str(order_data.get("id", "")),
                            "orderNumber": str(order_data.get("orderNumber", order_data.get("id", ""))),
                            "status": order_data.get("status", "PENDING"),
                            "createdAt": order_data.get("createdAt"),
                            "total": Decimal(str(order_data.get("total", 0))),
                            "items": items,
                        }
                    )
                )
            except (ValidationError, ArithmeticError) as e:
                logger.warning(f"Failed to parse order: {e}")
                continue
        return orders

    async def aclose(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._owns_client:
            await self.client.aclose()
