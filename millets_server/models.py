"""Data models for Nature Millets storefront entities."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

ZERO = Decimal("0")


class ApiModel(BaseModel):
    """Base for models parsed from camelCase API payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class User(ApiModel):
    """Authenticated storefront user."""

    id: str = Field(description="User ID")
    email: str = Field(description="User email")
    username: Optional[str] = Field(None, description="Optional username")
    role: str = Field(default="USER", description="USER or ADMIN")


class AuthCredentials(BaseModel):
    """Authentication credentials."""

    email: str
    password: str


class CredentialPair(BaseModel):
    """Access/refresh token pair with the cached profile."""

    access_token: str
    refresh_token: str
    user: Optional[User] = None


class Address(ApiModel):
    """Saved delivery address."""

    id: str
    name: str = ""
    phone: str = ""
    address_line1: str = Field(default="", alias="addressLine1")
    address_line2: Optional[str] = Field(None, alias="addressLine2")
    city: str = ""
    state: str = ""
    postal_code: str = Field(default="", alias="postalCode")
    is_default: bool = Field(default=False, alias="isDefault")

    def one_line(self) -> str:
        line = self.address_line1
        if self.address_line2:
            line += f", {self.address_line2}"
        return f"{self.name}, {line}, {self.city}, {self.state} - {self.postal_code}"


class Product(ApiModel):
    """Product referenced by a cart line."""

    id: str = Field(description="Product ID")
    name: str = Field(default="", description="Product name")
    slug: Optional[str] = None


class CartItem(ApiModel):
    """Represents an item in the shopping cart."""

    id: str
    product: Product
    quantity: int = Field(gt=0, description="Quantity of the product")
    price: Decimal = Field(description="Unit price at the time it was added")

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class Cart(ApiModel):
    """Represents the shopping cart."""

    id: Optional[str] = None
    items: list[CartItem] = Field(default_factory=list, description="Cart items")
    coupon_code: Optional[str] = Field(None, alias="couponCode")

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def subtotal(self) -> Decimal:
        """Client-side subtotal, used only before the backend breakdown exists."""
        return sum((item.line_total for item in self.items), ZERO)


class PriceBreakdown(ApiModel):
    """Authoritative checkout figures returned by the backend."""

    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    shipping_fee: Decimal = Field(default=ZERO, alias="shippingFee")
    discount: Decimal = ZERO
    total: Decimal = ZERO

    @classmethod
    def compute(
        cls,
        subtotal: Decimal,
        tax: Decimal = ZERO,
        shipping_fee: Decimal = ZERO,
        discount: Decimal = ZERO,
    ) -> "PriceBreakdown":
        total = max(subtotal + tax + shipping_fee - discount, ZERO)
        return cls(
            subtotal=subtotal,
            tax=tax,
            shipping_fee=shipping_fee,
            discount=discount,
            total=total,
        )


class PaymentIntent(ApiModel):
    """Result of create-payment-intent."""

    client_secret: str = Field(alias="clientSecret")
    payment_intent_id: str = Field(alias="paymentIntentId")
    breakdown: PriceBreakdown


class CouponResult(ApiModel):
    """Result of applying a coupon to the cart."""

    code: str
    description: Optional[str] = None
    discount: Decimal = ZERO
    cart_total: Decimal = ZERO
    final_total: Decimal = ZERO


class OrderItem(ApiModel):
    """Represents an item in an order."""

    product_name: str
    quantity: int
    price: Decimal


class Order(ApiModel):
    """Represents an order."""

    id: str = Field(description="Order ID")
    order_number: str = Field(alias="orderNumber", description="Human-readable order number")
    status: str = Field(default="PENDING", description="Order status")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    total: Decimal = ZERO
    items: list[OrderItem] = Field(default_factory=list)


class CheckoutStep(str, Enum):
    ADDRESS = "address"
    PAYMENT = "payment"
    SUCCESS = "success"


class ProviderConfirmation(BaseModel):
    """Outcome reported by the payment provider."""

    succeeded: bool
    status: Optional[str] = None
    error: Optional[str] = None


class CheckoutSession(BaseModel):
    """In-memory checkout wizard state. Never persisted."""

    step: CheckoutStep = CheckoutStep.ADDRESS
    cart: Optional[Cart] = None
    addresses: list[Address] = Field(default_factory=list)
    selected_address_id: Optional[str] = None
    payment_method: str = "CARD"
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_confirmed: bool = False
    price_breakdown: Optional[PriceBreakdown] = None
    order_number: Optional[str] = None
    error: Optional[str] = None
    auth_required: bool = False
    needs_address: bool = False
