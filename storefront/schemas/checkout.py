"""
Checkout schemas for cash-on-delivery and gateway checkout.

Requests carry the client's cart and delivery details; responses carry the
gateway checkout parameters and the outcome shown to the customer.
"""

import enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.schemas.orders import OrderItem, OrderTotals, ShippingAddress
from storefront.services.orders.enums import ShippingTier


class CartItemRequest(OrderItem):
    """Cart line submitted at checkout."""

    weight_kg: float = Field(default=0.0, ge=0, le=1000)


class CheckoutRequest(BaseModel):
    """Cart and delivery details for placing an order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    items: list[CartItemRequest] = Field(default_factory=list)
    shipping_address: ShippingAddress
    shipping_tier: ShippingTier = ShippingTier.STANDARD
    email: Optional[str] = Field(
        None,
        max_length=255,
        description="Customer email; defaults to the signed-in user's email",
    )
    customer_name: Optional[str] = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        """Validate email format if provided."""
        if v is None:
            return v
        email = v.strip().lower()
        if "@" not in email or "." not in email.split("@")[-1]:
            raise ValueError("Invalid email format")
        return email

    @property
    def total_weight_kg(self) -> float:
        return sum(item.weight_kg * item.quantity for item in self.items)

    def order_items(self) -> list[OrderItem]:
        """Cart lines as order item snapshots (weights dropped)."""
        return [
            OrderItem(**item.model_dump(exclude={"weight_kg"})) for item in self.items
        ]


class ShippingQuote(BaseModel):
    """Shipping cost and label for a destination and tier."""

    model_config = ConfigDict(frozen=True)

    tier: ShippingTier
    cost: int = Field(..., ge=0)
    label: str


class GatewayCheckoutParams(BaseModel):
    """Parameters the client hands to the gateway's checkout widget."""

    public_key: str
    email: str
    amount: int = Field(..., gt=0, description="Amount in minor units (kobo)")
    currency: str
    reference: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    authorization_url: Optional[str] = None
    access_code: Optional[str] = None
    totals: OrderTotals
    shipping_method: str


class CheckoutOutcomeStatus(str, enum.Enum):
    COMPLETED = "completed"
    NOT_VERIFIED = "not_verified"
    SUPPORT_REQUIRED = "support_required"
    CANCELLED = "cancelled"


class CheckoutOutcome(BaseModel):
    """What the client should show and do after a checkout step."""

    status: CheckoutOutcomeStatus
    message: str
    clear_cart: bool = False
    order_id: Optional[UUID] = None
    order_no: Optional[str] = None
    reference: Optional[str] = None
    next_path: Optional[str] = None
