"""
Order Pydantic schemas for persistence round-trips and API responses.

The nested records (items, totals, address, tracking, payment, audit entries)
are the typed form of the JSON documents stored on the order row. They are
validated both when an order is written and when it is read back, so a
malformed row surfaces as a validation error instead of leaking into callers.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from storefront.database.base import ensure_utc
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
)
from storefront.services.orders.numbering import is_valid_order_number


class OrderItem(BaseModel):
    """Line item snapshot taken when the order is placed."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    product_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    price: int = Field(..., ge=0, description="Unit price in major currency units")
    quantity: int = Field(..., gt=0, le=1000)
    image: Optional[str] = Field(None, max_length=2048)

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


class OrderTotals(BaseModel):
    """Order totals in integer major currency units."""

    model_config = ConfigDict(frozen=True)

    subtotal: int = Field(..., ge=0)
    shipping: int = Field(..., ge=0)
    fees: int = Field(default=0, ge=0)
    grand_total: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)

    @model_validator(mode="after")
    def validate_grand_total(self) -> "OrderTotals":
        """Grand total must equal subtotal + shipping + fees exactly."""
        expected = self.subtotal + self.shipping + self.fees
        if self.grand_total != expected:
            raise ValueError(
                f"grand_total {self.grand_total} does not equal "
                f"subtotal + shipping + fees ({expected})"
            )
        return self


class ShippingAddress(BaseModel):
    """Delivery address snapshot."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=7, max_length=20)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    country: str = Field(..., min_length=1, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)

    @field_validator("phone")
    @classmethod
    def validate_phone_format(cls, v: str) -> str:
        """Phone numbers need at least seven digits."""
        digits = "".join(filter(str.isdigit, v))
        if len(digits) < 7:
            raise ValueError("Phone number must contain at least 7 digits")
        return v


class TrackingInfo(BaseModel):
    """Carrier and tracking number, set by an admin once shipped."""

    model_config = ConfigDict(frozen=True)

    carrier: Optional[str] = None
    tracking_number: Optional[str] = None


class PaymentInfo(BaseModel):
    """Payment sub-state of an order."""

    model_config = ConfigDict(frozen=True)

    status: PaymentStatus
    provider: PaymentProvider
    reference: Optional[str] = None
    amount: Optional[Decimal] = Field(
        None, ge=0, description="Amount confirmed by the gateway, major units"
    )
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_provider_status(self) -> "PaymentInfo":
        """Cash-on-delivery orders carry the cod status and nothing else does."""
        is_cod_provider = self.provider == PaymentProvider.COD
        is_cod_status = self.status == PaymentStatus.COD
        if is_cod_provider != is_cod_status:
            raise ValueError(
                f"Payment status {self.status.value} is not valid for "
                f"provider {self.provider.value}"
            )
        return self

    @field_validator("paid_at")
    @classmethod
    def normalize_paid_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @field_serializer("amount", when_used="json")
    def serialize_amount(self, amount: Optional[Decimal]):
        if amount is None:
            return None
        return int(amount) if amount == amount.to_integral_value() else float(amount)


class AuditEntry(BaseModel):
    """One immutable entry of an order's audit trail."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    details: str
    timestamp: datetime
    user_id: Optional[str] = None
    user_name: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class OrderRecord(BaseModel):
    """
    Complete, validated order value.

    Records are immutable; every change produces a new record via
    ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    order_no: str
    user_id: str = Field(..., min_length=1)
    customer_name: str
    customer_email: str
    items: tuple[OrderItem, ...] = Field(..., min_length=1)
    totals: OrderTotals
    shipping_address: ShippingAddress
    shipping_method: str
    tracking: TrackingInfo = Field(default_factory=TrackingInfo)
    payment: PaymentInfo
    status: OrderStatus
    audit_log: tuple[AuditEntry, ...] = Field(..., min_length=1)
    created_at: datetime
    updated_at: datetime

    @field_validator("order_no")
    @classmethod
    def validate_order_no(cls, v: str) -> str:
        if not is_valid_order_number(v):
            raise ValueError(f"Invalid order number: {v}")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_timestamps(self) -> "OrderRecord":
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be earlier than created_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal()


class OrderStatusUpdateRequest(BaseModel):
    """Admin request to move an order to a new fulfillment status."""

    status: OrderStatus = Field(..., description="Target fulfillment status")


class TrackingUpdateRequest(BaseModel):
    """Admin request to attach carrier tracking to an order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    carrier: str = Field(..., min_length=1, max_length=100)
    tracking_number: str = Field(..., min_length=1, max_length=100)


class OrderListResponse(BaseModel):
    """Newest-first list of orders."""

    orders: list[OrderRecord]
    total: int = Field(..., ge=0)


class OrderSummary(BaseModel):
    """Store-wide order figures for the admin dashboard."""

    total_orders: int = Field(..., ge=0)
    total_revenue: int = Field(
        ..., ge=0, description="Grand totals of paid orders, major units"
    )
    pending_orders: int = Field(
        ..., ge=0, description="Orders awaiting payment or fulfillment"
    )
    status_breakdown: dict[OrderStatus, int] = Field(default_factory=dict)
