"""
Order model for the order lifecycle and payment reconciliation.

An order is persisted as a single row: immutable customer and item snapshots,
JSON documents for totals, address, tracking, payment and the audit trail,
and the fulfillment status as a plain string column.
"""

from typing import Any

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, JSONDocument
from storefront.services.orders.enums import OrderStatus


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        id: Unique order identifier (UUID)
        order_no: Human-readable order number ``BW-YYYYMMDD-XXXXXX``
        user_id: Identifier of the customer in the auth platform
        customer_name: Customer name at the time of ordering
        customer_email: Customer email at the time of ordering
        items: Ordered line item snapshot
        totals: Subtotal, shipping, fees, grand total and currency
        shipping_address: Delivery address snapshot
        shipping_method: Shipping label chosen at checkout
        tracking: Carrier and tracking number set by an admin
        payment: Payment status, provider, reference, amount and paid_at
        status: Fulfillment status
        audit_log: Append-only list of audit entries
        created_at: Creation timestamp (from BaseModel)
        updated_at: Last modification timestamp (from BaseModel)
    """

    __tablename__ = "orders"

    order_no: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Customer identifier from the auth platform",
    )

    customer_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Customer name snapshot",
    )

    customer_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Customer email snapshot",
    )

    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Line item snapshot",
    )

    totals: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Order totals in major currency units",
    )

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Delivery address snapshot",
    )

    shipping_method: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Shipping method label",
    )

    tracking: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
        comment="Carrier and tracking number",
    )

    payment: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Payment sub-state and gateway reference",
    )

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=OrderStatus.PENDING_PAYMENT.value,
        comment="Fulfillment status",
    )

    audit_log: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Append-only audit trail",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint(
            "status IN ('pending_payment', 'processing', 'shipped', "
            "'delivered', 'cancelled')",
            name="ck_orders_status_valid",
        ),
        {"comment": "Customer orders with payment state and audit trail"},
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_no={self.order_no}, "
            f"user_id={self.user_id}, status={self.status})>"
        )
