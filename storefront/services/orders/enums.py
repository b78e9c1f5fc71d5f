"""Order status enums and transition tables for the order lifecycle.

This module defines the fulfillment status, the payment sub-state and the
payment provider of an order, together with the transition tables the state
machine validates against.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Fulfillment status of an order.

    Valid transitions:
    - PENDING_PAYMENT -> PROCESSING (system, on payment confirmation), CANCELLED
    - PROCESSING -> SHIPPED, CANCELLED
    - SHIPPED -> DELIVERED, CANCELLED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING_PAYMENT = "pending_payment"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if status is a terminal state (DELIVERED, CANCELLED)."""
        return self in {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    @property
    def display_name(self) -> str:
        """Upper-case label used in audit details, e.g. ``PENDING PAYMENT``."""
        return self.value.replace("_", " ").upper()


class PaymentStatus(str, Enum):
    """Payment sub-state of an order.

    Valid transitions:
    - PENDING -> PAID, FAILED
    - FAILED -> PAID (late confirmation after a failed attempt)
    - PAID -> (terminal state)
    - COD -> (terminal state)
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    COD = "cod"

    def is_settled(self) -> bool:
        """Paid online or collected on delivery."""
        return self in {PaymentStatus.PAID, PaymentStatus.COD}


class PaymentProvider(str, Enum):
    """How the customer pays for the order."""

    PAYSTACK = "paystack"
    OPAY = "opay"
    COD = "cod"


class ShippingTier(str, Enum):
    """Delivery speed selected at checkout."""

    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
    },
    PaymentStatus.FAILED: {
        PaymentStatus.PAID,
    },
    PaymentStatus.PAID: set(),  # Terminal
    PaymentStatus.COD: set(),  # Terminal
}

# Transitions that only the system (payment confirmation) may drive
SYSTEM_ORDER_TRANSITIONS: Set[tuple] = {
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PROCESSING),
}


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Validate if order status transition is allowed."""
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def validate_payment_status_transition(
    current: PaymentStatus, new: PaymentStatus
) -> bool:
    """Validate if payment status transition is allowed."""
    return new in PAYMENT_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status."""
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()
