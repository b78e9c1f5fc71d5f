"""Audit trail construction for orders.

Audit logs are append-only: helpers here always return a new sequence and
never modify the one passed in.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from storefront.core.security import Principal
from storefront.schemas.orders import AuditEntry
from storefront.services.orders.enums import OrderStatus

ORDER_CREATED = "Order Created"
STATUS_UPDATED = "Status Updated"
TRACKING_ADDED = "Tracking Added"
PAYMENT_CONFIRMED = "Payment Confirmed"
PAYMENT_FAILED = "Payment Failed"


def append_audit_entry(
    log: Iterable[AuditEntry],
    action: str,
    details: str,
    actor: Optional[Principal] = None,
    now: Optional[datetime] = None,
) -> tuple[AuditEntry, ...]:
    """
    Return ``log`` with one new entry appended.

    Args:
        log: Existing audit entries, oldest first
        action: Short action name, e.g. ``Status Updated``
        details: Human-readable description of the change
        actor: Principal responsible for the change, if known
        now: Entry timestamp, defaults to the current UTC time

    Returns:
        New tuple of entries ending with the appended one
    """
    entry = AuditEntry(
        id=str(uuid.uuid4()),
        action=action,
        details=details,
        timestamp=now or datetime.now(timezone.utc),
        user_id=actor.id if actor else None,
        user_name=actor.display_name if actor else None,
    )
    return (*log, entry)


def describe_status_change(old: OrderStatus, new: OrderStatus) -> str:
    """Render ``Status changed from PROCESSING to SHIPPED``."""
    return f"Status changed from {old.display_name} to {new.display_name}"


def describe_tracking(carrier: str, tracking_number: str) -> str:
    return f"Tracking number {tracking_number} added for {carrier}"


def format_amount(amount: Decimal, currency_symbol: str = "₦") -> str:
    """Render ``₦47,500`` or ``₦47,500.50``."""
    value = Decimal(amount)
    if value == value.to_integral_value():
        return f"{currency_symbol}{value:,.0f}"
    return f"{currency_symbol}{value:,.2f}"


def describe_payment_confirmation(amount: Optional[Decimal]) -> str:
    """Render the webhook confirmation details, e.g. ``... Amount: ₦15,000``."""
    if amount is None:
        return "Paystack payment confirmed"
    return f"Paystack payment confirmed - Amount: {format_amount(amount)}"


def describe_verified_order(reference: str, amount: Optional[Decimal]) -> str:
    """Creation details for an order placed after a verified payment."""
    details = f"Order placed successfully - Paystack payment {reference} verified"
    if amount is not None:
        details += f" ({format_amount(amount)})"
    return details
