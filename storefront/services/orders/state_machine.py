"""Order state machine with role-aware transition validation.

This module implements the OrderStateMachine class for the order lifecycle:
fulfillment status transitions, the payment sub-state and tracking updates.
The machine is pure. It takes an ``OrderRecord`` and returns a new one with
the change and its audit entry applied; persisting the result is the caller's
job. Rejected operations raise and leave the input untouched.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from storefront.core.logging import get_logger
from storefront.core.security import Principal
from storefront.schemas.orders import OrderRecord, TrackingInfo
from storefront.services.orders import audit
from storefront.services.orders.enums import (
    SYSTEM_ORDER_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
    validate_payment_status_transition,
)

logger = get_logger(__name__)


class OrderStateError(Exception):
    """Base exception for rejected order mutations."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class AuthorizationError(OrderStateError):
    """Raised when the actor may not perform the requested mutation."""

    pass


class InvalidTransitionError(OrderStateError):
    """Raised when a transition is not allowed from the current state."""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        target_state: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.current_state = current_state
        self.target_state = target_state


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _bump(order: OrderRecord, now: datetime) -> datetime:
    """Next updated_at value; never earlier than the current one."""
    return max(now, order.updated_at)


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    Fulfillment transitions are admin-driven, except moving a paid order out
    of ``pending_payment`` which only the system does when a payment is
    confirmed. Authorization is checked before state validity.
    """

    def __init__(self) -> None:
        self._transition_guards: Dict[
            tuple[OrderStatus, OrderStatus], Callable[[OrderRecord], bool]
        ] = self._initialize_guards()

    def _initialize_guards(
        self,
    ) -> Dict[tuple[OrderStatus, OrderStatus], Callable[[OrderRecord], bool]]:
        return {
            (OrderStatus.PENDING_PAYMENT, OrderStatus.PROCESSING): (
                self._guard_payment_settled
            ),
        }

    def validate_transition(
        self,
        order: OrderRecord,
        target_status: OrderStatus,
        actor: Principal,
    ) -> None:
        """Validate a fulfillment transition for the given actor.

        Raises:
            AuthorizationError: If the actor may not drive this transition
            InvalidTransitionError: If the transition is not allowed
        """
        current_status = order.status
        transition = (current_status, target_status)

        if not (actor.is_admin or actor.is_system):
            raise AuthorizationError(
                "Only administrators can change order status",
                order_id=str(order.id),
                actor_id=actor.id,
            )

        if transition in SYSTEM_ORDER_TRANSITIONS:
            if not actor.is_system:
                raise AuthorizationError(
                    f"Transition from {current_status.value} to "
                    f"{target_status.value} happens on payment confirmation only",
                    order_id=str(order.id),
                    actor_id=actor.id,
                )
        elif actor.is_system:
            raise AuthorizationError(
                f"System actor cannot move order from {current_status.value} "
                f"to {target_status.value}",
                order_id=str(order.id),
            )

        if current_status.is_terminal():
            raise InvalidTransitionError(
                f"Order is {current_status.value} and can no longer change status",
                current_state=current_status.value,
                target_state=target_status.value,
                order_id=str(order.id),
            )

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise InvalidTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status.value,
                target_state=target_status.value,
                allowed_transitions=sorted(s.value for s in allowed),
                order_id=str(order.id),
            )

        guard = self._transition_guards.get(transition)
        if guard is not None and not guard(order):
            raise InvalidTransitionError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                current_state=current_status.value,
                target_state=target_status.value,
                guard_failed=True,
                order_id=str(order.id),
            )

    def apply_transition(
        self,
        order: OrderRecord,
        target_status: OrderStatus,
        actor: Principal,
        now: Optional[datetime] = None,
    ) -> OrderRecord:
        """Apply a fulfillment transition and record it in the audit log.

        Returns:
            New order record with the status, audit entry and updated_at set

        Raises:
            AuthorizationError: If the actor may not drive this transition
            InvalidTransitionError: If the transition is not allowed
        """
        self.validate_transition(order, target_status, actor)

        now = now or _utcnow()
        updated = order.model_copy(
            update={
                "status": target_status,
                "audit_log": audit.append_audit_entry(
                    order.audit_log,
                    audit.STATUS_UPDATED,
                    audit.describe_status_change(order.status, target_status),
                    actor=actor,
                    now=now,
                ),
                "updated_at": _bump(order, now),
            }
        )

        logger.info(
            "State transition applied",
            order_id=str(order.id),
            transition=f"{order.status.value}->{target_status.value}",
            actor_id=actor.id,
        )
        return updated

    def confirm_payment(
        self,
        order: OrderRecord,
        actor: Principal,
        details: str,
        amount: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> OrderRecord:
        """Mark the payment as paid and release the order for fulfillment.

        The payment document is merged (provider and reference preserved).
        An order waiting on payment moves to ``processing``; orders an admin
        has already advanced or cancelled keep their fulfillment status. A
        single ``Payment Confirmed`` entry records the change.

        Raises:
            AuthorizationError: If the actor is not the system
            InvalidTransitionError: If the payment is already paid or is cod
        """
        if not actor.is_system:
            raise AuthorizationError(
                "Payments can only be confirmed by the payment system",
                order_id=str(order.id),
                actor_id=actor.id,
            )

        current_payment = order.payment.status
        if not validate_payment_status_transition(current_payment, PaymentStatus.PAID):
            raise InvalidTransitionError(
                f"Payment status {current_payment.value} cannot become paid",
                current_state=current_payment.value,
                target_state=PaymentStatus.PAID.value,
                order_id=str(order.id),
            )

        now = now or _utcnow()
        payment = order.payment.model_copy(
            update={
                "status": PaymentStatus.PAID,
                "amount": amount if amount is not None else order.payment.amount,
                "paid_at": paid_at or now,
                "failure_reason": None,
            }
        )

        status = order.status
        if status == OrderStatus.PENDING_PAYMENT:
            status = OrderStatus.PROCESSING

        updated = order.model_copy(
            update={
                "payment": payment,
                "status": status,
                "audit_log": audit.append_audit_entry(
                    order.audit_log,
                    audit.PAYMENT_CONFIRMED,
                    details,
                    actor=actor,
                    now=now,
                ),
                "updated_at": _bump(order, now),
            }
        )

        logger.info(
            "Payment confirmed on order",
            order_id=str(order.id),
            previous_payment_status=current_payment.value,
            fulfillment_status=status.value,
        )
        return updated

    def fail_payment(
        self,
        order: OrderRecord,
        actor: Principal,
        reason: str,
        now: Optional[datetime] = None,
    ) -> OrderRecord:
        """Record a failed payment attempt (``pending -> failed``).

        Raises:
            AuthorizationError: If the actor is not the system
            InvalidTransitionError: If the payment is not pending
        """
        if not actor.is_system:
            raise AuthorizationError(
                "Payments can only be failed by the payment system",
                order_id=str(order.id),
                actor_id=actor.id,
            )

        current_payment = order.payment.status
        if not validate_payment_status_transition(
            current_payment, PaymentStatus.FAILED
        ):
            raise InvalidTransitionError(
                f"Payment status {current_payment.value} cannot become failed",
                current_state=current_payment.value,
                target_state=PaymentStatus.FAILED.value,
                order_id=str(order.id),
            )

        now = now or _utcnow()
        return order.model_copy(
            update={
                "payment": order.payment.model_copy(
                    update={"status": PaymentStatus.FAILED, "failure_reason": reason}
                ),
                "audit_log": audit.append_audit_entry(
                    order.audit_log,
                    audit.PAYMENT_FAILED,
                    reason,
                    actor=actor,
                    now=now,
                ),
                "updated_at": _bump(order, now),
            }
        )

    def attach_tracking(
        self,
        order: OrderRecord,
        carrier: str,
        tracking_number: str,
        actor: Principal,
        now: Optional[datetime] = None,
    ) -> OrderRecord:
        """Set carrier tracking on an order.

        Raises:
            AuthorizationError: If the actor is not an administrator
            InvalidTransitionError: If the order is cancelled
        """
        if not actor.is_admin:
            raise AuthorizationError(
                "Only administrators can add tracking",
                order_id=str(order.id),
                actor_id=actor.id,
            )

        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransitionError(
                "Cannot add tracking to a cancelled order",
                current_state=order.status.value,
                order_id=str(order.id),
            )

        now = now or _utcnow()
        return order.model_copy(
            update={
                "tracking": TrackingInfo(
                    carrier=carrier, tracking_number=tracking_number
                ),
                "audit_log": audit.append_audit_entry(
                    order.audit_log,
                    audit.TRACKING_ADDED,
                    audit.describe_tracking(carrier, tracking_number),
                    actor=actor,
                    now=now,
                ),
                "updated_at": _bump(order, now),
            }
        )

    # Transition Guards

    def _guard_payment_settled(self, order: OrderRecord) -> bool:
        """An order leaves pending_payment only once its payment is settled."""
        settled = order.payment.status.is_settled()
        logger.debug(
            "Payment settled guard check",
            order_id=str(order.id),
            payment_status=order.payment.status.value,
            settled=settled,
        )
        return settled
