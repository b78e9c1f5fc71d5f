"""
Order command service.

This module provides the OrderService class: it creates orders and applies
admin and payment-system mutations by loading the order under a row lock,
running the pure state machine and writing the result back through the
repository.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.security import Principal
from storefront.schemas.orders import (
    OrderItem,
    OrderRecord,
    OrderTotals,
    PaymentInfo,
    ShippingAddress,
)
from storefront.services.orders import audit
from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.orders.numbering import generate_order_number
from storefront.services.orders.repository import (
    OrderCreationError,
    OrderNotFoundError,
    OrderRepository,
)
from storefront.services.orders.state_machine import (
    AuthorizationError,
    OrderStateMachine,
)

logger = get_logger(__name__)

ORDER_PLACED_DETAILS = "Order placed successfully"


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when order validation fails."""

    pass


class OrderProcessingError(OrderServiceError):
    """Raised when order processing fails."""

    pass


class PaymentConfirmationOutcome(str, enum.Enum):
    """Result of applying a payment confirmation by reference."""

    CONFIRMED = "confirmed"
    ALREADY_PAID = "already_paid"
    NOT_FOUND = "not_found"


def initial_status_for(payment: PaymentInfo) -> OrderStatus:
    """Fulfillment status a new order starts in.

    Cash-on-delivery orders and orders created from a verified payment are
    ready for fulfillment; anything else waits for payment.
    """
    if payment.status.is_settled():
        return OrderStatus.PROCESSING
    return OrderStatus.PENDING_PAYMENT


class OrderService:
    """
    Order service orchestrating order creation and mutations.

    Attributes:
        repository: Order repository for data access
        state_machine: State machine for order lifecycle management
    """

    def __init__(
        self,
        session: AsyncSession,
        state_machine: Optional[OrderStateMachine] = None,
        number_generator: Callable[[Optional[datetime]], str] = generate_order_number,
        max_number_attempts: Optional[int] = None,
    ):
        """
        Initialize order service.

        Args:
            session: Async database session
            state_machine: Optional state machine instance
            number_generator: Order number generator, replaceable in tests
            max_number_attempts: Attempts to find an unused order number
        """
        self.repository = OrderRepository(session)
        self.state_machine = state_machine or OrderStateMachine()
        self.number_generator = number_generator
        self.max_number_attempts = (
            max_number_attempts or get_settings().order_number_max_attempts
        )

    async def create_order(
        self,
        actor: Principal,
        items: Sequence[OrderItem],
        totals: OrderTotals,
        shipping_address: ShippingAddress,
        shipping_method: str,
        payment: PaymentInfo,
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
        details: str = ORDER_PLACED_DETAILS,
        now: Optional[datetime] = None,
    ) -> OrderRecord:
        """
        Create a new order with a single ``Order Created`` audit entry.

        Args:
            actor: Customer placing the order
            items: Line item snapshot
            totals: Order totals
            shipping_address: Delivery address
            shipping_method: Shipping label
            payment: Initial payment state
            customer_email: Email snapshot, defaults to the actor's email
            customer_name: Name snapshot, defaults to the actor's name or email
            details: Details of the creation audit entry
            now: Creation time, defaults to the current UTC time

        Returns:
            The stored order

        Raises:
            OrderValidationError: If the order data is invalid
            OrderProcessingError: If the order cannot be stored
        """
        now = now or datetime.now(timezone.utc)
        email = customer_email or actor.email
        if not email:
            raise OrderValidationError(
                "Customer email is required", user_id=actor.id
            )

        order_no = await self._allocate_order_number(now)

        try:
            record = OrderRecord(
                id=uuid.uuid4(),
                order_no=order_no,
                user_id=actor.id,
                customer_name=customer_name or actor.name or email,
                customer_email=email,
                items=tuple(items),
                totals=totals,
                shipping_address=shipping_address,
                shipping_method=shipping_method,
                payment=payment,
                status=initial_status_for(payment),
                audit_log=audit.append_audit_entry(
                    (), audit.ORDER_CREATED, details, actor=actor, now=now
                ),
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            logger.warning(
                "Order validation failed",
                user_id=actor.id,
                error_count=e.error_count(),
            )
            raise OrderValidationError(
                "Invalid order data", user_id=actor.id, error=str(e)
            ) from e

        try:
            stored = await self.repository.create(record)
        except OrderCreationError as e:
            raise OrderProcessingError(
                "Failed to create order",
                user_id=actor.id,
                order_no=order_no,
                error=str(e),
            ) from e

        logger.info(
            "Order created",
            order_id=str(stored.id),
            order_no=stored.order_no,
            user_id=actor.id,
            status=stored.status.value,
            payment_status=stored.payment.status.value,
            grand_total=stored.totals.grand_total,
        )
        return stored

    async def _allocate_order_number(self, now: datetime) -> str:
        for attempt in range(1, self.max_number_attempts + 1):
            order_no = self.number_generator(now)
            if not await self.repository.order_number_exists(order_no):
                return order_no
            logger.warning(
                "Order number collision",
                order_no=order_no,
                attempt=attempt,
            )

        raise OrderProcessingError(
            "Could not allocate a unique order number",
            attempts=self.max_number_attempts,
        )

    async def _load_for_update(self, order_id: uuid.UUID) -> OrderRecord:
        order = await self.repository.get_by_id(order_id, for_update=True)
        if order is None:
            logger.info("Order not found", order_id=str(order_id))
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return order

    async def update_order_status(
        self,
        actor: Principal,
        order_id: uuid.UUID,
        new_status: OrderStatus,
    ) -> OrderRecord:
        """
        Move an order to a new fulfillment status.

        Raises:
            AuthorizationError: If the actor is not an administrator
            OrderNotFoundError: If the order does not exist
            InvalidTransitionError: If the transition is not allowed
        """
        if not actor.is_admin:
            raise AuthorizationError(
                "Only administrators can change order status",
                order_id=str(order_id),
                actor_id=actor.id,
            )

        order = await self._load_for_update(order_id)
        updated = self.state_machine.apply_transition(order, new_status, actor)
        return await self.repository.save(updated)

    async def add_tracking(
        self,
        actor: Principal,
        order_id: uuid.UUID,
        carrier: str,
        tracking_number: str,
    ) -> OrderRecord:
        """
        Attach carrier tracking to an order.

        Raises:
            AuthorizationError: If the actor is not an administrator
            OrderNotFoundError: If the order does not exist
            InvalidTransitionError: If the order is cancelled
        """
        if not actor.is_admin:
            raise AuthorizationError(
                "Only administrators can add tracking",
                order_id=str(order_id),
                actor_id=actor.id,
            )

        order = await self._load_for_update(order_id)
        updated = self.state_machine.attach_tracking(
            order, carrier, tracking_number, actor
        )
        saved = await self.repository.save(updated)

        logger.info(
            "Tracking added",
            order_id=str(order_id),
            carrier=carrier,
            tracking_number=tracking_number,
        )
        return saved

    async def confirm_payment(
        self,
        actor: Principal,
        reference: str,
        details: str,
        amount: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
    ) -> tuple[PaymentConfirmationOutcome, Optional[OrderRecord]]:
        """
        Apply a gateway payment confirmation to the order holding ``reference``.

        Idempotent: an order whose payment is already paid (or cod) is
        returned unchanged.

        Returns:
            The outcome and the order, if one holds the reference
        """
        order = await self.repository.get_by_payment_reference(
            reference, for_update=True
        )
        if order is None:
            logger.info("No order holds payment reference", reference=reference)
            return PaymentConfirmationOutcome.NOT_FOUND, None

        if order.payment.status in (PaymentStatus.PAID, PaymentStatus.COD):
            logger.info(
                "Payment already confirmed",
                order_id=str(order.id),
                reference=reference,
            )
            return PaymentConfirmationOutcome.ALREADY_PAID, order

        updated = self.state_machine.confirm_payment(
            order, actor, details, amount=amount, paid_at=paid_at
        )
        saved = await self.repository.save(updated)
        return PaymentConfirmationOutcome.CONFIRMED, saved

    async def mark_payment_failed(
        self,
        actor: Principal,
        order_id: uuid.UUID,
        reason: str,
    ) -> OrderRecord:
        """
        Record a failed payment on an order (system only).

        Already-failed orders are returned unchanged.

        Raises:
            AuthorizationError: If the actor is not the system
            OrderNotFoundError: If the order does not exist
            InvalidTransitionError: If the payment is paid or cod
        """
        if not actor.is_system:
            raise AuthorizationError(
                "Payments can only be failed by the payment system",
                order_id=str(order_id),
                actor_id=actor.id,
            )

        order = await self._load_for_update(order_id)
        if order.payment.status == PaymentStatus.FAILED:
            return order

        updated = self.state_machine.fail_payment(order, actor, reason)
        saved = await self.repository.save(updated)

        logger.warning(
            "Payment marked as failed",
            order_id=str(order_id),
            reason=reason,
        )
        return saved
