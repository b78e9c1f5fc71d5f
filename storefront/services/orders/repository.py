"""
Order data access repository.

This module implements the OrderRepository class, the order record store:
inserting orders, loading them by id or payment reference, row-locked reads
for mutations, newest-first listings and store statistics. Rows are converted
to validated ``OrderRecord`` values on the way out and back to JSON documents
on the way in.
"""

import uuid
from typing import Any, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.schemas.orders import OrderRecord
from storefront.services.orders.enums import PaymentStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""

    pass


class DuplicateOrderNumberError(OrderCreationError):
    """Raised when the order number is already taken."""

    pass


class OrderUpdateError(OrderRepositoryError):
    """Raised when order update fails."""

    pass


class CorruptOrderError(OrderRepositoryError):
    """Raised when a stored row does not validate as an order."""

    pass


def _to_document(record: OrderRecord) -> dict[str, Any]:
    """Column values for a record; JSON columns get plain JSON values."""
    data = record.model_dump(mode="json")
    data["id"] = record.id
    data["created_at"] = record.created_at
    data["updated_at"] = record.updated_at
    return data


class OrderRepository:
    """
    Repository for order data access operations.

    Orders are inserted and then only updated as a whole through
    ``save``; there is no delete.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    def _to_record(self, order: Order) -> OrderRecord:
        try:
            return OrderRecord.model_validate(order)
        except ValidationError as e:
            logger.error(
                "Stored order failed validation",
                order_id=str(order.id),
                error_count=e.error_count(),
            )
            raise CorruptOrderError(
                "Stored order failed validation",
                order_id=str(order.id),
                error=str(e),
            ) from e

    async def order_number_exists(self, order_no: str) -> bool:
        """Check whether an order number is already taken."""
        try:
            result = await self.session.execute(
                select(Order.id).where(Order.order_no == order_no)
            )
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise OrderRepositoryError(
                "Failed to check order number",
                order_no=order_no,
                error=str(e),
            ) from e

    async def create(self, record: OrderRecord) -> OrderRecord:
        """
        Insert a new order.

        A failed insert rolls back the session's transaction.

        Args:
            record: Fully built order record

        Returns:
            The stored order, read back and validated

        Raises:
            DuplicateOrderNumberError: If the order number is taken
            OrderCreationError: If the insert fails
        """
        order = Order(**_to_document(record))

        try:
            self.session.add(order)
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(
                "Order creation failed - integrity error",
                order_no=record.order_no,
                error=str(e.orig),
            )
            if "order_no" in str(e.orig).lower():
                raise DuplicateOrderNumberError(
                    "Order number already exists",
                    order_no=record.order_no,
                ) from e
            raise OrderCreationError(
                "Order creation failed due to data integrity violation",
                order_no=record.order_no,
                error=str(e.orig),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - database error",
                order_no=record.order_no,
                error=str(e),
            )
            raise OrderCreationError(
                "Order creation failed due to database error",
                order_no=record.order_no,
                error=str(e),
            ) from e

        logger.info(
            "Order stored",
            order_id=str(record.id),
            order_no=record.order_no,
            item_count=len(record.items),
        )
        return self._to_record(order)

    async def get_by_id(
        self, order_id: uuid.UUID, for_update: bool = False
    ) -> Optional[OrderRecord]:
        """
        Get order by ID.

        Args:
            order_id: Order identifier
            for_update: Lock the row for the rest of the transaction

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

        return self._to_record(order) if order else None

    async def get_by_payment_reference(
        self, reference: str, for_update: bool = False
    ) -> Optional[OrderRecord]:
        """
        Find the order whose ``payment.reference`` equals ``reference``.

        Args:
            reference: Gateway payment reference
            for_update: Lock the row for the rest of the transaction

        Returns:
            Order if found, None otherwise
        """
        stmt = (
            select(Order)
            .where(Order.payment["reference"].as_string() == reference)
            .order_by(Order.created_at)
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        try:
            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch order by payment reference",
                reference=reference,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to fetch order by payment reference",
                reference=reference,
                error=str(e),
            ) from e

        return self._to_record(order) if order else None

    async def list_orders(
        self, user_id: Optional[str] = None
    ) -> Sequence[OrderRecord]:
        """
        List orders newest-first, optionally restricted to one customer.

        Args:
            user_id: Only return this customer's orders when given

        Returns:
            Orders ordered by created_at descending
        """
        stmt = select(Order).order_by(Order.created_at.desc(), Order.order_no.desc())
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)

        try:
            result = await self.session.execute(stmt)
            orders = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list orders", user_id=user_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to list orders",
                user_id=user_id,
                error=str(e),
            ) from e

        return [self._to_record(order) for order in orders]

    async def get_statistics(self) -> dict[str, Any]:
        """
        Store-wide order statistics.

        Returns:
            Dictionary with the order count, per-status counts and revenue
            (grand totals of paid orders, major units)

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            total_stmt = select(func.count()).select_from(Order)

            status_stmt = select(Order.status, func.count()).group_by(Order.status)

            revenue_stmt = select(
                func.sum(Order.totals["grand_total"].as_integer())
            ).where(Order.payment["status"].as_string() == PaymentStatus.PAID.value)

            total_result = await self.session.execute(total_stmt)
            status_result = await self.session.execute(status_stmt)
            revenue_result = await self.session.execute(revenue_stmt)

            statistics = {
                "total_orders": total_result.scalar_one(),
                "status_breakdown": {
                    status: count for status, count in status_result.all()
                },
                "total_revenue": int(revenue_result.scalar_one() or 0),
            }
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order statistics", error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order statistics",
                error=str(e),
            ) from e

        logger.debug("Order statistics fetched", statistics=statistics)
        return statistics

    async def save(self, record: OrderRecord) -> OrderRecord:
        """
        Write the mutable state of an order back to its row.

        Snapshot columns (number, customer, items, totals, address, method,
        created_at) are never rewritten.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderUpdateError: If the update fails
        """
        try:
            order = await self.session.get(Order, record.id)
            if order is None:
                raise OrderNotFoundError("Order not found", order_id=str(record.id))

            document = record.model_dump(mode="json")
            order.status = document["status"]
            order.payment = document["payment"]
            order.tracking = document["tracking"]
            order.audit_log = document["audit_log"]
            order.updated_at = record.updated_at

            await self.session.flush()
        except OrderNotFoundError:
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to update order",
                order_id=str(record.id),
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to update order",
                order_id=str(record.id),
                error=str(e),
            ) from e

        logger.debug(
            "Order saved",
            order_id=str(record.id),
            status=record.status.value,
            payment_status=record.payment.status.value,
        )
        return self._to_record(order)
