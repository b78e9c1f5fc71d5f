"""Read-side order views scoped by the caller's role."""

import uuid
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.core.security import Principal
from storefront.schemas.orders import OrderRecord, OrderSummary
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.repository import OrderNotFoundError, OrderRepository
from storefront.services.orders.state_machine import AuthorizationError

logger = get_logger(__name__)


class OrderQueryService:
    """
    Order queries for customers and administrators.

    Customers only ever see their own orders. Asking for another customer's
    order by id behaves exactly like asking for one that does not exist.
    """

    def __init__(self, session: AsyncSession):
        self.repository = OrderRepository(session)

    async def list_for_user(
        self, actor: Principal, user_id: str
    ) -> Sequence[OrderRecord]:
        """
        List a customer's orders, newest first.

        Raises:
            AuthorizationError: If a non-admin asks for someone else's orders
        """
        if user_id != actor.id and not actor.is_admin:
            raise AuthorizationError(
                "Cannot list another user's orders",
                actor_id=actor.id,
                user_id=user_id,
            )
        return await self.repository.list_orders(user_id=user_id)

    async def list_all(self, actor: Principal) -> Sequence[OrderRecord]:
        """
        List every order, newest first (admin only).

        Raises:
            AuthorizationError: If the actor is not an administrator
        """
        if not actor.is_admin:
            raise AuthorizationError(
                "Only administrators can list all orders", actor_id=actor.id
            )
        orders = await self.repository.list_orders()
        logger.debug("Listed all orders", count=len(orders))
        return orders

    async def get_by_id(self, actor: Principal, order_id: uuid.UUID) -> OrderRecord:
        """
        Get a single order.

        Raises:
            OrderNotFoundError: If the order does not exist or belongs to
                another customer
        """
        order = await self.repository.get_by_id(order_id)
        if order is None or (order.user_id != actor.id and not actor.is_admin):
            logger.info(
                "Order not found",
                order_id=str(order_id),
                actor_id=actor.id,
            )
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return order

    async def summary(self, actor: Principal) -> OrderSummary:
        """
        Order count, paid revenue and open orders across the store (admin only).

        Open orders are those still awaiting payment or being processed.

        Raises:
            AuthorizationError: If the actor is not an administrator
        """
        if not actor.is_admin:
            raise AuthorizationError(
                "Only administrators can view order statistics", actor_id=actor.id
            )
        statistics = await self.repository.get_statistics()
        breakdown = {
            OrderStatus(status): count
            for status, count in statistics["status_breakdown"].items()
        }
        return OrderSummary(
            total_orders=statistics["total_orders"],
            total_revenue=statistics["total_revenue"],
            pending_orders=breakdown.get(OrderStatus.PENDING_PAYMENT, 0)
            + breakdown.get(OrderStatus.PROCESSING, 0),
            status_breakdown=breakdown,
        )
