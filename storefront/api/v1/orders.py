"""
Order API endpoints.

This module implements the FastAPI router for order history, the admin order
list and summary, and the admin mutations (status changes and carrier
tracking). Authorization is enforced by the order services; this layer maps
their errors to HTTP responses.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from storefront.api.deps import (
    CurrentPrincipal,
    OrderQueryServiceDep,
    OrderServiceDep,
)
from storefront.core.logging import get_logger
from storefront.schemas.orders import (
    OrderListResponse,
    OrderRecord,
    OrderStatusUpdateRequest,
    OrderSummary,
    TrackingUpdateRequest,
)
from storefront.services.orders.repository import OrderNotFoundError
from storefront.services.orders.state_machine import (
    AuthorizationError,
    InvalidTransitionError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


def _forbidden(e: AuthorizationError) -> HTTPException:
    logger.warning("Order access denied", error=str(e), context=e.context)
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


def _not_found(order_id: UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Order {order_id} not found",
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List own orders",
    description="Orders placed by the signed-in customer, newest first",
)
async def list_my_orders(
    principal: CurrentPrincipal,
    queries: OrderQueryServiceDep,
) -> OrderListResponse:
    orders = await queries.list_for_user(principal, principal.id)
    return OrderListResponse(orders=list(orders), total=len(orders))


@router.get(
    "/all",
    response_model=OrderListResponse,
    summary="List all orders",
    description="Every order in the store, newest first (admin only)",
)
async def list_all_orders(
    principal: CurrentPrincipal,
    queries: OrderQueryServiceDep,
) -> OrderListResponse:
    try:
        orders = await queries.list_all(principal)
    except AuthorizationError as e:
        raise _forbidden(e) from e
    return OrderListResponse(orders=list(orders), total=len(orders))


@router.get(
    "/summary",
    response_model=OrderSummary,
    summary="Order summary",
    description="Order count, paid revenue and open orders (admin only)",
)
async def get_order_summary(
    principal: CurrentPrincipal,
    queries: OrderQueryServiceDep,
) -> OrderSummary:
    try:
        return await queries.summary(principal)
    except AuthorizationError as e:
        raise _forbidden(e) from e


@router.get(
    "/{order_id}",
    response_model=OrderRecord,
    summary="Get order",
    description="A single order; customers only see their own",
)
async def get_order(
    order_id: UUID,
    principal: CurrentPrincipal,
    queries: OrderQueryServiceDep,
) -> OrderRecord:
    """
    Get a single order.

    Raises:
        HTTPException: 404 if the order does not exist or is not visible
    """
    try:
        return await queries.get_by_id(principal, order_id)
    except OrderNotFoundError as e:
        raise _not_found(order_id) from e


@router.patch(
    "/{order_id}/status",
    response_model=OrderRecord,
    summary="Update order status",
    description="Move an order along its fulfillment lifecycle (admin only)",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    principal: CurrentPrincipal,
    service: OrderServiceDep,
) -> OrderRecord:
    """
    Update order status.

    Raises:
        HTTPException: 403 if not an administrator, 404 if the order does not
            exist, 409 if the transition is not allowed
    """
    try:
        order = await service.update_order_status(principal, order_id, request.status)
    except AuthorizationError as e:
        raise _forbidden(e) from e
    except OrderNotFoundError as e:
        raise _not_found(order_id) from e
    except InvalidTransitionError as e:
        logger.info(
            "Order status change rejected",
            order_id=str(order_id),
            current_state=e.current_state,
            target_state=e.target_state,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e

    logger.info(
        "Order status updated",
        order_id=str(order_id),
        status=order.status.value,
        admin_id=principal.id,
    )
    return order


@router.put(
    "/{order_id}/tracking",
    response_model=OrderRecord,
    summary="Set tracking",
    description="Attach carrier tracking to an order (admin only)",
)
async def set_tracking(
    order_id: UUID,
    request: TrackingUpdateRequest,
    principal: CurrentPrincipal,
    service: OrderServiceDep,
) -> OrderRecord:
    try:
        return await service.add_tracking(
            principal, order_id, request.carrier, request.tracking_number
        )
    except AuthorizationError as e:
        raise _forbidden(e) from e
    except OrderNotFoundError as e:
        raise _not_found(order_id) from e
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
