"""
Checkout API endpoints.

Cash-on-delivery orders are placed in one call. Gateway checkout is started
here, handed to the gateway widget on the client, then completed or
cancelled with the payment reference the widget reported.
"""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from storefront.api.deps import CheckoutOrchestratorDep, CurrentPrincipal
from storefront.core.logging import get_logger
from storefront.schemas.checkout import (
    CheckoutOutcome,
    CheckoutOutcomeStatus,
    CheckoutRequest,
    GatewayCheckoutParams,
)
from storefront.services.checkout.orchestrator import (
    CheckoutValidationError,
    GatewayUnavailableError,
)
from storefront.services.checkout.pricing import PricingError
from storefront.services.orders.service import OrderServiceError, OrderValidationError

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["Checkout"])

OUTCOME_STATUS_CODES = {
    CheckoutOutcomeStatus.COMPLETED: status.HTTP_201_CREATED,
    CheckoutOutcomeStatus.NOT_VERIFIED: status.HTTP_402_PAYMENT_REQUIRED,
    CheckoutOutcomeStatus.SUPPORT_REQUIRED: status.HTTP_502_BAD_GATEWAY,
    CheckoutOutcomeStatus.CANCELLED: status.HTTP_200_OK,
}


def _outcome_response(outcome: CheckoutOutcome) -> JSONResponse:
    return JSONResponse(
        status_code=OUTCOME_STATUS_CODES[outcome.status],
        content=outcome.model_dump(mode="json"),
    )


def _bad_request(e: Exception) -> HTTPException:
    logger.warning("Checkout rejected", error=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post(
    "/cod",
    response_model=CheckoutOutcome,
    status_code=status.HTTP_201_CREATED,
    summary="Place cash-on-delivery order",
)
async def place_cash_on_delivery_order(
    request: CheckoutRequest,
    principal: CurrentPrincipal,
    orchestrator: CheckoutOrchestratorDep,
) -> JSONResponse:
    """
    Place a cash-on-delivery order.

    Raises:
        HTTPException: 400 if the checkout is invalid, 500 if the order
            cannot be stored
    """
    try:
        outcome = await orchestrator.place_cash_on_delivery_order(principal, request)
    except (CheckoutValidationError, PricingError, OrderValidationError) as e:
        raise _bad_request(e) from e
    except OrderServiceError as e:
        logger.error(
            "Cash on delivery order failed",
            user_id=principal.id,
            error=str(e),
            context=e.context,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to place order",
        ) from e
    return _outcome_response(outcome)


@router.post(
    "/gateway",
    response_model=GatewayCheckoutParams,
    summary="Start gateway checkout",
    description="Price the cart and return the payment widget parameters",
)
async def start_gateway_checkout(
    request: CheckoutRequest,
    principal: CurrentPrincipal,
    orchestrator: CheckoutOrchestratorDep,
) -> GatewayCheckoutParams:
    """
    Start a gateway checkout.

    Raises:
        HTTPException: 400 if the checkout is invalid, 503 if the gateway is
            unavailable
    """
    try:
        return await orchestrator.start_gateway_checkout(principal, request)
    except (CheckoutValidationError, PricingError) as e:
        raise _bad_request(e) from e
    except GatewayUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        ) from e


@router.post(
    "/gateway/{reference}/complete",
    response_model=CheckoutOutcome,
    summary="Complete gateway checkout",
    description="Verify the payment reference and place the order",
    responses={
        status.HTTP_402_PAYMENT_REQUIRED: {"model": CheckoutOutcome},
        status.HTTP_502_BAD_GATEWAY: {"model": CheckoutOutcome},
    },
)
async def complete_gateway_checkout(
    reference: str,
    request: CheckoutRequest,
    principal: CurrentPrincipal,
    orchestrator: CheckoutOrchestratorDep,
) -> JSONResponse:
    try:
        outcome = await orchestrator.complete_gateway_checkout(
            principal, reference, request
        )
    except (CheckoutValidationError, PricingError) as e:
        raise _bad_request(e) from e
    return _outcome_response(outcome)


@router.post(
    "/gateway/{reference}/cancel",
    response_model=CheckoutOutcome,
    summary="Cancel gateway checkout",
)
async def cancel_gateway_checkout(
    reference: str,
    principal: CurrentPrincipal,
    orchestrator: CheckoutOrchestratorDep,
) -> JSONResponse:
    outcome = await orchestrator.cancel_gateway_checkout(principal, reference)
    return _outcome_response(outcome)
