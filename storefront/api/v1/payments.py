"""
Payment API endpoints for the Paystack integration.

This module implements the verification proxy used by the storefront client
and the webhook endpoint the gateway posts payment events to. The webhook is
unauthenticated; deliveries are trusted only through their HMAC signature.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, Request, Response, status
from fastapi.responses import JSONResponse

from storefront.api.deps import (
    CurrentPrincipal,
    VerificationServiceDep,
    WebhookReceiverDep,
)
from storefront.core.logging import get_logger
from storefront.core.rate_limit import limiter, webhook_rate_limit
from storefront.schemas.payments import (
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookResponse,
)
from storefront.services.payments.paystack_client import SIGNATURE_HEADER
from storefront.services.payments.verification import VerificationUnreachableError

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

WEBHOOK_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": (
        f"Content-Type, Authorization, X-Client-Info, Apikey, {SIGNATURE_HEADER}"
    ),
}


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify payment",
    description="Ask the gateway whether a payment reference was paid",
)
async def verify_payment(
    request: VerifyPaymentRequest,
    principal: CurrentPrincipal,
    verification: VerificationServiceDep,
) -> VerifyPaymentResponse:
    """
    Verify a payment reference server-side.

    Returns:
        ``{success, data}`` where ``data`` is the gateway transaction object

    Raises:
        HTTPException: 502 if the gateway cannot be reached
    """
    try:
        result = await verification.verify(request.reference)
    except VerificationUnreachableError as e:
        logger.error(
            "Verification proxy failed",
            reference=request.reference,
            user_id=principal.id,
            error=str(e),
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "error": "Payment verification failed"},
        )

    data = result.payload.get("data")
    return VerifyPaymentResponse(
        success=result.success,
        data=data if isinstance(data, dict) else {},
    )


@router.options(
    "/webhook",
    include_in_schema=False,
)
async def webhook_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=WEBHOOK_CORS_HEADERS)


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Handle Paystack webhook",
    description="Apply gateway payment events to orders",
)
@limiter.limit(webhook_rate_limit)
async def handle_webhook(
    request: Request,
    receiver: WebhookReceiverDep,
    signature: Annotated[Optional[str], Header(alias=SIGNATURE_HEADER)] = None,
) -> JSONResponse:
    """
    Handle a Paystack webhook delivery.

    The raw body is read before parsing so the signature is checked against
    the exact bytes the gateway signed.
    """
    payload = await request.body()
    result = await receiver.handle(payload, signature)

    logger.info(
        "Webhook handled",
        status_code=result.status_code,
        success=result.body.success,
    )
    return JSONResponse(
        status_code=result.status_code,
        content=result.body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=WEBHOOK_CORS_HEADERS,
    )
