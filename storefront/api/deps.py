"""
FastAPI dependencies for authentication and service wiring.

This module provides dependency functions for bearer token authentication,
database session management and the order, checkout and payment services
built per request.
"""

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger, set_actor_id
from storefront.core.security import Principal, TokenError, principal_from_token
from storefront.database.connection import get_db
from storefront.services.checkout.orchestrator import CheckoutOrchestrator
from storefront.services.orders.queries import OrderQueryService
from storefront.services.orders.service import OrderService
from storefront.services.payments.paystack_client import PaystackClient
from storefront.services.payments.verification import VerificationService
from storefront.services.payments.webhook import WebhookReceiver

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    """
    Validate the bearer token and build the acting principal.

    Args:
        credentials: HTTP Bearer token from Authorization header

    Returns:
        Principal: Authenticated user

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        principal = principal_from_token(credentials.credentials)
    except TokenError as e:
        logger.warning(
            "Authentication failed",
            code=e.code,
            error=str(e),
        )
        raise credentials_exception from e

    set_actor_id(principal.id)
    logger.debug(
        "User authenticated",
        user_id=principal.id,
        role=principal.role.value,
    )
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


async def get_paystack_client() -> AsyncGenerator[PaystackClient, None]:
    """
    Paystack client scoped to one request.

    Yields:
        PaystackClient: Client closed when the request finishes
    """
    async with PaystackClient() as client:
        yield client


PaystackClientDep = Annotated[PaystackClient, Depends(get_paystack_client)]


def get_order_service(db: DatabaseSession) -> OrderService:
    return OrderService(db)


def get_order_query_service(db: DatabaseSession) -> OrderQueryService:
    return OrderQueryService(db)


def get_verification_service(client: PaystackClientDep) -> VerificationService:
    return VerificationService(client)


def get_webhook_receiver(
    db: DatabaseSession,
    order_service: Annotated[OrderService, Depends(get_order_service)],
    client: PaystackClientDep,
) -> WebhookReceiver:
    """
    Dependency for webhook receiver initialization.

    Signature checks follow ``paystack_verify_webhook_signature``.
    """
    return WebhookReceiver(
        db,
        order_service,
        client,
        verify_signature=get_settings().paystack_verify_webhook_signature,
    )


def get_checkout_orchestrator(
    db: DatabaseSession,
    order_service: Annotated[OrderService, Depends(get_order_service)],
    verification: Annotated[VerificationService, Depends(get_verification_service)],
    client: PaystackClientDep,
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        db,
        order_service,
        verification,
        client,
        settings=get_settings(),
    )


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
OrderQueryServiceDep = Annotated[OrderQueryService, Depends(get_order_query_service)]
VerificationServiceDep = Annotated[
    VerificationService, Depends(get_verification_service)
]
WebhookReceiverDep = Annotated[WebhookReceiver, Depends(get_webhook_receiver)]
CheckoutOrchestratorDep = Annotated[
    CheckoutOrchestrator, Depends(get_checkout_orchestrator)
]
