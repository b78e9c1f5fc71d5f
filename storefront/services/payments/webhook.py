"""
Gateway webhook handling.

The gateway posts ``{event, data}`` payloads out of band. A successful
``charge.success`` event marks the order holding the transaction reference as
paid, exactly once: re-deliveries of an event that was already applied are
acknowledged without touching the order. Responses follow the gateway's retry
contract. Anything that should be replayed gets a non-2xx status, and
everything that was handled (or deliberately ignored) gets a 2xx.
"""

import json
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.core.security import system_principal
from storefront.schemas.payments import WebhookEvent, WebhookResponse
from storefront.services.checkout.pricing import from_minor_units
from storefront.services.orders import audit
from storefront.services.orders.repository import OrderRepositoryError
from storefront.services.orders.service import (
    OrderService,
    PaymentConfirmationOutcome,
)
from storefront.services.payments.paystack_client import PaystackClient

logger = get_logger(__name__)

WEBHOOK_ACTOR_NAME = "Paystack Webhook"


@dataclass(frozen=True)
class WebhookResult:
    """HTTP status and JSON body to return to the gateway."""

    status_code: int
    body: WebhookResponse

    @classmethod
    def ok(cls, message: str) -> "WebhookResult":
        return cls(200, WebhookResponse(success=True, message=message))

    @classmethod
    def error(cls, status_code: int, error: str) -> "WebhookResult":
        return cls(status_code, WebhookResponse(success=False, error=error))


class WebhookReceiver:
    """
    Applies gateway payment events to orders.

    Attributes:
        session: Unit of work the confirmation is committed in
        order_service: Service applying the payment confirmation
        client: Paystack client used for signature checks
        verify_signature: Reject deliveries without a valid signature
    """

    def __init__(
        self,
        session: AsyncSession,
        order_service: OrderService,
        client: PaystackClient,
        verify_signature: bool = True,
    ):
        self.session = session
        self.order_service = order_service
        self.client = client
        self.verify_signature = verify_signature

    def _parse_event(self, raw_body: bytes) -> Optional[WebhookEvent]:
        try:
            payload = json.loads(raw_body or b"")
            return WebhookEvent.model_validate(payload)
        except (ValueError, ValidationError) as e:
            logger.warning("Malformed webhook payload", error=str(e))
            return None

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Handle one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature: ``x-paystack-signature`` header value

        Returns:
            Status code and body for the gateway
        """
        if self.verify_signature and not self.client.verify_webhook_signature(
            raw_body, signature
        ):
            logger.warning("Webhook signature rejected", has_signature=bool(signature))
            return WebhookResult.error(400, "Invalid signature")

        event = self._parse_event(raw_body)
        if event is None:
            return WebhookResult.error(400, "Invalid JSON payload")

        if not event.is_successful_charge:
            logger.info(
                "Webhook event ignored",
                webhook_event=event.event,
                data_status=event.data.status,
            )
            return WebhookResult.ok("Webhook processed")

        reference = (event.data.reference or "").strip()
        if not reference:
            logger.warning("Charge event without reference")
            return WebhookResult.error(400, "Missing transaction reference")

        amount = from_minor_units(event.data.amount)

        try:
            outcome, order = await self.order_service.confirm_payment(
                system_principal(WEBHOOK_ACTOR_NAME),
                reference,
                audit.describe_payment_confirmation(amount),
                amount=amount,
                paid_at=event.data.paid_at,
            )
            await self.session.commit()
        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Failed to apply webhook payment confirmation",
                reference=reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            return WebhookResult.error(500, "Failed to update order")

        if outcome == PaymentConfirmationOutcome.NOT_FOUND:
            # Expected when the webhook outruns order creation
            logger.info("Webhook reference matches no order", reference=reference)
            return WebhookResult(
                404, WebhookResponse(success=False, message="Order not found")
            )

        if outcome == PaymentConfirmationOutcome.ALREADY_PAID:
            return WebhookResult.ok("Payment already confirmed")

        logger.info(
            "Webhook payment confirmed",
            reference=reference,
            order_id=str(order.id),
            order_no=order.order_no,
            status=order.status.value,
        )
        return WebhookResult(
            200,
            WebhookResponse(
                success=True,
                message="Payment confirmed and order updated",
                order_id=order.id,
                order_no=order.order_no,
            ),
        )
