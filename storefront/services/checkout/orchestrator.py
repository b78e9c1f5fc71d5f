"""
Checkout orchestration for cash-on-delivery and gateway payments.

Cash-on-delivery orders are created straight away. Gateway checkout runs in
two steps around the customer's interaction with the gateway widget:

1. ``start_gateway_checkout`` prices the cart and hands out the widget
   parameters with a fresh payment reference. No order exists yet.
2. ``complete_gateway_checkout`` runs when the widget reports success. The
   reference is verified with the gateway first, and only a verified payment
   creates the order.

The one failure that cannot be recovered automatically is a verified payment
whose order could not be stored, or a verification that could not be
completed. Both are logged at critical level for manual reconciliation and
the customer is sent to support with the payment reference.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger
from storefront.core.security import Principal, system_principal
from storefront.schemas.checkout import (
    CheckoutOutcome,
    CheckoutOutcomeStatus,
    CheckoutRequest,
    GatewayCheckoutParams,
    ShippingQuote,
)
from storefront.schemas.orders import OrderRecord, OrderTotals, PaymentInfo
from storefront.services.checkout.pricing import (
    compute_totals,
    generate_payment_reference,
    quote_shipping,
    to_minor_units,
)
from storefront.services.orders import audit
from storefront.services.orders.enums import PaymentProvider, PaymentStatus
from storefront.services.orders.repository import OrderRepositoryError
from storefront.services.orders.service import OrderService, OrderServiceError
from storefront.services.orders.state_machine import OrderStateError
from storefront.services.payments.paystack_client import (
    PaystackClient,
    PaystackClientError,
)
from storefront.services.payments.verification import (
    VerificationService,
    VerificationUnreachableError,
)

logger = get_logger(__name__)

VERIFICATION_ACTOR_NAME = "Paystack Verification"
ORDER_CONFIRMATION_PATH = "/order-confirmation/{order_id}"


class CheckoutError(Exception):
    """Base exception for checkout errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class CheckoutValidationError(CheckoutError):
    """Raised when the checkout input is incomplete or inconsistent."""

    pass


class GatewayUnavailableError(CheckoutError):
    """Raised when the payment gateway cannot start a checkout."""

    pass


class CheckoutOrchestrator:
    """
    Drives checkout from cart to stored order.

    Attributes:
        session: Unit of work orders are committed in
        order_service: Creates and updates orders
        verification: Verifies gateway references
        client: Paystack client for hosted initialization
        settings: Application settings
    """

    def __init__(
        self,
        session: AsyncSession,
        order_service: OrderService,
        verification: VerificationService,
        client: PaystackClient,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.order_service = order_service
        self.verification = verification
        self.client = client
        self.settings = settings or get_settings()

    # Pricing and validation

    def _validate(self, actor: Principal, request: CheckoutRequest) -> str:
        """Check the request and return the customer email."""
        if not request.items:
            raise CheckoutValidationError("Cart is empty", user_id=actor.id)

        product_ids = [item.product_id for item in request.items]
        if len(product_ids) != len(set(product_ids)):
            raise CheckoutValidationError(
                "Cart contains duplicate products", user_id=actor.id
            )

        email = request.email or actor.email
        if not email:
            raise CheckoutValidationError(
                "Customer email is required", user_id=actor.id
            )
        return email

    def _price(self, request: CheckoutRequest) -> tuple[ShippingQuote, OrderTotals]:
        address = request.shipping_address
        quote = quote_shipping(
            address.country,
            address.state,
            request.shipping_tier,
            request.total_weight_kg,
            home_country=self.settings.home_country,
        )
        totals = compute_totals(
            request.order_items(),
            shipping=quote.cost,
            fees=0,
            currency=self.settings.store_currency,
        )
        return quote, totals

    @staticmethod
    def _customer_name(actor: Principal, request: CheckoutRequest, email: str) -> str:
        return (
            request.customer_name
            or actor.name
            or request.shipping_address.name
            or email
        )

    @staticmethod
    def _completed(order: OrderRecord, message: str) -> CheckoutOutcome:
        return CheckoutOutcome(
            status=CheckoutOutcomeStatus.COMPLETED,
            message=message,
            clear_cart=True,
            order_id=order.id,
            order_no=order.order_no,
            reference=order.payment.reference,
            next_path=ORDER_CONFIRMATION_PATH.format(order_id=order.id),
        )

    @staticmethod
    def _support_required(reference: str, message: str) -> CheckoutOutcome:
        return CheckoutOutcome(
            status=CheckoutOutcomeStatus.SUPPORT_REQUIRED,
            message=f"{message} Please contact support with payment reference {reference}.",
            reference=reference,
        )

    @staticmethod
    def _not_verified(reference: str) -> CheckoutOutcome:
        return CheckoutOutcome(
            status=CheckoutOutcomeStatus.NOT_VERIFIED,
            message="Payment not verified. Please contact support.",
            reference=reference,
        )

    async def _rollback_quietly(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError as e:
            logger.error("Session rollback failed", error=str(e))

    # Cash on delivery

    async def place_cash_on_delivery_order(
        self, actor: Principal, request: CheckoutRequest
    ) -> CheckoutOutcome:
        """
        Create a cash-on-delivery order immediately.

        Raises:
            CheckoutValidationError: If the checkout input is invalid
            OrderServiceError: If the order cannot be created
        """
        email = self._validate(actor, request)
        quote, totals = self._price(request)

        try:
            order = await self.order_service.create_order(
                actor,
                items=request.order_items(),
                totals=totals,
                shipping_address=request.shipping_address,
                shipping_method=quote.label,
                payment=PaymentInfo(
                    status=PaymentStatus.COD, provider=PaymentProvider.COD
                ),
                customer_email=email,
                customer_name=self._customer_name(actor, request, email),
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise OrderServiceError(
                "Failed to save order", user_id=actor.id, error=str(e)
            ) from e

        logger.info(
            "Cash on delivery order placed",
            order_id=str(order.id),
            order_no=order.order_no,
            grand_total=order.totals.grand_total,
        )
        return self._completed(order, "Order placed successfully!")

    # Gateway checkout

    async def start_gateway_checkout(
        self, actor: Principal, request: CheckoutRequest
    ) -> GatewayCheckoutParams:
        """
        Price the cart and return the gateway widget parameters.

        Raises:
            CheckoutValidationError: If the checkout input is invalid
            GatewayUnavailableError: If the gateway cannot start a checkout
        """
        email = self._validate(actor, request)
        quote, totals = self._price(request)

        if not self.settings.paystack_public_key:
            logger.error("Gateway checkout requested without a public key")
            raise GatewayUnavailableError(
                "Payment gateway is not configured", user_id=actor.id
            )

        amount = to_minor_units(totals.grand_total)
        if amount <= 0:
            raise CheckoutValidationError(
                "Order total must be greater than zero", user_id=actor.id
            )

        reference = generate_payment_reference(self.settings.payment_reference_prefix)
        metadata = {
            "user_id": actor.id,
            "custom_fields": [
                {
                    "display_name": "Phone",
                    "variable_name": "phone",
                    "value": request.shipping_address.phone,
                },
                {
                    "display_name": "Customer Name",
                    "variable_name": "customer_name",
                    "value": self._customer_name(actor, request, email),
                },
            ],
        }

        authorization_url = None
        access_code = None
        if self.settings.paystack_use_hosted_initialize:
            try:
                data = await self.client.initialize_transaction(
                    email=email,
                    amount=amount,
                    reference=reference,
                    currency=totals.currency,
                    metadata=metadata,
                )
            except PaystackClientError as e:
                logger.error(
                    "Gateway initialization failed",
                    reference=reference,
                    error=str(e),
                    code=e.code,
                )
                raise GatewayUnavailableError(
                    "Payment gateway is unavailable, please try again",
                    reference=reference,
                    error=str(e),
                ) from e
            authorization_url = data.get("authorization_url")
            access_code = data.get("access_code")

        logger.info(
            "Gateway checkout started",
            reference=reference,
            amount_minor=amount,
            currency=totals.currency,
            hosted=self.settings.paystack_use_hosted_initialize,
        )
        return GatewayCheckoutParams(
            public_key=self.settings.paystack_public_key,
            email=email,
            amount=amount,
            currency=totals.currency,
            reference=reference,
            metadata=metadata,
            authorization_url=authorization_url,
            access_code=access_code,
            totals=totals,
            shipping_method=quote.label,
        )

    async def complete_gateway_checkout(
        self, actor: Principal, reference: str, request: CheckoutRequest
    ) -> CheckoutOutcome:
        """
        Verify a gateway payment and create its order.

        Calling this again for a reference whose order already exists
        returns that order.

        Raises:
            CheckoutValidationError: If the checkout input is invalid
        """
        reference = (reference or "").strip()
        if not reference:
            raise CheckoutValidationError("Payment reference is required")

        existing = await self.order_service.repository.get_by_payment_reference(
            reference
        )
        if existing is not None:
            return await self._resume_existing(actor, existing, reference)

        email = self._validate(actor, request)
        quote, totals = self._price(request)

        try:
            result = await self.verification.verify(
                reference,
                expected_amount=totals.grand_total,
                expected_currency=totals.currency,
            )
        except VerificationUnreachableError as e:
            logger.critical(
                "Payment verification unreachable, manual reconciliation required",
                alert=True,
                reference=reference,
                user_id=actor.id,
                grand_total=totals.grand_total,
                error=str(e),
            )
            return self._support_required(
                reference, "We could not confirm your payment."
            )

        if not result.success:
            logger.warning(
                "Gateway payment not verified",
                reference=reference,
                raw_status=result.raw_status,
                reason=result.gateway_message,
            )
            return self._not_verified(reference)

        try:
            order = await self.order_service.create_order(
                actor,
                items=request.order_items(),
                totals=totals,
                shipping_address=request.shipping_address,
                shipping_method=quote.label,
                payment=PaymentInfo(
                    status=PaymentStatus.PAID,
                    provider=PaymentProvider.PAYSTACK,
                    reference=reference,
                    amount=result.paid_amount,
                    paid_at=result.paid_at or datetime.now(timezone.utc),
                ),
                customer_email=email,
                customer_name=self._customer_name(actor, request, email),
                details=audit.describe_verified_order(reference, result.paid_amount),
            )
            await self.session.commit()
        except (OrderServiceError, OrderRepositoryError, SQLAlchemyError) as e:
            concurrent = await self._find_concurrent_order(reference)
            if concurrent is not None and concurrent.user_id == actor.id:
                logger.info(
                    "Order for reference created concurrently",
                    reference=reference,
                    order_id=str(concurrent.id),
                )
                return self._completed(
                    concurrent, "Payment successful! Your order has been placed."
                )

            logger.critical(
                "Verified payment without stored order, manual reconciliation required",
                alert=True,
                reference=reference,
                user_id=actor.id,
                paid_amount=str(result.paid_amount),
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._support_required(
                reference,
                "Your payment was received but we could not record your order.",
            )

        logger.info(
            "Gateway order placed",
            order_id=str(order.id),
            order_no=order.order_no,
            reference=reference,
        )
        return self._completed(order, "Payment successful! Your order has been placed.")

    async def _find_concurrent_order(self, reference: str) -> Optional[OrderRecord]:
        """
        Look for an order a concurrent completion stored for ``reference``.

        Runs after a failed creation, when the store itself may be down, so
        lookup failures are logged and reported as no order.
        """
        await self._rollback_quietly()
        try:
            return await self.order_service.repository.get_by_payment_reference(
                reference
            )
        except (OrderRepositoryError, SQLAlchemyError) as e:
            logger.error(
                "Order lookup after failed creation failed",
                reference=reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _resume_existing(
        self, actor: Principal, order: OrderRecord, reference: str
    ) -> CheckoutOutcome:
        """Completion retried for a reference that already has an order."""
        if order.user_id != actor.id:
            logger.warning(
                "Checkout completion for a reference owned by another user",
                reference=reference,
                actor_id=actor.id,
            )
            return self._not_verified(reference)

        if order.payment.status == PaymentStatus.PAID:
            logger.info(
                "Checkout completion repeated",
                reference=reference,
                order_id=str(order.id),
            )
            return self._completed(order, "Payment successful! Your order has been placed.")

        try:
            result = await self.verification.verify(
                reference,
                expected_amount=order.totals.grand_total,
                expected_currency=order.totals.currency,
            )
        except VerificationUnreachableError as e:
            logger.critical(
                "Payment verification unreachable, manual reconciliation required",
                alert=True,
                reference=reference,
                order_id=str(order.id),
                error=str(e),
            )
            return self._support_required(
                reference, "We could not confirm your payment."
            )

        verifier = system_principal(VERIFICATION_ACTOR_NAME)
        if not result.success:
            if order.payment.status == PaymentStatus.PENDING:
                reason = "Payment not verified"
                if result.raw_status:
                    reason = f"{reason} (gateway status: {result.raw_status})"
                try:
                    await self.order_service.mark_payment_failed(
                        verifier, order.id, reason
                    )
                    await self.session.commit()
                except (OrderStateError, OrderRepositoryError, SQLAlchemyError) as e:
                    await self._rollback_quietly()
                    logger.error(
                        "Failed to record unverified payment",
                        reference=reference,
                        order_id=str(order.id),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
            return self._not_verified(reference)

        try:
            _, confirmed = await self.order_service.confirm_payment(
                verifier,
                reference,
                audit.describe_payment_confirmation(result.paid_amount),
                amount=result.paid_amount,
                paid_at=result.paid_at,
            )
            await self.session.commit()
        except (OrderStateError, OrderRepositoryError, SQLAlchemyError) as e:
            await self._rollback_quietly()
            logger.critical(
                "Verified payment not recorded on order, manual reconciliation required",
                alert=True,
                reference=reference,
                order_id=str(order.id),
                paid_amount=str(result.paid_amount),
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._support_required(
                reference,
                "Your payment was received but we could not update your order.",
            )

        return self._completed(
            confirmed or order, "Payment successful! Your order has been placed."
        )

    async def cancel_gateway_checkout(
        self, actor: Principal, reference: Optional[str] = None
    ) -> CheckoutOutcome:
        """The customer closed the gateway widget; nothing is created."""
        logger.info(
            "Gateway checkout cancelled",
            reference=reference,
            user_id=actor.id,
        )
        return CheckoutOutcome(
            status=CheckoutOutcomeStatus.CANCELLED,
            message="Payment cancelled. Your cart has been kept.",
            reference=reference,
        )
