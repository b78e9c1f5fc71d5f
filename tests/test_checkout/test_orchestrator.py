"""
Test suite for the checkout orchestrator.

Covers cash-on-delivery placement, gateway checkout start (inline and hosted),
verified completion, unverified and unreachable gateways, repeated
completion, and the support path for payments whose order could not be
stored. The gateway is the scriptable stub from conftest.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from storefront.core.config import get_settings
from storefront.core.security import Principal
from storefront.schemas.checkout import (
    CartItemRequest,
    CheckoutOutcomeStatus,
    CheckoutRequest,
)
from storefront.schemas.orders import PaymentInfo
from storefront.services.checkout.orchestrator import (
    CheckoutOrchestrator,
    CheckoutValidationError,
    GatewayUnavailableError,
)
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    ShippingTier,
)
from storefront.services.orders.repository import OrderRepositoryError
from storefront.services.orders.service import OrderProcessingError, OrderService
from storefront.services.payments.verification import VerificationService

REFERENCE = "bwitty_1718101860000"
GRAND_TOTAL_MINOR = 4500000


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def make_orchestrator(session, paystack_client):
    def _make(**settings_overrides) -> CheckoutOrchestrator:
        settings = get_settings()
        if settings_overrides:
            settings = settings.model_copy(update=settings_overrides)
        return CheckoutOrchestrator(
            session,
            OrderService(session),
            VerificationService(paystack_client),
            paystack_client,
            settings=settings,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> CheckoutOrchestrator:
    return make_orchestrator()


@pytest.fixture
def checkout_request(address) -> CheckoutRequest:
    """Cart of 42,500 weighing 2kg, standard domestic delivery (2,500)."""
    return CheckoutRequest(
        items=[
            CartItemRequest(
                product_id="p-1",
                name="Ankara Dress",
                price=15000,
                quantity=2,
                weight_kg=0.5,
            ),
            CartItemRequest(
                product_id="p-2",
                name="Leather Bag",
                price=12500,
                quantity=1,
                weight_kg=1.0,
            ),
        ],
        shipping_address=address,
        shipping_tier=ShippingTier.STANDARD,
    )


# ============================================================================
# Cash on delivery
# ============================================================================


class TestCashOnDelivery:
    """Test immediate cash-on-delivery orders."""

    async def test_order_placed(
        self, orchestrator, customer, checkout_request, load_order
    ) -> None:
        outcome = await orchestrator.place_cash_on_delivery_order(
            customer, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.COMPLETED
        assert outcome.message == "Order placed successfully!"
        assert outcome.clear_cart is True
        assert outcome.next_path == f"/order-confirmation/{outcome.order_id}"

        order = await load_order(outcome.order_id)
        assert order.status == OrderStatus.PROCESSING
        assert order.payment.status == PaymentStatus.COD
        assert order.payment.provider == PaymentProvider.COD
        assert order.totals.subtotal == 42500
        assert order.totals.shipping == 2500
        assert order.totals.grand_total == 45000
        assert order.shipping_method == "Standard Delivery (5-7 days)"
        assert order.customer_name == "Ada Obi"
        assert [item.product_id for item in order.items] == ["p-1", "p-2"]

    async def test_empty_cart(self, orchestrator, customer, address) -> None:
        request = CheckoutRequest(items=[], shipping_address=address)

        with pytest.raises(CheckoutValidationError):
            await orchestrator.place_cash_on_delivery_order(customer, request)

    async def test_duplicate_products(
        self, orchestrator, customer, checkout_request
    ) -> None:
        duplicated = checkout_request.model_copy(
            update={"items": checkout_request.items + [checkout_request.items[0]]}
        )

        with pytest.raises(CheckoutValidationError):
            await orchestrator.place_cash_on_delivery_order(customer, duplicated)

    async def test_email_required(self, orchestrator, checkout_request) -> None:
        with pytest.raises(CheckoutValidationError):
            await orchestrator.place_cash_on_delivery_order(
                Principal(id="user-9"), checkout_request
            )

    async def test_request_email_used(
        self, orchestrator, checkout_request, load_order
    ) -> None:
        request = checkout_request.model_copy(update={"email": "guest@example.com"})

        outcome = await orchestrator.place_cash_on_delivery_order(
            Principal(id="user-9"), request
        )

        order = await load_order(outcome.order_id)
        assert order.customer_email == "guest@example.com"
        assert order.customer_name == "Ada Obi"


# ============================================================================
# Gateway checkout start
# ============================================================================


class TestStartGatewayCheckout:
    """Test handing out widget parameters."""

    async def test_inline_parameters(
        self, orchestrator, session, customer, checkout_request, gateway
    ) -> None:
        params = await orchestrator.start_gateway_checkout(customer, checkout_request)

        assert params.public_key == "pk_test_public"
        assert params.email == "ada@example.com"
        assert params.amount == GRAND_TOTAL_MINOR
        assert params.currency == "NGN"
        assert re.fullmatch(r"bwitty_\d{13}", params.reference)
        assert params.metadata["user_id"] == "user-123"
        assert params.metadata["custom_fields"] == [
            {
                "display_name": "Phone",
                "variable_name": "phone",
                "value": "+2348012345678",
            },
            {
                "display_name": "Customer Name",
                "variable_name": "customer_name",
                "value": "Ada Obi",
            },
        ]
        assert params.authorization_url is None
        assert params.totals.grand_total == 45000
        assert gateway.requests == []

    async def test_no_order_created(
        self, orchestrator, session, customer, checkout_request
    ) -> None:
        await orchestrator.start_gateway_checkout(customer, checkout_request)

        assert await orchestrator.order_service.repository.list_orders() == []

    async def test_hosted_initialize(
        self, make_orchestrator, customer, checkout_request, gateway
    ) -> None:
        orchestrator = make_orchestrator(paystack_use_hosted_initialize=True)

        params = await orchestrator.start_gateway_checkout(customer, checkout_request)

        assert params.authorization_url == "https://checkout.paystack.com/abc"
        assert params.access_code == "abc"
        (sent,) = gateway.requests
        assert sent.url.path == "/transaction/initialize"
        assert sent.headers["authorization"] == "Bearer sk_test_secret"

    async def test_hosted_initialize_unavailable(
        self, make_orchestrator, customer, checkout_request, gateway
    ) -> None:
        gateway.failures = [503, 503, 503]
        orchestrator = make_orchestrator(paystack_use_hosted_initialize=True)

        with pytest.raises(GatewayUnavailableError):
            await orchestrator.start_gateway_checkout(customer, checkout_request)

    async def test_missing_public_key(
        self, make_orchestrator, customer, checkout_request
    ) -> None:
        orchestrator = make_orchestrator(paystack_public_key="")

        with pytest.raises(GatewayUnavailableError):
            await orchestrator.start_gateway_checkout(customer, checkout_request)


# ============================================================================
# Gateway checkout completion
# ============================================================================


class TestCompleteGatewayCheckout:
    """Test creating orders from verified payments."""

    async def test_verified_payment_creates_paid_order(
        self, orchestrator, customer, checkout_request, gateway, load_order
    ) -> None:
        gateway.paid(REFERENCE, GRAND_TOTAL_MINOR)

        outcome = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.COMPLETED
        assert outcome.message == "Payment successful! Your order has been placed."
        assert outcome.clear_cart is True
        assert outcome.reference == REFERENCE

        order = await load_order(outcome.order_id)
        assert order.status == OrderStatus.PROCESSING
        assert order.payment.status == PaymentStatus.PAID
        assert order.payment.provider == PaymentProvider.PAYSTACK
        assert order.payment.reference == REFERENCE
        assert order.payment.amount == Decimal("45000")
        assert order.payment.paid_at == datetime(2024, 6, 11, 10, 31, tzinfo=timezone.utc)
        assert len(order.audit_log) == 1
        assert order.audit_log[0].details == (
            f"Order placed successfully - Paystack payment {REFERENCE} verified (₦45,000)"
        )

    async def test_abandoned_payment_not_verified(
        self, orchestrator, customer, checkout_request, gateway
    ) -> None:
        gateway.abandoned(REFERENCE, GRAND_TOTAL_MINOR)

        outcome = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.NOT_VERIFIED
        assert outcome.message == "Payment not verified. Please contact support."
        assert outcome.clear_cart is False
        assert await orchestrator.order_service.repository.list_orders() == []

    async def test_unknown_reference_not_verified(
        self, orchestrator, customer, checkout_request
    ) -> None:
        outcome = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.NOT_VERIFIED

    async def test_underpayment_not_verified(
        self, orchestrator, customer, checkout_request, gateway
    ) -> None:
        gateway.paid(REFERENCE, 100)

        outcome = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.NOT_VERIFIED
        assert await orchestrator.order_service.repository.list_orders() == []

    async def test_unreachable_gateway_requires_support(
        self, orchestrator, customer, checkout_request, gateway
    ) -> None:
        gateway.failures = [503, 503, 503]

        outcome = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.SUPPORT_REQUIRED
        assert REFERENCE in outcome.message
        assert outcome.clear_cart is False
        assert len(gateway.requests) == 3

    async def test_empty_reference(
        self, orchestrator, customer, checkout_request
    ) -> None:
        with pytest.raises(CheckoutValidationError):
            await orchestrator.complete_gateway_checkout(customer, "  ", checkout_request)

    async def test_repeated_completion_returns_same_order(
        self, orchestrator, customer, checkout_request, gateway
    ) -> None:
        gateway.paid(REFERENCE, GRAND_TOTAL_MINOR)

        first = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )
        second = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert second.status == CheckoutOutcomeStatus.COMPLETED
        assert second.order_id == first.order_id
        assert len(await orchestrator.order_service.repository.list_orders()) == 1

    async def test_reference_of_another_customer(
        self, orchestrator, customer, other_customer, checkout_request, gateway
    ) -> None:
        gateway.paid(REFERENCE, GRAND_TOTAL_MINOR)
        await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        outcome = await orchestrator.complete_gateway_checkout(
            other_customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.NOT_VERIFIED
        assert outcome.order_id is None


class TestCompletionForExistingPendingOrder:
    """An order already holding the reference is confirmed, not duplicated."""

    async def test_pending_order_confirmed(
        self, orchestrator, customer, checkout_request, gateway, store_order,
        build_order, load_order,
    ) -> None:
        record = await store_order(build_order())
        gateway.paid("bwitty_1718101800000", 1750000)

        outcome = await orchestrator.complete_gateway_checkout(
            customer, "bwitty_1718101800000", checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.COMPLETED
        assert outcome.order_id == record.id
        order = await load_order(record.id)
        assert order.payment.status == PaymentStatus.PAID
        assert order.status == OrderStatus.PROCESSING
        assert order.audit_log[-1].user_name == "Paystack Verification"

    async def test_pending_order_marked_failed(
        self, orchestrator, customer, checkout_request, gateway, store_order,
        build_order, load_order,
    ) -> None:
        record = await store_order(build_order())
        gateway.abandoned("bwitty_1718101800000", 1750000)

        outcome = await orchestrator.complete_gateway_checkout(
            customer, "bwitty_1718101800000", checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.NOT_VERIFIED
        order = await load_order(record.id)
        assert order.payment.status == PaymentStatus.FAILED
        assert order.payment.failure_reason == (
            "Payment not verified (gateway status: abandoned)"
        )
        assert order.status == OrderStatus.PENDING_PAYMENT


class TestOrderCreationFailure:
    """A verified payment whose order cannot be stored."""

    async def test_support_required(
        self, orchestrator, customer, checkout_request, gateway
    ) -> None:
        gateway.paid(REFERENCE, GRAND_TOTAL_MINOR)
        orchestrator.order_service.create_order = AsyncMock(
            side_effect=OrderProcessingError("Failed to create order")
        )

        outcome = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.SUPPORT_REQUIRED
        assert outcome.message == (
            "Your payment was received but we could not record your order. "
            f"Please contact support with payment reference {REFERENCE}."
        )
        assert outcome.reference == REFERENCE

    async def test_concurrent_completion_wins(
        self, orchestrator, customer, checkout_request, gateway, store_order,
        build_order,
    ) -> None:
        gateway.paid(REFERENCE, GRAND_TOTAL_MINOR)
        winner = build_order(
            status=OrderStatus.PROCESSING,
            payment=PaymentInfo(
                status=PaymentStatus.PAID,
                provider=PaymentProvider.PAYSTACK,
                reference=REFERENCE,
                amount=Decimal("45000"),
            ),
        )

        async def store_then_fail(*args, **kwargs):
            await store_order(winner)
            raise OrderProcessingError("Failed to create order")

        orchestrator.order_service.create_order = AsyncMock(side_effect=store_then_fail)

        outcome = await orchestrator.complete_gateway_checkout(
            customer, REFERENCE, checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.COMPLETED
        assert outcome.order_id == winner.id

    async def test_store_down_during_lookup_requires_support(
        self, orchestrator, customer, checkout_request, gateway
    ) -> None:
        gateway.paid(REFERENCE, GRAND_TOTAL_MINOR)
        orchestrator.order_service.create_order = AsyncMock(
            side_effect=OrderProcessingError("Failed to create order")
        )
        orchestrator.order_service.repository.get_by_payment_reference = AsyncMock(
            side_effect=[None, OrderRepositoryError("database unavailable")]
        )

        with patch("storefront.services.checkout.orchestrator.logger") as mock_logger:
            outcome = await orchestrator.complete_gateway_checkout(
                customer, REFERENCE, checkout_request
            )

        assert outcome.status == CheckoutOutcomeStatus.SUPPORT_REQUIRED
        assert outcome.reference == REFERENCE
        assert REFERENCE in outcome.message
        mock_logger.critical.assert_called_once()
        assert mock_logger.critical.call_args.kwargs["alert"] is True
        assert mock_logger.critical.call_args.kwargs["reference"] == REFERENCE

    async def test_confirmation_not_stored_requires_support(
        self, orchestrator, customer, checkout_request, gateway, store_order,
        build_order, load_order,
    ) -> None:
        record = await store_order(build_order())
        gateway.paid("bwitty_1718101800000", 1750000)
        orchestrator.order_service.confirm_payment = AsyncMock(
            side_effect=OrderRepositoryError("database unavailable")
        )

        with patch("storefront.services.checkout.orchestrator.logger") as mock_logger:
            outcome = await orchestrator.complete_gateway_checkout(
                customer, "bwitty_1718101800000", checkout_request
            )

        assert outcome.status == CheckoutOutcomeStatus.SUPPORT_REQUIRED
        assert outcome.message == (
            "Your payment was received but we could not update your order. "
            "Please contact support with payment reference bwitty_1718101800000."
        )
        mock_logger.critical.assert_called_once()
        assert (await load_order(record.id)).payment.status == PaymentStatus.PENDING

    async def test_failed_payment_not_stored_still_not_verified(
        self, orchestrator, customer, checkout_request, gateway, store_order,
        build_order,
    ) -> None:
        await store_order(build_order())
        gateway.abandoned("bwitty_1718101800000", 1750000)
        orchestrator.order_service.mark_payment_failed = AsyncMock(
            side_effect=OrderRepositoryError("database unavailable")
        )

        outcome = await orchestrator.complete_gateway_checkout(
            customer, "bwitty_1718101800000", checkout_request
        )

        assert outcome.status == CheckoutOutcomeStatus.NOT_VERIFIED


class TestCancelGatewayCheckout:
    async def test_cart_kept(self, orchestrator, customer) -> None:
        outcome = await orchestrator.cancel_gateway_checkout(customer, REFERENCE)

        assert outcome.status == CheckoutOutcomeStatus.CANCELLED
        assert outcome.clear_cart is False
        assert outcome.message == "Payment cancelled. Your cart has been kept."
        assert outcome.order_id is None
