"""
Payment verification against the gateway.

The verification service asks Paystack whether a reference was paid. It is
read-only and idempotent: verifying the same reference twice gives the same
answer. Transient gateway failures are retried by the client; when they
persist the service raises ``VerificationUnreachableError`` so the caller can
send the customer to support with the reference.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from storefront.core.logging import get_logger, log_performance
from storefront.schemas.payments import GATEWAY_SUCCESS_STATUS, VerificationResult
from storefront.services.checkout.pricing import from_minor_units
from storefront.services.payments.paystack_client import (
    PaystackClient,
    PaystackClientError,
    PaystackRequestError,
)

logger = get_logger(__name__)


class VerificationError(Exception):
    """Base exception for payment verification errors."""

    def __init__(self, message: str, reference: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.reference = reference
        self.context = context


class VerificationFailedError(VerificationError):
    """The gateway says the transaction was not successful."""

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        raw_status: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message, reference=reference, **context)
        self.raw_status = raw_status


class VerificationUnreachableError(VerificationError):
    """The gateway could not be asked; the payment state is unknown."""

    pass


class VerificationService:
    """
    Verifies payment references with the gateway.

    Attributes:
        client: Paystack API client holding the secret key
    """

    def __init__(self, client: PaystackClient):
        self.client = client

    async def verify(
        self,
        reference: str,
        require_success: bool = False,
        expected_amount: Optional[Decimal] = None,
        expected_currency: Optional[str] = None,
    ) -> VerificationResult:
        """
        Verify a payment reference.

        Args:
            reference: Merchant payment reference
            require_success: Raise instead of returning an unsuccessful result
            expected_amount: Minimum amount in major units the payment must cover
            expected_currency: Currency the payment must be in

        Returns:
            Verification result; ``success`` is True only when the gateway
            reports the transaction as successful (and it covers the
            expected amount and currency, when given)

        Raises:
            VerificationFailedError: If ``require_success`` and not successful
            VerificationUnreachableError: If the gateway cannot be reached
        """
        reference = (reference or "").strip()
        if not reference:
            result = VerificationResult(
                success=False,
                reference="",
                gateway_message="Payment reference is required",
            )
            return self._finish(result, require_success)

        with log_performance(logger, "verify_payment", reference=reference):
            try:
                body = await self.client.verify_transaction(reference)
            except PaystackRequestError as e:
                # 4xx: the gateway answered, and the answer is "not paid"
                result = self._build_result(reference, e.payload)
                return self._finish(result, require_success)
            except PaystackClientError as e:
                logger.error(
                    "Payment verification unreachable",
                    reference=reference,
                    error=str(e),
                    code=e.code,
                )
                raise VerificationUnreachableError(
                    "Payment gateway could not be reached",
                    reference=reference,
                    error=str(e),
                ) from e

        result = self._build_result(reference, body)

        if result.success:
            mismatch = self._check_expectations(
                result, expected_amount, expected_currency
            )
            if mismatch:
                logger.error(
                    "Verified payment does not match order",
                    reference=reference,
                    reason=mismatch,
                    paid_amount=str(result.paid_amount),
                    expected_amount=str(expected_amount),
                    currency=result.currency,
                )
                result = result.model_copy(
                    update={"success": False, "gateway_message": mismatch}
                )

        return self._finish(result, require_success)

    def _build_result(self, reference: str, body: dict[str, Any]) -> VerificationResult:
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        raw_status = str(data.get("status") or "").strip().lower() or None
        success = bool(body.get("status")) and raw_status == GATEWAY_SUCCESS_STATUS

        amount = data.get("amount")
        try:
            paid_amount = from_minor_units(int(amount)) if amount is not None else None
        except (TypeError, ValueError):
            paid_amount = None

        try:
            return VerificationResult(
                success=success,
                reference=reference,
                raw_status=raw_status,
                paid_amount=paid_amount,
                currency=data.get("currency"),
                paid_at=data.get("paid_at") or data.get("paidAt"),
                gateway_message=body.get("message"),
                payload=body,
            )
        except ValidationError:
            # Unparseable optional fields should not hide the status
            return VerificationResult(
                success=success,
                reference=reference,
                raw_status=raw_status,
                paid_amount=paid_amount,
                gateway_message=body.get("message"),
                payload=body,
            )

    @staticmethod
    def _check_expectations(
        result: VerificationResult,
        expected_amount: Optional[Decimal],
        expected_currency: Optional[str],
    ) -> Optional[str]:
        if (
            expected_currency
            and result.currency
            and result.currency.upper() != expected_currency.upper()
        ):
            return f"Payment currency {result.currency} does not match {expected_currency}"
        if (
            expected_amount is not None
            and result.paid_amount is not None
            and result.paid_amount < Decimal(expected_amount)
        ):
            return "Paid amount is less than the order total"
        return None

    @staticmethod
    def _finish(result: VerificationResult, require_success: bool) -> VerificationResult:
        logger.info(
            "Payment verified" if result.success else "Payment not verified",
            reference=result.reference,
            raw_status=result.raw_status,
        )
        if require_success and not result.success:
            raise VerificationFailedError(
                result.gateway_message or "Payment was not successful",
                reference=result.reference,
                raw_status=result.raw_status,
            )
        return result
