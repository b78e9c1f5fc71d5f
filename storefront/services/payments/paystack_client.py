"""
Paystack API client with error handling and retry logic.

This module provides an async Paystack client built on httpx with exponential
backoff retries for transient failures (connection errors, timeouts, rate
limiting and 5xx responses), structured logging and webhook signature
verification. The secret key never leaves this module.
"""

import asyncio
import hashlib
import hmac
from typing import Any, Optional

import httpx

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


class PaystackClientError(Exception):
    """Base exception for Paystack client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.payload = payload or {}
        self.context = context


class PaystackAuthenticationError(PaystackClientError):
    """Exception for rejected credentials."""

    pass


class PaystackRequestError(PaystackClientError):
    """Exception for requests the gateway rejected (4xx)."""

    pass


class PaystackConnectionError(PaystackClientError):
    """Exception for transient failures that outlasted the retries."""

    pass


class PaystackClient:
    """
    Paystack API client with error handling and retry logic.

    Provides transaction initialization, transaction verification by
    reference and webhook signature checks.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        max_backoff: Optional[float] = None,
        backoff_multiplier: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Paystack client with configuration.

        Args:
            secret_key: Paystack secret key (defaults to settings)
            base_url: API base URL (defaults to settings)
            timeout: Per-request timeout in seconds
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            backoff_multiplier: Backoff multiplier for exponential backoff
            transport: Optional httpx transport, used by tests
        """
        settings = get_settings()
        self.secret_key = secret_key if secret_key is not None else settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.paystack_timeout_seconds
        self.max_retries = (
            max_retries if max_retries is not None else settings.paystack_max_retries
        )
        self.initial_backoff = (
            initial_backoff
            if initial_backoff is not None
            else settings.paystack_initial_backoff
        )
        self.max_backoff = (
            max_backoff if max_backoff is not None else settings.paystack_max_backoff
        )
        self.backoff_multiplier = backoff_multiplier

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Accept": "application/json",
            },
        )

        logger.debug(
            "Paystack client initialized",
            base_url=self.base_url,
            max_retries=self.max_retries,
            has_secret=bool(self.secret_key),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "PaystackClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Calculate exponential backoff delay.

        Args:
            attempt: Current retry attempt number (0-indexed)

        Returns:
            Backoff delay in seconds
        """
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _should_retry(self, status_code: Optional[int], attempt: int) -> bool:
        """
        Determine if request should be retried.

        Args:
            status_code: HTTP status, or None for transport failures
            attempt: Current retry attempt number

        Returns:
            True if request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False
        if status_code is None:
            return True
        return status_code == 429 or status_code >= 500

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def _execute_with_retry(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Execute a Paystack API call with exponential backoff retry logic.

        Args:
            operation: Operation name for logging
            method: HTTP method
            path: Path relative to the base URL
            json: Optional JSON body

        Returns:
            Parsed JSON response body

        Raises:
            PaystackAuthenticationError: If the secret key is rejected
            PaystackRequestError: If the gateway rejects the request
            PaystackConnectionError: If transient failures outlast the retries
            PaystackClientError: If the response is not JSON
        """
        last_error: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            status_code: Optional[int] = None
            try:
                response = await self._client.request(method, path, json=json)
                status_code = response.status_code
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                body = self._parse_body(response)

                if response.is_success:
                    if not body:
                        raise PaystackClientError(
                            "Paystack returned a non-JSON response",
                            code="INVALID_RESPONSE",
                            status_code=status_code,
                            operation=operation,
                        )
                    if attempt > 0:
                        logger.info(
                            "Paystack operation succeeded after retry",
                            operation=operation,
                            attempt=attempt,
                        )
                    return body

                message = body.get("message") or response.reason_phrase
                last_error = f"HTTP {status_code}: {message}"

                if status_code == 401:
                    logger.error(
                        "Paystack authentication error",
                        operation=operation,
                        status_code=status_code,
                    )
                    raise PaystackAuthenticationError(
                        f"Authentication failed: {message}",
                        code="AUTHENTICATION_FAILED",
                        status_code=status_code,
                        payload=body,
                    )

                if status_code != 429 and status_code < 500:
                    logger.warning(
                        "Paystack rejected request",
                        operation=operation,
                        status_code=status_code,
                        message=message,
                    )
                    raise PaystackRequestError(
                        f"Request rejected: {message}",
                        code="REQUEST_REJECTED",
                        status_code=status_code,
                        payload=body,
                    )

            if not self._should_retry(status_code, attempt):
                break

            backoff = self._calculate_backoff(attempt)
            logger.warning(
                "Transient Paystack failure, retrying",
                operation=operation,
                attempt=attempt,
                status_code=status_code,
                error=last_error,
                backoff_seconds=backoff,
            )
            await asyncio.sleep(backoff)

        logger.error(
            "Paystack operation failed after all retries",
            operation=operation,
            max_retries=self.max_retries,
            last_error=last_error,
        )
        raise PaystackConnectionError(
            f"Operation failed after {self.max_retries} retries",
            code="UNREACHABLE",
            last_error=last_error,
        )

    async def verify_transaction(self, reference: str) -> dict[str, Any]:
        """
        Verify a transaction by its merchant reference.

        Args:
            reference: Merchant payment reference

        Returns:
            Gateway response body ``{status, message, data: {...}}``
        """
        logger.debug("Verifying Paystack transaction", reference=reference)
        return await self._execute_with_retry(
            "verify_transaction",
            "GET",
            f"/transaction/verify/{reference}",
        )

    async def initialize_transaction(
        self,
        email: str,
        amount: int,
        reference: str,
        currency: str,
        metadata: Optional[dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Initialize a hosted checkout transaction.

        Args:
            email: Customer email
            amount: Amount in minor units
            reference: Merchant payment reference
            currency: ISO currency code
            metadata: Optional metadata shown on the checkout page
            callback_url: Optional redirect after payment

        Returns:
            Transaction data with ``authorization_url`` and ``access_code``

        Raises:
            PaystackRequestError: If the gateway does not accept the transaction
        """
        payload: dict[str, Any] = {
            "email": email.strip(),
            "amount": amount,
            "reference": reference,
            "currency": currency,
        }
        if metadata:
            payload["metadata"] = metadata
        if callback_url:
            payload["callback_url"] = callback_url

        body = await self._execute_with_retry(
            "initialize_transaction",
            "POST",
            "/transaction/initialize",
            json=payload,
        )
        if not body.get("status"):
            raise PaystackRequestError(
                body.get("message") or "Paystack initialization rejected",
                code="INITIALIZE_REJECTED",
                payload=body,
            )

        logger.info("Paystack transaction initialized", reference=reference)
        return body.get("data") or {}

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """
        Check an ``x-paystack-signature`` header against the raw request body.

        The signature is the hex HMAC-SHA512 of the body keyed with the
        secret key.
        """
        if not signature or not self.secret_key:
            return False
        computed = hmac.new(
            self.secret_key.encode("utf-8"), raw_body or b"", hashlib.sha512
        ).hexdigest()
        return hmac.compare_digest(computed, signature.strip())
