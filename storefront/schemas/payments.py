"""
Payment schemas for the Paystack integration.

This module defines Pydantic schemas for payment verification results, the
verification proxy endpoint and the webhook payloads sent by the gateway.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.database.base import ensure_utc

CHARGE_SUCCESS_EVENT = "charge.success"
GATEWAY_SUCCESS_STATUS = "success"


class VerificationResult(BaseModel):
    """Outcome of verifying a payment reference with the gateway."""

    model_config = ConfigDict(frozen=True)

    success: bool
    reference: str
    raw_status: Optional[str] = Field(
        None, description="Transaction status reported by the gateway"
    )
    paid_amount: Optional[Decimal] = Field(
        None, description="Amount paid in major currency units"
    )
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    gateway_message: Optional[str] = None
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Gateway response body, returned verbatim by the proxy",
    )

    @field_validator("paid_at")
    @classmethod
    def normalize_paid_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class VerifyPaymentRequest(BaseModel):
    """Request body for the verification proxy."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reference: str = Field(..., min_length=1, max_length=100)


class VerifyPaymentResponse(BaseModel):
    """Verification proxy response: success flag plus the gateway payload."""

    success: bool
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "success": True,
                    "data": {
                        "status": True,
                        "message": "Verification successful",
                        "data": {
                            "status": "success",
                            "reference": "bwitty_1718000000000",
                            "amount": 1500000,
                            "currency": "NGN",
                        },
                    },
                }
            ]
        }
    }


class WebhookEventData(BaseModel):
    """Transaction object carried in a gateway webhook event."""

    model_config = ConfigDict(extra="allow")

    reference: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[int] = Field(None, ge=0, description="Amount in minor units")
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None

    @field_validator("paid_at")
    @classmethod
    def normalize_paid_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class WebhookEvent(BaseModel):
    """Webhook event envelope: ``{event, data}``."""

    model_config = ConfigDict(extra="allow")

    event: str = Field(..., min_length=1)
    data: WebhookEventData = Field(default_factory=WebhookEventData)

    @property
    def is_successful_charge(self) -> bool:
        return (
            self.event == CHARGE_SUCCESS_EVENT
            and self.data.status == GATEWAY_SUCCESS_STATUS
        )


class WebhookResponse(BaseModel):
    """JSON body returned to the gateway."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    order_id: Optional[UUID] = Field(None, serialization_alias="orderId")
    order_no: Optional[str] = Field(None, serialization_alias="orderNo")
