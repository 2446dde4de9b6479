"""
Pydantic schemas for API request/response models.

Field names follow the storefront's camelCase wire format; Python
attributes stay snake_case.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreatePaymentRequest(BaseModel):
    """Request schema for creating (or reusing) a payment session."""

    order_id: Optional[str] = Field(default=None, alias="orderId", description="Single order id")
    order_ids: Optional[List[str]] = Field(
        default=None, alias="orderIds", description="Order ids charged together"
    )
    is_guest: bool = Field(default=False, alias="isGuest", description="Guest checkout")
    force_new_token: bool = Field(
        default=False, alias="forceNewToken", description="Skip reuse of a stored session"
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"orderId": "0b6f1c1e-3a8e-4c57-9d55-2f0b8a7f3c11", "isGuest": True},
                {
                    "orderIds": [
                        "0b6f1c1e-3a8e-4c57-9d55-2f0b8a7f3c11",
                        "5d1e2b7a-95c4-4f0f-8f3e-0c2d9f6a1b22",
                    ],
                    "forceNewToken": True,
                },
            ]
        },
    )


class PaymentInfoResponse(BaseModel):
    base_amount: int = Field(..., alias="baseAmount")
    admin_fee: int = Field(..., alias="adminFee")
    total_amount: int = Field(..., alias="totalAmount")
    payment_method: str = Field(..., alias="paymentMethod")
    fee_type: str = Field(..., alias="feeType")


class CreatePaymentResponse(BaseModel):
    """Response schema for a created or reused session."""

    success: bool = True
    snap_token: str = Field(..., alias="snapToken", description="Gateway session token")
    redirect_url: str = Field(..., alias="redirectUrl", description="Hosted payment page")
    order_ids: List[str] = Field(..., alias="orderIds")
    reused: bool = Field(..., description="True if an existing session was returned")
    payment_info: PaymentInfoResponse = Field(..., alias="paymentInfo")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "success": True,
                    "snapToken": "66e4fa55-fdac-4ef9-91b5-733b97d1b862",
                    "redirectUrl": "https://app.sandbox.midtrans.com/snap/v2/vtweb/66e4fa55",
                    "orderIds": ["0b6f1c1e-3a8e-4c57-9d55-2f0b8a7f3c11"],
                    "reused": False,
                    "paymentInfo": {
                        "baseAmount": 500000,
                        "adminFee": 3500,
                        "totalAmount": 503500,
                        "paymentMethod": "qris",
                        "feeType": "0.7%",
                    },
                }
            ]
        }
    )


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class MidtransNotification(BaseModel):
    """Payment notification body posted by Midtrans."""

    order_id: str = Field(..., description="Gateway-side transaction id")
    status_code: str
    gross_amount: str
    signature_key: str
    transaction_status: str
    fraud_status: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_time: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("status_code", "gross_amount", mode="before")
    @classmethod
    def coerce_to_text(cls, v: Any) -> Any:
        """Signatures are computed over the textual values."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class WebhookResponse(BaseModel):
    """Acknowledgment returned to the gateway (always HTTP 200)."""

    success: bool
    message: str
    order_id: Optional[str] = Field(default=None, alias="orderId")
    status: Optional[str] = None
    updated_count: Optional[int] = Field(default=None, alias="updatedCount")


class ReconciliationResponse(BaseModel):
    checked: int
    applied: int
    unknown: int
    errors: int
    orders_updated: int = Field(..., alias="ordersUpdated")
    failures: List[Dict[str, str]] = Field(default_factory=list)


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
