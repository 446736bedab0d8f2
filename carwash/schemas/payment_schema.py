"""Payment capture and refund records exchanged with the payment gateway."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class PaymentRequest(BaseModel):
    """Card details reference and amount for a booking charge.

    ``amount_cents`` defaults to the booked service price when omitted.
    """

    payment_method_id: str
    customer_email: str
    amount_cents: Optional[int] = Field(default=None, ge=0)
    currency: str = "EUR"
    metadata: dict[str, Any] = Field(default_factory=dict)


class PaymentReceipt(BaseModel):
    payment_id: str
    amount_cents: int
    currency: str
    captured_at: datetime


class RefundReceipt(BaseModel):
    refund_id: str
    payment_id: str
    amount_cents: int
    created_at: datetime
