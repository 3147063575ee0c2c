from decimal import Decimal
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any

from servixing.models.enums import Provider


class InitializePaymentRequest(BaseModel):
    provider: Provider = Provider.PAYSTACK
    email: str
    # If omitted, the work order's total_amount is charged.
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    workOrderId: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(min_length=1)


class UpdateProviderRequest(BaseModel):
    provider: Provider


class RefundRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)
    # Partial refund; full amount when omitted.
    amount: Optional[Decimal] = Field(default=None, gt=0)
