from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional

class PaymentStatus(str, Enum):
    CREATED = "CREATED"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.SUCCESS, PaymentStatus.FAILURE)

# Older rows written by the first dashboard iteration
LEGACY_STATUS_ALIASES = {
    "PENDING": PaymentStatus.PROCESSING,
    "COMPLETED": PaymentStatus.SUCCESS,
    "FAILED": PaymentStatus.FAILURE,
}

def normalize_status(raw) -> PaymentStatus:
    """Case-insensitive status parse; unknown values display as PROCESSING."""
    value = str(raw or "").strip().upper()
    try:
        return PaymentStatus(value)
    except ValueError:
        return LEGACY_STATUS_ALIASES.get(value, PaymentStatus.PROCESSING)

def is_terminal(status) -> bool:
    return normalize_status(status).is_terminal

class Profile(BaseModel):
    id: str
    full_name: Optional[str] = None
    account_id: str
    balance: float = 0.0
    currency: str = "USD"
    created_at: Optional[datetime] = None

class Payment(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    amount: float
    status: PaymentStatus = PaymentStatus.CREATED
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return normalize_status(v)

class StatusResult(Payment):
    """Payment row enriched with both parties' display names."""
    sender_name: str = "Unknown"
    receiver_name: str = "Unknown"

ISSUE_TYPES = (
    "Payment Issue",
    "Transaction Failed",
    "Account Problem",
    "Security Concern",
    "Other",
)

class SupportQuery(BaseModel):
    user_id: str
    issue_type: Literal[ISSUE_TYPES] = "Payment Issue"
    message: str = Field(min_length=1)
    contact_number: str = Field(min_length=1)
    contact_email: str = Field(min_length=3)

class NewPayment(BaseModel):
    sender_id: str
    receiver_id: str
    amount: float = Field(gt=0)

class Credentials(BaseModel):
    email: str
    password: str
