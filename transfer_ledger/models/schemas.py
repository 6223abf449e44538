from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

# 1,000,000.00 in minor units
MAX_TRANSFER_AMOUNT = 100_000_000


class TransferStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class AccountCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    owner_name: str = Field(..., min_length=2, max_length=100, description="Name of the account holder")
    initial_balance: int = Field(default=0, ge=0, description="Opening balance in minor units")

class AccountResponse(BaseModel):
    id: UUID
    email: str
    owner_name: str
    balance: int = Field(..., ge=0, description="Balance in minor units (e.g. cents)")
    created_at: datetime
    updated_at: datetime

class TransferRequest(BaseModel):
    sender_id: UUID
    recipient_id: Optional[UUID] = None
    recipient_email: Optional[str] = Field(default=None, max_length=255)
    amount: int = Field(..., ge=1, le=MAX_TRANSFER_AMOUNT, description="Amount in minor units")
    description: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _exactly_one_recipient(self) -> "TransferRequest":
        if (self.recipient_id is None) == (self.recipient_email is None):
            raise ValueError("Provide exactly one of recipient_id or recipient_email")
        return self

class TransferRecord(BaseModel):
    """Immutable view of a committed transfer."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    sender_id: UUID
    recipient_id: UUID
    amount: int
    description: Optional[str] = None
    status: TransferStatus = TransferStatus.completed
    created_at: datetime
    idempotency_key: Optional[str] = None

class TransferEnvelope(BaseModel):
    transfer: TransferRecord
    new_balance: int

class HistoryItem(BaseModel):
    id: UUID
    direction: Literal["debit", "credit"]
    counterparty_id: UUID
    amount: int
    description: Optional[str] = None
    status: TransferStatus
    created_at: datetime

class HistoryResponse(BaseModel):
    items: list[HistoryItem]
    next_cursor: Optional[str] = None

class StatsResponse(BaseModel):
    account_id: UUID
    total_transfers: int
    total_sent: int
    total_received: int
    net_flow: int
