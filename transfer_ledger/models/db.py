from __future__ import annotations
from datetime import datetime, UTC
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


class Account(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_account_balance_non_negative"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    email: str = Field(unique=True, index=True)
    owner_name: str
    balance: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

class Transfer(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfer_amount_positive"),
        CheckConstraint("sender_id != recipient_id", name="ck_transfer_distinct_parties"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="ck_transfer_status",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    sender_id: UUID = Field(foreign_key="account.id", index=True)
    recipient_id: UUID = Field(foreign_key="account.id", index=True)
    amount: int
    description: Optional[str] = None
    status: str = "completed"
    created_at: datetime = Field(
        default_factory=utcnow, index=True, sa_type=DateTime(timezone=True)
    )
    idempotency_key: Optional[str] = Field(default=None, index=True)

class IdempotencyRecord(SQLModel, table=True):
    key: str = Field(primary_key=True, max_length=255)
    user_id: UUID = Field(index=True)
    request_path: str
    request_body: str
    response_code: Optional[int] = None
    response_body: Optional[str] = None
    transfer_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    expires_at: datetime = Field(index=True, sa_type=DateTime(timezone=True))
