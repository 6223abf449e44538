from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from ..core.errors import StorageError
from ..models import AccountModel, TransferModel, TransferRecord, TransferStatus


logger = logging.getLogger(__name__)


@contextmanager
def translate_storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(
            "storage.failure",
            extra={"operation": operation, "error": exc.__class__.__name__},
        )
        raise StorageError(f"Storage failure during {operation}") from exc


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_transfer_record(row: TransferModel) -> TransferRecord:
    return TransferRecord(
        id=row.id,
        sender_id=row.sender_id,
        recipient_id=row.recipient_id,
        amount=row.amount,
        description=row.description,
        status=TransferStatus(row.status),
        created_at=as_utc(row.created_at),
        idempotency_key=row.idempotency_key,
    )


class LedgerRepository:
    """Thin data access layer around the SQLModel session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Account operations -------------------------------------------------
    def add_account(self, *, email: str, owner_name: str, balance: int) -> AccountModel:
        account = AccountModel(email=email, owner_name=owner_name, balance=balance)
        self.session.add(account)
        self.session.flush()
        self.session.refresh(account)
        return account

    def get_account(
        self, account_id: UUID, *, for_update: bool = False
    ) -> Optional[AccountModel]:
        if not for_update:
            return self.session.get(AccountModel, account_id)
        stmt = (
            select(AccountModel)
            .where(AccountModel.id == account_id)
            .with_for_update()
        )
        return self.session.exec(stmt).first()

    def find_account_by_email(self, email: str) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(AccountModel.email == email)
        return self.session.exec(stmt).first()

    # Transfers ----------------------------------------------------------
    def add_transfer(self, transfer: TransferModel) -> None:
        self.session.add(transfer)

    def get_transfer(self, transfer_id: UUID) -> Optional[TransferModel]:
        return self.session.get(TransferModel, transfer_id)

    def list_transfers(
        self,
        account_id: UUID,
        *,
        limit: Optional[int] = None,
        after: Optional[TransferModel] = None,
    ) -> list[TransferModel]:
        """Transfers touching an account, newest first, resuming past ``after``."""
        created_at = col(TransferModel.created_at)
        transfer_id = col(TransferModel.id)
        stmt = (
            select(TransferModel)
            .where(
                or_(
                    col(TransferModel.sender_id) == account_id,
                    col(TransferModel.recipient_id) == account_id,
                )
            )
            .order_by(created_at.desc(), transfer_id.desc())
        )
        if after is not None:
            stmt = stmt.where(
                or_(
                    created_at < after.created_at,
                    and_(created_at == after.created_at, transfer_id < after.id),
                )
            )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt))

    def transfer_totals(self, account_id: UUID) -> tuple[int, int, int]:
        """Return (count, total sent, total received) for an account."""
        sent = case((col(TransferModel.sender_id) == account_id, TransferModel.amount), else_=0)
        received = case(
            (col(TransferModel.recipient_id) == account_id, TransferModel.amount), else_=0
        )
        stmt = select(
            func.count(col(TransferModel.id)),
            func.coalesce(func.sum(sent), 0),
            func.coalesce(func.sum(received), 0),
        ).where(
            or_(
                col(TransferModel.sender_id) == account_id,
                col(TransferModel.recipient_id) == account_id,
            )
        )
        count, total_sent, total_received = self.session.exec(stmt).one()
        return int(count), int(total_sent), int(total_received)


class AccountDirectory(ABC):
    """Resolves a public recipient identifier to an account id."""

    @abstractmethod
    def resolve(self, email: str) -> Optional[UUID]:
        ...


class SqlAccountDirectory(AccountDirectory):
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def resolve(self, email: str) -> Optional[UUID]:
        with translate_storage_errors("directory.resolve"), Session(self.engine) as session:
            account = LedgerRepository(session).find_account_by_email(normalize_email(email))
            return account.id if account is not None else None


def normalize_email(email: str) -> str:
    return email.strip().lower()
