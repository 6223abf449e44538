from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import NamedTuple, Optional
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..core.errors import StorageError
from ..models import TransferModel, TransferRecord
from .repository import LedgerRepository


class AccountSnapshot(NamedTuple):
    id: UUID
    balance: int


class UnitOfWork(ABC):
    """One atomic, isolated change to the ledger.

    Used as a context manager: ``begin`` on entry, ``rollback`` if the block
    raises, ``close`` always. Nothing becomes visible until ``commit``.
    """

    def __enter__(self) -> "UnitOfWork":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self.close()

    @abstractmethod
    def begin(self) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def get_account_for_update(self, account_id: UUID) -> Optional[AccountSnapshot]:
        """Read an account and hold it exclusively until the unit of work ends."""

    @abstractmethod
    def add_transfer(self, transfer: TransferRecord) -> None: ...

    @abstractmethod
    def update_balance(self, account_id: UUID, balance: int, updated_at: datetime) -> None: ...


class SqlUnitOfWork(UnitOfWork):
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.session: Optional[Session] = None
        self.repository: Optional[LedgerRepository] = None

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            super().__exit__(exc_type, exc, tb)
        except SQLAlchemyError as cleanup_exc:
            raise StorageError("Ledger store failure") from cleanup_exc
        if isinstance(exc, SQLAlchemyError):
            raise StorageError("Ledger store failure") from exc

    def begin(self) -> None:
        self.session = Session(self.engine, expire_on_commit=False)
        self.repository = LedgerRepository(self.session)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
        self.session = None
        self.repository = None

    def get_account_for_update(self, account_id: UUID) -> Optional[AccountSnapshot]:
        account = self.repository.get_account(account_id, for_update=True)
        if account is None:
            return None
        return AccountSnapshot(id=account.id, balance=account.balance)

    def add_transfer(self, transfer: TransferRecord) -> None:
        self.repository.add_transfer(
            TransferModel(
                id=transfer.id,
                sender_id=transfer.sender_id,
                recipient_id=transfer.recipient_id,
                amount=transfer.amount,
                description=transfer.description,
                status=transfer.status.value,
                created_at=transfer.created_at,
                idempotency_key=transfer.idempotency_key,
            )
        )

    def update_balance(self, account_id: UUID, balance: int, updated_at: datetime) -> None:
        # Already locked and in the identity map from get_account_for_update.
        account = self.repository.get_account(account_id)
        account.balance = balance
        account.updated_at = updated_at
        self.session.add(account)
