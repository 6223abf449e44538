from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.errors import (
    BUSINESS_ERRORS,
    AccountExistsError,
    AccountNotFoundError,
    RecipientNotFoundError,
    TransferNotFoundError,
    ValidationError,
)
from ..models import (
    AccountCreate,
    AccountModel,
    AccountResponse,
    HistoryItem,
    HistoryResponse,
    StatsResponse,
    TransferEnvelope,
    TransferModel,
    TransferRecord,
    TransferRequest,
)
from .coordinator import Outcome
from .engine import TransferEngine
from .repository import (
    AccountDirectory,
    LedgerRepository,
    SqlAccountDirectory,
    as_utc,
    normalize_email,
    to_transfer_record,
    translate_storage_errors,
)


logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(
        self,
        engine: Engine,
        transfer_engine: TransferEngine,
        directory: Optional[AccountDirectory] = None,
    ) -> None:
        self.engine = engine
        self.transfer_engine = transfer_engine
        self.directory = directory or SqlAccountDirectory(engine)

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _get_account(self, repository: LedgerRepository, account_id: UUID) -> AccountModel:
        account = repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def _account_to_response(self, account: AccountModel) -> AccountResponse:
        return AccountResponse(
            id=account.id,
            email=account.email,
            owner_name=account.owner_name,
            balance=account.balance,
            created_at=as_utc(account.created_at),
            updated_at=as_utc(account.updated_at),
        )

    def _cursor_transfer(
        self, repository: LedgerRepository, account_id: UUID, cursor: str
    ) -> TransferModel:
        try:
            transfer = repository.get_transfer(UUID(cursor))
        except ValueError as exc:
            raise ValidationError("Invalid cursor") from exc
        if transfer is None or account_id not in (transfer.sender_id, transfer.recipient_id):
            raise ValidationError("Invalid cursor")
        return transfer

    def _resolve_recipient(self, payload: TransferRequest) -> UUID:
        if payload.recipient_id is not None:
            return payload.recipient_id
        recipient_id = self.directory.resolve(payload.recipient_email)
        if recipient_id is None:
            raise RecipientNotFoundError()
        return recipient_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_account(self, payload: AccountCreate) -> AccountResponse:
        email = normalize_email(payload.email)
        with translate_storage_errors("account.create"), self._session() as session:
            repository = LedgerRepository(session)
            if repository.find_account_by_email(email) is not None:
                raise AccountExistsError()
            account = repository.add_account(
                email=email,
                owner_name=payload.owner_name,
                balance=payload.initial_balance,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise AccountExistsError() from exc
            response = self._account_to_response(account)

        logger.info(
            "account.created",
            extra={"account_id": str(response.id), "owner_name": response.owner_name},
        )
        return response

    def get_account(self, account_id: UUID) -> AccountResponse:
        with translate_storage_errors("account.get"), self._session() as session:
            account = self._get_account(LedgerRepository(session), account_id)
            return self._account_to_response(account)

    def get_transfer(self, transfer_id: UUID) -> TransferRecord:
        with translate_storage_errors("transfer.get"), self._session() as session:
            row = LedgerRepository(session).get_transfer(transfer_id)
            if row is None:
                raise TransferNotFoundError(f"Transfer {transfer_id} not found")
            return to_transfer_record(row)

    def get_history(
        self,
        account_id: UUID,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> HistoryResponse:
        with translate_storage_errors("transfer.history"), self._session() as session:
            repository = LedgerRepository(session)
            self._get_account(repository, account_id)
            anchor = self._cursor_transfer(repository, account_id, cursor) if cursor else None
            rows = repository.list_transfers(account_id, limit=limit + 1, after=anchor)
            page = [to_transfer_record(row) for row in rows[:limit]]

        next_cursor = str(page[-1].id) if len(rows) > limit else None

        items = [
            HistoryItem(
                id=transfer.id,
                direction="debit" if transfer.sender_id == account_id else "credit",
                counterparty_id=(
                    transfer.recipient_id
                    if transfer.sender_id == account_id
                    else transfer.sender_id
                ),
                amount=transfer.amount,
                description=transfer.description,
                status=transfer.status,
                created_at=transfer.created_at,
            )
            for transfer in page
        ]
        return HistoryResponse(items=items, next_cursor=next_cursor)

    def get_stats(self, account_id: UUID) -> StatsResponse:
        with translate_storage_errors("transfer.stats"), self._session() as session:
            repository = LedgerRepository(session)
            self._get_account(repository, account_id)
            count, total_sent, total_received = repository.transfer_totals(account_id)

        return StatsResponse(
            account_id=account_id,
            total_transfers=count,
            total_sent=total_sent,
            total_received=total_received,
            net_flow=total_received - total_sent,
        )

    def submit_transfer(
        self,
        payload: TransferRequest,
        idempotency_key: Optional[str] = None,
    ) -> Outcome:
        """Run a transfer and render its response envelope.

        Business rejections become an error outcome so they can be recorded
        and replayed like a success; storage failures propagate.
        """
        try:
            recipient_id = self._resolve_recipient(payload)
            transfer, new_balance = self.transfer_engine.settle(
                payload.sender_id,
                recipient_id,
                payload.amount,
                payload.description,
                idempotency_key=idempotency_key,
            )
        except BUSINESS_ERRORS as exc:
            logger.info(
                "transfer.rejected",
                extra={"sender_id": str(payload.sender_id), "code": exc.code},
            )
            return Outcome.from_error(exc)

        # The balance comes from the unit of work that committed; nothing after
        # the commit may fail the request.
        envelope = TransferEnvelope(transfer=transfer, new_balance=new_balance)
        return Outcome.from_payload(201, envelope, transfer_id=transfer.id)
