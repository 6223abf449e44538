from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import NamedTuple, Optional
from uuid import UUID, uuid4

from ..core.errors import (
    InsufficientFundsError,
    InvalidAmountError,
    RecipientNotFoundError,
    SelfTransferError,
    SenderNotFoundError,
)
from ..models import TransferRecord, TransferStatus, utcnow
from .unit_of_work import UnitOfWork


logger = logging.getLogger(__name__)


class TransferResult(NamedTuple):
    transfer: TransferRecord
    sender_balance: int


class TransferEngine:
    """Moves money between two accounts as one atomic unit of work.

    Both account rows are locked in ascending id order before the balance
    check, so transfers sharing an account are linearized and two transfers
    over the same pair in opposite directions cannot deadlock.
    """

    def __init__(
        self,
        unit_of_work_factory: Callable[[], UnitOfWork],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.unit_of_work_factory = unit_of_work_factory
        self.clock = clock

    def transfer(
        self,
        sender_id: UUID,
        recipient_id: UUID,
        amount: int,
        description: Optional[str] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> TransferRecord:
        return self.settle(
            sender_id, recipient_id, amount, description, idempotency_key=idempotency_key
        ).transfer

    def settle(
        self,
        sender_id: UUID,
        recipient_id: UUID,
        amount: int,
        description: Optional[str] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        """Like ``transfer`` but also returns the sender balance it committed."""
        if sender_id == recipient_id:
            raise SelfTransferError()
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError()

        with self.unit_of_work_factory() as uow:
            accounts = {
                account_id: uow.get_account_for_update(account_id)
                for account_id in sorted((sender_id, recipient_id))
            }

            sender = accounts[sender_id]
            if sender is None:
                raise SenderNotFoundError()

            if sender.balance < amount:
                logger.info(
                    "transfer.insufficient_funds",
                    extra={
                        "sender_id": str(sender_id),
                        "amount": amount,
                        "balance": sender.balance,
                    },
                )
                raise InsufficientFundsError()

            recipient = accounts[recipient_id]
            if recipient is None:
                raise RecipientNotFoundError()

            now = self.clock()
            transfer = TransferRecord(
                id=uuid4(),
                sender_id=sender_id,
                recipient_id=recipient_id,
                amount=amount,
                description=description,
                status=TransferStatus.completed,
                created_at=now,
                idempotency_key=idempotency_key,
            )
            sender_balance = sender.balance - amount
            uow.add_transfer(transfer)
            uow.update_balance(sender_id, sender_balance, now)
            uow.update_balance(recipient_id, recipient.balance + amount, now)
            uow.commit()

        logger.info(
            "transfer.completed",
            extra={
                "transfer_id": str(transfer.id),
                "sender_id": str(sender_id),
                "recipient_id": str(recipient_id),
                "amount": amount,
            },
        )
        return TransferResult(transfer, sender_balance)
