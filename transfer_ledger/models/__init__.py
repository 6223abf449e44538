from .db import Account as AccountModel
from .db import IdempotencyRecord as IdempotencyRecordModel
from .db import Transfer as TransferModel
from .db import utcnow
from .schemas import (
    AccountCreate,
    AccountResponse,
    HistoryItem,
    HistoryResponse,
    StatsResponse,
    TransferEnvelope,
    TransferRecord,
    TransferRequest,
    TransferStatus,
)

__all__ = [
    "AccountCreate",
    "AccountResponse",
    "HistoryItem",
    "HistoryResponse",
    "StatsResponse",
    "TransferEnvelope",
    "TransferRecord",
    "TransferRequest",
    "TransferStatus",
    "AccountModel",
    "TransferModel",
    "IdempotencyRecordModel",
    "utcnow",
]
