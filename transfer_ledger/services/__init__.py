from .coordinator import (
    CoordinatedOutcome,
    Decision,
    DedupStatus,
    MutationRequest,
    Outcome,
    RequestCoordinator,
)
from .engine import TransferEngine, TransferResult
from .idempotency import (
    Fingerprint,
    IdempotencyCache,
    ReservationResult,
    SqlIdempotencyCache,
    canonical_json,
)
from .ledger import LedgerService
from .repository import AccountDirectory, LedgerRepository, SqlAccountDirectory
from .unit_of_work import AccountSnapshot, SqlUnitOfWork, UnitOfWork

__all__ = [
    "AccountDirectory",
    "AccountSnapshot",
    "CoordinatedOutcome",
    "Decision",
    "DedupStatus",
    "Fingerprint",
    "IdempotencyCache",
    "LedgerRepository",
    "LedgerService",
    "MutationRequest",
    "Outcome",
    "RequestCoordinator",
    "ReservationResult",
    "SqlAccountDirectory",
    "SqlIdempotencyCache",
    "SqlUnitOfWork",
    "TransferEngine",
    "TransferResult",
    "UnitOfWork",
    "canonical_json",
]
