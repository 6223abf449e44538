from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional
from uuid import UUID

from ..core.errors import (
    IdempotencyInProgressError,
    IdempotencyMismatchError,
    InvalidIdempotencyKeyError,
    LedgerError,
    StorageError,
)
from .idempotency import Fingerprint, IdempotencyCache, ReservationResult, canonical_json


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outcome:
    """Status code and serialized JSON body of a finished mutation."""

    status_code: int
    body: str
    transfer_id: Optional[UUID] = None

    @classmethod
    def from_payload(
        cls, status_code: int, payload: Any, transfer_id: Optional[UUID] = None
    ) -> "Outcome":
        return cls(status_code=status_code, body=canonical_json(payload), transfer_id=transfer_id)

    @classmethod
    def from_error(cls, exc: LedgerError) -> "Outcome":
        return cls.from_payload(exc.status_code, exc.to_payload())


@dataclass(frozen=True)
class MutationRequest:
    path: str
    payload: Any
    owner_id: UUID
    idempotency_key: Optional[str] = None

    def fingerprint(self) -> Fingerprint:
        return Fingerprint.of(self.path, self.payload)


class DedupStatus(str, Enum):
    CREATED = "created"
    REPLAYED = "replayed"
    BYPASSED = "bypassed"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Decision:
    status: DedupStatus
    replay: Optional[Outcome] = None


class CoordinatedOutcome(NamedTuple):
    outcome: Outcome
    status: DedupStatus


class RequestCoordinator:
    """Gives mutating requests at-most-once execution and response replay.

    ``before`` decides whether the operation may run; ``after`` records what it
    returned. A store that cannot take the reservation degrades to running
    without dedup. Once the store reports the key as taken, the operation
    never runs for that request.
    """

    def __init__(
        self,
        cache: IdempotencyCache,
        *,
        min_key_length: int = 10,
        max_key_length: int = 255,
    ) -> None:
        self.cache = cache
        self.min_key_length = min_key_length
        self.max_key_length = max_key_length

    def check_key(self, key: Optional[str]) -> None:
        """Reject a present but malformed key. Never touches the store."""
        if key and not self.min_key_length <= len(key) <= self.max_key_length:
            raise InvalidIdempotencyKeyError(
                "Invalid idempotency key format. Must be between "
                f"{self.min_key_length} and {self.max_key_length} characters."
            )

    def before(self, request: MutationRequest) -> Decision:
        key = request.idempotency_key
        if not key:
            logger.warning(
                "idempotency.key.missing",
                extra={"path": request.path, "owner_id": str(request.owner_id)},
            )
            return Decision(DedupStatus.BYPASSED)

        self.check_key(key)

        fingerprint = request.fingerprint()
        try:
            reservation = self.cache.reserve(key, request.owner_id, fingerprint)
        except StorageError:
            logger.exception(
                "idempotency.store.unavailable",
                extra={"idempotency_key": key, "path": request.path},
            )
            return Decision(DedupStatus.UNAVAILABLE)
        if reservation is ReservationResult.CREATED:
            return Decision(DedupStatus.CREATED)

        # A live record holds the key, so the operation must not run here even
        # if the record cannot be read back.
        try:
            record = self.cache.find(key)
        except StorageError as exc:
            logger.exception("idempotency.find.failed", extra={"idempotency_key": key})
            raise IdempotencyInProgressError() from exc

        if record is None:
            # Expired between reserve and find; the caller can simply retry.
            raise IdempotencyInProgressError()

        if record.user_id != request.owner_id or not self.cache.verify_fingerprint(
            record, fingerprint
        ):
            logger.warning("idempotency.mismatch", extra={"idempotency_key": key})
            raise IdempotencyMismatchError()

        if record.response_code is not None and record.response_body is not None:
            logger.info("idempotency.replayed", extra={"idempotency_key": key})
            return Decision(
                DedupStatus.REPLAYED,
                replay=Outcome(
                    status_code=record.response_code,
                    body=record.response_body,
                    transfer_id=record.transfer_id,
                ),
            )

        raise IdempotencyInProgressError()

    def after(self, request: MutationRequest, decision: Decision, outcome: Outcome) -> Outcome:
        if decision.status is not DedupStatus.CREATED:
            return outcome

        key = request.idempotency_key
        try:
            stored = self.cache.complete(key, outcome.status_code, outcome.body, outcome.transfer_id)
        except StorageError:
            logger.exception("idempotency.complete.failed", extra={"idempotency_key": key})
            return outcome

        if not stored:
            logger.warning("idempotency.complete.ignored", extra={"idempotency_key": key})
        return outcome

    def execute(
        self, request: MutationRequest, operation: Callable[[], Outcome]
    ) -> CoordinatedOutcome:
        decision = self.before(request)
        if decision.replay is not None:
            return CoordinatedOutcome(decision.replay, decision.status)

        try:
            outcome = operation()
        except Exception:
            if decision.status is DedupStatus.CREATED:
                logger.error(
                    "idempotency.operation.failed",
                    extra={"idempotency_key": request.idempotency_key},
                )
            raise

        return CoordinatedOutcome(self.after(request, decision, outcome), decision.status)
