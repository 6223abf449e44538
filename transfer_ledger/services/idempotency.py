from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from ..models import IdempotencyRecordModel, utcnow
from .repository import translate_storage_errors


logger = logging.getLogger(__name__)

_records = IdempotencyRecordModel.__table__  # type: ignore[attr-defined]


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(payload: Any) -> str:
    """Serialize a payload so equal content always yields identical text."""
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json")
    return json.dumps(payload, default=_json_default, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class Fingerprint:
    path: str
    body: str

    @classmethod
    def of(cls, path: str, payload: Any) -> "Fingerprint":
        return cls(path=path, body=canonical_json(payload))


class ReservationResult(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class IdempotencyCache(ABC):
    """Durable key -> (fingerprint, response) mapping with expiry.

    Implementations raise ``StorageError`` when the backing store fails.
    """

    @abstractmethod
    def find(self, key: str) -> Optional[IdempotencyRecordModel]:
        """Return the live record for ``key``; expired records count as absent."""

    @abstractmethod
    def reserve(self, key: str, owner_id: UUID, fingerprint: Fingerprint) -> ReservationResult:
        """Insert a placeholder for ``key`` unless a live record already holds it."""

    @abstractmethod
    def complete(
        self,
        key: str,
        status_code: int,
        body: str,
        transfer_id: Optional[UUID] = None,
    ) -> bool:
        """Store the response once. Returns False if one was already stored."""

    @abstractmethod
    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired records and return how many were removed."""

    @staticmethod
    def verify_fingerprint(record: IdempotencyRecordModel, fingerprint: Fingerprint) -> bool:
        return (
            record.request_path == fingerprint.path
            and record.request_body == fingerprint.body
        )


class SqlIdempotencyCache(IdempotencyCache):
    def __init__(
        self,
        engine: Engine,
        *,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.ttl = ttl
        self.clock = clock

    def find(self, key: str) -> Optional[IdempotencyRecordModel]:
        stmt = (
            select(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.key == key)
            .where(col(IdempotencyRecordModel.expires_at) > self.clock())
        )
        with translate_storage_errors("idempotency.find"), Session(self.engine) as session:
            return session.exec(stmt).first()

    def reserve(self, key: str, owner_id: UUID, fingerprint: Fingerprint) -> ReservationResult:
        now = self.clock()
        record = IdempotencyRecordModel(
            key=key,
            user_id=owner_id,
            request_path=fingerprint.path,
            request_body=fingerprint.body,
            created_at=now,
            expires_at=now + self.ttl,
        )
        # An expired holder of the key is dropped in the same transaction, so
        # the primary key alone decides which concurrent caller wins.
        purge = (
            delete(_records)
            .where(_records.c.key == key)
            .where(_records.c.expires_at <= now)
        )
        with translate_storage_errors("idempotency.reserve"), Session(self.engine) as session:
            session.connection().execute(purge)
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return ReservationResult.ALREADY_EXISTS

        logger.debug("idempotency.reserved", extra={"idempotency_key": key})
        return ReservationResult.CREATED

    def complete(
        self,
        key: str,
        status_code: int,
        body: str,
        transfer_id: Optional[UUID] = None,
    ) -> bool:
        stmt = (
            update(_records)
            .where(_records.c.key == key)
            .where(_records.c.response_code.is_(None))
            .values(response_code=status_code, response_body=body, transfer_id=transfer_id)
        )
        with translate_storage_errors("idempotency.complete"), Session(self.engine) as session:
            result = session.connection().execute(stmt)
            session.commit()
        return result.rowcount == 1

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = now or self.clock()
        stmt = delete(_records).where(_records.c.expires_at <= cutoff)
        with translate_storage_errors("idempotency.sweep"), Session(self.engine) as session:
            result = session.connection().execute(stmt)
            session.commit()
        return result.rowcount
