from datetime import timedelta
from uuid import uuid4

import pytest

from ..services import Fingerprint, ReservationResult, SqlIdempotencyCache
from .fakes import TickingClock


@pytest.fixture
def cache(engine, clock: TickingClock) -> SqlIdempotencyCache:
    return SqlIdempotencyCache(engine, ttl=timedelta(hours=24), clock=clock)


def _fingerprint(amount: int = 100) -> Fingerprint:
    return Fingerprint.of("/transfers", {"amount": amount, "recipient_email": "bob@example.com"})


def test_fingerprint_ignores_key_order() -> None:
    first = Fingerprint.of("/transfers", {"amount": 5, "description": "x"})
    second = Fingerprint.of("/transfers", {"description": "x", "amount": 5})
    assert first == second
    assert first != Fingerprint.of("/other", {"amount": 5, "description": "x"})


def test_reserve_is_single_use(cache: SqlIdempotencyCache) -> None:
    owner = uuid4()
    assert cache.reserve("key-aaaaaaaaaa", owner, _fingerprint()) is ReservationResult.CREATED
    assert cache.reserve("key-aaaaaaaaaa", owner, _fingerprint()) is ReservationResult.ALREADY_EXISTS
    assert cache.reserve("key-aaaaaaaaaa", uuid4(), _fingerprint(7)) is ReservationResult.ALREADY_EXISTS


def test_find_returns_placeholder_until_completed(cache: SqlIdempotencyCache) -> None:
    owner = uuid4()
    fingerprint = _fingerprint()
    cache.reserve("key-bbbbbbbbbb", owner, fingerprint)

    record = cache.find("key-bbbbbbbbbb")
    assert record is not None
    assert record.user_id == owner
    assert record.response_code is None
    assert record.response_body is None
    assert cache.verify_fingerprint(record, fingerprint)
    assert not cache.verify_fingerprint(record, _fingerprint(101))

    assert cache.find("key-unknown-000") is None


def test_complete_is_first_writer_wins(cache: SqlIdempotencyCache) -> None:
    transfer_id = uuid4()
    cache.reserve("key-cccccccccc", uuid4(), _fingerprint())

    assert cache.complete("key-cccccccccc", 201, '{"ok":true}', transfer_id) is True
    assert cache.complete("key-cccccccccc", 400, '{"ok":false}', None) is False

    record = cache.find("key-cccccccccc")
    assert record.response_code == 201
    assert record.response_body == '{"ok":true}'
    assert record.transfer_id == transfer_id


def test_complete_unknown_key_is_noop(cache: SqlIdempotencyCache) -> None:
    assert cache.complete("key-missing-00", 201, "{}") is False


def test_expired_record_is_treated_as_absent(cache: SqlIdempotencyCache, clock) -> None:
    owner = uuid4()
    cache.reserve("key-dddddddddd", owner, _fingerprint())
    cache.complete("key-dddddddddd", 201, "{}")

    clock.advance(timedelta(hours=24, seconds=1))

    assert cache.find("key-dddddddddd") is None
    assert cache.reserve("key-dddddddddd", owner, _fingerprint(5)) is ReservationResult.CREATED
    fresh = cache.find("key-dddddddddd")
    assert fresh.response_code is None
    assert cache.verify_fingerprint(fresh, _fingerprint(5))


def test_sweep_removes_only_expired(cache: SqlIdempotencyCache, clock) -> None:
    cache.reserve("key-old-000001", uuid4(), _fingerprint())
    cache.reserve("key-old-000002", uuid4(), _fingerprint())
    clock.advance(timedelta(hours=12))
    cache.reserve("key-new-000001", uuid4(), _fingerprint())
    clock.advance(timedelta(hours=13))

    assert cache.sweep_expired() == 2
    assert cache.sweep_expired() == 0
    assert cache.find("key-new-000001") is not None


def test_sweep_accepts_explicit_cutoff(cache: SqlIdempotencyCache, clock) -> None:
    cache.reserve("key-eeeeeeeeee", uuid4(), _fingerprint())
    assert cache.sweep_expired(clock.now) == 0
    assert cache.sweep_expired(clock.now + timedelta(days=2)) == 1
