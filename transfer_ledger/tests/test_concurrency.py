import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from ..core.errors import IdempotencyInProgressError, InsufficientFundsError
from ..models import TransferModel
from ..services import (
    DedupStatus,
    Fingerprint,
    MutationRequest,
    Outcome,
    RequestCoordinator,
    ReservationResult,
    SqlIdempotencyCache,
    SqlUnitOfWork,
    TransferEngine,
)


def _run_concurrently(count: int, target):
    barrier = threading.Barrier(count)

    def _call(index):
        barrier.wait()
        try:
            return target(index)
        except Exception as exc:  # collected for assertions
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(_call, range(count)))


@pytest.fixture
def transfer_engine(engine) -> TransferEngine:
    return TransferEngine(partial(SqlUnitOfWork, engine))


def test_racing_transfers_cannot_overdraw(engine, transfer_engine, seed_account, balance_of) -> None:
    sender = seed_account(1000)
    recipient = seed_account(0)

    results = _run_concurrently(
        2, lambda _: transfer_engine.transfer(sender.id, recipient.id, 600)
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientFundsError)
    assert balance_of(sender.id) == 400
    assert balance_of(recipient.id) == 600
    with Session(engine) as session:
        assert len(session.exec(select(TransferModel)).all()) == 1


def test_many_small_debits_stop_at_zero(transfer_engine, seed_account, balance_of) -> None:
    sender = seed_account(500)
    recipient = seed_account(0)

    results = _run_concurrently(
        8, lambda _: transfer_engine.transfer(sender.id, recipient.id, 100)
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    assert len(succeeded) == 5
    assert all(isinstance(r, InsufficientFundsError) for r in results if isinstance(r, Exception))
    assert balance_of(sender.id) == 0
    assert balance_of(recipient.id) == 500


def test_opposite_direction_transfers_complete(transfer_engine, seed_account, balance_of) -> None:
    alice = seed_account(1000)
    bob = seed_account(1000)

    def _move(index):
        if index % 2:
            return transfer_engine.transfer(alice.id, bob.id, 10)
        return transfer_engine.transfer(bob.id, alice.id, 10)

    results = _run_concurrently(8, _move)

    assert not [r for r in results if isinstance(r, Exception)]
    assert balance_of(alice.id) == 1000
    assert balance_of(bob.id) == 1000


def test_concurrent_reservations_have_one_winner(engine) -> None:
    cache = SqlIdempotencyCache(engine)
    fingerprint = Fingerprint.of("/transfers", {"amount": 1})
    owner = uuid4()

    results = _run_concurrently(
        6, lambda _: cache.reserve("race-key-0001", owner, fingerprint)
    )

    assert results.count(ReservationResult.CREATED) == 1
    assert results.count(ReservationResult.ALREADY_EXISTS) == 5


def test_concurrent_retries_execute_once(engine) -> None:
    coordinator = RequestCoordinator(SqlIdempotencyCache(engine))
    calls = []
    owner = uuid4()

    def _operation() -> Outcome:
        calls.append(1)
        time.sleep(0.05)
        return Outcome.from_payload(201, {"ok": True})

    def _submit(_):
        request = MutationRequest(
            path="/transfers",
            payload={"amount": 1},
            owner_id=owner,
            idempotency_key="race-key-0002",
        )
        return coordinator.execute(request, _operation)

    results = _run_concurrently(5, _submit)

    assert len(calls) == 1
    created = [r for r in results if not isinstance(r, Exception) and r.status is DedupStatus.CREATED]
    assert len(created) == 1
    for result in results:
        if isinstance(result, Exception):
            assert isinstance(result, IdempotencyInProgressError)
        elif result.status is DedupStatus.REPLAYED:
            assert result.outcome == created[0].outcome
