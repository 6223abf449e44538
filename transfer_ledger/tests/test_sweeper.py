import asyncio
from contextlib import suppress
from datetime import timedelta
from uuid import uuid4

from ..main import sweep_idempotency_keys
from ..services import Fingerprint
from .fakes import InMemoryIdempotencyCache, TickingClock, UnavailableIdempotencyCache


def _run_sweeper_briefly(cache) -> bool:
    async def _scenario() -> bool:
        task = asyncio.create_task(sweep_idempotency_keys(cache, 0.01))
        await asyncio.sleep(0.1)
        still_running = not task.done()
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        return still_running

    return asyncio.run(_scenario())


def test_sweeper_reclaims_expired_keys() -> None:
    clock = TickingClock()
    cache = InMemoryIdempotencyCache(clock)
    cache.reserve("key-expired-01", uuid4(), Fingerprint.of("/transfers", {}))
    clock.advance(timedelta(hours=25))
    cache.reserve("key-live-00001", uuid4(), Fingerprint.of("/transfers", {}))

    assert _run_sweeper_briefly(cache)
    assert list(cache.records) == ["key-live-00001"]


def test_sweeper_keeps_running_when_store_fails() -> None:
    assert _run_sweeper_briefly(UnavailableIdempotencyCache())
