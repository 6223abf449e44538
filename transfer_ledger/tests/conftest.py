from collections.abc import Callable, Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlmodel import Session

from ..core.config import Settings
from ..core.db import create_engine_for_url, init_db
from ..main import create_app
from ..models import AccountModel
from .fakes import TickingClock


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        log_level="WARNING",
        idempotency_sweep_interval_seconds=0,
    )


@pytest.fixture
def engine(settings: Settings) -> Iterator[Engine]:
    engine = create_engine_for_url(settings.database_url, busy_timeout=30.0)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seed_account(engine: Engine) -> Callable[..., AccountModel]:
    counter = iter(range(1_000_000))

    def _seed(balance: int = 0, email: str | None = None) -> AccountModel:
        with Session(engine, expire_on_commit=False) as session:
            account = AccountModel(
                email=email or f"user{next(counter)}@example.com",
                owner_name="Seeded",
                balance=balance,
            )
            session.add(account)
            session.commit()
            return account

    return _seed


@pytest.fixture
def balance_of(engine: Engine) -> Callable[[Any], int]:
    def _balance(account_id) -> int:
        with Session(engine) as session:
            return session.get(AccountModel, account_id).balance

    return _balance


@pytest.fixture
def client(settings: Settings, engine: Engine, clock: TickingClock) -> Iterator[TestClient]:
    app = create_app(settings, engine=engine, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
