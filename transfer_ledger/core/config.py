from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Transfer Ledger API"
    database_url: str = "sqlite:///transfer_ledger.db"
    log_level: str = "INFO"
    sqlite_busy_timeout_seconds: float = 30.0

    idempotency_ttl_hours: int = 24
    idempotency_key_min_length: int = 10
    idempotency_key_max_length: int = 255
    # 0 disables the background sweep
    idempotency_sweep_interval_seconds: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LEDGER_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
