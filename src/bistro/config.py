"""Runtime settings for the bistro core.

Framework wiring (databases, brokers, event store) lives in domain.toml.
These are the tunables of the core itself: payment expiry, polling, lock
timeouts and conflict retry. Values come from BISTRO_* environment variables
or a .env file.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BISTRO_", env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "bistro-core"
    DEFAULT_CURRENCY: str = "USD"
    DEFAULT_TAX_RATE: float = 0.0

    # ── Payments ─────────────────────────────────────────────
    PAYMENT_TTL_MINUTES: int = 15
    PAYMENT_POLL_INTERVAL_SECONDS: float = 3.0
    PAYMENT_SWEEP_INTERVAL_SECONDS: float = 60.0
    AUTO_COMPLETE_ON_PAYMENT: bool = True

    # ── Locking & conflict retry ─────────────────────────────
    LOCK_TIMEOUT_SECONDS: float = 5.0
    CONFLICT_MAX_RETRIES: int = 3
    CONFLICT_BASE_DELAY_MS: int = 20  # base exponential backoff delay in ms
    CONFLICT_MAX_DELAY_MS: int = 500  # max backoff cap in ms
    CONFLICT_JITTER_MS: int = 20  # random jitter range in ms


@lru_cache()
def get_settings() -> Settings:
    return Settings()
