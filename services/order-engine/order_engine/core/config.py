"""
Order Engine — Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "order-engine"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8010
    LOG_LEVEL: str = "INFO"

    # ── JWT (tokens are issued elsewhere; decode only) ────────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"

    # ── PostgreSQL ────────────────────────────────────────────
    POSTGRES_HOST: str = "pos-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "pos_db"
    POSTGRES_USER: str = "pos_user"
    POSTGRES_PASSWORD: str = "pos_pass"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis (idempotency cache) ─────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400
    # held while the first request runs; expires on its own if the worker dies
    IDEMPOTENCY_IN_FLIGHT_TTL_SECONDS: int = 60

    # ── Order numbering ───────────────────────────────────────
    ORDER_NUMBER_PREFIX: str = "KWR"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 3
    ORDER_NUMBER_RETRY_BASE_DELAY_MS: int = 10   # base backoff between attempts
    ORDER_NUMBER_RETRY_JITTER_MS: int = 20       # random jitter range in ms
    BUSINESS_TIMEZONE: str = "Asia/Jakarta"      # calendar day for order numbers

    # ── Payment ledger ────────────────────────────────────────
    LOCK_TIMEOUT_MS: int = 5000                  # row lock wait before giving up

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
