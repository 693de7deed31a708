from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_PUBSUB_CHANNEL: str = "payments.events"

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000

    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_SIGNATURE_TOLERANCE: int = 300

    FULFILLMENT_BASE_URL: str = "http://localhost:54321/functions/v1"
    FULFILLMENT_API_KEY: str = ""
    FULFILLMENT_TIMEOUT: float = 15.0
    FULFILLMENT_MAX_RETRIES: int = 3
    FULFILLMENT_BACKOFF_SCHEDULE: list[float] = [1.0, 5.0, 30.0]
    FULFILLMENT_BACKOFF_JITTER: bool = True

    RESEND_API_URL: str = "https://api.resend.com/emails"
    RESEND_API_KEY: str = ""
    EMAIL_TIMEOUT: float = 10.0
    EMAIL_FROM_DEFAULT: str = "Liventix <noreply@liventix.tech>"
    EMAIL_REPLY_TO_DEFAULT: str = "support@liventix.tech"
    EMAIL_SEND_MAX_RETRIES: int = 3
    EMAIL_SEND_BACKOFF_SCHEDULE: list[float] = [1.0, 5.0, 30.0]
    EMAIL_SEND_BACKOFF_JITTER: bool = True

    EMAIL_GLOBAL_RATE_LIMIT: int = 100
    EMAIL_RECIPIENT_RATE_LIMIT: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_CAS_ATTEMPTS: int = 5

    EMAIL_BATCH_SIZE: int = 50
    EMAIL_DRAIN_INTERVAL: float = 60.0
    EMAIL_MAX_ATTEMPTS: int = 5
    EMAIL_RETRY_SCHEDULE: list[float] = [1.0, 5.0, 30.0, 300.0, 1800.0]

    WEBHOOK_RETRY_BATCH_SIZE: int = 10
    WEBHOOK_RETRY_DRAIN_INTERVAL: float = 300.0
    WEBHOOK_RETRY_MAX_ATTEMPTS: int = 5
    WEBHOOK_RETRY_INITIAL_DELAY_MS: int = 60_000
    WEBHOOK_RETRY_SCHEDULE: list[float] = [60.0, 300.0, 1800.0, 7200.0, 86400.0]
    WEBHOOK_RETRY_RATE_LIMIT: int = 60

    DRAIN_CONCURRENCY: int = 2
    QUEUE_PROCESSING_TIMEOUT: int = 600

    OUTBOX_POLL_INTERVAL: float = 1.0
    OUTBOX_BATCH_SIZE: int = 50
    OUTBOX_MAX_ATTEMPTS: int = 5

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
