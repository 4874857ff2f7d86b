from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "newsletter-delivery"
    version: str = "0.1.0"
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/database.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Wake signal: "local" (in-process only) or "arq" (also enqueue a wake job)
    WAKE_SIGNAL_BACKEND: str = "local"

    # Delivery worker
    RUN_DELIVERY_WORKER_IN_PROCESS: bool = False
    DELIVERY_WORKER_CONCURRENCY: int = 1
    DELIVERY_BATCH_SIZE: int = 50
    DELIVERY_POLL_INTERVAL_SECONDS: float = 10.0
    DELIVERY_ERROR_BACKOFF_SECONDS: float = 1.0

    # Idempotency records are swept once older than this; also the sweep interval
    IDEMPOTENCY_TTL_SECONDS: int = 86400
    IDEMPOTENCY_RETRY_AFTER_SECONDS: int = 1

    # SMTP transport; an empty host turns sending into a logged no-op
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 10.0
    SMTP_FROM_EMAIL: str = "newsletter@example.com"
    SMTP_FROM_NAME: str = "Newsletter"

    # Prefix of the confirmation link emailed to new subscribers
    APP_BASE_URL: str = "http://localhost:8000"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"


settings = Settings()
