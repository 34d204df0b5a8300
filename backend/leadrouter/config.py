"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://leadrouter:leadrouter123@db:5432/leadrouter"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    INSTALL_ROUTING_FUNCTIONS: bool = True

    # Redis (duplicate lookup cache)
    REDIS_URL: str = "redis://redis:6379/0"
    ENABLE_DUPLICATE_CACHE: bool = False
    DUPLICATE_CACHE_TTL_SECONDS: int = 3600

    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    CORS_ORIGINS: str = "*"

    # Routing
    ROUTING_MAX_RETRIES: int = 3
    ROUTING_LOCK_TIMEOUT_MINUTES: int = 5
    ROUTING_RETRY_BASE_SECONDS: int = 60
    ROUTING_RETRY_MAX_SECONDS: int = 3600
    RETRY_QUEUE_BATCH_SIZE: int = 100
    BULK_ROUTE_MAX_LEADS: int = 1000

    # Scheduled jobs
    ENABLE_SCHEDULER: bool = True
    RETRY_QUEUE_INTERVAL_SECONDS: int = 60
    STALE_LOCK_SWEEP_INTERVAL_SECONDS: int = 300
    EXPIRY_SWEEP_CRON_MINUTE: str = "15"  # hourly, at :15

    # Optional system user recorded on scheduler-driven retries
    SYSTEM_USER_ID: Optional[str] = "system"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
