"""Application configuration. All deployment config from .env."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """App settings from environment."""

    # Database - default SQLite for easy local dev; use DATABASE_URL for PostgreSQL
    database_url: str = "sqlite:///./jobtrack.db"

    # SQLAlchemy pooling (Postgres only).
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_s: int = 30
    db_pool_recycle_s: int = 1800

    # SQLite concurrency tuning (used when DATABASE_URL starts with sqlite://)
    sqlite_busy_timeout_ms: int = 5000

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Redis (for Celery and optional distributed locks)
    redis_url: str = "redis://localhost:6379/0"

    # Celery
    celery_broker_url: Optional[str] = None  # defaults to redis_url if not set

    log_level: str = "INFO"

    # Classifier: rules with a fixed confidence below this never fire.
    classifier_min_confidence: float = 0.6

    # Matcher thresholds
    min_company_confidence: float = 0.85
    min_classification_confidence: float = 0.85
    min_match_confidence: float = 0.85
    min_domain_confidence: float = 0.4
    min_role_confidence: float = 0.8

    # Status inference
    inference_min_confidence: float = 0.7
    inference_auto_apply_confidence: float = 0.9
    ghosted_threshold_days: int = 21
    ghosted_confidence: float = 0.75

    # Pipeline store access
    # Upper bound (seconds) for one pipeline operation against the store; 0 disables.
    store_timeout_s: float = 30.0
    # Use Redis locks instead of in-process locks (multiple worker hosts).
    distributed_locks: bool = False
    lock_timeout_s: int = 60
    lock_blocking_timeout_s: float = 30.0

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url


settings = Settings()
