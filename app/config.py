"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: Optional[str] = None
    write_statement_timeout_ms: int = 5000  # Per-transaction limit for appointment writes

    # Redis & Job Queue
    redis_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # Outbox Relay
    outbox_queue_name: str = "outbox-publisher"
    outbox_batch_size: int = 10
    outbox_poll_interval_seconds: float = 0.5
    outbox_error_backoff_seconds: float = 2.0
    outbox_lease_seconds: int = 300  # Stale lease window (worker assumed crashed)
    outbox_max_claim_attempts: Optional[int] = None  # None = reclaim forever

    # Dispatch Queue retry policy
    dispatch_max_retries: int = 4  # 5 attempts in total
    dispatch_min_backoff_ms: int = 2000
    dispatch_max_backoff_ms: int = 300000

    # Email (SMTP)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    email_from: str = "no-reply@example.com"

    # SMS
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from: Optional[str] = None
    sms_api_url: Optional[str] = None
    sms_api_key: Optional[str] = None
    sms_timeout_seconds: float = 8.0

    # AI Enrichment
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    ai_timeout_seconds: float = 5.0
    ai_max_tokens: int = 120

    # Notification idempotency (redelivered jobs skip channels already sent)
    notification_idempotency_ttl_seconds: int = 7 * 86400

    # Operator alerts
    admin_email: Optional[str] = None

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5  # Consecutive failures before opening circuit
    circuit_breaker_reset_timeout: int = 60  # Seconds before auto-recovery attempt

    # Outbox health job
    outbox_health_interval_minutes: int = 5

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None  # Sentry project DSN
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
