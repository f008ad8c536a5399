"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Connection strings have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated roles allowed to review payments and receive admin alerts.
    admin_roles: str = "admin,super_admin"
    currency_code: str = "RM"
    # Bearer token external cron services use to trigger order automation
    cron_secret: str | None = None

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # ORDER AUTOMATION
    # ===========================================
    order_pending_timeout_hours: int = 48
    order_in_progress_warning_hours: int = 72
    order_completion_reminder_hours: int = 24
    order_reminder_window_minutes: int = 60
    order_automation_interval_minutes: int = 5
    order_automation_lock_ttl_seconds: int = 300

    # ===========================================
    # POINTS & VOUCHERS
    # ===========================================
    points_reward_rate: float = 0.05  # points per currency unit on order completion
    voucher_default_max_per_user: int = 1

    # ===========================================
    # LOGGING
    # ===========================================
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator(
        "order_pending_timeout_hours",
        "order_in_progress_warning_hours",
        "order_completion_reminder_hours",
        "order_reminder_window_minutes",
        "order_automation_interval_minutes",
        "order_automation_lock_ttl_seconds",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Automation thresholds must be positive."""
        if v <= 0:
            raise ValueError("order automation thresholds must be positive")
        return v

    @field_validator("points_reward_rate")
    @classmethod
    def validate_reward_rate(cls, v: float) -> float:
        if v < 0:
            raise ValueError("points_reward_rate must not be negative")
        return v

    @field_validator("admin_roles")
    @classmethod
    def validate_admin_roles(cls, v: str) -> str:
        if not any(role.strip() for role in v.split(",")):
            raise ValueError("admin_roles must name at least one role")
        return v.lower().strip()

    @property
    def admin_roles_set(self) -> set[str]:
        """Get admin roles as a set."""
        return {role.strip() for role in self.admin_roles.split(",") if role.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
