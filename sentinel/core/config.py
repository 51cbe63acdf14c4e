from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

from sentinel.core.rbac.roles import TeamRole


class Settings(BaseSettings):
    # App
    app_name: str = "Scope Sentinel"
    debug: bool = False
    public_url: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite:///./scope_sentinel.db"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "./logs"
    file_logging: bool = False

    # Workflow
    approver_roles: str = "owner"  # comma separated team roles allowed to approve/reject
    max_write_retries: int = 3
    milestone_cache_ttl_seconds: int = 300

    @field_validator("approver_roles")
    @classmethod
    def validate_approver_roles(cls, value: str) -> str:
        roles = [role.strip().lower() for role in value.split(",") if role.strip()]
        if not roles:
            raise ValueError("approver_roles must name at least one team role")
        unknown = sorted(set(roles) - {role.value for role in TeamRole})
        if unknown:
            raise ValueError(f"Unknown approver roles: {', '.join(unknown)}")
        return value

    @property
    def approver_roles_list(self) -> list[str]:
        return [role.strip().lower() for role in self.approver_roles.split(",") if role.strip()]

    # Notifications
    notification_channels: str = "store"  # any of: store, slack, email
    slack_webhook_url: Optional[str] = None
    notification_emails: str = ""

    @property
    def notification_channels_list(self) -> list[str]:
        return [c.strip().lower() for c in self.notification_channels.split(",") if c.strip()]

    @property
    def notification_emails_list(self) -> list[str]:
        return [e.strip() for e in self.notification_emails.split(",") if e.strip()]

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from_email: str = "noreply@scopesentinel.local"
    smtp_from_name: str = "Scope Sentinel"
    smtp_use_tls: bool = True

    # Webhooks
    webhook_timeout: int = 30

    # Celery
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None

    @property
    def celery_backend(self) -> str:
        return self.celery_result_backend or self.celery_broker_url

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SENTINEL_",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
