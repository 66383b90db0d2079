"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-core", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Relational store connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    create_tables_on_startup: bool = Field(
        default=True,
        description="Create tables at startup (development only, use migrations elsewhere)"
    )

    # ========== Catalog (plans + SLA defaults) ==========
    catalog_config_path: Path = Field(
        default=Path("helpdesk_config.yaml"),
        description="Path to the YAML file holding plan tiers and SLA defaults"
    )

    # ========== Deferred Tasks ==========
    task_store_url: str = Field(
        default="sqlite:///deferred_tasks.sqlite",
        description="Synchronous SQLAlchemy URL of the persistent deferred-task store"
    )
    task_max_attempts: int = Field(
        default=3,
        description="Attempts per deferred task before it is marked failed",
        ge=1,
        le=20
    )
    task_retry_delay_seconds: int = Field(
        default=5,
        description="Fixed backoff between deferred task attempts",
        ge=1
    )
    task_misfire_grace_seconds: int = Field(
        default=86400,
        description="How late a persisted task may still run after a restart",
        ge=1
    )

    # ========== Sweeps ==========
    rollover_sweep_interval: int = Field(
        default=3600,
        description="Seconds between billing period rollover sweeps",
        ge=10
    )
    auto_close_interval: int = Field(
        default=3600,
        description="Seconds between auto-close sweeps",
        ge=10
    )
    auto_close_resolved_days: int = Field(
        default=7,
        description="Idle days after which resolved tickets are closed",
        ge=1
    )
    auto_close_pending_days: int = Field(
        default=14,
        description="Idle days after which pending tickets are closed",
        ge=1
    )
    sla_sweep_interval: int = Field(
        default=300,
        description="Seconds between SLA safety-net sweeps (0 disables)",
        ge=0
    )

    # ========== Quota ==========
    strict_quota_enforcement: bool = Field(
        default=False,
        description="Reserve quota with one conditional update instead of check-then-increment"
    )
    billing_upgrade_url: str = Field(
        default="/settings/billing",
        description="Where clients are sent when a quota is exhausted"
    )

    # ========== Bulk Operations ==========
    bulk_max_items: int = Field(default=100, description="Max ids per bulk call", ge=1, le=100)
    merge_max_items: int = Field(default=10, description="Max secondary tickets per merge", ge=1)

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving notification payloads (logging sink when unset)"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_breaker_threshold: int = Field(
        default=5,
        description="Consecutive failed deliveries before the webhook circuit opens",
        ge=1
    )
    notification_breaker_recovery_seconds: float = Field(
        default=60.0,
        description="How long the webhook circuit stays open before a trial delivery",
        ge=0
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketChannel(str, Enum):
    """Where a ticket came in."""
    WEB = "web"
    EMAIL = "email"
    CHAT = "chat"
    API = "api"


class MessageType(str, Enum):
    """Ticket message kinds."""
    REPLY = "reply"
    INTERNAL_NOTE = "internal_note"
    SYSTEM = "system"


class ActivityAction(str, Enum):
    """Audit trail action tags."""
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    TAGGED = "tagged"
    MESSAGE_ADDED = "message_added"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"
    SLA_BREACHED = "sla_breached"


class Role(str, Enum):
    """Organization roles, ordered from least to most privileged."""
    CUSTOMER = "customer"
    AGENT = "agent"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return ROLE_ORDER.index(self)

    def at_least(self, other: "Role") -> bool:
        return self.rank >= Role(other).rank


ROLE_ORDER = [Role.CUSTOMER, Role.AGENT, Role.ADMIN, Role.OWNER]


class UsageDimension(str, Enum):
    """Metered quota dimensions."""
    TICKETS = "tickets"
    MESSAGES = "messages"
    STORAGE = "storage"
    API = "api"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle statuses."""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    PAUSED = "paused"


class NotificationEvent(str, Enum):
    """Domain events that fan out to users."""
    SLA_BREACHED = "sla_breached"
    TICKET_ASSIGNED = "ticket_assigned"
    STATUS_CHANGED = "status_changed"
    USAGE_ALERT = "usage_alert"


# ========== Lists for validation ==========

OPEN_STATUSES = [TicketStatus.OPEN, TicketStatus.PENDING]
TERMINAL_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
VALID_PRIORITIES = [
    TicketPriority.LOW, TicketPriority.MEDIUM,
    TicketPriority.HIGH, TicketPriority.URGENT
]
