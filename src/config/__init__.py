"""
Configuration Module
====================

Application settings and the closed enumerations shared by every layer.
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
    app_name: str = Field(default="followup-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/followups",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )

    # ========== Sweeps ==========
    snooze_sweep_interval: int = Field(
        default=300,
        description="Seconds between snoozed-item resurface sweeps (0 disables)",
        ge=0
    )
    sla_sweep_interval: int = Field(
        default=900,
        description="Seconds between SLA status/escalation/overdue sweeps (0 disables)",
        ge=0
    )

    # ========== Persistence retry policy ==========
    retry_max_attempts: int = Field(default=3, description="Attempts for primary writes", ge=1)
    retry_base_delay_seconds: float = Field(
        default=1.0,
        description="Base backoff between write attempts",
        ge=0.0
    )

    # ========== Cache TTLs (seconds) ==========
    cache_item_ttl: int = Field(default=60, ge=0)
    cache_list_ttl: int = Field(default=300, ge=0)
    cache_stats_ttl: int = Field(default=900, ge=0)
    cache_snooze_suggestion_ttl: int = Field(default=1800, ge=0)

    # ========== OpenAI ==========
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for snooze suggestions"
    )
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints"
    )
    llm_model: str = Field(default="gpt-4o-mini", description="Chat model for suggestions")
    llm_temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    llm_max_tokens: int = Field(default=300, ge=1, le=8000)
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses (no API calls)"
    )
    default_user_timezone: str = Field(default="America/New_York")

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(default=None, description="Grafana OTLP gateway URL")
    grafana_api_key: Optional[str] = Field(default=None, description="Grafana API key")
    grafana_instance_id: Optional[str] = Field(default=None, description="Grafana instance ID")

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


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Enumerations ==========

class Priority(str, Enum):
    """Follow-up priority levels, highest first."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class QueueItemStatus(str, Enum):
    """Lifecycle states of a queue item."""
    ACTIVE = "ACTIVE"           # In queue, ready for action
    SNOOZED = "SNOOZED"         # Hidden until snoozed_until
    WAITING = "WAITING"         # Waiting on someone else
    COMPLETED = "COMPLETED"     # User marked as done
    ARCHIVED = "ARCHIVED"       # Removed from the queue
    ESCALATED = "ESCALATED"     # Priority raised, still needs attention


class SLAStatus(str, Enum):
    """SLA compliance states."""
    ON_TIME = "ON_TIME"
    AT_RISK = "AT_RISK"
    OVERDUE = "OVERDUE"


class FollowUpReason(str, Enum):
    """Why an item is in the follow-up queue."""
    NEEDS_REPLY = "NEEDS_REPLY"
    WAITING_ON_OTHERS = "WAITING_ON_OTHERS"
    DEADLINE_APPROACHING = "DEADLINE_APPROACHING"
    VIP_REQUIRES_ATTENTION = "VIP_REQUIRES_ATTENTION"
    MANUAL_FOLLOW_UP = "MANUAL_FOLLOW_UP"
    SLA_AT_RISK = "SLA_AT_RISK"
    PERIODIC_CHECK = "PERIODIC_CHECK"


class QueueAction(str, Enum):
    """Actions recorded in the queue history."""
    ADDED = "ADDED"
    UPDATED = "UPDATED"
    SNOOZED = "SNOOZED"
    RESURFACED = "RESURFACED"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"
    ESCALATED = "ESCALATED"
    MARKED_WAITING = "MARKED_WAITING"
    REPLY_RECEIVED = "REPLY_RECEIVED"
    PRIORITY_CHANGED = "PRIORITY_CHANGED"
    MANUALLY_EDITED = "MANUALLY_EDITED"


# Statuses that still need the user's attention
OPEN_STATUSES = [QueueItemStatus.ACTIVE, QueueItemStatus.ESCALATED]
