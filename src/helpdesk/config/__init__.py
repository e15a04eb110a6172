"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
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
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_rules_path: Path = Field(
        default=Path("sla_rules.yaml"),
        description="Path to the SLA rules catalogue (YAML)"
    )
    sla_evaluation_interval: int = Field(
        default=300,
        description="Seconds between SLA sweeps (0 disables the scheduler)",
        ge=0
    )
    sla_sweep_batch_size: int = Field(
        default=100,
        description="Tickets loaded per sweep batch",
        ge=1,
        le=10000
    )
    organization_timezone: str = Field(
        default="UTC",
        description="IANA or Windows timezone identifier of the organization"
    )
    closed_ticket_statuses: List[str] = Field(
        default=["closed", "resolved"],
        description="Ticket statuses classified as closed-type"
    )

    # ========== SLA Extension Policy ==========
    sla_max_extensions: int = Field(
        default=3,
        description="Maximum SLA extensions per ticket",
        ge=0
    )
    sla_max_extension_hours: int = Field(
        default=72,
        description="Maximum hours granted by a single extension",
        ge=1
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
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("closed_ticket_statuses")
    @classmethod
    def normalize_closed_statuses(cls, v: List[str]) -> List[str]:
        """Status keys are compared case-insensitively."""
        return [status.strip().lower() for status in v if status.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class SlaStatus(str):
    """SLA status states stored on a ticket."""
    ON_TRACK = "on_track"
    APPROACHING_BREACH = "approaching_breach"
    BREACHED = "breached"
    COMPLETED = "completed"


class TicketStatus(str):
    """Built-in ticket statuses (organizations may add their own)."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class SlaEventType(str):
    """Domain events raised by the SLA engine."""
    BREACHED = "sla_breached"
    APPROACHING_BREACH = "sla_approaching_breach"


# Fraction of the resolution target that must elapse before a ticket is
# flagged as approaching breach.
APPROACHING_BREACH_THRESHOLD = 0.75

# Upper bound on days visited by the business-hours stepping loop.
BUSINESS_HOURS_MAX_ITERATIONS = 365

