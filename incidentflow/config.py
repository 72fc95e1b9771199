"""IncidentFlow configuration system using Pydantic Settings."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.incident import SeverityLevel

DEFAULT_SECRET_KEY = "CHANGE_ME_IN_PRODUCTION"


class SeedIncident(BaseModel):
    """One incident created by the startup seed."""

    title: str
    description: str = ""
    severity: SeverityLevel = SeverityLevel.LOW


class IncidentFlowConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "IncidentFlow"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173"]

    # Database
    database_url: str = "sqlite+aiosqlite:///./incidentflow.db"

    # Auth
    secret_key: str = DEFAULT_SECRET_KEY
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 60
    session_cookie_name: str = "incidentflow_access"

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # Startup seed
    seed_enabled: bool = True
    seed_user_id: uuid.UUID = uuid.UUID("11111111-1111-1111-1111-111111111111")
    seed_admin_username: str = "admin"
    seed_admin_email: str = "admin@test.com"
    seed_admin_password: str = "adminpass"
    seed_incidents: list[SeedIncident] = []

    @field_validator("jwt_expiry_minutes")
    @classmethod
    def validate_expiry(cls, v: int) -> int:
        if v < 1:
            raise ValueError("jwt_expiry_minutes must be positive")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def get_config() -> IncidentFlowConfig:
    """Factory function to create config instance."""
    return IncidentFlowConfig()
