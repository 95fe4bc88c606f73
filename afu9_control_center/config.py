"""
Configuration management for AFU-9 Control Center.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="AFU-9 Control Center")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./afu9_control_center.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Identity headers set by the upstream auth gate
    actor_header: str = Field(default="x-afu9-sub")
    groups_header: str = Field(default="x-afu9-groups")

    # GitHub
    github_api_url: str = Field(default="https://api.github.com")
    github_token: Optional[str] = Field(default=None)
    github_timeout_seconds: float = Field(default=30.0)
    default_merge_method: str = Field(
        default="squash",
        description="Merge method used by S5 (merge, squash or rebase).",
    )

    # Publish
    default_control_pack_id: str = Field(default="cp:intent")
    default_control_pack_name: str = Field(default="Intent Control Pack")
    publish_labels: str = Field(
        default="afu9",
        description="Comma-separated labels added to every published GitHub issue.",
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
