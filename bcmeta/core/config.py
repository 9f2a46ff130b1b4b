"""
Configuration management using Pydantic Settings.
Loads from BC_-prefixed environment variables and .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Client configuration loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="BC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    base_url: str = Field(
        default="http://localhost:8080/BC",
        description="Web client root URL, including the instance path"
    )
    tenant_id: str = Field(default="default", description="Tenant identifier")
    company: str | None = Field(default=None, description="Company name, server default if unset")
    client_version: str = Field(default="", description="Web client build echoed in telemetry")

    # Credentials
    username: str = Field(default="", description="Login user name")
    password: str = Field(default="", description="Login password")

    # Transport
    connect_timeout: float = Field(default=10.0, description="Login and handshake timeout in seconds")
    rpc_timeout: float = Field(default=120.0, description="Per-interaction response timeout in seconds")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User-Agent sent on login and handshake"
    )
    time_zone_offset_minutes: int = Field(
        default=0,
        description="Client time zone base offset reported at session open"
    )

    # Tool layer
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    pool_size: int = Field(default=1, ge=1, description="Independent sessions held by the API")

    # Diagnostics
    verbose: bool = Field(default=True, description="Print component log lines")


# Global settings instance
settings = Settings()
