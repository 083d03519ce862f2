"""Fixture settings with Pydantic validation and environment loading."""

from __future__ import annotations

import shlex
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from ``COMPOSE_FIXTURE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COMPOSE_FIXTURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Control-plane tools
    compose_command: str = Field(
        default="docker compose",
        description="Command used to drive compose files (e.g. 'docker-compose')",
    )
    docker_command: str = Field(
        default="docker", description="Docker CLI used for container queries"
    )
    command_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds before an external command is abandoned (None = wait forever)",
    )

    # Variables passed to every compose invocation
    directory_env_var: str = Field(
        default="DIRECTORY",
        description="Variable holding the compose file's parent directory",
    )
    user_id_env_var: str = Field(
        default="CURRENT_USER_ID",
        description="Variable holding the numeric id of the invoking user",
    )

    # Name resolution
    override_resolution: bool = Field(
        default=True,
        description="Make service names resolvable through the socket module",
    )

    # Readiness polling
    wait_timeout: float = Field(default=60.0, gt=0, description="Default readiness deadline (s)")
    wait_interval: float = Field(default=0.1, gt=0, description="Pause between readiness probes (s)")
    connect_timeout: float = Field(default=0.5, gt=0, description="Single probe connect timeout (s)")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="text", description="Log format: json or text")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"json", "text"}:
            raise ValueError("log_format must be 'json' or 'text'")
        return lower

    @field_validator("compose_command", "docker_command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("command must not be empty")
        return v.strip()

    @property
    def compose_argv(self) -> List[str]:
        """Compose command split into argv form."""
        return shlex.split(self.compose_command)

    @property
    def docker_argv(self) -> List[str]:
        """Docker command split into argv form."""
        return shlex.split(self.docker_command)


@lru_cache
def get_settings() -> Settings:
    """Cached settings factory."""
    return Settings()
