"""Configuration management for the autodidact core."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AutodidactSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    functions_url: str | None = Field(default=None, validation_alias="AUTODIDACT_FUNCTIONS_URL")
    functions_api_key: str | None = Field(default=None, validation_alias="AUTODIDACT_FUNCTIONS_KEY")
    vault_path: Path = Field(default=Path("./storage/vault"), validation_alias="AUTODIDACT_VAULT_PATH")
    vault_poll_seconds: float = Field(default=1.0, validation_alias="AUTODIDACT_VAULT_POLL")
    row_store: str = Field(default="memory", validation_alias="AUTODIDACT_ROW_STORE")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    # raw os.pathsep-separated string, not JSON
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="AUTODIDACT_PROFILE_PATHS"
    )
    default_profile: str = Field(default="sonnet", validation_alias="AUTODIDACT_DEFAULT_PROFILE")
    identity_provider: str = Field(default="github", validation_alias="AUTODIDACT_IDENTITY_PROVIDER")
    plan_delay_seconds: float = Field(default=1.0, validation_alias="AUTODIDACT_PLAN_DELAY")
    invoke_timeout_seconds: float = Field(default=60.0, validation_alias="AUTODIDACT_INVOKE_TIMEOUT")
    log_level: str = Field(default="INFO", validation_alias="AUTODIDACT_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "AUTODIDACT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("row_store")
    @classmethod
    def _normalize_row_store(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"memory", "chroma"}:
            raise ValueError("AUTODIDACT_ROW_STORE must be 'memory' or 'chroma'")
        return normalized

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("AUTODIDACT_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("plan_delay_seconds")
    @classmethod
    def _validate_plan_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("AUTODIDACT_PLAN_DELAY must be >= 0")
        return value

    @field_validator("vault_poll_seconds")
    @classmethod
    def _validate_vault_poll(cls, value: float) -> float:
        if value < 0:
            raise ValueError("AUTODIDACT_VAULT_POLL must be >= 0")
        return value

    @field_validator("invoke_timeout_seconds")
    @classmethod
    def _validate_invoke_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("AUTODIDACT_INVOKE_TIMEOUT must be > 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> AutodidactSettings:
    """Return cached settings instance."""

    settings = AutodidactSettings()
    settings.vault_path = settings.vault_path.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["AutodidactSettings", "get_settings"]
