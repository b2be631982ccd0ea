"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"]


class TranspilerSettings(BaseSettings):
    """Settings for the workflow transpiler, prefixed ``COMFY_TRANSPILER_``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="COMFY_TRANSPILER_",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: LogLevel = "INFO"
    # Only accept JSON objects shaped like an API-format prompt during the
    # structural probe (classifier fallback and passive paste).
    strict_workflow_probe: bool = False
    comfyui_server_url: str = Field(default="http://127.0.0.1:8188", min_length=1)
    text_encoding: str = "utf-8"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("comfyui_server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


def get_settings() -> TranspilerSettings:
    """Return settings loaded from the environment."""

    return TranspilerSettings()


__all__ = ["LogLevel", "TranspilerSettings", "get_settings"]
