"""
Configuration management for insight-agent

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from importlib import import_module
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "insight-agent"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 6007
    ws_path: str = Field(default="/ws", description="Path the WebSocket endpoint is mounted on")

    # Agent
    max_steps: int = Field(default=25, description="Maximum agent steps per query")
    agent_factory: str = Field(
        default="",
        description="Import path of the agent factory, e.g. 'mypkg.agent:create_agent'",
    )
    execution_mode: str = Field(
        default="",
        description="Import path of a zero-argument callable returning the execution mode",
    )

    # Compaction
    compaction_enabled: bool = Field(default=True, description="Compact history and retry on context-limit errors")
    compaction_keep_first: int = Field(default=2, description="Messages kept verbatim at the start")
    compaction_keep_last: int = Field(default=6, description="Messages kept verbatim at the end")

    @field_validator("ws_path", mode="before")
    @classmethod
    def normalize_ws_path(cls, v: str) -> str:
        v = (v or "/ws").strip()
        return v if v.startswith("/") else f"/{v}"

    @field_validator("agent_factory", "execution_mode", mode="before")
    @classmethod
    def strip_import_path(cls, v: str) -> str:
        return v.strip() if v else ""


def load_object(path: str) -> Any:
    """Resolve a 'package.module:attribute' import path."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid import path '{path}', expected 'module:attribute'")

    obj: Any = import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
