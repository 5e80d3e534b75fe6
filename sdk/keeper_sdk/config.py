"""
Configuration for the keeper SDK.

Uses pydantic-settings for environment variable loading. Every setting
can be overridden with a KEEPER_-prefixed variable, e.g.:

    KEEPER_HOSTS=zk1:2181,zk2:2181
    KEEPER_DRIVER=memory
    KEEPER_LOG_LEVEL=DEBUG

Invariants:
    - All settings have sensible defaults for local development
    - Settings never open connections themselves
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .types import DebugLevel


class DriverBackend(str, Enum):
    """Supported driver backends."""

    ZOOKEEPER = "zookeeper"
    MEMORY = "memory"


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"
    TEXT = "text"


class KeeperSettings(BaseSettings):
    """Client configuration loaded from environment."""

    # Connection
    hosts: str = Field(default="127.0.0.1:2181", description="Comma-separated host:port list")
    timeout: float = Field(default=10.0, gt=0, description="Session timeout in seconds")
    driver: DriverBackend = Field(default=DriverBackend.ZOOKEEPER, description="Driver backend")
    debug_level: Optional[DebugLevel] = Field(default=None, description="Driver debug level")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: LogFormat = Field(default=LogFormat.JSON, description="json or text")

    # Recipe roots
    lock_root: str = Field(default="/_zklocking", description="Parent node for lock recipes")
    queue_root: str = Field(default="/_zkqueues", description="Parent node for message queues")

    model_config = {"env_prefix": "KEEPER_"}

    @field_validator("debug_level", mode="before")
    @classmethod
    def _parse_debug_level(cls, value: object) -> Optional[DebugLevel]:
        if value is None or value == "":
            return None
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value)
        return DebugLevel.parse(value)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
            raise ValueError(f"Invalid log level '{value}'")
        return level
