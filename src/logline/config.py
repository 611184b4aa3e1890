"""
Configuration for the access logger.

Two layers:
- ``Settings``: plain values read from ``LOGLINE_*`` environment variables and
  an optional ``.env`` file (pydantic-settings).
- ``LoggerOptions``: the runtime options handed to ``Logger.init``. These carry
  callables and streams, so they are a dataclass rather than settings.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import IO, Any, Final

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default buffer interval in milliseconds when ``buffer=True``
DEFAULT_BUFFER_DURATION: Final = 1000


class Settings(BaseSettings):
    """Environment-backed defaults, e.g. ``LOGLINE_LOG_LEVEL=WARN``."""

    model_config = SettingsConfigDict(
        env_prefix="LOGLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    LOG_LEVEL: str = Field(default="TRACE", description="Minimum level for direct log calls")
    LOG_FORMAT: str = Field(default="direct", description="Format used for direct log calls")
    USE_FORMAT: str = Field(default="combined", description="Format used for request lines")
    ENV: str = Field(default="development", description="Value of the :env token")
    BUFFER: int = Field(default=0, ge=0, description="Buffer interval in ms, 0 disables buffering")

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        return (v or "TRACE").strip().upper()

    @field_validator("LOG_FORMAT", "USE_FORMAT", "ENV")
    @classmethod
    def _strip_strings(cls, v: str) -> str:
        return (v or "").strip()


@dataclass
class LoggerOptions:
    log_level: str | int = "TRACE"
    log_format: str = "direct"
    # None means sys.stdout, looked up at write time
    stream: IO[str] | None = None
    use_format: Any = "combined"
    tokens: Mapping[str, Callable[..., Any]] = field(default_factory=dict)
    formats: Mapping[str, Any] = field(default_factory=dict)
    pretty_errors: Callable[[BaseException], str] | None = None
    immediate: bool = False
    skip: Callable[[Any, Any], bool] | None = None
    buffer: bool | int = False
    request_callback: Callable[[str, Any], None] | None = None
    # value of the :env token
    env: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> LoggerOptions:
        settings = settings or Settings()
        options = cls(
            log_level=settings.LOG_LEVEL,
            log_format=settings.LOG_FORMAT,
            use_format=settings.USE_FORMAT,
            buffer=settings.BUFFER or False,
            env=settings.ENV,
        )
        return replace(options, **overrides)

    def merged(self, **overrides: Any) -> LoggerOptions:
        return replace(self, **overrides) if overrides else self

    @property
    def buffer_interval(self) -> int | None:
        """Milliseconds between buffered flushes, or None when unbuffered."""
        if self.buffer is False or self.buffer is None:
            return None
        if self.buffer is True:
            return DEFAULT_BUFFER_DURATION
        return int(self.buffer) or None
