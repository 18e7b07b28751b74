from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path
from typing import Any, ClassVar

from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .client import PRODUCTION_URL, SANDBOX_URL

DEFAULT_CONFIG_FILE = ".config"

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """Parse a duration written as ``90s``, ``10m``, ``1m30s``, ``250ms`` or bare seconds."""
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * seconds)


# ── Config file ──────────────────────────────────────────────────────────────


def parse_plain_config(text: str) -> dict[str, str]:
    """Parse a plain ``key value`` config file.

    One setting per line; blank lines and ``#`` comments are skipped. Keys
    are flag names (``cleanup-timeout``) or their env names
    (``DD_CLEANUP_TIMEOUT``); ``key=value`` is accepted too, and a bare key
    means ``true``.
    """
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, value = _split_line(line)
        key = key.lower().replace("-", "_")
        if key.startswith("dd_"):
            key = key[3:]
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key] = value
    return values


def _split_line(line: str) -> tuple[str, str]:
    for i, ch in enumerate(line):
        if ch == "=" or ch.isspace():
            rest = line[i + 1:].strip()
            if ch != "=" and rest.startswith("="):
                rest = rest[1:].strip()
            return line[:i], rest
    return line, "true"


class PlainConfigSource(PydanticBaseSettingsSource):
    """Settings source reading a plain config file; a missing file is empty."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._values: dict[str, str] = {}
        if path.is_file():
            self._values = parse_plain_config(path.read_text(encoding="utf-8"))

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field, field_name)
            if value is not None:
                data[key] = value
        return data


class Settings(BaseSettings):
    """Monitor configuration loaded from environment / config file / flags."""

    model_config = SettingsConfigDict(
        env_prefix="DD_",
        extra="ignore",
    )

    # Plain key/value file read between env vars and field defaults
    config_file: ClassVar[Path] = Path(DEFAULT_CONFIG_FILE)

    # DNSimple API access token (account token, so whoami resolves an account)
    token: str = Field(min_length=1)
    # Zone the probe records are created in
    domain: str = Field(min_length=1)

    interval: timedelta = timedelta(minutes=1)  # between cycle starts
    poll: timedelta = timedelta(seconds=2)  # between distribution checks
    timeout: timedelta = timedelta(minutes=10)  # per cycle
    cleanup_timeout: timedelta = timedelta(minutes=1)
    http_timeout: timedelta = timedelta(minutes=1)

    record_ttl: int = Field(default=60, ge=1)
    # 0 = let cycles overlap without limit
    max_in_flight: int = Field(default=0, ge=0)

    sandbox: bool = False
    base_url: str = ""

    log_level: str = "INFO"

    @field_validator("interval", "poll", "timeout", "cleanup_timeout", "http_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_validator("interval", "poll", "timeout", "cleanup_timeout", "http_timeout")
    @classmethod
    def _positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("duration must be positive")
        return v

    @field_validator("domain", "token")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def _level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # flags > DD_* env > config file > defaults
        return (
            init_settings,
            env_settings,
            PlainConfigSource(settings_cls, cls.config_file),
            file_secret_settings,
        )

    @property
    def api_url(self) -> str:
        if self.base_url:
            return self.base_url
        return SANDBOX_URL if self.sandbox else PRODUCTION_URL


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> Settings:
    """Build Settings; explicit overrides (CLI flags) beat env and file values.

    A missing config file is not an error.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    if not config_file:
        return Settings(**values)
    path = Path(config_file)

    class FileSettings(Settings):
        config_file = path

    return FileSettings(**values)
