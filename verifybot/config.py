"""Environment configuration for the verification bot."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_SETTINGS_PATH = "guildSettings.json"
DEFAULT_AWS_REGION = "us-east-1"


def _env_parsed(name: str, parse: Callable[[str], T], default):
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return parse(raw)
    except ValueError:
        return default


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(raw)


def _parse_non_negative(raw: str) -> float:
    value = float(raw)
    if value < 0:
        raise ValueError(raw)
    return value


def env_bool(name: str, *, default: bool = False) -> bool:
    return _env_parsed(name, _parse_bool, default)


def env_int(name: str, *, default: int | None = None) -> int | None:
    return _env_parsed(name, int, default)


def env_float(name: str, *, default: float) -> float:
    """Non-negative float from the environment; anything else gives ``default``."""
    return _env_parsed(name, _parse_non_negative, default)


@dataclass(frozen=True)
class ShadowConfig:
    enabled: bool
    channel_id: int | None


def read_shadow_config(*, default_enabled: bool = False) -> ShadowConfig:
    return ShadowConfig(
        enabled=env_bool("SHADOW_MODE", default=default_enabled),
        channel_id=env_int("SHADOW_CHANNEL_ID"),
    )


@dataclass(slots=True)
class EnvironmentConfig:
    discord_token: str
    settings_path: str = DEFAULT_SETTINGS_PATH
    settings_table_name: str | None = None
    aws_region: str = DEFAULT_AWS_REGION
    welcome_delay_seconds: float = 30.0
    welcome_retention_hours: float = 24.0
    sync_guild_commands: bool = True
    shadow: ShadowConfig = field(
        default_factory=lambda: ShadowConfig(enabled=False, channel_id=None)
    )

    @classmethod
    def load(cls) -> "EnvironmentConfig":
        missing: list[str] = []

        def need(name: str) -> str:
            value = os.getenv(name)
            if not value:
                missing.append(name)
                return ""
            return value

        discord_token = need("DISCORD_TOKEN")

        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(set(missing))))

        return cls(
            discord_token=discord_token,
            settings_path=os.getenv("SETTINGS_PATH") or DEFAULT_SETTINGS_PATH,
            settings_table_name=os.getenv("SETTINGS_TABLE_NAME") or None,
            aws_region=os.getenv("AWS_REGION") or DEFAULT_AWS_REGION,
            welcome_delay_seconds=env_float("WELCOME_DELAY_SECONDS", default=30.0),
            welcome_retention_hours=env_float("WELCOME_RETENTION_HOURS", default=24.0),
            sync_guild_commands=env_bool("SYNC_GUILD_COMMANDS", default=True),
            shadow=read_shadow_config(),
        )
