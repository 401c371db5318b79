from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import os
import yaml

from .durations import DAY_MS, MINUTE_MS


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    logger_channel_id: Optional[int] = None


@dataclass(slots=True)
class GiveawayDefaults:
    duration_minutes: int = 60
    max_duration_days: int = 30
    max_winners: int = 25

    @property
    def duration_ms(self) -> int:
        return self.duration_minutes * MINUTE_MS

    @property
    def max_duration_ms(self) -> int:
        return self.max_duration_days * DAY_MS


@dataclass(slots=True)
class PermissionsConfig:
    admin_roles: List[int] = field(default_factory=list)
    development_guild_id: Optional[int] = None


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    data_dir: Path
    logging: LoggingConfig
    giveaway_defaults: GiveawayDefaults
    permissions: PermissionsConfig


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]


def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value


def _positive_int(data: Dict[str, Any], key: str, default: int, section: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive integer.")
    return value


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    logger_channel_id = data.get("logger_channel_id")
    if logger_channel_id is not None and not isinstance(logger_channel_id, int):
        raise ConfigError(
            "logging.logger_channel_id must be an integer channel ID or null."
        )
    return LoggingConfig(level=level, logger_channel_id=logger_channel_id)


def _parse_giveaway_defaults(data: Dict[str, Any]) -> GiveawayDefaults:
    return GiveawayDefaults(
        duration_minutes=_positive_int(data, "duration_minutes", 60, "giveaway_defaults"),
        max_duration_days=_positive_int(data, "max_duration_days", 30, "giveaway_defaults"),
        max_winners=_positive_int(data, "max_winners", 25, "giveaway_defaults"),
    )


def _parse_permissions(data: Dict[str, Any]) -> PermissionsConfig:
    admin_roles_raw = data.get("admin_roles", [])
    if not isinstance(admin_roles_raw, list):
        raise ConfigError("permissions.admin_roles must be a list of role IDs.")
    admin_roles: List[int] = []
    for role_id in admin_roles_raw:
        try:
            admin_roles.append(int(role_id))
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"permissions.admin_roles contains invalid role id: {role_id!r}"
            ) from exc
    dev_guild_raw = data.get("development_guild_id")
    development_guild_id: Optional[int]
    if dev_guild_raw in (None, "", 0):
        development_guild_id = None
    else:
        try:
            development_guild_id = int(dev_guild_raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                "permissions.development_guild_id must be an integer guild ID or null."
            ) from exc
        if development_guild_id <= 0:
            raise ConfigError(
                "permissions.development_guild_id must be a positive integer."
            )
    return PermissionsConfig(
        admin_roles=admin_roles, development_guild_id=development_guild_id
    )


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token_raw = str(_require(data, "token"))
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    try:
        application_id = int(_require(data, "application_id"))
    except (TypeError, ValueError) as exc:
        raise ConfigError("application_id must be an integer.") from exc

    data_dir = Path(str(data.get("data_dir") or "data"))

    return Config(
        token=token,
        application_id=application_id,
        data_dir=data_dir,
        logging=_parse_logging(data.get("logging") or {}),
        giveaway_defaults=_parse_giveaway_defaults(data.get("giveaway_defaults") or {}),
        permissions=_parse_permissions(data.get("permissions") or {}),
    )
