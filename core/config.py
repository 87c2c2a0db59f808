from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Set

import yaml

log = logging.getLogger(__name__)

DEFAULT_RESYNC_MESSAGE_COUNT = 2000
MAX_RESYNC_MESSAGE_COUNT = 10000


class ConfigError(Exception):
    """Missing or malformed required setting."""


class ClearBehavior(enum.Enum):
    DO_NOTHING = "DoNothing"
    CLEAR_COMPLETELY = "ClearCompletely"
    RESET_TO_FIRST_NAME = "ResetToFirstName"

    @classmethod
    def parse(cls, value: Any, default: "ClearBehavior") -> "ClearBehavior":
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text or member.name.lower() == text:
                return member
        log.warning("invalid nickname_clear_behavior '%s', defaulting to %s", value, default.value)
        return default


class PermissionAction(enum.Enum):
    MAPPING_MANAGEMENT = "MappingManagement"
    CHANNEL_RENAME = "ChannelRename"
    INFO_COMMANDS = "InfoCommands"


@dataclass(frozen=True)
class PermissionConfig:
    allowed_role_ids: Set[int] = field(default_factory=set)
    allowed_user_ids: Set[int] = field(default_factory=set)
    allow_everyone: bool = False


@dataclass(frozen=True)
class AutoRenameConfig:
    enabled: bool = False
    require_authorization: bool = False
    channel_ids: Set[int] = field(default_factory=set)


@dataclass
class Settings:
    bot_token: str
    nickname_sync_channel_id: int
    resync_message_count: int = DEFAULT_RESYNC_MESSAGE_COUNT
    clear_behavior: ClearBehavior = ClearBehavior.RESET_TO_FIRST_NAME
    auto_rename: AutoRenameConfig = field(default_factory=AutoRenameConfig)
    permissions: Dict[PermissionAction, PermissionConfig] = field(default_factory=dict)
    mappings_path: Path = Path("user_mappings.json")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"


def parse_id_set(values: Any, where: str) -> Set[int]:
    if values is None:
        return set()
    if not isinstance(values, (list, tuple, set)):
        values = [values]
    ids: Set[int] = set()
    for value in values:
        text = str(value).strip()
        if text.isdigit():
            ids.add(int(text))
        else:
            log.warning("invalid id in %s: %r", where, value)
    return ids


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _parse_permission(data: Mapping[str, Any], where: str) -> PermissionConfig:
    return PermissionConfig(
        allowed_role_ids=parse_id_set(data.get("allowed_role_ids"), f"{where}.allowed_role_ids"),
        allowed_user_ids=parse_id_set(data.get("allowed_user_ids"), f"{where}.allowed_user_ids"),
        allow_everyone=_as_bool(data.get("allow_everyone", False)),
    )


_PERMISSION_KEYS = {
    PermissionAction.MAPPING_MANAGEMENT: "mapping_management",
    PermissionAction.CHANNEL_RENAME: "channel_rename",
    PermissionAction.INFO_COMMANDS: "info_commands",
}


def read_settings_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"settings file not found: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read settings file {path}: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"settings file {path} must contain a mapping")
    return raw


def build_settings(raw: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> Settings:
    """Combine the YAML ``discord:`` section with environment overrides."""
    env = os.environ if env is None else env
    discord_cfg = _section(raw, "discord")

    token = (env.get("DISCORD_TOKEN") or str(discord_cfg.get("bot_token") or "")).strip()
    if not token:
        raise ConfigError("bot token not configured (DISCORD_TOKEN)")

    channel_raw = env.get("NICKNAME_SYNC_CHANNEL_ID") or discord_cfg.get("nickname_sync_channel_id")
    if channel_raw is None or str(channel_raw).strip() == "":
        raise ConfigError("nickname sync channel id not configured")
    channel_text = str(channel_raw).strip()
    if not channel_text.isdigit():
        raise ConfigError(f"invalid nickname sync channel id: {channel_raw!r}")

    count_raw = discord_cfg.get("resync_message_count", DEFAULT_RESYNC_MESSAGE_COUNT)
    try:
        resync_count = int(count_raw)
    except (TypeError, ValueError):
        log.warning("invalid resync_message_count %r, using %d", count_raw, DEFAULT_RESYNC_MESSAGE_COUNT)
        resync_count = DEFAULT_RESYNC_MESSAGE_COUNT
    if resync_count <= 0:
        log.warning("resync_message_count must be positive, using %d", DEFAULT_RESYNC_MESSAGE_COUNT)
        resync_count = DEFAULT_RESYNC_MESSAGE_COUNT
    resync_count = min(resync_count, MAX_RESYNC_MESSAGE_COUNT)

    clear_behavior = ClearBehavior.parse(
        discord_cfg.get("nickname_clear_behavior", ClearBehavior.RESET_TO_FIRST_NAME.value),
        ClearBehavior.RESET_TO_FIRST_NAME,
    )

    rename_cfg = _section(discord_cfg, "auto_rename_channels")
    auto_rename = AutoRenameConfig(
        enabled=_as_bool(rename_cfg.get("enabled", False)),
        require_authorization=_as_bool(rename_cfg.get("require_authorization", False)),
        channel_ids=parse_id_set(rename_cfg.get("channel_ids"), "auto_rename_channels.channel_ids"),
    )

    auth_cfg = _section(discord_cfg, "authorization")
    permissions = {
        action: _parse_permission(_section(auth_cfg, key), f"authorization.{key}")
        for action, key in _PERMISSION_KEYS.items()
    }

    return Settings(
        bot_token=token,
        nickname_sync_channel_id=int(channel_text),
        resync_message_count=resync_count,
        clear_behavior=clear_behavior,
        auto_rename=auto_rename,
        permissions=permissions,
        mappings_path=Path(env.get("MAPPINGS_PATH", "user_mappings.json")),
        log_dir=Path(env.get("LOG_DIR", "logs")),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    settings_path = Path(path or env.get("SETTINGS_PATH", "settings.yaml"))
    return build_settings(read_settings_file(settings_path), env)


def describe_permissions(permissions: Mapping[PermissionAction, PermissionConfig]) -> Iterable[str]:
    for action, config in permissions.items():
        if config.allow_everyone:
            status = "everyone"
        else:
            status = f"{len(config.allowed_role_ids)} role(s), {len(config.allowed_user_ids)} user(s)"
        yield f"{action.value}: {status}"
