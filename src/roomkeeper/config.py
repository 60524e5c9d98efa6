"""roomkeeper configuration loading and validation.

Reads roomkeeper.toml from a config directory, parses all sections, and
returns a validated RoomkeeperConfig dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from roomkeeper.notify.email import SmtpConfig
from roomkeeper.scheduling.decisions import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS
from roomkeeper.scheduling.models import Room, RoomDirectorySnapshot, RoomGroup

CONFIG_FILENAME = "roomkeeper.toml"

# ${VAR_NAME} references: letters, digits and underscores.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when roomkeeper configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [roomkeeper.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class DecisionLedgerConfig:
    """Write-back decision retention from [roomkeeper.decisions]."""

    ttl_seconds: float = DEFAULT_TTL_SECONDS
    max_entries: int = DEFAULT_MAX_ENTRIES


@dataclass
class DatabaseConfig:
    """PostgreSQL room calendar store from [roomkeeper.db]."""

    dsn: str | None = None


@dataclass
class RoomkeeperConfig:
    """Parsed and validated roomkeeper configuration."""

    name: str = "roomkeeper"
    timezone: str = "UTC"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    decisions: DecisionLedgerConfig = field(default_factory=DecisionLedgerConfig)
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    rooms: list[Room] = field(default_factory=list)
    room_groups: list[RoomGroup] = field(default_factory=list)
    admins: list[str] = field(default_factory=list)
    groups: dict[str, list[str]] = field(default_factory=dict)
    users: dict[str, str] = field(default_factory=dict)

    def room(self, room_id: str) -> Room | None:
        return next((room for room in self.rooms if room.id == room_id), None)

    def snapshot(self) -> RoomDirectorySnapshot:
        """Materialise the directory data the in-process collaborators serve."""
        return RoomDirectorySnapshot(
            rooms={room.id: room for room in self.rooms},
            groups={group.id: group for group in self.room_groups},
            group_members={name: set(members) for name, members in self.groups.items()},
            admins=set(self.admins),
            user_emails=dict(self.users),
        )


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid roomkeeper.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def _parse_decisions(section: dict[str, Any]) -> DecisionLedgerConfig:
    raw_ttl = section.get("ttl_seconds", DEFAULT_TTL_SECONDS)
    if isinstance(raw_ttl, bool) or not isinstance(raw_ttl, int | float):
        raise ConfigError(
            f"Invalid roomkeeper.decisions.ttl_seconds: {raw_ttl!r}. Must be a number."
        )
    ttl_seconds = float(raw_ttl)
    if ttl_seconds <= 0:
        raise ConfigError(
            f"Invalid roomkeeper.decisions.ttl_seconds: {ttl_seconds!r}. Must be positive."
        )
    max_entries = section.get("max_entries", DEFAULT_MAX_ENTRIES)
    if isinstance(max_entries, bool) or not isinstance(max_entries, int) or max_entries <= 0:
        raise ConfigError(
            f"Invalid roomkeeper.decisions.max_entries: {max_entries!r}. "
            "Must be a positive integer."
        )
    return DecisionLedgerConfig(ttl_seconds=ttl_seconds, max_entries=max_entries)


def _parse_room_groups(raw_groups: Any) -> list[RoomGroup]:
    if not isinstance(raw_groups, list):
        raise ConfigError("room_groups must be an array of tables ([[room_groups]])")
    groups: list[RoomGroup] = []
    for index, entry in enumerate(raw_groups):
        try:
            groups.append(RoomGroup.model_validate(entry))
        except ValidationError as exc:
            raise ConfigError(f"Invalid room_groups[{index}]: {_first_error(exc)}") from exc
    ids = [group.id for group in groups]
    duplicates = sorted({group_id for group_id in ids if ids.count(group_id) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate room group id(s): {', '.join(duplicates)}")
    return groups


def _parse_rooms(raw_rooms: Any, *, default_timezone: str, group_ids: set[str]) -> list[Room]:
    if not isinstance(raw_rooms, list):
        raise ConfigError("rooms must be an array of tables ([[rooms]])")
    rooms: list[Room] = []
    for index, entry in enumerate(raw_rooms):
        if not isinstance(entry, dict):
            raise ConfigError(f"rooms[{index}] must be a table")
        data = {"timezone": default_timezone, **entry}
        try:
            room = Room.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid rooms[{index}]: {_first_error(exc)}") from exc
        if room.group_id is not None and room.group_id not in group_ids:
            raise ConfigError(
                f"rooms[{index}] ({room.id}) references unknown room group {room.group_id!r}"
            )
        rooms.append(room)

    for attr in ("id", "email"):
        values = [getattr(room, attr) for room in rooms]
        duplicates = sorted({value for value in values if values.count(value) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate room {attr}(s): {', '.join(duplicates)}")
    return rooms


def _string_list(value: Any, *, field_name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{field_name} must be a list of strings")
    return [item.strip() for item in value if item.strip()]


def _parse_directory(section: Any) -> tuple[list[str], dict[str, list[str]], dict[str, str]]:
    if not isinstance(section, dict):
        raise ConfigError("[directory] must be a table")
    admins = _string_list(section.get("admins", []), field_name="directory.admins")

    raw_groups = section.get("groups", {})
    if not isinstance(raw_groups, dict):
        raise ConfigError("[directory.groups] must be a table of member lists")
    groups = {
        name: _string_list(members, field_name=f"directory.groups.{name}")
        for name, members in raw_groups.items()
    }

    raw_users = section.get("users", {})
    if not isinstance(raw_users, dict):
        raise ConfigError("[directory.users] must map user ids to email addresses")
    users: dict[str, str] = {}
    for user_id, email in raw_users.items():
        if not isinstance(email, str) or "@" not in email:
            raise ConfigError(f"directory.users.{user_id} must be an email address")
        users[user_id] = email.strip().lower()
    return admins, groups, users


def load_config(config_dir: Path) -> RoomkeeperConfig:
    """Load and validate roomkeeper.toml from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    toml_path = config_dir / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    # --- Resolve env var references before any validation ---
    data = resolve_env_vars(data)

    # --- [roomkeeper] section ---
    section = data.get("roomkeeper", {})
    if not isinstance(section, dict):
        raise ConfigError("[roomkeeper] must be a table")
    name = str(section.get("name", "roomkeeper")).strip() or "roomkeeper"
    timezone = str(section.get("timezone", "UTC")).strip()
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid roomkeeper.timezone: {timezone!r}") from exc

    logging_config = _parse_logging(section.get("logging", {}))

    try:
        smtp = SmtpConfig.model_validate(section.get("smtp", {}))
    except ValidationError as exc:
        raise ConfigError(f"Invalid roomkeeper.smtp: {_first_error(exc)}") from exc

    decisions = _parse_decisions(section.get("decisions", {}))

    db_section = section.get("db", {})
    dsn = db_section.get("dsn")
    if dsn is not None and (not isinstance(dsn, str) or not dsn.strip()):
        raise ConfigError("roomkeeper.db.dsn must be a non-empty string when set")

    # --- [[room_groups]] and [[rooms]] ---
    room_groups = _parse_room_groups(data.get("room_groups", []))
    rooms = _parse_rooms(
        data.get("rooms", []),
        default_timezone=timezone,
        group_ids={group.id for group in room_groups},
    )

    # --- [directory] ---
    admins, groups, users = _parse_directory(data.get("directory", {}))

    return RoomkeeperConfig(
        name=name,
        timezone=timezone,
        logging=logging_config,
        smtp=smtp,
        decisions=decisions,
        db=DatabaseConfig(dsn=dsn.strip() if dsn else None),
        rooms=rooms,
        room_groups=room_groups,
        admins=admins,
        groups=groups,
        users=users,
    )
