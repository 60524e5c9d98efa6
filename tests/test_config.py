"""Tests for roomkeeper configuration loading and validation."""

from __future__ import annotations

from datetime import time
from pathlib import Path

import pytest

from roomkeeper.config import (
    ConfigError,
    RoomkeeperConfig,
    load_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FULL_TOML = """\
[roomkeeper]
name = "hq-rooms"
timezone = "Europe/Berlin"

[roomkeeper.logging]
level = "debug"
format = "JSON"
log_root = "/tmp/roomkeeper-logs"

[roomkeeper.smtp]
enabled = true
host = "smtp.example.com"
port = 465
use_tls = false

[roomkeeper.decisions]
ttl_seconds = 120
max_entries = 16

[roomkeeper.db]
dsn = "postgresql://rooms@localhost/rooms"

[[room_groups]]
id = "floor-2"
name = "Floor 2"
permissions.managers = [{ type = "group", id = "facilities" }]

[[rooms]]
id = "sunroom"
email = "MAILTO:Sunroom@Example.com"
display_name = "Sunroom"
group_id = "floor-2"
auto_accept = false
max_booking_horizon_days = 30

[rooms.availability]
enabled = true

[[rooms.availability.rules]]
days = ["mon", "tue", 3]
start_time = "08:00"
end_time = "18:00"

[[rooms]]
id = "huddle"
email = "huddle@example.com"
display_name = "Huddle"
timezone = "UTC"

[directory]
admins = ["root", " "]

[directory.groups]
facilities = ["fran"]

[directory.users]
fran = "Fran@Example.com"
"""

MINIMAL_TOML = """\
[[rooms]]
id = "huddle"
email = "huddle@example.com"
display_name = "Huddle"
"""


def _write_toml(tmp_path: Path, content: str) -> Path:
    """Write *content* to roomkeeper.toml inside *tmp_path* and return the directory."""
    (tmp_path / "roomkeeper.toml").write_text(content)
    return tmp_path


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_load_full_config(tmp_path: Path):
    cfg = load_config(_write_toml(tmp_path, FULL_TOML))

    assert isinstance(cfg, RoomkeeperConfig)
    assert cfg.name == "hq-rooms"
    assert cfg.timezone == "Europe/Berlin"
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.format == "json"
    assert cfg.logging.log_root == "/tmp/roomkeeper-logs"
    assert cfg.smtp.enabled is True
    assert cfg.smtp.port == 465
    assert cfg.smtp.use_tls is False
    assert cfg.decisions.ttl_seconds == 120.0
    assert cfg.decisions.max_entries == 16
    assert cfg.db.dsn == "postgresql://rooms@localhost/rooms"

    sunroom = cfg.room("sunroom")
    assert sunroom is not None
    assert sunroom.email == "sunroom@example.com"
    assert sunroom.timezone == "Europe/Berlin"
    assert sunroom.availability.active
    rule = sunroom.availability.rules[0]
    assert rule.days == frozenset({1, 2, 3})
    assert rule.start_time == time(8, 0)
    assert cfg.room("huddle").timezone == "UTC"
    assert cfg.room("missing") is None

    assert [group.id for group in cfg.room_groups] == ["floor-2"]
    assert cfg.admins == ["root"]
    assert cfg.groups == {"facilities": ["fran"]}
    assert cfg.users == {"fran": "fran@example.com"}


def test_load_minimal_config(tmp_path: Path):
    cfg = load_config(_write_toml(tmp_path, MINIMAL_TOML))

    assert cfg.name == "roomkeeper"
    assert cfg.timezone == "UTC"
    assert cfg.logging.level == "INFO"
    assert cfg.smtp.enabled is False
    assert cfg.db.dsn is None
    room = cfg.room("huddle")
    assert room.auto_accept is False
    assert room.active is True
    assert room.max_booking_horizon_days == 0
    assert not room.availability.active


def test_snapshot(tmp_path: Path):
    snapshot = load_config(_write_toml(tmp_path, FULL_TOML)).snapshot()

    assert set(snapshot.rooms) == {"sunroom", "huddle"}
    assert set(snapshot.groups) == {"floor-2"}
    assert snapshot.group_members == {"facilities": {"fran"}}
    assert snapshot.admins == {"root"}
    assert snapshot.user_emails == {"fran": "fran@example.com"}


def test_example_config_loads():
    example_dir = Path(__file__).resolve().parents[1] / "config"
    cfg = load_config(example_dir)
    assert {room.id for room in cfg.rooms} == {"sunroom", "boardroom", "huddle"}


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------


class TestResolveEnvVars:
    def test_nested_values(self, monkeypatch):
        monkeypatch.setenv("RK_HOST", "db.internal")
        data = {"a": ["postgresql://${RK_HOST}/rooms", 5], "b": {"c": True}}
        assert resolve_env_vars(data) == {
            "a": ["postgresql://db.internal/rooms", 5],
            "b": {"c": True},
        }

    def test_missing_variables_are_reported_together(self, monkeypatch):
        monkeypatch.delenv("RK_ONE", raising=False)
        monkeypatch.delenv("RK_TWO", raising=False)
        with pytest.raises(ConfigError, match="RK_ONE, RK_TWO"):
            resolve_env_vars("${RK_ONE}:${RK_TWO}")

    def test_dsn_from_environment(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("RK_DSN", "postgresql://localhost/rooms")
        content = MINIMAL_TOML + '\n[roomkeeper.db]\ndsn = "${RK_DSN}"\n'
        cfg = load_config(_write_toml(tmp_path, content))
        assert cfg.db.dsn == "postgresql://localhost/rooms"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def test_missing_file(tmp_path: Path):
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path)


def test_invalid_toml(tmp_path: Path):
    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(_write_toml(tmp_path, "[rooms\n"))


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ('[roomkeeper]\ntimezone = "Mars/Olympus"\n', "Invalid roomkeeper.timezone"),
        ('[roomkeeper.logging]\nformat = "xml"\n', "roomkeeper.logging.format"),
        ("[roomkeeper.decisions]\nttl_seconds = 0\n", "ttl_seconds"),
        ("[roomkeeper.decisions]\nmax_entries = -1\n", "max_entries"),
        ('[roomkeeper.decisions]\nttl_seconds = "soon"\n', "ttl_seconds.*Must be a number"),
        ("[roomkeeper.decisions]\nttl_seconds = true\n", "ttl_seconds"),
        ('[roomkeeper.decisions]\nmax_entries = "many"\n', "max_entries.*positive integer"),
        ("[roomkeeper.decisions]\nmax_entries = 2.5\n", "max_entries"),
        ("[roomkeeper.smtp]\nport = 25\nsender = 1\n", "Invalid roomkeeper.smtp"),
        ('[roomkeeper.db]\ndsn = " "\n', "roomkeeper.db.dsn"),
        ("rooms = 5\n", "rooms must be an array"),
        ('[[rooms]]\nid = "x"\nemail = "nope"\ndisplay_name = "X"\n', "Invalid rooms[0]"),
        (
            '[[rooms]]\nid = "x"\nemail = "x@example.com"\ndisplay_name = "X"\ncolour = "red"\n',
            "Invalid rooms[0]",
        ),
        (
            '[[rooms]]\nid = "x"\nemail = "x@example.com"\ndisplay_name = "X"\ngroup_id = "g"\n',
            "unknown room group",
        ),
        ('[[room_groups]]\nid = "g"\n', "Invalid room_groups[0]"),
        ("[directory]\nadmins = [1]\n", "directory.admins"),
        ('[directory.users]\nbob = "not-an-email"\n', "directory.users.bob"),
    ],
)
def test_invalid_values(tmp_path: Path, content: str, message: str):
    with pytest.raises(ConfigError, match=message.replace("[", r"\[").replace("]", r"\]")):
        load_config(_write_toml(tmp_path, content))


def test_duplicate_room_ids(tmp_path: Path):
    room = '[[rooms]]\nid = "x"\nemail = "{email}"\ndisplay_name = "X"\n'
    content = room.format(email="a@example.com") + room.format(email="b@example.com")
    with pytest.raises(ConfigError, match="Duplicate room id"):
        load_config(_write_toml(tmp_path, content))


def test_duplicate_room_emails(tmp_path: Path):
    content = (
        '[[rooms]]\nid = "a"\nemail = "same@example.com"\ndisplay_name = "A"\n'
        '[[rooms]]\nid = "b"\nemail = "SAME@example.com"\ndisplay_name = "B"\n'
    )
    with pytest.raises(ConfigError, match="Duplicate room email"):
        load_config(_write_toml(tmp_path, content))


def test_invalid_availability_rule(tmp_path: Path):
    content = MINIMAL_TOML + (
        "[rooms.availability]\nenabled = true\n"
        '[[rooms.availability.rules]]\ndays = ["funday"]\n'
    )
    with pytest.raises(ConfigError, match="Invalid rooms"):
        load_config(_write_toml(tmp_path, content))
