"""User settings and their storage in a key/value table."""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger(__name__)

DEFAULT_FEED_CHUNK = 60 * 60 * 12  # 12 hours
DEFAULT_REPLIES_CHUNK = 60 * 60 * 24 * 7  # 1 week
DEFAULT_OVERLAP = 300  # 5 minutes
DEFAULT_NUM_RELAYS_PER_PERSON = 3
DEFAULT_MAX_RELAYS = 15
DEFAULT_MAX_FPS = 15
DEFAULT_FEED_RECOMPUTE_INTERVAL_MS = 3500
DEFAULT_POW = 0
DEFAULT_OFFLINE = False
DEFAULT_LIGHT_MODE = True  # True = light, False = dark
DEFAULT_SET_CLIENT_TAG = False
DEFAULT_SET_USER_AGENT = False
DEFAULT_OVERRIDE_DPI: Optional[int] = None
DEFAULT_REACTIONS = True
DEFAULT_REPOSTS = True
DEFAULT_LOAD_AVATARS = True
DEFAULT_CHECK_NIP05 = True
DEFAULT_DIRECT_REPLIES_ONLY = True


@dataclass
class Settings:
    """All user-adjustable settings, with their defaults."""

    feed_chunk: int = DEFAULT_FEED_CHUNK
    replies_chunk: int = DEFAULT_REPLIES_CHUNK
    overlap: int = DEFAULT_OVERLAP
    num_relays_per_person: int = DEFAULT_NUM_RELAYS_PER_PERSON
    max_relays: int = DEFAULT_MAX_RELAYS
    public_key: Optional[str] = None
    max_fps: int = DEFAULT_MAX_FPS
    feed_recompute_interval_ms: int = DEFAULT_FEED_RECOMPUTE_INTERVAL_MS
    pow: int = DEFAULT_POW
    offline: bool = DEFAULT_OFFLINE
    light_mode: bool = DEFAULT_LIGHT_MODE
    set_client_tag: bool = DEFAULT_SET_CLIENT_TAG
    set_user_agent: bool = DEFAULT_SET_USER_AGENT
    override_dpi: Optional[int] = DEFAULT_OVERRIDE_DPI
    reactions: bool = DEFAULT_REACTIONS
    reposts: bool = DEFAULT_REPOSTS
    load_avatars: bool = DEFAULT_LOAD_AVATARS
    check_nip05: bool = DEFAULT_CHECK_NIP05
    direct_replies_only: bool = DEFAULT_DIRECT_REPLIES_ONLY


# setting name -> (bit width of the unsigned value, default)
_NUMERIC = {
    "feed_chunk": (64, DEFAULT_FEED_CHUNK),
    "replies_chunk": (64, DEFAULT_REPLIES_CHUNK),
    "overlap": (64, DEFAULT_OVERLAP),
    "num_relays_per_person": (8, DEFAULT_NUM_RELAYS_PER_PERSON),
    "max_relays": (8, DEFAULT_MAX_RELAYS),
    "max_fps": (32, DEFAULT_MAX_FPS),
    "feed_recompute_interval_ms": (32, DEFAULT_FEED_RECOMPUTE_INTERVAL_MS),
    "pow": (8, DEFAULT_POW),
}

_BOOLEAN = (
    "offline",
    "light_mode",
    "set_client_tag",
    "set_user_agent",
    "reactions",
    "reposts",
    "load_avatars",
    "check_nip05",
    "direct_replies_only",
)

_UINT_RE = re.compile(r"\+?[0-9]+")
_PUBKEY_RE = re.compile(r"[0-9a-fA-F]{64}")


def _parse_uint(text: str, bits: int) -> int:
    if not _UINT_RE.fullmatch(text):
        raise ValueError(f"not an unsigned integer: {text!r}")
    value = int(text)
    if value >= 1 << bits:
        raise ValueError(f"{value} does not fit in {bits} bits")
    return value


def _parse_public_key(text: str) -> str:
    if not _PUBKEY_RE.fullmatch(text):
        raise ValueError(f"not a 32-byte hex public key: {text!r}")
    return text.lower()


def create_settings_table(conn: sqlite3.Connection) -> None:
    """Create the settings table if it does not exist yet."""
    with conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS settings "
            "(key TEXT PRIMARY KEY NOT NULL, value TEXT NOT NULL)"
        )


def load_settings(conn: sqlite3.Connection) -> Settings:
    """Read settings from the table; unparsable values fall back to defaults."""
    settings = Settings()
    for key, raw in conn.execute("SELECT key, value FROM settings"):
        value = raw if isinstance(raw, str) else str(raw)
        if key in _NUMERIC:
            bits, default = _NUMERIC[key]
            try:
                setattr(settings, key, _parse_uint(value, bits))
            except ValueError:
                setattr(settings, key, default)
        elif key in _BOOLEAN:
            setattr(settings, key, value == "1")
        elif key == "override_dpi":
            try:
                settings.override_dpi = _parse_uint(value, 32) if value else None
            except ValueError:
                settings.override_dpi = DEFAULT_OVERRIDE_DPI
        elif key == "public_key":
            try:
                settings.public_key = _parse_public_key(value)
            except ValueError as exc:
                log.error("Public key in database is invalid or corrupt: %s", exc)
                settings.public_key = None
    return settings


def save_settings(settings: Settings, conn: sqlite3.Connection) -> None:
    """Write every setting; optional settings that are unset are deleted."""
    rows = [(name, str(getattr(settings, name))) for name in _NUMERIC]
    rows += [(name, "1" if getattr(settings, name) else "0") for name in _BOOLEAN]
    with conn:
        conn.executemany("REPLACE INTO settings (key, value) VALUES (?, ?)", rows)

        if settings.override_dpi is not None:
            conn.execute(
                "REPLACE INTO settings (key, value) VALUES ('override_dpi', ?)",
                (str(settings.override_dpi),),
            )
        else:
            conn.execute("DELETE FROM settings WHERE key='override_dpi'")

        if settings.public_key is not None:
            conn.execute(
                "REPLACE INTO settings (key, value) VALUES ('public_key', ?)",
                (settings.public_key.lower(),),
            )
        else:
            conn.execute("DELETE FROM settings WHERE key='public_key'")