"""Messages a relay sends to a client, and the client's AUTH reply."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

AUTH_EVENT_KIND = 22242

_EVENT_FIELDS = {
    "id": str,
    "pubkey": str,
    "created_at": int,
    "kind": int,
    "tags": list,
    "content": str,
    "sig": str,
}


class MessageParseError(ValueError):
    """Raised when a relay message cannot be understood."""


@dataclass(frozen=True)
class EventMessage:
    subscription_id: str
    event: Dict[str, Any]


@dataclass(frozen=True)
class NoticeMessage:
    message: str


@dataclass(frozen=True)
class EoseMessage:
    subscription_id: str


@dataclass(frozen=True)
class OkMessage:
    event_id: str
    ok: bool
    message: str


@dataclass(frozen=True)
class AuthMessage:
    challenge: str


RelayMessage = Union[EventMessage, NoticeMessage, EoseMessage, OkMessage, AuthMessage]


def _fail(text: str, why: str) -> MessageParseError:
    return MessageParseError(f"{why}: message starts with {text[:300]!r}")


def _string(value: Any, text: str, what: str) -> str:
    if not isinstance(value, str):
        raise _fail(text, f"{what} is not a string")
    return value


def _check_event(event: Any, text: str) -> Dict[str, Any]:
    if not isinstance(event, dict):
        raise _fail(text, "event is not an object")
    for name, kind in _EVENT_FIELDS.items():
        value = event.get(name)
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            raise _fail(text, f"event field {name!r} is missing or malformed")
    return event


def parse_relay_message(text: str) -> RelayMessage:
    """Parse one text frame from a relay into a message object."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise _fail(text, f"not JSON ({exc})") from exc
    if not isinstance(data, list) or not data or not isinstance(data[0], str):
        raise _fail(text, "not a tagged array")

    tag, args = data[0], data[1:]
    if tag == "EVENT" and len(args) == 2:
        return EventMessage(
            _string(args[0], text, "subscription id"), _check_event(args[1], text)
        )
    if tag == "NOTICE" and len(args) == 1:
        return NoticeMessage(_string(args[0], text, "notice"))
    if tag == "EOSE" and len(args) == 1:
        return EoseMessage(_string(args[0], text, "subscription id"))
    if tag == "OK" and len(args) in (2, 3):
        event_id = _string(args[0], text, "event id")
        if not isinstance(args[1], bool):
            raise _fail(text, "OK flag is not a boolean")
        message = _string(args[2], text, "OK message") if len(args) == 3 else ""
        return OkMessage(event_id, args[1], message)
    if tag == "AUTH" and len(args) == 1:
        return AuthMessage(_string(args[0], text, "challenge"))
    raise _fail(text, f"unknown or malformed {tag!r} message")


def auth_pre_event(
    pubkey: str, relay_url: str, challenge: str, now: Optional[int] = None
) -> Dict[str, Any]:
    """The unsigned event that answers a relay's AUTH challenge."""
    return {
        "pubkey": pubkey,
        "created_at": int(time.time()) if now is None else now,
        "kind": AUTH_EVENT_KIND,
        "tags": [["relay", relay_url], ["challenge", challenge]],
        "content": "",
    }