"""People, their profile metadata, and searching them by name."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Tag search hands back at most this many people.
MAX_TAG_RESULTS = 10

_KNOWN_FIELDS = ("name", "about", "picture", "nip05")

# Scores are 16-bit unsigned and wrap when a long name is subtracted.
_SCORE_MODULUS = 1 << 16


@dataclass
class Metadata:
    """Profile metadata a person publishes about themselves."""

    name: Optional[str] = None
    about: Optional[str] = None
    picture: Optional[str] = None
    nip05: Optional[str] = None
    other: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, text: str) -> "Metadata":
        """Parse a metadata JSON object; unknown fields are kept in ``other``."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"metadata is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("metadata is not a JSON object")
        known: Dict[str, Optional[str]] = {}
        for name in _KNOWN_FIELDS:
            value = data.get(name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"metadata field {name!r} is not a string")
            known[name] = value
        other = {k: v for k, v in data.items() if k not in _KNOWN_FIELDS}
        return cls(other=other, **known)

    def to_json(self) -> str:
        """Serialize to a JSON object, leaving out unset known fields."""
        data: Dict[str, Any] = {
            name: getattr(self, name)
            for name in _KNOWN_FIELDS
            if getattr(self, name) is not None
        }
        data.update((k, v) for k, v in self.other.items() if k not in _KNOWN_FIELDS)
        return json.dumps(data)


@dataclass
class Person:
    """Everything stored about one person."""

    pubkey: str
    metadata: Optional[Metadata] = None
    metadata_at: Optional[int] = None
    nip05_valid: bool = False
    nip05_last_checked: Optional[int] = None
    followed: bool = False
    followed_last_updated: int = 0
    muted: bool = False
    relay_list_last_received: int = 0
    relay_list_created_at: int = 0

    def display_name(self) -> Optional[str]:
        """The non-empty ``display_name`` if set, otherwise the name."""
        if self.metadata is None:
            return None
        value = self.metadata.other.get("display_name")
        if isinstance(value, str) and value:
            return value
        return self.metadata.name

    def name(self) -> Optional[str]:
        return self.metadata.name if self.metadata else None

    def about(self) -> Optional[str]:
        return self.metadata.about if self.metadata else None

    def picture(self) -> Optional[str]:
        return self.metadata.picture if self.metadata else None

    def nip05(self) -> Optional[str]:
        return self.metadata.nip05 if self.metadata else None


def _sort_key(person: Person) -> Tuple[bool, str, str]:
    shown = person.display_name()
    # People without a display name come first.
    return (shown is not None, shown.lower() if shown is not None else "", person.pubkey)


def sort_people(people: Iterable[Person]) -> List[Person]:
    """People ordered by lower-cased display name, then by public key."""
    return sorted(people, key=_sort_key)


def _score(person: Person, search: str) -> Optional[Tuple[int, str]]:
    score = 0
    result_name = ""

    shown = person.display_name()
    if shown is not None:
        matchable = shown.lower()
        if matchable.startswith(search):
            score = 300
            result_name = shown
        if search in matchable:
            score = 200
            result_name = shown

    if score == 0 and person.nip05_valid:
        nip05 = person.nip05()
        if nip05 is not None:
            nip05 = nip05.lower()
            if nip05.startswith(search):
                score = 400
                result_name = nip05
            if search in nip05:
                score = 100
                result_name = nip05

    if score == 0:
        return None
    if not result_name:
        result_name = person.pubkey
    # Longer names match more easily, so they rank lower.
    score = (score - len(result_name.encode("utf-8"))) % _SCORE_MODULUS
    return score, result_name


def search_people_to_tag(people: Iterable[Person], text: str) -> List[Tuple[str, str]]:
    """Autocomplete people for tagging: up to ten ``(name, pubkey)`` pairs, best first."""
    if text.startswith("@"):
        text = text[1:]
    search = text.lower()

    results: List[Tuple[int, str, str]] = []
    for person in people:
        scored = _score(person, search)
        if scored is not None:
            results.append((scored[0], scored[1], person.pubkey))

    results.sort(key=lambda r: r[0], reverse=True)
    return [(name, pubkey) for _, name, pubkey in results[:MAX_TAG_RESULTS]]