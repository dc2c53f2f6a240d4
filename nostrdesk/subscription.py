"""Book-keeping of the subscriptions held open on one relay."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

Filter = Dict[str, Any]


@dataclass
class Subscription:
    """A subscription: its wire id, its filters and whether EOSE has arrived."""

    id: str
    filters: List[Filter] = field(default_factory=list)
    eose: bool = False

    def set_eose(self) -> None:
        self.eose = True

    def req_message(self) -> list:
        """The client message that opens this subscription."""
        return ["REQ", self.id, *self.filters]

    def close_message(self) -> list:
        """The client message that closes this subscription."""
        return ["CLOSE", self.id]


class Subscriptions:
    """Subscriptions indexed both by a local handle and by wire id."""

    def __init__(self) -> None:
        self._handle_to_id: Dict[str, str] = {}
        self._by_id: Dict[str, Subscription] = {}
        self._count = 0

    def add(self, handle: str, filters: List[Filter]) -> str:
        """Create a subscription under ``handle`` and return its new id."""
        sub_id = str(self._count)
        self._count += 1
        self._handle_to_id[handle] = sub_id
        self._by_id[sub_id] = Subscription(sub_id, list(filters))
        return sub_id

    def has(self, handle: str) -> bool:
        sub_id = self._handle_to_id.get(handle)
        return sub_id is not None and sub_id in self._by_id

    def get(self, handle: str) -> Optional[Subscription]:
        sub_id = self._handle_to_id.get(handle)
        if sub_id is None:
            return None
        return self._by_id.get(sub_id)

    def get_by_id(self, sub_id: str) -> Optional[Subscription]:
        return self._by_id.get(sub_id)

    def get_handle_by_id(self, sub_id: str) -> Optional[str]:
        return next(
            (handle for handle, xid in self._handle_to_id.items() if xid == sub_id),
            None,
        )

    def remove(self, handle: str) -> Optional[str]:
        """Drop the subscription under ``handle``; return its id if there was one."""
        sub_id = self._handle_to_id.pop(handle, None)
        if sub_id is not None:
            self._by_id.pop(sub_id, None)
        return sub_id

    def is_empty(self) -> bool:
        return not self._by_id

    def __len__(self) -> int:
        return len(self._by_id)