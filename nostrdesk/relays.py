"""Assigning followed people to the relays that carry their posts."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from nostrdesk.settings import DEFAULT_MAX_RELAYS, DEFAULT_NUM_RELAYS_PER_PERSON

# How long a relay that dropped its connection is kept out of picking.
EXCLUSION_SECONDS = 30

RelayScores = List[Tuple[str, int]]


def _now(now: Optional[int]) -> int:
    return int(time.time()) if now is None else now


@dataclass
class RelayRecord:
    """What is known about one relay."""

    url: str
    rank: int = 3
    success_count: int = 0
    failure_count: int = 0
    read: bool = False
    write: bool = False
    last_connected_at: Optional[int] = None
    last_general_eose_at: Optional[int] = None

    def success_rate(self) -> float:
        """Fraction of connection attempts that succeeded; 0.5 before any attempt."""
        attempts = self.success_count + self.failure_count
        if attempts == 0:
            return 0.5
        return self.success_count / attempts


@dataclass
class RelayAssignment:
    """A relay serving (or about to serve) the general feed for some people."""

    relay_url: str
    pubkeys: List[str] = field(default_factory=list)

    def merge_in(self, other: "RelayAssignment") -> None:
        """Add the people of another assignment on the same relay."""
        if self.relay_url != other.relay_url:
            raise ValueError("Attempted to merge relay assignments on different relays")
        self.pubkeys.extend(other.pubkeys)


class PickFailureReason(enum.Enum):
    """Why no relay could be picked."""

    NO_PEOPLE_LEFT = "All people accounted for."
    NO_PROGRESS = "Unable to make further progress."

    def __str__(self) -> str:
        return self.value


class RelayPickError(Exception):
    """Raised by :meth:`RelayTracker.pick` when no assignment can be made."""

    def __init__(self, reason: PickFailureReason) -> None:
        super().__init__(str(reason))
        self.reason = reason


class RelayTracker:
    """Keeps track of which followed people are assigned to which relays."""

    def __init__(
        self,
        num_relays_per_person: int = DEFAULT_NUM_RELAYS_PER_PERSON,
        max_relays: int = DEFAULT_MAX_RELAYS,
    ) -> None:
        self.num_relays_per_person = num_relays_per_person
        self.max_relays = max_relays
        self.all_relays: Dict[str, RelayRecord] = {}
        self.connected_relays: Set[str] = set()
        self.relay_assignments: Dict[str, RelayAssignment] = {}
        self.excluded_relays: Dict[str, int] = {}
        self.pubkey_counts: Dict[str, int] = {}
        self.person_relay_scores: Dict[str, RelayScores] = {}

    def init(
        self,
        relays: Iterable[RelayRecord],
        person_relay_scores: Mapping[str, Sequence[Tuple[str, int]]],
    ) -> None:
        """Start afresh with these relays and the best relays of each followed person."""
        self.all_relays.clear()
        self.connected_relays.clear()
        self.relay_assignments.clear()
        self.excluded_relays.clear()
        self.pubkey_counts.clear()
        self.person_relay_scores.clear()
        self.all_relays.update((relay.url, relay) for relay in relays)
        self.set_person_relay_scores(person_relay_scores, True)

    def add_someone(self, pubkey: str) -> None:
        """Start seeking relays for a person not yet counted or assigned."""
        if pubkey in self.pubkey_counts:
            return
        if any(pubkey in a.pubkeys for a in self.relay_assignments.values()):
            return
        self.pubkey_counts[pubkey] = self.num_relays_per_person

    def set_person_relay_scores(
        self,
        scores: Mapping[str, Sequence[Tuple[str, int]]],
        initialize_counts: bool,
    ) -> None:
        """Replace the person-relay scores; optionally reset how many relays each seeks."""
        self.person_relay_scores.clear()
        if initialize_counts:
            self.pubkey_counts.clear()
        for pubkey, relay_scores in scores.items():
            self.person_relay_scores[pubkey] = list(relay_scores)
            if initialize_counts:
                self.pubkey_counts[pubkey] = self.num_relays_per_person

    def relay_disconnected(self, url: str, now: Optional[int] = None) -> None:
        """Release a relay's assignments and keep it out of picking for a while."""
        assignment = self.relay_assignments.pop(url, None)
        if assignment is None:
            return
        self.excluded_relays[url] = _now(now) + EXCLUSION_SECONDS
        for pubkey in assignment.pubkeys:
            self.pubkey_counts[pubkey] = self.pubkey_counts.get(pubkey, 0) + 1

    def pick(self, now: Optional[int] = None) -> str:
        """Make the next assignment and return the url of the relay that got it."""
        now = _now(now)
        at_max_relays = len(self.relay_assignments) >= self.max_relays

        self.excluded_relays = {
            url: until for url, until in self.excluded_relays.items() if until > now
        }

        if not self.pubkey_counts:
            raise RelayPickError(PickFailureReason.NO_PEOPLE_LEFT)

        scoreboard: Dict[str, int] = dict.fromkeys(self.all_relays, 0)

        for pubkey, relay_scores in self.person_relay_scores.items():
            if not self.pubkey_counts.get(pubkey, 0):
                continue
            for relay, score in relay_scores:
                if relay in self.excluded_relays:
                    continue
                if at_max_relays and relay not in self.connected_relays:
                    continue
                assignment = self.relay_assignments.get(relay)
                if assignment is not None and pubkey in assignment.pubkeys:
                    continue
                if relay in scoreboard:
                    scoreboard[relay] += score

        for url in scoreboard:
            relay = self.all_relays[url]
            rank = max(0, int(relay.rank * (1.3 * relay.success_rate())))
            scoreboard[url] *= rank

        if not scoreboard:
            raise RelayPickError(PickFailureReason.NO_PROGRESS)
        winning_url = max(scoreboard, key=scoreboard.__getitem__)
        if scoreboard[winning_url] == 0:
            raise RelayPickError(PickFailureReason.NO_PROGRESS)

        existing = self.relay_assignments.get(winning_url)
        seeking = [pk for pk, count in self.pubkey_counts.items() if count > 0]
        covered: List[str] = []
        for pubkey in seeking:
            if existing is not None and pubkey in existing.pubkeys:
                continue
            relay_scores = self.person_relay_scores.get(pubkey)
            if relay_scores is None:
                continue
            if any(url == winning_url for url, _ in relay_scores):
                covered.append(pubkey)
                if self.pubkey_counts[pubkey] > 0:
                    self.pubkey_counts[pubkey] -= 1

        if not covered:
            raise RelayPickError(PickFailureReason.NO_PROGRESS)

        self.pubkey_counts = {pk: c for pk, c in self.pubkey_counts.items() if c > 0}

        assignment = RelayAssignment(winning_url, covered)
        if existing is not None:
            existing.merge_in(assignment)
        else:
            self.relay_assignments[winning_url] = assignment

        return winning_url