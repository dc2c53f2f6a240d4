"""People kept in memory and in the ``person`` table of the database."""

from __future__ import annotations

import copy
import json
import logging
import re
import sqlite3
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from nostrdesk.people import Metadata, Person, search_people_to_tag, sort_people

log = logging.getLogger(__name__)

# Relay lists are asked for again once they are older than this.
RELAY_LIST_REFRESH_SECONDS = 60 * 60 * 8
# A valid NIP-05 identifier is checked again after this long...
NIP05_RECHECK_VALID_SECONDS = 60 * 60 * 24 * 14
# ...and an invalid one after this long.
NIP05_RECHECK_INVALID_SECONDS = 60 * 60 * 24

_PUBKEY_RE = re.compile(r"[0-9a-f]{64}")

_COLUMNS = (
    "pubkey, metadata, metadata_at, nip05_valid, nip05_last_checked, "
    "followed, followed_last_updated, muted, relay_list_last_received, "
    "relay_list_created_at"
)


def _now(now: Optional[int]) -> int:
    return int(time.time()) if now is None else now


def _check_pubkey(pubkey: str) -> str:
    if not isinstance(pubkey, str) or not _PUBKEY_RE.fullmatch(pubkey):
        raise ValueError(f"not a lower-case hex public key: {pubkey!r}")
    return pubkey


def _placeholders(count: int) -> str:
    if count == 0:
        raise ValueError("at least one public key is required")
    return ",".join("?" * count)


def _parse_metadata(text: Optional[str]) -> Optional[Metadata]:
    if text is None or text.strip() == "null":
        return None
    return Metadata.from_json(text)


def _row_to_person(row: Sequence[Any]) -> Person:
    return Person(
        pubkey=_check_pubkey(row[0]),
        metadata=_parse_metadata(row[1]),
        metadata_at=row[2],
        nip05_valid=bool(row[3]),
        nip05_last_checked=row[4],
        followed=bool(row[5]),
        followed_last_updated=row[6],
        muted=bool(row[7]),
        relay_list_last_received=row[8],
        relay_list_created_at=row[9],
    )


def _patch_nip05(text: Optional[str], nip05: Optional[str]) -> Optional[str]:
    """Merge-patch the ``nip05`` field of stored metadata JSON."""
    if text is None:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    if nip05 is None:
        data.pop("nip05", None)
    else:
        data["nip05"] = nip05
    return json.dumps(data)


def create_person_table(conn: sqlite3.Connection) -> None:
    """Create the person table if it does not exist yet."""
    with conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS person ("
            "pubkey TEXT PRIMARY KEY NOT NULL, "
            "metadata TEXT DEFAULT NULL, "
            "metadata_at INTEGER DEFAULT NULL, "
            "nip05_valid INTEGER NOT NULL DEFAULT 0, "
            "nip05_last_checked INTEGER DEFAULT NULL, "
            "followed INTEGER NOT NULL DEFAULT 0, "
            "followed_last_updated INTEGER NOT NULL DEFAULT 0, "
            "muted INTEGER NOT NULL DEFAULT 0, "
            "relay_list_last_received INTEGER NOT NULL DEFAULT 0, "
            "relay_list_created_at INTEGER NOT NULL DEFAULT 0)"
        )


class PeopleStore:
    """People cached in memory and kept in step with the database."""

    def __init__(self, conn: sqlite3.Connection, relay_tracker: Any = None) -> None:
        self._conn = conn
        self._people: Dict[str, Person] = {}
        self._recheck_nip05: Set[str] = set()
        self.relay_tracker = relay_tracker
        self.active_person: Optional[str] = None
        self.active_person_write_relays: List[Tuple[str, int]] = []
        # Date of the last self-owned contact list that was processed.
        self.last_contact_list_asof = 0

    # -- reading from the database -------------------------------------

    def _fetch(self, where: str = "", params: Sequence[Any] = ()) -> List[Person]:
        sql = f"SELECT {_COLUMNS} FROM person"
        if where:
            sql = f"{sql} WHERE {where}"
        return [_row_to_person(row) for row in self._conn.execute(sql, tuple(params))]

    def _fetch_one(self, pubkey: str) -> Optional[Person]:
        people = self._fetch("pubkey=?", (pubkey,))
        return people[0] if people else None

    def _fetch_many(self, pubkeys: Sequence[str]) -> List[Person]:
        return self._fetch(f"pubkey IN ({_placeholders(len(pubkeys))})", pubkeys)

    def _load_into_memory(self, pubkey: str) -> None:
        person = self._fetch_one(pubkey)
        if person is not None:
            self._people[pubkey] = person

    # -- queries ---------------------------------------------------------

    def get_followed_pubkeys(self) -> List[str]:
        return [p.pubkey for p in self._people.values() if p.followed]

    def get_followed_pubkeys_needing_relay_lists(
        self, among_these: Iterable[str], now: Optional[int] = None
    ) -> List[str]:
        """Followed people among these whose relay list has not come in lately."""
        cutoff = _now(now) - RELAY_LIST_REFRESH_SECONDS
        among = set(among_these)
        return [
            p.pubkey
            for p in self._people.values()
            if p.followed and p.relay_list_last_received < cutoff and p.pubkey in among
        ]

    def get(self, pubkey: str) -> Optional[Person]:
        """A copy of the person, loading them from the database if needed."""
        pubkey = _check_pubkey(pubkey)
        if pubkey not in self._people:
            self._load_into_memory(pubkey)
        person = self._people.get(pubkey)
        return copy.deepcopy(person) if person is not None else None

    def get_all(self) -> List[Person]:
        """Copies of everyone in memory, ordered by display name then key."""
        return sort_people(copy.deepcopy(p) for p in self._people.values())

    def search_people_to_tag(self, text: str) -> List[Tuple[str, str]]:
        return search_people_to_tag(self._people.values(), text)

    # -- creating --------------------------------------------------------

    def create_all_if_missing(self, pubkeys: Iterable[str]) -> None:
        """Make sure these people exist in the database and in memory."""
        missing = list(
            dict.fromkeys(
                pk for pk in map(_check_pubkey, pubkeys) if pk not in self._people
            )
        )
        if not missing:
            return
        with self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO person (pubkey) VALUES "
                + ",".join("(?)" for _ in missing),
                missing,
            )
        for person in self._fetch_many(missing):
            self._people[person.pubkey] = person

    def load_all_followed(self) -> None:
        """Load everyone followed or muted; only before the store is otherwise used."""
        if self._people:
            raise RuntimeError(
                "load_all_followed should only be called before people is otherwise used."
            )
        for person in self._fetch("followed=1 OR muted=1"):
            self._people[person.pubkey] = person

    def populate_new_people(self) -> None:
        """Add a person row for every author in the event table."""
        with self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO person (pubkey) SELECT DISTINCT pubkey FROM event"
            )

    # -- metadata and NIP-05 --------------------------------------------

    def recheck_nip05_on_update_metadata(self, pubkey: str) -> None:
        """Force a NIP-05 recheck when this person's metadata next arrives."""
        self._recheck_nip05.add(_check_pubkey(pubkey))

    def update_metadata(
        self,
        pubkey: str,
        metadata: Metadata,
        asof: int,
        now: Optional[int] = None,
    ) -> bool:
        """Store newer metadata; return True if the NIP-05 id should be validated now."""
        pubkey = _check_pubkey(pubkey)
        now = _now(now)
        self.create_all_if_missing([pubkey])
        person = self._people[pubkey]

        if person.metadata_at is None or asof > person.metadata_at:
            old_nip05 = person.metadata.nip05 if person.metadata else None
            nip05_changed = metadata.nip05 != old_nip05
            person.metadata = copy.deepcopy(metadata)
            person.metadata_at = asof
            if nip05_changed:
                person.nip05_valid = False
                person.nip05_last_checked = None
            with self._conn:
                self._conn.execute(
                    "UPDATE person SET metadata=?, metadata_at=?, nip05_valid=?, "
                    "nip05_last_checked=? WHERE pubkey=?",
                    (
                        person.metadata.to_json(),
                        person.metadata_at,
                        int(person.nip05_valid),
                        person.nip05_last_checked,
                        pubkey,
                    ),
                )

        if person.nip05() is None:
            return False

        if pubkey in self._recheck_nip05:
            self._recheck_nip05.discard(pubkey)
            recheck = True
        elif person.nip05_last_checked is not None:
            period = (
                NIP05_RECHECK_VALID_SECONDS
                if person.nip05_valid
                else NIP05_RECHECK_INVALID_SECONDS
            )
            recheck = now - person.nip05_last_checked > period
        else:
            recheck = True

        if recheck:
            self.update_nip05_last_checked(pubkey, now)
        return recheck

    def update_nip05_last_checked(self, pubkey: str, now: Optional[int] = None) -> None:
        pubkey = _check_pubkey(pubkey)
        now = _now(now)
        person = self._people.get(pubkey)
        if person is not None:
            person.nip05_last_checked = now
        with self._conn:
            self._conn.execute(
                "UPDATE person SET nip05_last_checked=? WHERE pubkey=?", (now, pubkey)
            )

    def upsert_nip05_validity(
        self,
        pubkey: str,
        nip05: Optional[str],
        nip05_valid: bool,
        nip05_last_checked: int,
    ) -> None:
        """Record the outcome of validating a person's NIP-05 identifier."""
        pubkey = _check_pubkey(pubkey)
        person = self._people.get(pubkey)
        if person is not None:
            if person.metadata is None:
                person.metadata = Metadata(nip05=nip05)
            else:
                person.metadata.nip05 = nip05
            person.nip05_valid = bool(nip05_valid)
            person.nip05_last_checked = nip05_last_checked

        with self._conn:
            row = self._conn.execute(
                "SELECT metadata FROM person WHERE pubkey=?", (pubkey,)
            ).fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO person (pubkey, metadata, nip05_valid, nip05_last_checked) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        pubkey,
                        Metadata(nip05=nip05).to_json(),
                        int(bool(nip05_valid)),
                        nip05_last_checked,
                    ),
                )
            else:
                self._conn.execute(
                    "UPDATE person SET metadata=?, nip05_valid=?, nip05_last_checked=? "
                    "WHERE pubkey=?",
                    (
                        _patch_nip05(row[0], nip05),
                        int(bool(nip05_valid)),
                        nip05_last_checked,
                        pubkey,
                    ),
                )

    # -- following and muting -------------------------------------------

    def follow(self, pubkey: str, follow: bool) -> None:
        """Follow or unfollow one person."""
        pubkey = _check_pubkey(pubkey)
        if bool(follow) == (pubkey in self.get_followed_pubkeys()):
            return
        flag = int(bool(follow))
        with self._conn:
            self._conn.execute(
                "INSERT INTO person (pubkey, followed) VALUES (?, ?) "
                "ON CONFLICT(pubkey) DO UPDATE SET followed=?",
                (pubkey, flag, flag),
            )
        person = self._people.get(pubkey)
        if person is not None:
            person.followed = bool(flag)
        else:
            self._load_into_memory(pubkey)
        if self.relay_tracker is not None:
            self.relay_tracker.add_someone(pubkey)

    def follow_all(self, pubkeys: Sequence[str], merge: bool, asof: int) -> None:
        """Follow all these people; unless merging, unfollow everyone else.

        Rows whose following state was updated at or after ``asof`` are left alone.
        """
        pubkeys = list(map(_check_pubkey, pubkeys))
        if merge:
            followed = set(self.get_followed_pubkeys())
            if all(pk in followed for pk in pubkeys):
                return

        log.debug(
            "Updating following list, %d people long, merge=%s", len(pubkeys), merge
        )
        self.create_all_if_missing(pubkeys)
        marks = _placeholders(len(pubkeys))

        with self._conn:
            self._conn.execute(
                "UPDATE person SET followed=1, followed_last_updated=? "
                f"WHERE pubkey IN ({marks}) AND followed_last_updated<?",
                (asof, *pubkeys, asof),
            )
            if not merge:
                self._conn.execute(
                    "UPDATE person SET followed=0, followed_last_updated=? "
                    f"WHERE pubkey NOT IN ({marks}) AND followed_last_updated<?",
                    (asof, *pubkeys, asof),
                )

        wanted = set(pubkeys)
        for pubkey, person in self._people.items():
            if person.followed_last_updated >= asof:
                continue
            if pubkey in wanted:
                person.followed = True
                person.followed_last_updated = asof
            elif not merge:
                person.followed = False
                person.followed_last_updated = asof

        if self.relay_tracker is not None:
            for pubkey in pubkeys:
                self.relay_tracker.add_someone(pubkey)

    def mute(self, pubkey: str, mute: bool) -> None:
        pubkey = _check_pubkey(pubkey)
        flag = int(bool(mute))
        with self._conn:
            self._conn.execute(
                "INSERT INTO person (pubkey, muted) VALUES (?, ?) "
                "ON CONFLICT(pubkey) DO UPDATE SET muted=?",
                (pubkey, flag, flag),
            )
        person = self._people.get(pubkey)
        if person is not None:
            person.muted = bool(flag)
        else:
            self._load_into_memory(pubkey)

    # -- relay lists and the active person -------------------------------

    def update_relay_list_stamps(
        self, pubkey: str, created_at: int, now: Optional[int] = None
    ) -> bool:
        """Note a relay list arrived; return True if it is newer than the one held."""
        pubkey = _check_pubkey(pubkey)
        now = _now(now)
        person = self._people.get(pubkey)
        if person is None:
            log.warning("Relay list for a person not in memory: %s", pubkey)
            return False

        person.relay_list_last_received = now
        newer = created_at > person.relay_list_created_at
        if newer:
            person.relay_list_created_at = created_at
        with self._conn:
            self._conn.execute(
                "UPDATE person SET relay_list_last_received=?, relay_list_created_at=? "
                "WHERE pubkey=?",
                (now, person.relay_list_created_at, pubkey),
            )
        return newer

    def set_active_person(
        self, pubkey: str, write_relays: Iterable[Tuple[str, int]]
    ) -> None:
        """Make this person active, along with their best write relays."""
        self.active_person = _check_pubkey(pubkey)
        self.active_person_write_relays = list(write_relays)