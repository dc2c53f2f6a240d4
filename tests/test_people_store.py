import sqlite3

import pytest

from nostrdesk.people import Metadata
from nostrdesk.people_store import (
    NIP05_RECHECK_INVALID_SECONDS,
    RELAY_LIST_REFRESH_SECONDS,
    PeopleStore,
    create_person_table,
)
from nostrdesk.relays import RelayTracker
from nostrdesk.settings import DEFAULT_NUM_RELAYS_PER_PERSON

PK_A = "a" * 64
PK_B = "b" * 64
PK_C = "c" * 64


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    create_person_table(connection)
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return PeopleStore(conn)


def test_create_all_if_missing_adds_rows_with_defaults(store, conn):
    store.create_all_if_missing([PK_A, PK_B, PK_A])
    rows = conn.execute("SELECT pubkey FROM person ORDER BY pubkey").fetchall()
    assert rows == [(PK_A,), (PK_B,)]
    person = store.get(PK_A)
    assert person.pubkey == PK_A
    assert person.metadata is None
    assert person.followed is False
    assert person.relay_list_created_at == 0


def test_invalid_pubkey_is_rejected(store):
    with pytest.raises(ValueError):
        store.create_all_if_missing(["not-a-key"])


def test_follow_persists_and_reloads(store, conn):
    store.follow(PK_A, True)
    assert store.get_followed_pubkeys() == [PK_A]

    fresh = PeopleStore(conn)
    fresh.load_all_followed()
    assert fresh.get_followed_pubkeys() == [PK_A]

    store.follow(PK_A, False)
    assert store.get_followed_pubkeys() == []
    assert conn.execute("SELECT followed FROM person").fetchone() == (0,)


def test_load_all_followed_requires_empty_store(store):
    store.create_all_if_missing([PK_A])
    with pytest.raises(RuntimeError):
        store.load_all_followed()


def test_load_all_followed_includes_muted(store, conn):
    store.mute(PK_B, True)
    store.create_all_if_missing([PK_C])
    fresh = PeopleStore(conn)
    fresh.load_all_followed()
    assert [p.pubkey for p in fresh.get_all()] == [PK_B]
    assert fresh.get(PK_B).muted is True


def test_get_loads_from_database(store, conn):
    store.follow(PK_A, True)
    fresh = PeopleStore(conn)
    person = fresh.get(PK_A)
    assert person.followed is True
    assert fresh.get(PK_C) is None


def test_get_returns_a_copy(store):
    store.create_all_if_missing([PK_A])
    copy = store.get(PK_A)
    copy.followed = True
    assert store.get(PK_A).followed is False


def test_follow_all_replaces_and_respects_asof(store, conn):
    store.follow_all([PK_A, PK_B], False, 100)
    assert sorted(store.get_followed_pubkeys()) == [PK_A, PK_B]

    # Older information is ignored.
    store.follow_all([PK_A], False, 50)
    assert sorted(store.get_followed_pubkeys()) == [PK_A, PK_B]

    store.follow_all([PK_A], False, 200)
    assert store.get_followed_pubkeys() == [PK_A]

    fresh = PeopleStore(conn)
    fresh.load_all_followed()
    assert fresh.get_followed_pubkeys() == [PK_A]


def test_follow_all_merge_keeps_others(store):
    store.follow_all([PK_A], False, 100)
    store.follow_all([PK_B], True, 200)
    assert sorted(store.get_followed_pubkeys()) == [PK_A, PK_B]


def test_follow_all_merge_of_known_people_changes_nothing(store, conn):
    store.follow_all([PK_A], False, 100)
    store.follow_all([PK_A], True, 300)
    row = conn.execute(
        "SELECT followed_last_updated FROM person WHERE pubkey=?", (PK_A,)
    ).fetchone()
    assert row == (100,)


def test_follow_all_empty_without_merge_raises(store):
    with pytest.raises(ValueError):
        store.follow_all([], False, 100)


def test_follow_adds_to_relay_tracker(conn):
    tracker = RelayTracker()
    store = PeopleStore(conn, relay_tracker=tracker)
    store.follow(PK_A, True)
    assert tracker.pubkey_counts == {PK_A: DEFAULT_NUM_RELAYS_PER_PERSON}


def test_update_metadata_newer_replaces_older_ignored(store, conn):
    store.update_metadata(PK_A, Metadata(name="alice"), 100, now=1000)
    store.update_metadata(PK_A, Metadata(name="old"), 50, now=1000)
    assert store.get(PK_A).name() == "alice"
    store.update_metadata(PK_A, Metadata(name="newer"), 150, now=1000)
    assert store.get(PK_A).metadata_at == 150

    stored = conn.execute("SELECT metadata FROM person").fetchone()[0]
    assert Metadata.from_json(stored).name == "newer"


def test_update_metadata_without_nip05_needs_no_check(store):
    assert store.update_metadata(PK_A, Metadata(name="alice"), 100, now=1000) is False


def test_update_metadata_nip05_recheck_schedule(store):
    md = Metadata(name="alice", nip05="alice@example.com")
    now = 10_000
    assert store.update_metadata(PK_A, md, 100, now=now) is True
    assert store.get(PK_A).nip05_last_checked == now

    assert store.update_metadata(PK_A, md, 101, now=now + 1) is False
    later = now + NIP05_RECHECK_INVALID_SECONDS + 1
    assert store.update_metadata(PK_A, md, 102, now=later) is True


def test_forced_nip05_recheck(store):
    md = Metadata(nip05="alice@example.com")
    store.update_metadata(PK_A, md, 100, now=10_000)
    store.recheck_nip05_on_update_metadata(PK_A)
    assert store.update_metadata(PK_A, md, 101, now=10_001) is True
    assert store.update_metadata(PK_A, md, 102, now=10_002) is False


def test_changed_nip05_resets_validity(store):
    store.upsert_nip05_validity(PK_A, "alice@example.com", True, 500)
    store.create_all_if_missing([PK_A])
    store.upsert_nip05_validity(PK_A, "alice@example.com", True, 500)
    assert store.get(PK_A).nip05_valid is True
    store.update_metadata(PK_A, Metadata(nip05="bob@example.com"), 100, now=1000)
    assert store.get(PK_A).nip05_valid is False


def test_upsert_nip05_validity_updates_memory_and_database(store, conn):
    store.update_metadata(PK_A, Metadata(name="alice"), 100, now=1000)
    store.upsert_nip05_validity(PK_A, "alice@example.com", True, 777)

    person = store.get(PK_A)
    assert person.nip05() == "alice@example.com"
    assert person.name() == "alice"
    assert person.nip05_last_checked == 777

    metadata, valid = conn.execute(
        "SELECT metadata, nip05_valid FROM person WHERE pubkey=?", (PK_A,)
    ).fetchone()
    assert valid == 1
    stored = Metadata.from_json(metadata)
    assert stored.nip05 == "alice@example.com"
    assert stored.name == "alice"


def test_upsert_nip05_validity_inserts_new_person(store, conn):
    store.upsert_nip05_validity(PK_B, "bob@example.com", False, 42)
    fresh = PeopleStore(conn)
    person = fresh.get(PK_B)
    assert person.nip05() == "bob@example.com"
    assert person.nip05_valid is False
    assert person.nip05_last_checked == 42


def test_update_relay_list_stamps(store, conn):
    assert store.update_relay_list_stamps(PK_A, 100, now=1000) is False
    store.create_all_if_missing([PK_A])
    assert store.update_relay_list_stamps(PK_A, 100, now=1000) is True
    assert store.update_relay_list_stamps(PK_A, 90, now=2000) is False
    person = store.get(PK_A)
    assert person.relay_list_created_at == 100
    assert person.relay_list_last_received == 2000
    row = conn.execute(
        "SELECT relay_list_last_received, relay_list_created_at FROM person"
    ).fetchone()
    assert row == (2000, 100)


def test_followed_pubkeys_needing_relay_lists(store):
    store.follow_all([PK_A, PK_B], False, 10)
    now = 100_000
    store.update_relay_list_stamps(PK_A, 5, now=now)
    needing = store.get_followed_pubkeys_needing_relay_lists([PK_A, PK_B], now=now)
    assert needing == [PK_B]
    later = now + RELAY_LIST_REFRESH_SECONDS + 1
    assert sorted(
        store.get_followed_pubkeys_needing_relay_lists([PK_A, PK_B], now=later)
    ) == [PK_A, PK_B]
    assert store.get_followed_pubkeys_needing_relay_lists([PK_C], now=later) == []


def test_mute_round_trip(store, conn):
    store.create_all_if_missing([PK_A])
    store.mute(PK_A, True)
    assert store.get(PK_A).muted is True
    assert PeopleStore(conn).get(PK_A).muted is True
    store.mute(PK_A, False)
    assert PeopleStore(conn).get(PK_A).muted is False


def test_populate_new_people(store, conn):
    conn.execute("CREATE TABLE event (id TEXT, pubkey TEXT)")
    conn.executemany(
        "INSERT INTO event VALUES (?, ?)",
        [("1", PK_A), ("2", PK_A), ("3", PK_B)],
    )
    store.populate_new_people()
    rows = conn.execute("SELECT pubkey FROM person ORDER BY pubkey").fetchall()
    assert rows == [(PK_A,), (PK_B,)]


def test_get_all_sorted_by_display_name(store):
    store.update_metadata(PK_A, Metadata(name="zed"), 1, now=1)
    store.update_metadata(PK_B, Metadata(name="Amy"), 1, now=1)
    assert [p.pubkey for p in store.get_all()] == [PK_B, PK_A]


def test_search_people_to_tag_uses_memory(store):
    store.update_metadata(PK_A, Metadata(name="alice"), 1, now=1)
    store.update_metadata(PK_B, Metadata(name="bob"), 1, now=1)
    assert store.search_people_to_tag("@ali") == [("alice", PK_A)]


def test_set_active_person(store):
    relays = [("wss://relay.example.com", 20)]
    store.set_active_person(PK_A, relays)
    assert store.active_person == PK_A
    assert store.active_person_write_relays == relays