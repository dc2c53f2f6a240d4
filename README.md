# nostrdesk

This package holds the bookkeeping of a Nostr client, with no network or GUI code. It can:

- keep track of people: their profile metadata, who you follow, who you mute and when their NIP-05 identifier should be checked;
- choose which relays to watch so that every followed person is covered;
- keep track of the subscriptions open on a relay and build their `REQ` and `CLOSE` messages;
- parse the messages that a relay sends;
- store client settings in SQLite.

It uses only the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

### `nostrdesk.settings`

`Settings` is a dataclass that holds every setting with its default. `create_settings_table(conn)` creates the `settings` key/value table. `load_settings(conn)` reads it back, and any value it cannot parse falls back to its default. `save_settings(settings, conn)` writes every setting. When `override_dpi` or `public_key` is unset, its row is deleted.

### `nostrdesk.subscription`

`Subscriptions` maps your own handles, such as `"general_feed"`, to subscription ids. Ids are the numbers `"0"`, `"1"` and so on, handed out in order. Its methods are `add`, `has`, `get`, `get_by_id`, `get_handle_by_id`, `remove` and `is_empty`. A `Subscription` holds its `id`, its `filters` and an `eose` flag, which `set_eose()` sets. `req_message()` returns `["REQ", id, *filters]` and `close_message()` returns `["CLOSE", id]`.

### `nostrdesk.relays`

`RelayTracker` assigns followed public keys to relays, one pick at a time.

- `init(relays, person_relay_scores)` starts it afresh from `RelayRecord`s and each person's scored relays.
- `add_someone(pubkey)` makes the tracker start seeking relays for one more person.
- `set_person_relay_scores(scores, initialize_counts)` replaces the scores.
- `relay_disconnected(url, now)` frees a relay's people for reassignment and keeps the relay out of picking for 30 seconds.
- `pick(now)` returns the url of the relay that got the next `RelayAssignment`. When no assignment can be made it raises `RelayPickError`, whose `reason` is `PickFailureReason.NO_PEOPLE_LEFT` or `PickFailureReason.NO_PROGRESS`.

`RelayRecord.success_rate()` is the fraction of connection attempts that succeeded, or 0.5 when no attempt has been made.

### `nostrdesk.messages`

`parse_relay_message(text)` turns one text frame into an `EventMessage`, `NoticeMessage`, `EoseMessage`, `OkMessage` or `AuthMessage`. It raises `MessageParseError` (a `ValueError`) on anything malformed. `auth_pre_event(pubkey, relay_url, challenge, now)` builds the unsigned kind-22242 event that answers an AUTH challenge.

### `nostrdesk.people`

- `Metadata` holds `name`, `about`, `picture` and `nip05`. Any other fields go in `other`. It converts to and from JSON with `from_json` and `to_json`.
- `Person` holds everything stored about one person. `display_name()` gives a non-empty `display_name` from the metadata, falling back to the name.
- `sort_people(people)` orders people by lower-cased display name, then by public key.
- `search_people_to_tag(people, text)` returns up to ten `(name, pubkey)` pairs for autocompletion. A leading `@` in `text` is ignored.

### `nostrdesk.people_store`

`create_person_table(conn)` creates the `person` table. `PeopleStore(conn, relay_tracker=None)` keeps people in memory and in that table. Public keys must be 64 lower-case hex characters; anything else raises `ValueError`.

Its methods cover:

- creating and loading people: `create_all_if_missing`, `load_all_followed`, `populate_new_people`;
- reading them: `get`, `get_all`, `search_people_to_tag`;
- following and muting: `follow`, `follow_all`, `mute`;
- metadata and NIP-05 checks: `update_metadata`, `recheck_nip05_on_update_metadata`, `update_nip05_last_checked`, `upsert_nip05_validity`;
- relay lists and the active person: `get_followed_pubkeys_needing_relay_lists`, `update_relay_list_stamps`, `set_active_person`.

`update_metadata` returns `True` when the person's NIP-05 identifier is due for validation. When a `relay_tracker` is given, people you follow are added to it.

`populate_new_people` reads from an `event` table that has a `pubkey` column. This package does not create that table.

## Example

```python
import sqlite3

from nostrdesk.messages import EoseMessage, parse_relay_message
from nostrdesk.people import Metadata
from nostrdesk.people_store import PeopleStore, create_person_table
from nostrdesk.relays import RelayRecord, RelayTracker
from nostrdesk.settings import Settings, create_settings_table, load_settings, save_settings

conn = sqlite3.connect(":memory:")

create_settings_table(conn)
save_settings(Settings(max_relays=10), conn)
assert load_settings(conn).max_relays == 10

create_person_table(conn)
store = PeopleStore(conn)
alice = "a" * 64
store.update_metadata(alice, Metadata(name="Alice"), asof=1700000000, now=1700000000)
store.follow(alice, True)
assert store.get_followed_pubkeys() == [alice]
assert store.search_people_to_tag("@ali") == [("Alice", alice)]

tracker = RelayTracker(num_relays_per_person=1)
tracker.init(
    [RelayRecord("wss://a.example.com"), RelayRecord("wss://b.example.com")],
    {alice: [("wss://a.example.com", 10)]},
)
assert tracker.pick(now=0) == "wss://a.example.com"

assert parse_relay_message('["EOSE","0"]') == EoseMessage("0")
```

## What this package does not do

- It opens no connections. It does not talk to relays over websockets, does not fetch relay information documents and does not fetch avatars.
- It neither signs nor verifies events. `auth_pre_event` returns an unsigned event, and `parse_relay_message` only checks that an event has the expected fields.
- It has no functions that build subscription filters. `Subscriptions.add` takes filters you have built as plain dictionaries.
- It does not validate NIP-05 identifiers. `PeopleStore` only records when a check is due and what the result was.
- It has no command-line program and no user interface.