import json

import pytest

from akclient.client.preferences import Preferences
from akclient.client.profile_store import (
    ACTIVE_CHANGED,
    ACTIVE_SERVER_KEY,
    SERVERS_CHANGED,
    SERVERS_KEY,
    ProfileStore,
    server_name_from_url,
)
from akclient.client.transport import SERVER_URL_KEY, TransportManager


def test_initial_state_has_no_servers(store):
    assert store.servers == []
    assert store.active_server_id is None
    assert store.active_server is None
    assert store.server_statuses == {}


def test_add_first_server_auto_activates(store, transport):
    profile = store.add("Test", "https://test.example.com")

    assert len(store.servers) == 1
    assert profile.name == "Test"
    assert profile.url == "https://test.example.com"
    assert profile.id
    assert store.active_server_id == profile.id
    assert store.active_server.name == "Test"
    assert transport.current_base_url() == "https://test.example.com"


@pytest.mark.parametrize(
    "url, stored",
    [
        ("https://registry.example.com/", "https://registry.example.com"),
        ("https://registry.example.com", "https://registry.example.com"),
        ("https://registry.example.com//", "https://registry.example.com/"),
        ("http://localhost:8080/", "http://localhost:8080"),
    ],
)
def test_add_strips_one_trailing_slash(store, url, stored):
    assert store.add("S", url).url == stored


def test_add_second_server_keeps_active(store, transport):
    first = store.add("First", "https://first.test")
    store.add("Second", "https://second.test")

    assert len(store.servers) == 2
    assert store.active_server_id == first.id
    assert transport.current_base_url() == "https://first.test"


def test_ids_are_unique(store):
    a = store.add("A", "https://a.test")
    b = store.add("A", "https://a.test")
    assert a.id != b.id


def test_remove_only_server_clears_active_and_base_url(store, transport, preferences):
    only = store.add("Only", "https://only.test")
    store.remove(only)

    assert store.servers == []
    assert store.active_server_id is None
    assert transport.current_base_url() == ""
    assert preferences.get(ACTIVE_SERVER_KEY) is None
    assert preferences.get(SERVERS_KEY) == []


def test_remove_active_server_falls_back_to_first(store, transport):
    a = store.add("A", "https://a.test")
    b = store.add("B", "https://b.test")
    store.switch_to(b)
    assert store.active_server_id == b.id

    store.remove(b)

    assert len(store.servers) == 1
    assert store.active_server_id == a.id
    assert transport.current_base_url() == "https://a.test"


def test_remove_inactive_server_keeps_active(store, transport):
    a = store.add("A", "https://a.test")
    b = store.add("B", "https://b.test")

    store.remove(b)

    assert store.active_server_id == a.id
    assert transport.current_base_url() == "https://a.test"


def test_switch_to_updates_active_and_transport(store, transport, preferences):
    store.add("A", "https://a.test")
    b = store.add("B", "https://b.test")

    store.switch_to(b)

    assert store.active_server_id == b.id
    assert store.active_server.name == "B"
    assert transport.current_base_url() == "https://b.test"
    assert preferences.get(ACTIVE_SERVER_KEY) == b.id
    assert preferences.get(SERVER_URL_KEY) == "https://b.test"


def test_switch_to_does_not_touch_token(store, transport):
    store.add("A", "https://a.test")
    b = store.add("B", "https://b.test")
    transport.set_token("tok")

    store.switch_to(b)

    assert transport.current_token() == "tok"


def test_active_server_is_none_when_id_does_not_match(store):
    store.add("A", "https://a.test")
    store.active_server_id = "nonexistent-id"
    assert store.active_server is None


def test_profiles_survive_reload(store, preferences, transport, settings):
    store.add("A", "https://a.test")
    b = store.add("B", "https://b.test/")
    store.switch_to(b)

    raw = json.loads(preferences.path.read_text(encoding="utf-8"))
    assert {"id", "name", "url", "addedAt"} <= set(raw[SERVERS_KEY][0])

    reloaded = ProfileStore(Preferences(settings.DATA_DIR), transport)
    assert [p.name for p in reloaded.servers] == ["A", "B"]
    assert reloaded.active_server_id == b.id
    assert reloaded.active_server.url == "https://b.test"


@pytest.mark.parametrize("saved", [[{"bogus": 1}], 42, "garbage"])
def test_unreadable_profiles_load_as_empty(preferences, transport, saved):
    preferences.set(SERVERS_KEY, saved)
    assert ProfileStore(preferences, transport).servers == []


def test_update_renames_without_switching(store, transport):
    a = store.add("A", "https://a.test")
    events = []
    store.subscribe(lambda event, profile: events.append(event))

    updated = store.update(a, name="Renamed")

    assert updated.name == "Renamed"
    assert updated.id == a.id
    assert updated.added_at == a.added_at
    assert store.active_server.name == "Renamed"
    assert events == [SERVERS_CHANGED]


def test_update_url_of_active_server_moves_transport(store, transport):
    a = store.add("A", "https://a.test")
    events = []
    store.subscribe(lambda event, profile: events.append(event))

    store.update(a, url="https://moved.test/")

    assert store.active_server.url == "https://moved.test"
    assert transport.current_base_url() == "https://moved.test"
    assert events == [SERVERS_CHANGED, ACTIVE_CHANGED]


def test_update_unknown_profile_returns_none(store):
    a = store.add("A", "https://a.test")
    store.remove(a)
    assert store.update(a, name="X") is None


def test_listeners_see_add_and_activation(store):
    events = []
    store.subscribe(lambda event, profile: events.append((event, profile.name)))

    store.add("A", "https://a.test")
    store.add("B", "https://b.test")

    assert events == [
        (SERVERS_CHANGED, "A"),
        (ACTIVE_CHANGED, "A"),
        (SERVERS_CHANGED, "B"),
    ]


def test_removing_last_active_server_emits_none(store):
    a = store.add("A", "https://a.test")
    events = []
    store.subscribe(lambda event, profile: events.append((event, profile)))

    store.remove(a)

    assert events[-1] == (ACTIVE_CHANGED, None)


@pytest.mark.parametrize(
    "url, name",
    [
        ("http://localhost:8080", "Local"),
        ("http://127.0.0.1:9000", "Local"),
        ("https://registry.example.com", "registry.example.com"),
        ("not a url", "Server"),
    ],
)
def test_server_name_from_url(url, name):
    assert server_name_from_url(url) == name


def test_migrate_legacy_single_server(preferences, settings, mounts):
    preferences.set(SERVER_URL_KEY, "http://localhost:8080")
    transport = TransportManager(preferences, settings, mounts=mounts)
    store = ProfileStore(preferences, transport)

    assert store.migrate_legacy_single_server() is True
    assert len(store.servers) == 1
    assert store.servers[0].name == "Local"
    assert store.servers[0].url == "http://localhost:8080"
    assert store.active_server_id == store.servers[0].id

    # 第二次调用不再生效
    assert store.migrate_legacy_single_server() is False
    assert len(store.servers) == 1


def test_migrate_without_legacy_url_is_noop(store):
    assert store.migrate_legacy_single_server() is False
    assert store.servers == []


def test_migrate_skipped_when_profiles_exist(store, preferences):
    store.add("A", "https://a.test")
    preferences.set(SERVER_URL_KEY, "https://other.test")
    assert store.migrate_legacy_single_server() is False
    assert [p.name for p in store.servers] == ["A"]


def test_check_server_statuses(store, adapter):
    a = store.add("A", "https://a.test")
    b = store.add("B", "https://b.test")
    adapter.add("GET", "/health", status=200)

    statuses = store.check_server_statuses()
    assert statuses == {a.id: True, b.id: True}
    assert store.server_statuses == statuses

    store.remove(a)
    assert a.id not in store.server_statuses


def test_set_server_status(store):
    a = store.add("A", "https://a.test")
    snapshot = store.server_statuses

    assert store.set_server_status(a.id, True) is True

    assert store.server_statuses == {a.id: True}
    assert snapshot == {}


def test_set_server_status_ignores_removed_profile(store):
    a = store.add("A", "https://a.test")
    store.remove(a)

    assert store.set_server_status(a.id, True) is False
    assert a.id not in store.server_statuses
