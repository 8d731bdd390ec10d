import json

import pytest

from git_sticky_mirror.constants import keys
from git_sticky_mirror.state import (
    CacheState,
    GitHubActionsStateStore,
    JsonFileStateStore,
    MemoryStateStore,
    clear_cache_state,
    load_cache_state,
    save_cache_state,
)
from tests.fixtures import isolated_env, lease, mount_base  # noqa: F401


@pytest.fixture
def cache_state(lease):
    return CacheState.from_lease(lease, "https://github.com/foo/bar.git", True, False)


def test_cache_state_round_trips_lease(lease, cache_state):
    assert cache_state.to_lease() == lease
    assert cache_state.performed_hydration is True


def test_cache_state_has_no_token_field():
    assert not any("token" in name for name in CacheState.model_fields)


def test_save_load_clear(cache_state):
    store = MemoryStateStore()
    save_cache_state(store, cache_state)
    assert load_cache_state(store) == cache_state
    clear_cache_state(store)
    assert load_cache_state(store) is None


def test_load_missing():
    assert load_cache_state(MemoryStateStore()) is None


@pytest.mark.parametrize("raw", ["not json", "{}", '{"expose_id": "x"}', "[]"])
def test_load_invalid(raw):
    store = MemoryStateStore({keys.STATE_CACHE: raw})
    assert load_cache_state(store) is None


# region JsonFileStateStore


def test_json_file_store_persists(tmp_path, cache_state):
    path = tmp_path / "state" / "cache.json"
    save_cache_state(JsonFileStateStore(path), cache_state)
    # a new process only has the file
    assert load_cache_state(JsonFileStateStore(path)) == cache_state
    assert keys.STATE_CACHE in json.loads(path.read_text())


def test_json_file_store_keeps_other_keys(tmp_path):
    path = tmp_path / "cache.json"
    store = JsonFileStateStore(path)
    store.set("a", "1")
    store.set("b", "2")
    assert JsonFileStateStore(path).get("a") == "1"
    assert JsonFileStateStore(path).get("b") == "2"


@pytest.mark.parametrize("content", ["garbage", "[1, 2]"])
def test_json_file_store_unreadable(tmp_path, content):
    path = tmp_path / "cache.json"
    path.write_text(content)
    assert JsonFileStateStore(path).get(keys.STATE_CACHE) is None


def test_json_file_store_path_is_directory(tmp_path):
    assert JsonFileStateStore(tmp_path).get(keys.STATE_CACHE) is None


# endregion JsonFileStateStore

# region GitHubActionsStateStore


def test_actions_store_writes_state_file(tmp_path, monkeypatch):
    state_file = tmp_path / "state"
    monkeypatch.setenv("GITHUB_STATE", str(state_file))
    assert GitHubActionsStateStore.available()

    store = GitHubActionsStateStore()
    store.set("gitStickyMirror", '{"a": 1}')
    lines = state_file.read_text().splitlines()
    assert lines[0].startswith("gitStickyMirror<<ghadelimiter_")
    assert lines[1] == '{"a": 1}'
    assert lines[2] == lines[0].split("<<", 1)[1]
    # visible within the same phase
    assert store.get("gitStickyMirror") == '{"a": 1}'


def test_actions_store_reads_post_phase_env(monkeypatch, cache_state):
    monkeypatch.setenv(f"STATE_{keys.STATE_CACHE}", cache_state.model_dump_json())
    assert load_cache_state(GitHubActionsStateStore(state_file="")) == cache_state


def test_actions_store_unavailable():
    assert not GitHubActionsStateStore.available()
    with pytest.raises(RuntimeError):
        GitHubActionsStateStore().set("k", "v")


# endregion GitHubActionsStateStore
