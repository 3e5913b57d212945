"""
Unit tests for SessionStateStore.

Tests:
- Socket ids are monotonic per workspace and never reused
- Save/load round trip through the JSON file
- A corrupt file degrades to empty state with a warning
- Failed transactions leave the file untouched
"""

import json

import pytest

from i3mux.core.state import SessionStateStore, format_socket_id, socket_counter, socket_prefix
from i3mux.errors import BindingError, StateCorruptionError
from i3mux.models import Session


@pytest.fixture
def store(tmp_path):
    return SessionStateStore(tmp_path / "state.json")


class TestSocketIds:
    def test_format(self):
        assert format_socket_id("8", 1) == "ws8-001"
        assert format_socket_id("12", 42) == "ws12-042"
        assert socket_prefix("8") == "ws8"

    def test_monotonic_allocation(self, store):
        store.bind("8", Session.local())
        assert store.allocate_socket("8") == "ws8-001"
        assert store.allocate_socket("8") == "ws8-002"

    def test_ids_never_reused(self, store):
        store.bind("8", Session.local())
        first = store.allocate_socket("8")
        store.allocate_socket("8")
        store.remove_socket("8", first)

        assert store.allocate_socket("8") == "ws8-003"

    def test_next_id_after_attach(self, store):
        store.bind("3", Session.local(), session_name="work", next_socket_id=5)
        assert store.allocate_socket("3") == "ws3-005"

    def test_existing_id_skipped(self, store):
        binding = store.bind("8", Session.local())
        store.allocate_socket("8")
        binding.next_socket_id = 1
        assert store.allocate_socket("8") == "ws8-002"

    def test_allocate_requires_binding(self, store):
        with pytest.raises(BindingError):
            store.allocate_socket("4")


class TestPersistence:
    def test_round_trip(self, store, tmp_path):
        with store.transaction():
            store.bind("8", Session.remote("dev@build-box"), session_name="build")
            socket_id = store.allocate_socket("8")
            store.record_window("8", socket_id, 94811)

        reloaded = SessionStateStore(tmp_path / "state.json")
        state = reloaded.load()

        binding = state.workspaces["8"]
        assert binding.session.host == "dev@build-box"
        assert binding.session_name == "build"
        assert binding.next_socket_id == 2
        assert binding.sockets["ws8-001"].window_id == 94811

    def test_missing_file_is_empty(self, store, caplog):
        assert store.load().workspaces == {}
        assert store.last_error is None
        # First run: nothing to warn about
        assert "WARNING" not in caplog.text

    def test_corrupt_file_yields_empty_state(self, store, caplog):
        store.state_file.write_text('{"workspaces": {"8": ')

        state = store.load()

        assert state.workspaces == {}
        assert isinstance(store.last_error, StateCorruptionError)
        assert "proceeding with empty state" in caplog.text

    def test_invalid_shape_yields_empty_state(self, store):
        store.state_file.write_text(json.dumps({"workspaces": {"8": {"next_socket_id": 0}}}))
        assert store.load().workspaces == {}
        assert store.last_error is not None

    def test_failed_transaction_saves_nothing(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.bind("8", Session.local())
                store.allocate_socket("8")
                raise RuntimeError("spawn failed")

        assert not store.state_file.exists()

    def test_save_is_atomic(self, store):
        with store.transaction():
            store.bind("1", Session.local())

        leftovers = [p.name for p in store.state_file.parent.iterdir() if p.name.startswith(".state-")]
        assert leftovers == []
        assert json.loads(store.state_file.read_text())["workspaces"]["1"]["next_socket_id"] == 1

    def test_transaction_sees_other_writers(self, store, tmp_path):
        other = SessionStateStore(tmp_path / "state.json")
        with other.transaction():
            other.bind("8", Session.local())
            other.allocate_socket("8")

        with store.transaction():
            assert store.allocate_socket("8") == "ws8-002"


class TestBindings:
    def test_rebind_same_session_keeps_sockets(self, store):
        store.bind("8", Session.local())
        store.allocate_socket("8")
        store.allocate_socket("8")

        binding = store.bind("8", Session.local(), session_name="work")

        assert set(binding.sockets) == {"ws8-001", "ws8-002"}
        assert binding.session_name == "work"
        assert store.allocate_socket("8") == "ws8-003"

    def test_rebind_never_lowers_counter_below_used_ids(self, store):
        binding = store.bind("8", Session.local())
        store.allocate_socket("8")
        binding.next_socket_id = 1

        store.bind("8", Session.local())

        assert store.get_binding("8").next_socket_id == 2

    def test_rebind_other_session_refused(self, store):
        store.bind("8", Session.local())
        store.allocate_socket("8")

        with pytest.raises(BindingError, match="already bound"):
            store.bind("8", Session.remote("host"))

        assert list(store.get_binding("8").sockets) == ["ws8-001"]
        assert not store.get_binding("8").session.is_remote

    def test_socket_counter(self):
        assert socket_counter("ws8-012") == 12
        assert socket_counter("scratch") is None

    def test_record_window_unknown_socket(self, store):
        store.bind("8", Session.local())
        with pytest.raises(BindingError):
            store.record_window("8", "ws8-009", 1)

    def test_find_socket(self, store):
        store.bind("8", Session.local())
        store.allocate_socket("8")
        workspace, entry = store.find_socket("ws8-001")
        assert workspace == "8"
        assert entry.window_id is None
        assert store.find_socket("ws9-001") is None

    def test_prune_empty(self, store):
        store.bind("1", Session.local())
        store.bind("2", Session.local())
        store.allocate_socket("2")

        assert store.prune_empty() == ["1"]
        assert list(store.list()) == ["2"]

    def test_list_ordered_numerically(self, store):
        for ws in ("10", "2", "notes"):
            store.bind(ws, Session.local())
        assert list(store.list()) == ["2", "10", "notes"]

    def test_unbind(self, store):
        store.bind("8", Session.local())
        assert store.unbind("8") is not None
        assert store.unbind("8") is None
