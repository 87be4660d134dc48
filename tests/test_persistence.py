"""
Tests for state persistence — DeployState round-trip and atomic writes.
"""

from pathlib import Path

from kubeship.core.models.state import MAX_HISTORY, DeployState, OperationRecord
from kubeship.core.persistence.state_file import default_state_path, load_state, save_state


class TestStateFile:
    def test_missing_file_gives_fresh_state(self, tmp_path: Path):
        state = load_state(tmp_path / "state.json")
        assert state.deployments == {}

    def test_save_and_load(self, tmp_path: Path):
        path = default_state_path(tmp_path)
        state = DeployState()
        record = state.get_or_create("0123456789ab", app_name="shop", namespace="web")
        record.image = "shop:dev-aaaa"
        record.record(OperationRecord(operation="deploy", state="healthy"))
        save_state(state, path)

        loaded = load_state(path)
        assert path == tmp_path / ".kubeship" / "state.json"
        assert loaded.deployments["0123456789ab"].namespace == "web"
        assert loaded.deployments["0123456789ab"].last.state == "healthy"

    def test_no_temp_files_left(self, tmp_path: Path):
        path = default_state_path(tmp_path)
        save_state(DeployState(), path)
        assert [p.name for p in path.parent.iterdir()] == ["state.json"]

    def test_corrupt_file_gives_fresh_state(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{broken")
        assert load_state(path).deployments == {}


class TestDeployState:
    def test_get_or_create_updates(self):
        state = DeployState()
        state.get_or_create("abc", app_name="shop")
        record = state.get_or_create("abc", namespace="web")
        assert record.app_name == "shop"
        assert record.namespace == "web"
        assert len(state.deployments) == 1

    def test_history_is_bounded(self):
        record = DeployState().get_or_create("abc")
        for i in range(MAX_HISTORY + 5):
            record.record(OperationRecord(operation="deploy", message=str(i)))
        assert len(record.history) == MAX_HISTORY
        assert record.last.message == str(MAX_HISTORY + 4)
