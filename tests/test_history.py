"""Tests for the transcription history store."""
from datetime import datetime

import pytest

from whispertui.config import HistoryConfig
from whispertui.history import HistoryManager, HistoryStore, parse_history_filename


@pytest.fixture
def store(tmp_path):
    return HistoryStore(tmp_path / "history")


class TestFilenames:
    @pytest.mark.unit
    def test_parse_valid_name(self):
        assert parse_history_filename("2024-03-05_14-07-09-123-000.txt") == datetime(
            2024, 3, 5, 14, 7, 9, 123000
        )

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "name",
        ["notes.txt", "2024-03-05_14-07-09-123.txt", "2024-13-05_14-07-09-123-000.txt", "x.txt.bak"],
    )
    def test_parse_rejects_foreign_names(self, name):
        assert parse_history_filename(name) is None


class TestHistoryStore:
    """Tests for save/list/get/delete."""

    @pytest.mark.unit
    def test_save_writes_plain_text_file(self, store):
        entry = store.save("hello world")

        assert entry.path.read_text(encoding="utf-8") == "hello world"
        assert entry.path.parent == store.history_dir
        assert parse_history_filename(entry.path.name) == entry.timestamp

    @pytest.mark.unit
    def test_rapid_saves_get_distinct_names(self, store):
        entries = [store.save(f"entry {i}") for i in range(20)]

        assert len({e.id for e in entries}) == 20
        assert store.count() == 20

    @pytest.mark.unit
    def test_list_newest_first_with_paging(self, store):
        for i in range(5):
            store.save(f"entry {i}")

        assert [e.text for e in store.list()] == [f"entry {i}" for i in (4, 3, 2, 1, 0)]
        assert [e.text for e in store.list(limit=2)] == ["entry 4", "entry 3"]
        assert [e.text for e in store.list(limit=2, offset=3)] == ["entry 1", "entry 0"]

    @pytest.mark.unit
    def test_foreign_files_ignored(self, store):
        store.save("real")
        (store.history_dir / "README.md").write_text("not history")

        assert store.count() == 1
        assert [e.text for e in store.list()] == ["real"]

    @pytest.mark.unit
    def test_missing_directory_is_empty(self, store):
        assert store.list() == []
        assert store.count() == 0

    @pytest.mark.unit
    def test_get_and_delete(self, store):
        entry = store.save("keep me")

        assert store.get(entry.id).text == "keep me"
        assert store.delete(entry.id)
        assert store.get(entry.id) is None
        assert not store.delete(entry.id)

    @pytest.mark.unit
    def test_ids_outside_the_format_are_refused(self, store, tmp_path):
        victim = tmp_path / "victim.txt"
        victim.write_text("do not delete")
        store.save("x")

        assert store.get("../victim") is None
        assert not store.delete("../victim")
        assert victim.exists()

    @pytest.mark.unit
    def test_clear(self, store):
        for i in range(3):
            store.save(str(i))

        assert store.clear() == 3
        assert store.count() == 0

    @pytest.mark.unit
    def test_prune_removes_oldest(self, store):
        for i in range(5):
            store.save(f"entry {i}")

        assert store.prune(2) == 3
        assert [e.text for e in store.list()] == ["entry 4", "entry 3"]
        assert store.prune(2) == 0


class TestHistoryManager:
    @pytest.mark.unit
    def test_disabled_saves_nothing(self, tmp_path):
        manager = HistoryManager(HistoryConfig(enabled=False), tmp_path / "history")

        assert not manager.enabled
        assert manager.save("hello") is None
        assert manager.count() == 0

    @pytest.mark.unit
    def test_save_prunes_to_max_entries(self, tmp_path):
        manager = HistoryManager(HistoryConfig(max_entries=3), tmp_path / "history")

        for i in range(5):
            manager.save(f"entry {i}")

        assert [e.text for e in manager.list()] == ["entry 4", "entry 3", "entry 2"]

    @pytest.mark.unit
    def test_defaults_to_xdg_history_dir(self, tmp_path):
        manager = HistoryManager()

        entry = manager.save("hi")

        assert entry.path.parent == tmp_path / "data" / "whispertui" / "history"
