"""
Tests for the chat history storage backends.
"""

import sqlite3

import pytest

from omnistudio import config
from omnistudio import store as store_module
from omnistudio.store import MemoryStore, SQLiteStore, get_store, storage_key


class TestSQLiteStore:
    """Test suite for SQLite storage backend."""

    def test_load_missing_returns_empty(self, tmp_path):
        store = SQLiteStore(str(tmp_path / "db.sqlite"))

        assert store.load("image") == []

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "db.sqlite")
        SQLiteStore(path).save("video", [{"id": "a", "title": "Waves"}])

        assert SQLiteStore(path).load("video") == [{"id": "a", "title": "Waves"}]

    def test_save_replaces_list(self, tmp_path):
        store = SQLiteStore(str(tmp_path / "db.sqlite"))
        store.save("chat", [{"id": "a"}, {"id": "b"}])
        store.save("chat", [{"id": "c"}])

        assert store.load("chat") == [{"id": "c"}]

    def test_one_row_per_storage_key(self, tmp_path):
        path = str(tmp_path / "db.sqlite")
        store = SQLiteStore(path)
        store.save("avatarVideo", [{"id": "a"}])
        store.save("image", [{"id": "b"}])

        con = sqlite3.connect(path)
        try:
            keys = sorted(r[0] for r in con.execute("SELECT storage_key FROM chat_histories"))
        finally:
            con.close()

        assert keys == ["avatarVideoChats", "imageChats"]

    def test_corrupt_json_reads_as_empty(self, tmp_path):
        path = str(tmp_path / "db.sqlite")
        store = SQLiteStore(path)
        con = sqlite3.connect(path)
        try:
            con.execute(
                "INSERT INTO chat_histories (storage_key, chats_json, updated_at) VALUES (?, ?, ?)",
                ("imageChats", "{not json", 0.0),
            )
            con.commit()
        finally:
            con.close()

        assert store.load("image") == []

    def test_non_list_reads_as_empty(self, tmp_path):
        store = SQLiteStore(str(tmp_path / "db.sqlite"))
        store.save("chat", {"id": "a"})

        assert store.load("chat") == []

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "db.sqlite"
        SQLiteStore(str(path))

        assert path.exists()

    def test_health_check(self, tmp_path):
        assert SQLiteStore(str(tmp_path / "db.sqlite")).health_check() is True


class TestMemoryStore:

    def test_clear_all(self):
        store = MemoryStore()
        store.save("image", [{"id": "a"}])
        store.save("chat", [{"id": "b"}])

        store.clear_all()

        assert store.load("image") == []
        assert store.load("chat") == []

    def test_unknown_tool(self):
        with pytest.raises(ValueError):
            storage_key("music")
        with pytest.raises(ValueError):
            MemoryStore().load("music")


class TestGetStore:
    """Test suite for the backend factory."""

    def test_memory_store_is_shared(self):
        assert get_store() is get_store()
        assert get_store().name == "memory"

    def test_sqlite_store(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config.settings, "STORE", "sqlite")
        monkeypatch.setattr(config.settings, "SQLITE_PATH", str(tmp_path / "db.sqlite"))

        store = get_store()

        assert isinstance(store, SQLiteStore)

    def test_falls_back_to_memory(self, tmp_path, monkeypatch):
        """An unusable SQLite path falls back to the shared memory store."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        monkeypatch.setattr(config.settings, "STORE", "sqlite")
        monkeypatch.setattr(config.settings, "SQLITE_PATH", str(blocker / "db.sqlite"))

        store = get_store()

        assert store is store_module.memory_store()
