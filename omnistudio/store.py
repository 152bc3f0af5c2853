"""
Chat history storage with SQLite and in-memory backends.

Each tool keeps its chats as one JSON list under a storage key
(``chatChats``, ``imageChats``, ...), the same layout the web dashboard
used in browser storage. When the SQLite file cannot be opened the
factory falls back to process memory so the service still runs.
"""

import json
import logging
import os
import sqlite3
import time
from typing import Any, Dict, List, Optional

from .config import settings

logger = logging.getLogger("omnistudio.store")

STORAGE_KEYS: Dict[str, str] = {
    "chat": "chatChats",
    "image": "imageChats",
    "video": "videoChats",
    "avatar": "avatarChats",
    "avatarVideo": "avatarVideoChats",
}


def storage_key(tool: str) -> str:
    try:
        return STORAGE_KEYS[tool]
    except KeyError:
        raise ValueError(f"Unknown tool: {tool}") from None


def _parse_chats_json(raw: Optional[str], key: str) -> List[Dict[str, Any]]:
    """Decode a stored list; anything unreadable is treated as an empty history."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Corrupt chat history under %s, ignoring it", key)
        return []
    if not isinstance(data, list):
        logger.error("Chat history under %s is not a list, ignoring it", key)
        return []
    return [item for item in data if isinstance(item, dict)]


class BaseStore:
    """Abstract base class for chat history storage backends."""

    name = "base"

    def load(self, tool: str) -> List[Dict[str, Any]]:
        """
        Retrieve the raw chat dicts stored for a tool.

        Args:
            tool: Tool id (chat, image, video, avatar, avatarVideo)

        Returns:
            List of chat dicts in stored order (empty if nothing stored)
        """
        raise NotImplementedError

    def save(self, tool: str, chats: List[Dict[str, Any]]) -> None:
        """
        Replace the stored chats for a tool.

        Args:
            tool: Tool id
            chats: Serialised chats, newest first
        """
        raise NotImplementedError

    def clear(self, tool: str) -> None:
        """Remove every chat stored for a tool."""
        self.save(tool, [])

    def clear_all(self) -> None:
        for tool in STORAGE_KEYS:
            self.clear(tool)

    def health_check(self) -> bool:
        return True


class MemoryStore(BaseStore):
    """Process-local storage; used in tests and as the fallback backend."""

    name = "memory"

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def load(self, tool: str) -> List[Dict[str, Any]]:
        key = storage_key(tool)
        return _parse_chats_json(self._data.get(key), key)

    def save(self, tool: str, chats: List[Dict[str, Any]]) -> None:
        self._data[storage_key(tool)] = json.dumps(chats)


class SQLiteStore(BaseStore):
    """
    SQLite-based chat history storage.

    Suitable for single-instance deployments or development.
    Data is persisted to disk and survives restarts.
    """

    name = "sqlite"

    def __init__(self, path: str):
        """
        Initialize SQLite store.

        Args:
            path: Path to SQLite database file
        """
        self.path = path
        self._ensure_directory()
        self._init_db()

    def _ensure_directory(self) -> None:
        """Create parent directory if it doesn't exist."""
        dir_path = os.path.dirname(self.path)
        if dir_path and not os.path.exists(dir_path):
            os.makedirs(dir_path, exist_ok=True)

    def _conn(self) -> sqlite3.Connection:
        """Create a new database connection."""
        return sqlite3.connect(self.path, check_same_thread=False)

    def _init_db(self) -> None:
        """Create schema if not exists."""
        con = self._conn()
        try:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_histories (
                    storage_key TEXT PRIMARY KEY,
                    chats_json TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            con.commit()
        finally:
            con.close()

    def load(self, tool: str) -> List[Dict[str, Any]]:
        key = storage_key(tool)
        con = self._conn()
        try:
            row = con.execute(
                "SELECT chats_json FROM chat_histories WHERE storage_key=?",
                (key,),
            ).fetchone()
        finally:
            con.close()
        return _parse_chats_json(row[0] if row else None, key)

    def save(self, tool: str, chats: List[Dict[str, Any]]) -> None:
        key = storage_key(tool)
        con = self._conn()
        try:
            con.execute(
                """
                INSERT INTO chat_histories (storage_key, chats_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(storage_key) DO UPDATE SET
                    chats_json=excluded.chats_json,
                    updated_at=excluded.updated_at
                """,
                (key, json.dumps(chats), time.time()),
            )
            con.commit()
        finally:
            con.close()

    def health_check(self) -> bool:
        try:
            con = self._conn()
            try:
                con.execute("SELECT 1").fetchone()
            finally:
                con.close()
            return True
        except sqlite3.Error:
            return False


_memory_store: Optional[MemoryStore] = None


def memory_store() -> MemoryStore:
    """Shared in-memory store, so data survives between ``get_store()`` calls."""
    global _memory_store
    if _memory_store is None:
        _memory_store = MemoryStore()
    return _memory_store


def get_store() -> BaseStore:
    """
    Factory function to get the configured storage backend.

    Returns:
        SQLiteStore, or the shared MemoryStore when configured or when the
        SQLite file cannot be used
    """
    if settings.STORE.lower() == "memory":
        return memory_store()
    try:
        return SQLiteStore(settings.SQLITE_PATH)
    except (sqlite3.Error, OSError) as exc:
        logger.warning(
            "SQLite store at %s unavailable (%s), using memory storage fallback",
            settings.SQLITE_PATH,
            exc,
        )
        return memory_store()
