"""
Per-tool chat history cache.

Wraps a storage backend with the operations the dashboard performs on its
local chat lists: newest-first reads, deduplicated inserts, partial updates
and duplicate cleanup.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from .config import settings
from .models import TOOLS, Chat, ChatMessage, sort_newest_first
from .store import BaseStore, get_store

logger = logging.getLogger("omnistudio.history")

_ALIASES: Dict[str, str] = {
    name: (field.alias or name) for name, field in Chat.model_fields.items()
}


def dedupe_key(chat: Chat) -> str:
    """Server id when linked, otherwise title plus the minute it was created."""
    if chat.server_id:
        return chat.server_id
    return f"{chat.title}-{int(chat.timestamp // 60)}"


def remove_duplicate_chats(chats: Iterable[Chat]) -> List[Chat]:
    """Keep the first chat per ``dedupe_key``; callers pass newest-first lists."""
    seen: set[str] = set()
    unique: List[Chat] = []
    for chat in chats:
        key = dedupe_key(chat)
        if key in seen:
            logger.debug("Removing duplicate chat: %s (%s)", chat.title, chat.server_id or "no serverId")
            continue
        seen.add(key)
        unique.append(chat)
    return unique


def _check_tool(tool: str) -> None:
    if tool not in TOOLS:
        raise ValueError(f"Unknown tool: {tool}")


class ChatHistoryManager:
    """Local chat histories keyed by tool."""

    def __init__(
        self,
        store: Optional[BaseStore] = None,
        limit: Optional[int] = None,
        window_s: Optional[float] = None,
    ):
        self.store = store if store is not None else get_store()
        self.limit = limit if limit is not None else settings.HISTORY_LIMIT
        self.window_s = window_s if window_s is not None else settings.RECONCILE_WINDOW_S

    # -- reads -------------------------------------------------------------

    def get_history(self, tool: str) -> List[Chat]:
        """Chats for ``tool``, newest first. Unreadable entries are dropped."""
        _check_tool(tool)
        chats: List[Chat] = []
        for item in self.store.load(tool):
            try:
                chats.append(Chat.model_validate(item))
            except ValidationError as exc:
                logger.error("Dropping unreadable %s chat: %s", tool, exc)
        return sort_newest_first(chats)

    def get_all_histories(self) -> Dict[str, List[Chat]]:
        return {tool: self.get_history(tool) for tool in TOOLS}

    def get_chat(self, tool: str, chat_id: str) -> Optional[Chat]:
        for chat in self.get_history(tool):
            if chat.id == chat_id:
                return chat
        return None

    def find_by_server_id(self, tool: str, server_id: str) -> Optional[Chat]:
        for chat in self.get_history(tool):
            if chat.server_id == server_id:
                return chat
        return None

    # -- writes ------------------------------------------------------------

    def save_history(self, tool: str, chats: List[Chat]) -> None:
        _check_tool(tool)
        self.store.save(tool, [c.to_store() for c in chats])

    def add_chat(self, tool: str, data: Union[Chat, Dict[str, Any], None] = None) -> Chat:
        """
        Insert a chat unless an equivalent one is already cached.

        A chat with the same server id is returned as-is. For chats that are
        not linked to the server yet, a chat with the same title created
        within the reconcile window counts as the same chat.
        """
        chat = data if isinstance(data, Chat) else Chat.model_validate(data or {})
        history = self.get_history(tool)

        if chat.server_id:
            for existing in history:
                if existing.server_id == chat.server_id:
                    logger.debug("Chat with serverId %s already exists, skipping add", chat.server_id)
                    return existing
        elif chat.title:
            for existing in history:
                if existing.title == chat.title and abs(existing.timestamp - chat.timestamp) < self.window_s:
                    logger.debug("Chat titled %r with similar timestamp already exists, skipping add", chat.title)
                    return existing

        if not chat.title:
            chat = chat.model_copy(update={"title": f"New {tool} Chat"})

        updated = remove_duplicate_chats(sort_newest_first([chat] + history))
        self.save_history(tool, updated[: self.limit])
        return chat

    def new_chat(self, tool: str, current: Optional[Chat] = None) -> Chat:
        """Start a local-only chat, reusing ``current`` while it is still empty."""
        if current is not None and current.is_empty():
            return current
        return self.add_chat(tool, {"title": f"New {tool} Chat", "messages": []})

    def update_chat(self, tool: str, chat_id: str, updates: Dict[str, Any]) -> Optional[Chat]:
        """Merge ``updates`` (field names or wire aliases) into one chat."""
        normalized = {_ALIASES.get(k, k): v for k, v in updates.items()}
        history = self.get_history(tool)
        updated_chat: Optional[Chat] = None
        merged: List[Chat] = []
        for chat in history:
            if chat.id == chat_id:
                chat = Chat.model_validate({**chat.to_store(), **normalized})
                updated_chat = chat
            merged.append(chat)
        if updated_chat is None:
            return None
        self.save_history(tool, sort_newest_first(merged))
        self.remove_duplicates(tool)
        return updated_chat

    def append_messages(
        self,
        tool: str,
        chat_id: str,
        messages: List[ChatMessage],
        title: Optional[str] = None,
    ) -> Optional[Chat]:
        chat = self.get_chat(tool, chat_id)
        if chat is None:
            return None
        updates: Dict[str, Any] = {"messages": chat.messages + list(messages)}
        if title:
            updates["title"] = title
        return self.update_chat(tool, chat_id, updates)

    def delete_chat(self, tool: str, chat_id: str) -> bool:
        history = self.get_history(tool)
        remaining = [c for c in history if c.id != chat_id]
        if len(remaining) == len(history):
            return False
        self.save_history(tool, remaining)
        return True

    def clear_history(self, tool: str) -> None:
        self.save_history(tool, [])

    def clear_all_histories(self) -> None:
        for tool in TOOLS:
            self.clear_history(tool)

    def remove_duplicates(self, tool: str) -> List[Chat]:
        """Drop duplicate chats; the store is only written when something changed."""
        history = self.get_history(tool)
        unique = remove_duplicate_chats(history)
        if len(unique) != len(history):
            logger.info("Removed %d duplicate chats from %s", len(history) - len(unique), tool)
            self.save_history(tool, unique)
        return unique

    def remove_all_duplicates(self) -> Dict[str, List[Chat]]:
        """Deduplicate every tool; returns the surviving chats per tool."""
        return {tool: self.remove_duplicates(tool) for tool in TOOLS}
