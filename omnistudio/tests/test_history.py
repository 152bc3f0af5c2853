"""
Tests for the per-tool chat history manager.
"""

import pytest

from omnistudio.history import ChatHistoryManager, dedupe_key, remove_duplicate_chats
from omnistudio.models import Chat, ChatMessage


class TestAddChat:
    """Test suite for deduplicated inserts."""

    def test_generates_id_and_default_title(self, history):
        chat = history.add_chat("image", {"messages": []})

        assert chat.id
        assert chat.title == "New image Chat"
        assert history.get_history("image") == [chat]

    def test_same_server_id_returns_existing(self, history):
        first = history.add_chat("video", {"serverId": "s1", "title": "Waves"})

        again = history.add_chat("video", {"serverId": "s1", "title": "Waves (copy)"})

        assert again.id == first.id
        assert len(history.get_history("video")) == 1

    def test_same_title_within_window_returns_existing(self, history):
        first = history.add_chat("chat", Chat(title="Hello", timestamp=1000.0))

        again = history.add_chat("chat", Chat(title="Hello", timestamp=1030.0))
        later = history.add_chat("chat", Chat(title="Hello", timestamp=1200.0))

        assert again.id == first.id
        assert later.id != first.id
        assert len(history.get_history("chat")) == 2

    def test_capped_at_limit(self, store):
        history = ChatHistoryManager(store, limit=3)
        for i in range(5):
            history.add_chat("avatar", Chat(title=f"chat {i}", timestamp=1000.0 + i * 100))

        titles = [c.title for c in history.get_history("avatar")]

        assert titles == ["chat 4", "chat 3", "chat 2"]

    def test_unknown_tool(self, history):
        with pytest.raises(ValueError, match="Unknown tool"):
            history.add_chat("music", {"title": "x"})


class TestReadWrite:
    """Test suite for reads, updates and deletes."""

    def test_newest_first_prefers_created_at(self, history):
        history.save_history("image", [
            Chat(title="a", timestamp=3000.0),
            Chat(title="b", timestamp=1000.0, created_at="1970-01-01T01:23:20Z"),
            Chat(title="c", timestamp=2000.0),
        ])

        assert [c.title for c in history.get_history("image")] == ["b", "a", "c"]

    def test_reads_browser_cache_format(self, history, store):
        """Millisecond timestamps and ``type``-tagged messages are accepted."""
        store.save("chat", [{
            "id": 1700000000000,
            "title": "Imported",
            "timestamp": 1700000000000,
            "messages": [
                {"type": "user", "content": "hi", "timestamp": "2023-11-14T22:13:20.000Z"},
                {"type": "ai", "content": "hello"},
            ],
        }])

        chat = history.get_history("chat")[0]

        assert chat.id == "1700000000000"
        assert chat.timestamp == 1700000000.0
        assert [m.role for m in chat.messages] == ["user", "assistant"]
        assert chat.messages[0].timestamp == 1700000000.0

    def test_unreadable_entries_dropped(self, history, store):
        store.save("image", [{"id": "ok", "title": "fine"}, {"id": "bad", "messages": "not a list"}])

        assert [c.id for c in history.get_history("image")] == ["ok"]

    def test_update_chat_accepts_wire_names(self, history):
        chat = history.add_chat("image", {"title": "Draft"})

        updated = history.update_chat("image", chat.id, {"serverId": "s9", "title": "Final"})

        assert updated.server_id == "s9"
        assert history.find_by_server_id("image", "s9").title == "Final"

    def test_update_missing_chat(self, history):
        assert history.update_chat("image", "nope", {"title": "x"}) is None

    def test_update_collapses_duplicate_server_ids(self, history):
        newer = history.add_chat("image", Chat(server_id="s1", title="Newer", timestamp=2000.0))
        older = history.add_chat("image", Chat(title="Older", timestamp=1000.0))

        history.update_chat("image", older.id, {"server_id": "s1"})

        chats = history.get_history("image")
        assert [c.id for c in chats] == [newer.id]

    def test_append_messages(self, history):
        chat = history.add_chat("video", {"title": "Draft"})

        updated = history.append_messages(
            "video",
            chat.id,
            [ChatMessage(role="user", content="waves"), ChatMessage(role="assistant", video="http://cdn/v.mp4")],
            title="waves",
        )

        assert updated.title == "waves"
        assert [m.role for m in updated.messages] == ["user", "assistant"]
        assert history.get_chat("video", chat.id).messages[1].video == "http://cdn/v.mp4"

    def test_delete_chat(self, history):
        chat = history.add_chat("avatar", {"title": "Knight"})

        assert history.delete_chat("avatar", chat.id) is True
        assert history.delete_chat("avatar", chat.id) is False
        assert history.get_history("avatar") == []

    def test_clear_all_histories(self, history):
        for tool in ("chat", "image", "avatarVideo"):
            history.add_chat(tool, {"title": "x"})

        history.clear_all_histories()

        assert all(chats == [] for chats in history.get_all_histories().values())

    def test_new_chat_reuses_empty_current(self, history):
        current = history.new_chat("image")

        assert history.new_chat("image", current) is current

        history.append_messages("image", current.id, [ChatMessage(content="a cat")], title="a cat")
        busy = history.get_chat("image", current.id)
        fresh = history.new_chat("image", busy)

        assert fresh.id != current.id
        assert fresh.title == "New image Chat"


class TestDuplicates:
    """Test suite for duplicate removal."""

    def test_dedupe_key(self):
        assert dedupe_key(Chat(server_id="s1", title="a", timestamp=0.0)) == "s1"
        assert dedupe_key(Chat(title="a", timestamp=125.0)) == "a-2"

    def test_remove_duplicate_chats_keeps_first(self):
        chats = [
            Chat(id="1", server_id="s1", title="a", timestamp=300.0),
            Chat(id="2", server_id="s1", title="b", timestamp=200.0),
            Chat(id="3", title="c", timestamp=130.0),
            Chat(id="4", title="c", timestamp=125.0),
            Chat(id="5", title="c", timestamp=10.0),
        ]

        assert [c.id for c in remove_duplicate_chats(chats)] == ["1", "3", "5"]

    def test_remove_duplicates_writes_only_on_change(self, history, store):
        history.save_history("chat", [
            Chat(title="t", timestamp=120.0),
            Chat(title="u", timestamp=60.0),
        ])
        store.saves.clear()

        history.remove_duplicates("chat")
        assert store.saves == []

        history.save_history("chat", [
            Chat(server_id="s1", title="t", timestamp=120.0),
            Chat(server_id="s1", title="t", timestamp=60.0),
        ])
        store.saves.clear()

        assert len(history.remove_duplicates("chat")) == 1
        assert store.saves == ["chat"]

    def test_remove_all_duplicates(self, history, store):
        history.save_history("image", [
            Chat(server_id="s1", title="cat", timestamp=120.0),
            Chat(server_id="s1", title="cat", timestamp=60.0),
        ])
        history.save_history("video", [Chat(title="waves", timestamp=30.0)])
        store.saves.clear()

        kept = history.remove_all_duplicates()

        assert set(kept) == {"chat", "image", "video", "avatar", "avatarVideo"}
        assert [c.timestamp for c in kept["image"]] == [120.0]
        assert len(kept["video"]) == 1
        assert kept["chat"] == []
        assert store.saves == ["image"]
