"""
Pytest configuration and shared fixtures.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from omnistudio.client import StudioClient
from omnistudio.history import ChatHistoryManager
from omnistudio.models import iso_utc
from omnistudio.store import MemoryStore

STUDIO_URL = "http://studio.test"

COMPLETED_VIDEO = {
    "status": "completed",
    "results": [{"url": "http://cdn.test/out.mp4", "imageId": "img-1"}],
}


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Keep tests off the network, the disk and the rate limiter."""
    from omnistudio import config
    from omnistudio import security as security_module
    from omnistudio import store as store_module

    monkeypatch.setattr(config.settings, "SIDECAR_API_KEY", None)
    monkeypatch.setattr(config.settings, "STUDIO_TOKEN", None)
    monkeypatch.setattr(config.settings, "STORE", "memory")
    monkeypatch.setattr(config.settings, "JOB_POLL_INTERVAL_S", 0.0)
    monkeypatch.setattr(store_module, "_memory_store", None)
    security_module.bucket.reset()

    yield


class CountingStore(MemoryStore):
    """MemoryStore that records every save."""

    def __init__(self) -> None:
        super().__init__()
        self.saves: List[str] = []

    def save(self, tool, chats):
        self.saves.append(tool)
        super().save(tool, chats)


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def history(store):
    return ChatHistoryManager(store)


class FakeStudio:
    """
    In-process Studio API served through ``httpx.MockTransport``.

    ``job_script`` is the sequence of status payloads each new job walks
    through; the last entry repeats. ``fail`` maps ``(method, path)`` to an
    error ``(status, text)`` answer. ``down`` makes every request fail to connect.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.chats: List[Dict[str, Any]] = []
        self.job_script: List[Dict[str, Any]] = [{"status": "processing"}, COMPLETED_VIDEO]
        self.jobs: Dict[str, List[Dict[str, Any]]] = {}
        self.fail: Dict[Tuple[str, str], Tuple[int, str]] = {}
        self.down = False
        self._seq = 0

    # -- helpers -----------------------------------------------------------

    def add_server_chat(
        self, chat_id: str, title: str, chat_type: str, created: float, messages: Optional[list] = None
    ) -> Dict[str, Any]:
        chat = {
            "_id": chat_id,
            "title": title,
            "chatType": chat_type,
            "createdAt": iso_utc(created),
            "updatedAt": iso_utc(created),
            "messages": messages or [],
        }
        self.chats.append(chat)
        return chat

    def find(self, chat_id: str) -> Optional[Dict[str, Any]]:
        return next((c for c in self.chats if c["_id"] == chat_id), None)

    def calls(self, method: str, prefix: str = "") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(prefix)]

    def client(self, token: Optional[str] = "test-token") -> StudioClient:
        return StudioClient(base_url=STUDIO_URL, token=token, transport=httpx.MockTransport(self.handler))

    # -- transport ---------------------------------------------------------

    @staticmethod
    def ok(data: Any) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": data})

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        method, path = request.method, request.url.path
        if (method, path) in self.fail:
            status, text = self.fail[(method, path)]
            return httpx.Response(status, text=text)

        parts = path.strip("/").split("/")
        if path == "/api/documents/supported":
            return self.ok({"formats": ["pdf", "docx"]})

        if parts[:1] == ["api"] and len(parts) == 3 and parts[2] == "generate":
            self._seq += 1
            job_id = f"job-{self._seq}"
            self.jobs[job_id] = [dict(s) for s in self.job_script]
            return self.ok({"jobId": job_id, "status": "pending"})

        if parts[:1] == ["api"] and len(parts) == 4 and parts[2] == "job":
            script = self.jobs[parts[3]]
            status = script.pop(0) if len(script) > 1 else script[0]
            return self.ok({"jobId": parts[3], **status})

        if parts[:2] == ["api", "chat"]:
            return self._chat_route(method, parts[2:], request)

        return httpx.Response(404, text="Not found")

    def _chat_route(self, method: str, rest: List[str], request: httpx.Request) -> httpx.Response:
        if not rest:
            if method == "GET":
                return self.ok(self.chats)
            body = json.loads(request.content)
            self._seq += 1
            chat = self.add_server_chat(
                f"srv-{self._seq}", body["title"], body.get("chatType", "text"), 1_700_000_000.0 + self._seq
            )
            return self.ok(chat)

        chat = self.find(rest[0])
        if chat is None:
            return httpx.Response(404, json={"success": False, "message": "Chat not found"})
        if len(rest) == 1 and method == "GET":
            return self.ok(chat)
        if len(rest) == 1 and method == "DELETE":
            self.chats.remove(chat)
            return self.ok({"deleted": True})
        body = json.loads(request.content)
        chat["messages"].append({"role": body.get("role", "user"), "content": body["message"]})
        return self.ok(chat)


@pytest.fixture
def studio():
    return FakeStudio()
