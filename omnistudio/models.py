"""
Pydantic models for Studio records and the sidecar API.

Field aliases follow the Studio wire format (camelCase, Mongo ``_id``), so
records can be validated straight from API responses and written back to the
local cache with ``by_alias=True``.
"""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

ToolId = Literal["chat", "image", "video", "avatar", "avatarVideo"]

TOOLS: tuple[str, ...] = ("chat", "image", "video", "avatar", "avatarVideo")

# Server ``chatType`` -> local tool id
CHAT_TYPE_TO_TOOL: Dict[str, str] = {
    "text": "chat",
    "image": "image",
    "avatar": "avatar",
    "video": "video",
    "avatarVideo": "avatarVideo",
}
TOOL_TO_CHAT_TYPE: Dict[str, str] = {v: k for k, v in CHAT_TYPE_TO_TOOL.items()}


def to_epoch(value: Any) -> Optional[float]:
    """
    Normalise a timestamp to Unix seconds.

    Accepts datetimes, ISO-8601 strings and numbers. Numbers above 1e11 are
    taken as milliseconds (the browser cache format).
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, (int, float)):
        v = float(value)
        return v / 1000.0 if v > 1e11 else v
    if isinstance(value, str):
        s = value.strip()
        try:
            return to_epoch(float(s))
        except ValueError:
            pass
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        return to_epoch(datetime.fromisoformat(s))
    raise ValueError(f"Unsupported timestamp: {value!r}")


def iso_utc(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """A single chat turn, optionally carrying generated media."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    role: Literal["user", "assistant"] = "user"
    content: str = ""
    image: Optional[str] = None
    avatar: Optional[str] = None
    video: Optional[str] = None
    image_id: Optional[str] = Field(default=None, alias="imageId")
    timestamp: float = Field(default_factory=time.time)

    @model_validator(mode="before")
    @classmethod
    def _legacy_type_field(cls, data: Any) -> Any:
        # Browser-cached messages use ``type`` instead of ``role``
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "role" not in data and "type" in data:
            data["role"] = data.pop("type")
        if "role" in data:
            data["role"] = "user" if data["role"] == "user" else "assistant"
        return data

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Any:
        ts = to_epoch(v)
        return time.time() if ts is None else ts

    @field_validator("content", mode="before")
    @classmethod
    def _none_content(cls, v: Any) -> Any:
        return v if v is not None else ""


class Chat(BaseModel):
    """
    A locally cached chat for one tool.

    ``server_id`` links the record to its server copy; ``created_at`` is the
    server creation time when known and takes precedence over ``timestamp``
    for ordering.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    server_id: Optional[str] = Field(default=None, alias="serverId")
    title: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Any:
        ts = to_epoch(v)
        return time.time() if ts is None else ts

    @field_validator("title", mode="before")
    @classmethod
    def _none_title(cls, v: Any) -> Any:
        return v if v is not None else ""

    @field_validator("id", "server_id", mode="before")
    @classmethod
    def _stringify_ids(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) else v

    def sort_time(self) -> float:
        """Ordering key: server creation time when present, else local timestamp."""
        if self.created_at:
            try:
                ts = to_epoch(self.created_at)
            except ValueError:
                ts = None
            if ts is not None:
                return ts
        return self.timestamp

    def is_empty(self) -> bool:
        return not self.messages and not self.server_id

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ServerChat(BaseModel):
    """Chat record as returned by ``GET /api/chat``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")
    title: str = ""
    chat_type: str = Field(default="text", alias="chatType")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    messages: List[ChatMessage] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _message_timestamps(cls, data: Any) -> Any:
        # Messages without their own timestamp inherit the chat creation time
        if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
            return data
        fallback = data.get("createdAt") or data.get("created_at")
        if fallback is None:
            return data
        data = dict(data)
        data["messages"] = [
            {**m, "timestamp": fallback} if isinstance(m, dict) and not m.get("timestamp") else m
            for m in data["messages"]
        ]
        return data

    @field_validator("title", mode="before")
    @classmethod
    def _none_title(cls, v: Any) -> Any:
        return v if v is not None else ""

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @property
    def tool(self) -> Optional[str]:
        return CHAT_TYPE_TO_TOOL.get(self.chat_type)

    def created_ts(self, now: Optional[float] = None) -> float:
        ts = to_epoch(self.created_at or self.updated_at)
        if ts is None:
            return time.time() if now is None else now
        return ts


def sort_newest_first(chats: List[Chat]) -> List[Chat]:
    return sorted(chats, key=lambda c: c.sort_time(), reverse=True)


def sort_server_chats(chats: List[ServerChat]) -> List[ServerChat]:
    return sorted(chats, key=lambda c: to_epoch(c.created_at) or 0.0, reverse=True)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

JOB_TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class JobResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    url: Optional[str] = None
    image_id: Optional[str] = Field(default=None, alias="imageId")
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")


class JobError(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: Optional[str] = None
    code: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("code", mode="before")
    @classmethod
    def _stringify_code(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) else v

    def describe(self) -> Optional[str]:
        """
        Human-readable failure text.

        ``"<message> (<code>)"`` when a code is present; falls back to a JSON
        dump of the non-empty error fields, then to None.
        """
        if self.message or self.code:
            text = self.message or ""
            if self.code:
                text = f"{text} ({self.code})"
            return text.strip()
        raw = {k: v for k, v in self.model_dump().items() if v not in (None, {}, [], "")}
        if raw:
            return json.dumps(raw, default=str)
        return None


class Job(BaseModel):
    """Generation job status as returned by ``GET /api/{kind}/job/{id}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    job_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("jobId", "_id", "job_id"),
    )
    status: str = "pending"
    results: List[JobResult] = Field(default_factory=list)
    error: Optional[JobError] = None
    progress: Optional[Dict[str, Any]] = None

    @field_validator("job_id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @property
    def is_terminal(self) -> bool:
        return self.status in JOB_TERMINAL_STATUSES

    def first_result(self) -> Optional[JobResult]:
        return self.results[0] if self.results else None


# ---------------------------------------------------------------------------
# Sidecar API
# ---------------------------------------------------------------------------


class ChatCreate(BaseModel):
    """Body for adding a chat to a local history."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    server_id: Optional[str] = Field(default=None, alias="serverId")
    messages: List[ChatMessage] = Field(default_factory=list)
    timestamp: Optional[float] = None


class ChatUpdate(BaseModel):
    """Partial update of a local chat; unset fields are left alone."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    server_id: Optional[str] = Field(default=None, alias="serverId")
    messages: Optional[List[ChatMessage]] = None


class HistoryResponse(BaseModel):
    tool: str
    chats: List[Chat]


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="Generation prompt")
    chat_id: Optional[str] = Field(default=None, description="Local chat to append the result to")
    options: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extra fields forwarded to the generate endpoint",
    )


class GenerateResponse(BaseModel):
    url: str
    job_id: str
    chat: Chat


class SyncToolResult(BaseModel):
    added: List[str] = Field(default_factory=list)
    linked: List[str] = Field(default_factory=list)
    mutated: bool = False
    count: int = 0


class SyncResponse(BaseModel):
    server_chats: int
    tools: Dict[str, SyncToolResult]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status: ok or error")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    store: str = Field(..., description="Storage backend type")
    studio_api_candidates: List[str] = Field(..., description="Studio API base URLs")


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
