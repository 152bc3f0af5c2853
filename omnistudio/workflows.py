"""
Generation and chat workflows that span the Studio API and the local cache.

Server-side bookkeeping (creating the server chat, appending the result
message, deleting on the server) is best-effort: failures are logged and the
local history is still updated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .client import StudioClient
from .errors import StudioError
from .history import ChatHistoryManager
from .jobs import run_job
from .models import TOOL_TO_CHAT_TYPE, Chat, ChatMessage, ServerChat, iso_utc
from .reconcile import ReconcileResult, reconcile_histories, split_chat_id

logger = logging.getLogger("omnistudio.workflows")


@dataclass(frozen=True)
class ToolJob:
    kind: str
    label: str
    media_field: str


# Tools whose results come from a polled generation job
TOOL_JOBS: Dict[str, ToolJob] = {
    "image": ToolJob(kind="images", label="Image", media_field="image"),
    "video": ToolJob(kind="videos", label="Video", media_field="video"),
    "avatar": ToolJob(kind="avatars", label="Avatar", media_field="avatar"),
    "avatarVideo": ToolJob(kind="videos", label="Avatar video", media_field="video"),
}


@dataclass
class GenerationOutcome:
    url: str
    job_id: str
    chat: Chat


def chat_title(prompt: str, limit: int = 50) -> str:
    """First ``limit`` characters of the prompt, with ``...`` when cut."""
    trimmed = (prompt or "").strip()
    base = trimmed[:limit]
    return f"{base}..." if len(trimmed) > limit else base


def _article(word: str) -> str:
    return "an" if word[:1].lower() in "aeiou" else "a"


async def sync_chats(
    client: StudioClient, history: ChatHistoryManager
) -> Tuple[List[ServerChat], Dict[str, ReconcileResult]]:
    """Fetch the server chat list and reconcile it into the local histories."""
    server_chats = await client.list_chats()
    logger.info("Refreshing server chats: %d chats", len(server_chats))
    return server_chats, reconcile_histories(history, server_chats)


async def _ensure_server_chat(
    client: StudioClient, tool: str, server_id: Optional[str], title: str
) -> Tuple[Optional[str], str]:
    if server_id:
        return server_id, title
    try:
        created = await client.create_chat(title, TOOL_TO_CHAT_TYPE[tool])
    except StudioError as exc:
        logger.error("Failed to create backend chat for %s: %s", tool, exc)
        return None, title
    logger.info("Created backend chat %s for %s", created.id, tool)
    return created.id, created.title or title


async def _post_result(
    client: StudioClient, tool: str, server_id: str, prompt: str, url: str, image_id: Optional[str]
) -> None:
    tool_job = TOOL_JOBS[tool]
    try:
        if tool == "avatar":
            await client.add_avatar_message(server_id, f"Avatar generated: {prompt}", url, image_id)
        elif tool == "image":
            await client.add_image_message(server_id, f"Image generated: {prompt}", url)
        else:
            await client.send_message(server_id, f"{tool_job.label} generation: {prompt}")
    except StudioError as exc:
        logger.warning("Failed to save %s result to server chat %s: %s", tool, server_id, exc)


async def run_generation(
    client: StudioClient,
    history: ChatHistoryManager,
    tool: str,
    prompt: str,
    options: Optional[Dict[str, Any]] = None,
    chat_id: Optional[str] = None,
    **poll_kwargs: Any,
) -> GenerationOutcome:
    """
    Generate media for ``tool`` and record it in the chat histories.

    Starts and polls the job, makes sure a server chat exists, posts the
    result there and appends the prompt/result pair to the local chat
    (creating one when ``chat_id`` is unknown). ``chat_id`` may be a local
    id or ``server-<id>``; a known server chat is always reused.
    """
    if tool not in TOOL_JOBS:
        raise ValueError(f"Tool {tool!r} has no generation job")
    tool_job = TOOL_JOBS[tool]

    payload: Dict[str, Any] = {"prompt": prompt, **(options or {})}
    job_id, result = await run_job(client, tool_job.kind, payload, label=tool_job.label, **poll_kwargs)
    url = result.url or ""

    local_id, known_server_id = split_chat_id(chat_id) if chat_id else (None, None)
    if local_id:
        local = history.get_chat(tool, local_id)
    elif known_server_id:
        local = history.find_by_server_id(tool, known_server_id)
    else:
        local = None
    if local is not None and local.server_id:
        known_server_id = local.server_id
    title = chat_title(prompt) or (local.title if local else f"{tool_job.label} Generation")
    server_id, title = await _ensure_server_chat(client, tool, known_server_id, title)
    if server_id:
        await _post_result(client, tool, server_id, prompt, url, result.image_id)

    label = tool_job.label.lower()
    messages = [
        ChatMessage(role="user", content=prompt),
        ChatMessage(
            role="assistant",
            content=f"I've generated {_article(label)} {label} based on your prompt: \"{prompt}\"",
            image_id=result.image_id,
            **{tool_job.media_field: url},
        ),
    ]

    if local is None:
        local = history.add_chat(tool, Chat(server_id=server_id, title=title, messages=[]))
    elif server_id and not local.server_id:
        local = history.update_chat(tool, local.id, {"server_id": server_id}) or local

    chat = history.append_messages(tool, local.id, messages, title=title)
    if chat is None:
        # Not cached (e.g. beyond the history limit); report what would have been stored
        chat = local.model_copy(update={"messages": local.messages + messages, "title": title})
    return GenerationOutcome(url=url, job_id=job_id, chat=chat)


async def open_chat(
    client: StudioClient, history: ChatHistoryManager, tool: str, chat_id: str
) -> Optional[Chat]:
    """
    Load a chat with its full server messages.

    ``chat_id`` is a local id or ``server-<id>``. Local chats are refreshed
    in the cache; ``server-<id>`` chats are returned without caching. If the
    server cannot be reached the cached copy is returned.
    """
    local_id, server_id = split_chat_id(chat_id)
    local = history.get_chat(tool, local_id) if local_id else None
    if local is not None:
        server_id = local.server_id

    if server_id:
        try:
            sc = await client.get_chat(server_id)
        except StudioError as exc:
            logger.error("Error fetching server chat %s: %s", server_id, exc)
            return local
        if local is not None:
            updated = history.update_chat(
                tool,
                local.id,
                {"server_id": sc.id, "title": sc.title, "messages": sc.messages},
            )
            if updated is not None:
                return updated
        created = sc.created_ts()
        return Chat(
            id=chat_id,
            server_id=sc.id,
            title=sc.title,
            messages=sc.messages,
            timestamp=local.timestamp if local else created,
            created_at=local.created_at if local else iso_utc(created),
        )
    return local


async def delete_chat(
    client: StudioClient,
    history: ChatHistoryManager,
    tool: str,
    chat_id: str,
    server_id: Optional[str] = None,
) -> Tuple[bool, bool]:
    """
    Delete a chat on the server and locally.

    Returns ``(server_deleted, local_deleted)``. ``server-<id>`` entries only
    exist on the server and are never deleted locally.
    """
    local_id, prefixed = split_chat_id(chat_id)
    actual = prefixed or server_id
    if actual is None and local_id:
        local = history.get_chat(tool, local_id)
        actual = local.server_id if local else None

    server_deleted = False
    if actual:
        try:
            await client.delete_chat(actual)
            server_deleted = True
        except StudioError as exc:
            logger.error("Failed to delete chat %s on server: %s", actual, exc)

    local_deleted = history.delete_chat(tool, local_id) if local_id else False
    return server_deleted, local_deleted
