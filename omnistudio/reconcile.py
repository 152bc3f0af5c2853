"""
Server-to-local chat reconciliation.

Server chats are authoritative; the local cache may hold chats that were
created before the server assigned them an id. Matching is by server id
first, then by identical title with creation times inside the reconcile
window.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .config import settings
from .history import ChatHistoryManager, remove_duplicate_chats
from .models import Chat, ServerChat, iso_utc, sort_newest_first, sort_server_chats, to_epoch

logger = logging.getLogger("omnistudio.reconcile")

SERVER_CHAT_PREFIX = "server-"


@dataclass
class ReconcileResult:
    """Outcome of merging one tool's server chats into its local history."""

    tool: str
    chats: List[Chat]
    added: List[str] = field(default_factory=list)
    linked: List[str] = field(default_factory=list)
    mutated: bool = False


def _server_created_iso(sc: ServerChat) -> Optional[str]:
    ts = to_epoch(sc.created_at)
    return iso_utc(ts) if ts is not None else None


def reconcile_chats(
    tool: str,
    local: List[Chat],
    server: Iterable[ServerChat],
    *,
    window_s: Optional[float] = None,
    limit: Optional[int] = None,
    now: Optional[float] = None,
) -> ReconcileResult:
    """
    Merge ``server`` chats into ``local`` without touching either input.

    The returned chats are deduplicated, newest first and capped at
    ``limit``. Server chats that would not survive the cap are not inserted,
    so running again with the same inputs reports no mutation.
    """
    window_s = settings.RECONCILE_WINDOW_S if window_s is None else window_s
    limit = settings.HISTORY_LIMIT if limit is None else limit
    now = time.time() if now is None else now

    original = sort_newest_first(local)
    chats = [c.model_copy(deep=True) for c in original]
    by_server_id: Dict[str, Chat] = {c.server_id: c for c in chats if c.server_id}
    added: List[str] = []
    linked: List[str] = []

    for sc in sort_server_chats(list(server)):
        if sc.id in by_server_id:
            continue
        created = sc.created_ts(now)
        match = next(
            (
                c for c in chats
                if not c.server_id
                and c.title == sc.title
                and abs(c.timestamp - created) < window_s
            ),
            None,
        )
        if match is not None:
            logger.info("Linking local %s chat %s to server chat %s", tool, match.id, sc.id)
            match.server_id = sc.id
            if sc.title:
                match.title = sc.title
            by_server_id[sc.id] = match
            linked.append(sc.id)
        else:
            new_chat = Chat(
                server_id=sc.id,
                title=sc.title or "New Chat",
                messages=[],
                timestamp=created,
                created_at=_server_created_iso(sc),
            )
            chats.append(new_chat)
            by_server_id[sc.id] = new_chat
            added.append(sc.id)

    merged = remove_duplicate_chats(sort_newest_first(chats))[:limit]
    kept = {c.server_id for c in merged if c.server_id}
    dropped = [sid for sid in added if sid not in kept]
    if dropped:
        logger.debug("%d %s server chats fall outside the history limit", len(dropped), tool)

    return ReconcileResult(
        tool=tool,
        chats=merged,
        added=[sid for sid in added if sid in kept],
        linked=[sid for sid in linked if sid in kept],
        mutated=[c.to_store() for c in merged] != [c.to_store() for c in original],
    )


def group_by_tool(server_chats: Iterable[ServerChat]) -> Dict[str, List[ServerChat]]:
    grouped: Dict[str, List[ServerChat]] = {}
    for sc in server_chats:
        tool = sc.tool
        if tool is None:
            logger.debug("Ignoring server chat %s with unknown chatType %r", sc.id, sc.chat_type)
            continue
        grouped.setdefault(tool, []).append(sc)
    return grouped


def reconcile_histories(
    history: ChatHistoryManager,
    server_chats: List[ServerChat],
    now: Optional[float] = None,
) -> Dict[str, ReconcileResult]:
    """
    Reconcile every tool that has server chats and persist the changed ones.

    Returns the per-tool results; tools without server chats are skipped.
    """
    results: Dict[str, ReconcileResult] = {}
    if not server_chats:
        return results

    for tool, group in group_by_tool(server_chats).items():
        result = reconcile_chats(
            tool,
            history.get_history(tool),
            group,
            window_s=history.window_s,
            limit=history.limit,
            now=now,
        )
        if result.mutated:
            history.save_history(tool, result.chats)
            logger.info(
                "Reconciled %s history: %d added, %d linked",
                tool, len(result.added), len(result.linked),
            )
        results[tool] = result
    return results


def history_view(tool: str, server_chats: List[ServerChat], local: List[Chat]) -> List[Chat]:
    """
    Sidebar listing for one tool.

    Server chats appear under ``server-<id>`` ids; local chats whose server
    id the server no longer lists and local-only chats are kept alongside.
    """
    for_tool = [sc for sc in server_chats if sc.tool == tool]
    server_ids = {sc.id for sc in for_tool}
    entries: List[Chat] = [
        Chat(
            id=f"{SERVER_CHAT_PREFIX}{sc.id}",
            server_id=sc.id,
            title=sc.title or "New Chat",
            messages=[],
            timestamp=sc.created_ts(),
            created_at=_server_created_iso(sc),
        )
        for sc in for_tool
    ]
    entries.extend(c for c in local if c.server_id and c.server_id not in server_ids)
    entries.extend(c for c in local if not c.server_id)
    return sort_newest_first(entries)


def split_chat_id(chat_id: str) -> tuple[Optional[str], Optional[str]]:
    """``server-<id>`` -> (None, id); anything else -> (chat_id, None)."""
    if chat_id.startswith(SERVER_CHAT_PREFIX):
        return None, chat_id[len(SERVER_CHAT_PREFIX):]
    return chat_id, None
