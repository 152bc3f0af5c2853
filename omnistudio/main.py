"""
OmniStudio Companion - Main FastAPI Application

Sidecar service next to the AI Studio API. It owns the per-tool chat
history cache, keeps it reconciled with the server's chat list and runs
generation jobs to completion on behalf of the caller.

Key features:
- Local chat histories per tool (chat, image, video, avatar, avatarVideo)
- Server-to-local reconciliation without duplicate entries
- Start-and-poll generation with results recorded in the chat history
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .client import StudioClient
from .config import settings
from .errors import (
    JobFailed,
    JobResultMissing,
    JobTimeout,
    StudioAPIError,
    StudioError,
    StudioUnavailable,
)
from .health import router as health_router
from .history import ChatHistoryManager
from .models import (
    Chat,
    ChatCreate,
    ChatUpdate,
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    HistoryResponse,
    SyncResponse,
    SyncToolResult,
    ToolId,
)
from .reconcile import history_view
from .security import bearer_token, enforce_security
from .store import get_store
from . import workflows

logger = logging.getLogger("omnistudio.main")


app = FastAPI(
    title="OmniStudio Companion",
    description=(
        "Sidecar service for the AI Studio: chat history cache, "
        "server reconciliation and generation job polling."
    ),
    version=settings.SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)


def make_client(token: Optional[str]) -> StudioClient:
    return StudioClient(token=token)


def get_history() -> ChatHistoryManager:
    return ChatHistoryManager(get_store())


_ERROR_STATUS = {
    StudioUnavailable: 503,
    StudioAPIError: 502,
    JobFailed: 502,
    JobTimeout: 504,
    JobResultMissing: 502,
}


def _status_for(exc: StudioError) -> int:
    if isinstance(exc, StudioAPIError) and exc.status_code in (401, 403, 404):
        return exc.status_code
    return _ERROR_STATUS.get(type(exc), 500)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Return consistent JSON error responses."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError):
    status = _status_for(exc)
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, status, exc)
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(detail=str(exc), error_code=exc.error_code).model_dump(),
    )


# =============================================================================
# LOCAL HISTORIES
# =============================================================================


@app.get(
    "/v1/histories",
    dependencies=[Depends(enforce_security)],
    summary="All chat histories",
)
async def list_histories() -> Dict[str, List[Chat]]:
    return get_history().get_all_histories()


@app.get(
    "/v1/histories/{tool}",
    response_model=HistoryResponse,
    dependencies=[Depends(enforce_security)],
    summary="Chat history for one tool",
)
async def get_tool_history(tool: ToolId) -> HistoryResponse:
    return HistoryResponse(tool=tool, chats=get_history().get_history(tool))


@app.post(
    "/v1/histories/{tool}",
    response_model=Chat,
    status_code=201,
    dependencies=[Depends(enforce_security)],
    summary="Add a chat",
    description="Adds a chat unless one with the same serverId, or same title created within a minute, exists.",
)
async def add_chat(tool: ToolId, body: ChatCreate) -> Chat:
    return get_history().add_chat(tool, body.model_dump(by_alias=True, exclude_none=True))


@app.delete(
    "/v1/histories/{tool}",
    dependencies=[Depends(enforce_security)],
    summary="Clear a tool's chat history",
)
async def clear_tool_history(tool: ToolId) -> Dict[str, Any]:
    get_history().clear_history(tool)
    return {"tool": tool, "cleared": True}


@app.get(
    "/v1/histories/{tool}/{chat_id}",
    response_model=Chat,
    dependencies=[Depends(enforce_security)],
    summary="Open a chat",
    description="Returns the chat with its full server messages when it is linked to a server chat.",
)
async def open_chat(tool: ToolId, chat_id: str, token: Optional[str] = Depends(bearer_token)) -> Chat:
    chat = await workflows.open_chat(make_client(token), get_history(), tool, chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@app.patch(
    "/v1/histories/{tool}/{chat_id}",
    response_model=Chat,
    dependencies=[Depends(enforce_security)],
    summary="Update a chat",
)
async def update_chat(tool: ToolId, chat_id: str, body: ChatUpdate) -> Chat:
    updates = body.model_dump(exclude_unset=True)
    chat = get_history().update_chat(tool, chat_id, updates)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@app.delete(
    "/v1/histories/{tool}/{chat_id}",
    dependencies=[Depends(enforce_security)],
    summary="Delete a chat on the server and locally",
)
async def delete_chat(
    tool: ToolId,
    chat_id: str,
    server_id: Optional[str] = None,
    token: Optional[str] = Depends(bearer_token),
) -> Dict[str, Any]:
    server_deleted, local_deleted = await workflows.delete_chat(
        make_client(token), get_history(), tool, chat_id, server_id=server_id
    )
    return {"server_deleted": server_deleted, "local_deleted": local_deleted}


# =============================================================================
# SERVER SYNC
# =============================================================================


@app.post(
    "/v1/sync",
    response_model=SyncResponse,
    dependencies=[Depends(enforce_security)],
    summary="Reconcile server chats into the local histories",
)
async def sync(token: Optional[str] = Depends(bearer_token)) -> SyncResponse:
    server_chats, results = await workflows.sync_chats(make_client(token), get_history())
    return SyncResponse(
        server_chats=len(server_chats),
        tools={
            tool: SyncToolResult(
                added=r.added,
                linked=r.linked,
                mutated=r.mutated,
                count=len(r.chats),
            )
            for tool, r in results.items()
        },
    )


@app.get(
    "/v1/view/{tool}",
    response_model=HistoryResponse,
    dependencies=[Depends(enforce_security)],
    summary="Combined server and local listing for a tool",
)
async def view(tool: ToolId, token: Optional[str] = Depends(bearer_token)) -> HistoryResponse:
    server_chats = await make_client(token).list_chats()
    local = get_history().get_history(tool)
    return HistoryResponse(tool=tool, chats=history_view(tool, server_chats, local))


# =============================================================================
# GENERATION
# =============================================================================


@app.post(
    "/v1/generate/{tool}",
    response_model=GenerateResponse,
    dependencies=[Depends(enforce_security)],
    summary="Run a generation job to completion",
    description="Starts the job, polls it every few seconds and records the result in the chat history.",
)
async def generate(
    tool: ToolId,
    body: GenerateRequest,
    token: Optional[str] = Depends(bearer_token),
) -> GenerateResponse:
    if tool not in workflows.TOOL_JOBS:
        raise HTTPException(status_code=400, detail=f"Tool '{tool}' does not run generation jobs")
    if not token:
        raise HTTPException(status_code=401, detail=f"Please log in to generate {tool} results.")

    outcome = await workflows.run_generation(
        make_client(token),
        get_history(),
        tool,
        body.prompt,
        options=body.options,
        chat_id=body.chat_id,
    )
    return GenerateResponse(url=outcome.url, job_id=outcome.job_id, chat=outcome.chat)


# =============================================================================
# STARTUP / SHUTDOWN EVENTS
# =============================================================================


@app.on_event("startup")
async def startup_event():
    """Application startup tasks."""
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    logger.info("Starting %s v%s", settings.SERVICE_NAME, settings.SERVICE_VERSION)
    logger.info("Store backend: %s", settings.STORE)
    logger.info("Studio API candidates: %s", ", ".join(settings.api_candidates()))


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down %s", settings.SERVICE_NAME)
