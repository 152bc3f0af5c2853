"""
Studio API client module.

Async HTTP client for the AI Studio REST API. Handles base URL detection,
Bearer authentication and unwrapping of the ``{success, data, message}``
response envelope.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import settings
from .errors import StudioAPIError, StudioUnavailable
from .models import Job, ServerChat, sort_server_chats

logger = logging.getLogger("omnistudio.client")

# Generation job families exposing ``/generate`` and ``/job/{id}``
JOB_KINDS = ("images", "videos", "avatars")


def _unwrap(resp: httpx.Response, action: str) -> Any:
    """
    Return the ``data`` member of a Studio response.

    Raises:
        StudioAPIError: On error status, non-JSON body or ``success: false``
    """
    if resp.status_code >= 400:
        text = resp.text or ""
        raise StudioAPIError(
            f"{action}: {resp.status_code}{f' - {text}' if text else ''}",
            status_code=resp.status_code,
            body=text,
        )
    try:
        payload = resp.json()
    except ValueError:
        raise StudioAPIError(
            f"{action}: non-JSON response",
            status_code=resp.status_code,
            body=resp.text,
        )
    if isinstance(payload, dict):
        if payload.get("success") is False:
            raise StudioAPIError(
                payload.get("message") or action,
                status_code=resp.status_code,
                body=resp.text,
            )
        if "data" in payload:
            return payload["data"]
    return payload


class StudioClient:
    """
    Async HTTP client for the Studio API.

    Handles:
    - Base URL detection over the configured candidates
    - Bearer token forwarding
    - Chat, generation-job and auth endpoints
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        candidates: Optional[List[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/") if base_url else None
        self.candidates = candidates or ([self._base_url] if self._base_url else settings.api_candidates())
        self.token = token if token is not None else settings.STUDIO_TOKEN
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_S
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.timeout,
            transport=self._transport,
        )

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    # ── base URL ──────────────────────────────────────────────────────────

    async def detect_base_url(self) -> str:
        """
        Probe the candidate base URLs in order and remember the first that answers.

        Raises:
            StudioUnavailable: If no candidate answers with a 2xx status
        """
        async with self._client(timeout=5) as client:
            for base in self.candidates:
                try:
                    r = await client.get(f"{base}{settings.STUDIO_PROBE_PATH}")
                except httpx.RequestError as exc:
                    logger.debug("Studio API probe %s failed: %s", base, exc)
                    continue
                if r.is_success:
                    logger.info("Using Studio API at %s", base)
                    self._base_url = base
                    return base
                logger.debug("Studio API probe %s answered HTTP %d", base, r.status_code)
        raise StudioUnavailable(
            f"No Studio API reachable (tried: {', '.join(self.candidates) or 'nothing'})"
        )

    async def base_url(self) -> str:
        if self._base_url:
            return self._base_url
        return await self.detect_base_url()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        files: Any = None,
        data: Optional[Dict[str, Any]] = None,
        auth: bool = True,
    ) -> httpx.Response:
        base = await self.base_url()
        async with self._client() as client:
            try:
                return await client.request(
                    method,
                    f"{base}{path}",
                    json=json,
                    params=params,
                    files=files,
                    data=data,
                    headers=self._headers() if auth else {},
                )
            except httpx.RequestError as exc:
                raise StudioUnavailable(f"Studio API {method} {path} error: {exc}") from exc

    # ── auth ──────────────────────────────────────────────────────────────

    async def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """Log in and keep the returned token for later calls."""
        resp = await self._send(
            "POST",
            "/api/users/login",
            json={"identifier": identifier, "password": password},
            auth=False,
        )
        data = _unwrap(resp, "Login failed")
        self.token = (data or {}).get("token") or self.token
        return data

    async def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        """Create an account; the username and name parts are derived from ``name``."""
        parts = name.split()
        payload = {
            "email": email,
            "password": password,
            "username": "".join(name.lower().split())[:50],
            "firstName": parts[0] if parts else name,
            "lastName": " ".join(parts[1:]) or "User",
        }
        resp = await self._send("POST", "/api/users/register", json=payload, auth=False)
        data = _unwrap(resp, "Registration failed")
        self.token = (data or {}).get("token") or self.token
        return data

    # ── chats ─────────────────────────────────────────────────────────────

    async def list_chats(self, chat_type: Optional[str] = None) -> List[ServerChat]:
        """Server chats, newest first."""
        params = {"chatType": chat_type} if chat_type else None
        resp = await self._send("GET", "/api/chat", params=params)
        data = _unwrap(resp, "List chats failed")
        if not isinstance(data, list):
            raise StudioAPIError("List chats failed: expected a list", status_code=resp.status_code)
        return sort_server_chats([ServerChat.model_validate(c) for c in data])

    async def get_chat(self, server_id: str) -> ServerChat:
        resp = await self._send("GET", f"/api/chat/{server_id}")
        return ServerChat.model_validate(_unwrap(resp, "Get chat failed"))

    async def create_chat(self, title: str, chat_type: str = "text") -> ServerChat:
        resp = await self._send("POST", "/api/chat", json={"title": title, "chatType": chat_type})
        return ServerChat.model_validate(_unwrap(resp, "Create chat failed"))

    async def delete_chat(self, server_id: str) -> None:
        resp = await self._send("DELETE", f"/api/chat/{server_id}")
        _unwrap(resp, "Failed to delete on server")

    async def send_message(self, server_id: str, message: str, stream: bool = False) -> Any:
        resp = await self._send(
            "POST",
            f"/api/chat/{server_id}/message",
            json={"message": message, "stream": stream},
        )
        return _unwrap(resp, "Send message failed")

    async def add_image_message(
        self, server_id: str, message: str, image: str, role: str = "assistant"
    ) -> Any:
        resp = await self._send(
            "POST",
            f"/api/chat/{server_id}/image-message",
            json={"message": message, "image": image, "role": role},
        )
        return _unwrap(resp, "Add image message failed")

    async def add_avatar_message(
        self,
        server_id: str,
        message: str,
        avatar: str,
        image_id: Optional[str] = None,
        role: str = "assistant",
    ) -> Any:
        payload: Dict[str, Any] = {"message": message, "avatar": avatar, "role": role}
        if image_id:
            payload["imageId"] = image_id
        resp = await self._send("POST", f"/api/chat/{server_id}/avatar-message", json=payload)
        return _unwrap(resp, "Add avatar message failed")

    # ── generation jobs ───────────────────────────────────────────────────

    async def start_job(self, kind: str, payload: Dict[str, Any]) -> str:
        """
        Start a generation job and return its id.

        Args:
            kind: One of ``images``, ``videos``, ``avatars``
            payload: Body forwarded to ``/api/{kind}/generate``
        """
        if kind not in JOB_KINDS:
            raise ValueError(f"Unknown job kind: {kind}")
        resp = await self._send("POST", f"/api/{kind}/generate", json=payload)
        return self._job_id(_unwrap(resp, "Start failed"), resp)

    async def generate_image(self, payload: Dict[str, Any]) -> str:
        """Start an image job; returns the job id."""
        return await self.start_job("images", payload)

    async def start_avatar_from_image(
        self,
        filename: str,
        content_type: str,
        data: bytes,
        fields: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Upload a photo and start an image-to-avatar job."""
        resp = await self._send(
            "POST",
            "/api/avatars/generate-from-image",
            files={"avatarImage": (filename, data, content_type)},
            data=fields or {},
        )
        return self._job_id(_unwrap(resp, "Start failed"), resp)

    @staticmethod
    def _job_id(data: Any, resp: httpx.Response) -> str:
        job_id = data.get("jobId") if isinstance(data, dict) else None
        if not job_id:
            raise StudioAPIError("No jobId returned by server", status_code=resp.status_code)
        return str(job_id)

    async def get_job(self, kind: str, job_id: str) -> Job:
        if kind not in JOB_KINDS:
            raise ValueError(f"Unknown job kind: {kind}")
        resp = await self._send("GET", f"/api/{kind}/job/{job_id}")
        data = _unwrap(resp, "Status failed")
        return Job.model_validate(data or {})

    # ── health ────────────────────────────────────────────────────────────

    async def health_check(self) -> bool:
        """True if some Studio API base URL answers the probe."""
        try:
            await self.detect_base_url()
            return True
        except StudioUnavailable:
            return False
