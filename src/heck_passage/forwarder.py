"""Asynchronous client for the upstream session and chat endpoints."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict

import httpx

from .config import UpstreamCfg

logger = logging.getLogger(__name__)


class UpstreamStatusError(Exception):
    """The upstream answered the chat call with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Upstream Error: {status_code}")
        self.status_code = status_code
        self.body = body


def build_chat_payload(model: str, question: str, language: str, session_id: str) -> Dict[str, Any]:
    return {
        "model": model,
        "question": question,
        "language": language,
        "sessionId": session_id,
        "previousQuestion": None,
        "previousAnswer": None,
        "imgUrls": [],
        "superSmartMode": False,
    }


class Forwarder:
    """Forwarder with shared :class:`httpx.AsyncClient`."""

    def __init__(self, cfg: UpstreamCfg, transport: httpx.AsyncBaseTransport | None = None):
        self._cfg = cfg
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(cfg.timeout),
            headers=cfg.headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------------------------------------------------------------------
    # Public helpers
    # ---------------------------------------------------------------------
    async def create_session(self, title: str) -> str:
        """Create a throwaway upstream session, falling back to a random id."""
        url = self._cfg.url("session/create")
        try:
            resp = await self._client.post(url, json={"title": title})
            resp.raise_for_status()
            session_id = resp.json()["id"]
            if not isinstance(session_id, str) or not session_id:
                raise ValueError(f"unexpected session id {session_id!r}")
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            fallback = str(uuid.uuid4())
            logger.warning("Failed to create session (%s), using random id %s", exc, fallback)
            return fallback
        return session_id

    async def open_chat(self, payload: Dict[str, Any]) -> httpx.Response:
        """POST the question and return the still-open streaming response.

        The caller owns the returned response and must close it.
        """
        request = self._client.build_request("POST", self._cfg.url("chat"), json=payload)
        resp = await self._client.send(request, stream=True)
        if not resp.is_success:
            try:
                body = (await resp.aread()).decode("utf-8", errors="replace")
            finally:
                await resp.aclose()
            raise UpstreamStatusError(resp.status_code, body)
        return resp
