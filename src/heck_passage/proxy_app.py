from __future__ import annotations

import json
import logging
import os
import secrets
import time

import httpx
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from uvicorn.logging import DefaultFormatter

from .config import RootConfig, load_settings
from .forwarder import Forwarder, UpstreamStatusError, build_chat_payload
from .models import ChatCompletionRequest
from .prompt import assemble_prompt
from .transcoder import ResponseMeta, StreamTranscoder, aggregate, sse_frames

_handler = logging.StreamHandler()
_handler.setFormatter(DefaultFormatter(fmt="%(levelprefix)s %(message)s", use_colors=True))
_root = logging.getLogger()
_root.handlers.clear()
_root.addHandler(_handler)
_root.setLevel(os.getenv("HECK_PASSAGE_LOG_LEVEL", "INFO").upper())

logger = logging.getLogger(__name__)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": {"message": message}}, status_code=status_code)


app = FastAPI(title="Heck Chat Proxy", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

_config: RootConfig | None = None
_forwarder: Forwarder | None = None


@app.on_event("startup")
async def _startup() -> None:
    global _config, _forwarder  # noqa: PLW0603

    _config = load_settings()
    _forwarder = Forwarder(_config.upstream)
    logger.info("Upstream target: %s", _config.upstream.base_url)


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _forwarder:
        await _forwarder.aclose()


def _authorized(request: Request, cfg: RootConfig) -> bool:
    auth = cfg.service.auth
    if auth is None or auth.key is None:
        return True
    supplied = request.headers.get("Authorization", "")
    return secrets.compare_digest(supplied, f"Bearer {auth.key}")


@app.get("/")
async def health() -> dict[str, str]:
    return {"status": "ok", "mode": "api-only"}


@app.get("/v1/models")
async def list_models() -> Response:
    # listing is public like the health route; only completions need the key
    assert _config is not None
    created = int(time.time())
    data = [{"id": name, "object": "model", "created": created, "owned_by": "heck-ai"} for name in _config.models]
    return JSONResponse({"object": "list", "data": data})


@app.post("/v1/chat/completions")
async def chat_completions(request: Request) -> Response:
    assert _config is not None and _forwarder is not None
    if not _authorized(request, _config):
        return _error("Unauthorized", status.HTTP_401_UNAUTHORIZED)

    try:
        body = ChatCompletionRequest.model_validate(json.loads(await request.body()))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
        logger.info("Rejected malformed request body: %s", exc)
        return _error("Invalid request body", status.HTTP_400_BAD_REQUEST)

    reported_model, upstream_model = _config.resolve_model(body.model)
    prompt = assemble_prompt(body.messages)
    session_id = await _forwarder.create_session(prompt.title)

    payload = build_chat_payload(
        upstream_model,
        prompt.text.rstrip("\n"),
        _config.upstream.language,
        session_id,
    )
    logger.info(
        "Forwarding %s (%s) session=%s stream=%s",
        reported_model,
        upstream_model,
        session_id,
        body.stream,
    )

    try:
        upstream = await _forwarder.open_chat(payload)
    except UpstreamStatusError as exc:
        logger.error("Upstream rejected chat call (%s): %s", exc.status_code, exc.body)
        return _error(str(exc), exc.status_code)

    meta = ResponseMeta.new(reported_model)
    transcoder = StreamTranscoder(
        markdown_breaks=_config.transcoder.markdown_breaks,
        suggestion_markers=_config.transcoder.suggestion_markers,
    )
    events = transcoder.events(upstream.aiter_bytes(), release=upstream.aclose)

    if body.stream:
        return StreamingResponse(
            sse_frames(events, meta),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return JSONResponse(await aggregate(events, meta))


@app.exception_handler(httpx.RequestError)
async def _httpx_error(_: Request, exc: httpx.RequestError) -> Response:
    """Return a generic 502 response on httpx failures."""
    logger.error("Upstream request error: %s", exc)
    return _error("Upstream failure", status.HTTP_502_BAD_GATEWAY)
