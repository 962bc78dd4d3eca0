"""Reshape the upstream's line-oriented SSE stream into chat-completion chunks.

The upstream sends one ``data:`` line per token. Bracketed markers such as
``[REASON_START]`` or ``[ANSWER_DONE]`` arrive in-band with the text, and an
appended related-questions block follows the answer. :class:`StreamTranscoder`
turns the raw bytes into :data:`OutputEvent` values; :func:`encode_event` and
:func:`aggregate` turn those into the streaming frames or one completion object.

Whitespace matters: only the ``data:`` marker and at most one following space
are removed, because tokens carry their own leading space (``" able"``).
"""

from __future__ import annotations

import codecs
import json
import logging
import re
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterable, AsyncIterator, Awaitable, Callable, Dict, Iterable, Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
ERROR_PREFIX = '{"error":'
RELATED_PREFIX = "[RELATE_Q"


class SignalKind(Enum):
    REASON_START = "[REASON_START]"
    REASON_DONE = "[REASON_DONE]"
    ANSWER_START = "[ANSWER_START]"
    ANSWER_DONE = "[ANSWER_DONE]"
    RELATED_START = "[RELATE_Q_START]"
    RELATED_DONE = "[RELATE_Q_DONE]"
    DONE = "[DONE]"
    ERROR_TAG = ERROR_PREFIX


TERMINAL_SIGNALS = frozenset({SignalKind.ANSWER_DONE, SignalKind.RELATED_START, SignalKind.RELATED_DONE})

_EXACT_TOKENS = {kind.value: kind for kind in SignalKind if kind is not SignalKind.ERROR_TAG}


# ---------------------------------------------------------------------------
# Text repair
# ---------------------------------------------------------------------------
def _mis_decode(glyph: str) -> str:
    """Render *glyph* the way it looks after its UTF-8 bytes were read as cp1252."""
    out = []
    for byte in glyph.encode("utf-8"):
        try:
            out.append(bytes([byte]).decode("cp1252"))
        except UnicodeDecodeError:
            out.append(chr(byte))
    return "".join(out)


_REPAIRABLE_GLYPHS = "’‘“”–—…•€™°±×÷£¥©®«»¿¡áàâãäåæçéèêëíìîïñóòôõöøúùûüýÿßÁÀÂÃÄÅÇÉÈÊËÍÎÓÔÕÖÚÜÑ"

MOJIBAKE: Dict[str, str] = {_mis_decode(g): g for g in _REPAIRABLE_GLYPHS}
# longest first so that three-byte sequences win over their two-byte prefixes
_MOJIBAKE_RE = re.compile("|".join(re.escape(k) for k in sorted(MOJIBAKE, key=len, reverse=True)))

DEFAULT_SUGGESTION_MARKERS = (_mis_decode("💡"),)

_STRAY_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f\ufeff]")

_BLOCK_START_RE = re.compile(r"(?:[-*+] |\d+[.)] |#{1,6} |```)")


def repair_text(text: str) -> str:
    """Replace known mojibake sequences and drop stray control characters."""
    if not text:
        return text
    text = _MOJIBAKE_RE.sub(lambda m: MOJIBAKE[m.group(0)], text)
    return _STRAY_CONTROL_RE.sub("", text)


# ---------------------------------------------------------------------------
# Upstream events
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ContentFragment:
    text: str


@dataclass(frozen=True)
class ReasoningFragment:
    text: str


@dataclass(frozen=True)
class ControlSignal:
    kind: SignalKind
    token: str = ""


UpstreamEvent = Union[ContentFragment, ReasoningFragment, ControlSignal]


def classify_token(token: str) -> SignalKind | None:
    """Match a trimmed payload against the control vocabulary."""
    kind = _EXACT_TOKENS.get(token)
    if kind is not None:
        return kind
    if token.startswith(RELATED_PREFIX):
        return SignalKind.RELATED_DONE if token.endswith("_DONE]") else SignalKind.RELATED_START
    if token.startswith(ERROR_PREFIX):
        return SignalKind.ERROR_TAG
    return None


def strip_data_prefix(line: str) -> str | None:
    """Remove ``data:`` and at most one space; ``None`` for non-data lines."""
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX) :]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def parse_line(
    line: str,
    reasoning: bool = False,
    suggestion_markers: Iterable[str] = DEFAULT_SUGGESTION_MARKERS,
) -> UpstreamEvent | None:
    """Decode one complete line (without its newline) into an upstream event."""
    payload = strip_data_prefix(line)
    if payload is None:
        # bare markers are honoured, any other undecorated line is noise
        token = line.strip()
        kind = classify_token(token) if token.startswith("[") else None
        return ControlSignal(kind, token) if kind is not None else None

    token = payload.strip()
    kind = classify_token(token)
    if kind is not None:
        return ControlSignal(kind, token)
    if any(marker in payload for marker in suggestion_markers):
        return ControlSignal(SignalKind.RELATED_START, token)

    if payload:
        text = repair_text(payload)
        if not text:
            return None
    else:
        text = "\n"
    return ReasoningFragment(text) if reasoning else ContentFragment(text)


# ---------------------------------------------------------------------------
# Output events
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class DeltaChunk:
    text: str
    reasoning: bool = False


@dataclass(frozen=True)
class StopChunk:
    pass


class EndOfStream:
    _instance: EndOfStream | None = None

    def __new__(cls) -> EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = EndOfStream()

OutputEvent = Union[DeltaChunk, StopChunk, EndOfStream]


@dataclass
class TranscoderState:
    reasoning_active: bool = False
    # last content fragment handed out, used for the Markdown paragraph break
    last_fragment: str = ""
    terminated: bool = False


class StreamTranscoder:
    """Stateful, single-use converter for one upstream response body."""

    def __init__(
        self,
        *,
        markdown_breaks: bool = True,
        suggestion_markers: Iterable[str] = DEFAULT_SUGGESTION_MARKERS,
    ) -> None:
        self.state = TranscoderState()
        self._markdown_breaks = markdown_breaks
        self._markers = tuple(m for m in suggestion_markers if m)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    # ---------------------------------------------------------------------
    # Synchronous core
    # ---------------------------------------------------------------------
    def feed(self, data: bytes) -> list[DeltaChunk]:
        """Consume one chunk of raw bytes and return the deltas it completes."""
        if self.state.terminated:
            return []
        self._pending += self._decoder.decode(data)
        *lines, self._pending = self._pending.split("\n")

        deltas = []
        for line in lines:
            delta = self._process_line(line)
            if delta is not None:
                deltas.append(delta)
            if self.state.terminated:
                self._pending = ""
                break
        return deltas

    def finish(self) -> list[DeltaChunk]:
        """Flush the decoder and treat an unterminated last line as complete."""
        if self.state.terminated:
            return []
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if not tail:
            return []
        delta = self._process_line(tail)
        return [delta] if delta is not None else []

    def _process_line(self, line: str) -> DeltaChunk | None:
        if line.endswith("\r"):
            line = line[:-1]
        event = parse_line(line, self.state.reasoning_active, self._markers)
        if event is None:
            return None
        if isinstance(event, ControlSignal):
            self._apply(event)
            return None
        if isinstance(event, ReasoningFragment):
            return DeltaChunk(event.text, reasoning=True)

        text = event.text
        if self._markdown_breaks and self._opens_block(text):
            text = "\n\n" + text
        self.state.last_fragment = text
        return DeltaChunk(text)

    def _apply(self, signal: ControlSignal) -> None:
        kind = signal.kind
        if kind is SignalKind.REASON_START:
            self.state.reasoning_active = True
        elif kind is SignalKind.REASON_DONE:
            self.state.reasoning_active = False
        elif kind in TERMINAL_SIGNALS:
            logger.debug("Answer boundary %r reached, dropping the rest of the stream", signal.token)
            self.state.terminated = True
        elif kind is SignalKind.ERROR_TAG:
            logger.warning("Dropping upstream error envelope: %s", signal.token)

    def _opens_block(self, text: str) -> bool:
        last = self.state.last_fragment
        if not last or last.endswith("\n"):
            return False
        return _BLOCK_START_RE.match(text.lstrip(" \t")) is not None

    # ---------------------------------------------------------------------
    # Async driver
    # ---------------------------------------------------------------------
    async def events(
        self,
        body: AsyncIterable[bytes],
        release: Callable[[], Awaitable[None]] | None = None,
    ) -> AsyncGenerator[OutputEvent, None]:
        """Yield output events for *body*, always ending with Stop + sentinel.

        *release* is awaited on every exit path, including early termination at
        the answer boundary and cancellation by the consumer.
        """
        try:
            try:
                async for data in body:
                    for delta in self.feed(data):
                        yield delta
                    if self.state.terminated:
                        break
                else:
                    for delta in self.finish():
                        yield delta
            except Exception as exc:
                logger.exception("Upstream stream failed mid-read")
                yield DeltaChunk(f"\n[Error: {exc}]")
            yield StopChunk()
            yield END_OF_STREAM
        finally:
            closer = getattr(body, "aclose", None)
            if closer is not None:
                await closer()
            if release is not None:
                await release()


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ResponseMeta:
    id: str
    model: str
    created: int

    @classmethod
    def new(cls, model: str) -> ResponseMeta:
        return cls(id=f"chatcmpl-{uuid.uuid4()}", model=model, created=int(time.time()))


def chunk_object(event: DeltaChunk | StopChunk, meta: ResponseMeta) -> Dict[str, Any]:
    finish_reason: str | None
    if isinstance(event, DeltaChunk):
        delta = {"reasoning_content": event.text} if event.reasoning else {"content": event.text}
        finish_reason = None
    else:
        delta = {}
        finish_reason = "stop"
    return {
        "id": meta.id,
        "object": "chat.completion.chunk",
        "created": meta.created,
        "model": meta.model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def encode_event(event: OutputEvent, meta: ResponseMeta) -> str:
    """Serialize one output event as an SSE frame."""
    if isinstance(event, EndOfStream):
        return "data: [DONE]\n\n"
    return f"data: {json.dumps(chunk_object(event, meta), ensure_ascii=False)}\n\n"


async def sse_frames(events: AsyncGenerator[OutputEvent, None], meta: ResponseMeta) -> AsyncIterator[str]:
    """Frame *events* for the wire; closing the frames closes *events* too."""
    async with aclosing(events):
        async for event in events:
            yield encode_event(event, meta)


async def aggregate(events: AsyncIterable[OutputEvent], meta: ResponseMeta) -> Dict[str, Any]:
    """Drain *events* into a single ``chat.completion`` object."""
    content: list[str] = []
    reasoning: list[str] = []
    async for event in events:
        if isinstance(event, DeltaChunk):
            (reasoning if event.reasoning else content).append(event.text)

    return {
        "id": meta.id,
        "object": "chat.completion",
        "created": meta.created,
        "model": meta.model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": "".join(content),
                    "reasoning_content": "".join(reasoning),
                },
                "finish_reason": "stop",
            }
        ],
    }
