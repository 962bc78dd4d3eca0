"""Flatten an OpenAI-style message list into the upstream's single question string."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from .models import ChatMessage

TITLE_LENGTH = 15
DEFAULT_TITLE = "New Chat"

ROLE_MARKERS = {
    "system": "[System]: ",
    "user": "[User]: ",
    "assistant": "[Assistant]: ",
}


@dataclass(frozen=True)
class AssembledPrompt:
    text: str
    last_user_text: str
    title: str


def extract_text(content: Any) -> str:
    """Return the plain text carried by a message ``content`` value.

    Strings are used verbatim; part lists contribute the text of their text
    parts joined by newlines. Anything else yields an empty string.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            part_type = getattr(part, "type", None)
            text = getattr(part, "text", None)
            if isinstance(part, dict):
                part_type = part.get("type")
                text = part.get("text")
            if part_type == "text" and isinstance(text, str):
                texts.append(text)
        return "\n".join(texts)
    return ""


def make_title(text: str) -> str:
    title = text[:TITLE_LENGTH].replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
    return title or DEFAULT_TITLE


def assemble_prompt(messages: Iterable[ChatMessage]) -> AssembledPrompt:
    lines = []
    last_user_text = ""
    for msg in messages:
        marker = ROLE_MARKERS.get(msg.role)
        if marker is None:
            continue
        text = extract_text(msg.content)
        if msg.role == "user":
            last_user_text = text
        if not text:
            continue
        lines.append(f"{marker}{text}\n")

    return AssembledPrompt(
        text="".join(lines),
        last_user_text=last_user_text,
        title=make_title(last_user_text),
    )
