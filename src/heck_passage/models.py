"""Inbound request schema for the chat-completions endpoint."""

from __future__ import annotations

from typing import Any, List, Union

from pydantic import BaseModel, ConfigDict


class ContentPart(BaseModel):
    """One element of a multimodal ``content`` array.

    Only ``{"type": "text", "text": ...}`` parts contribute to the prompt; image
    references and unknown part types are carried but ignored.
    """

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    text: Any = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str
    content: Union[str, List[ContentPart], None] = None


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str | None = None
    messages: List[ChatMessage]
    stream: bool = False
