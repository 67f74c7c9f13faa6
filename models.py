"""Request and event models for the conversation gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from errors import RequestValidationError

ACTION_NEXT = "next"
ACTION_CONTINUE = "continue"


@dataclass(frozen=True)
class ChatTurn:
    """One caller message."""

    role: str
    content: str


@dataclass(frozen=True)
class ChatRequest:
    """Inbound OpenAI-style chat completion request."""

    messages: List[ChatTurn]
    model: str = ""
    stream: bool = False
    plugin_ids: Optional[List[str]] = None

    @classmethod
    def from_body(cls, body: Any) -> ChatRequest:
        """Validate a decoded JSON body and build a ChatRequest."""
        if not isinstance(body, dict):
            raise RequestValidationError("Invalid JSON body: expected object")

        raw_messages = body.get("messages")
        if not isinstance(raw_messages, list):
            raise RequestValidationError("Invalid request: 'messages' field must be an array")
        if not raw_messages:
            raise RequestValidationError("Invalid request: 'messages' array cannot be empty")

        turns: List[ChatTurn] = []
        for i, m in enumerate(raw_messages):
            if not isinstance(m, dict):
                raise RequestValidationError(f"Invalid request: messages[{i}] must be an object")
            role = m.get("role")
            content = m.get("content")
            if not isinstance(role, str) or not role:
                raise RequestValidationError(f"Invalid request: messages[{i}].role must be a string")
            if content is None:
                content = ""
            if not isinstance(content, str):
                raise RequestValidationError(f"Invalid request: messages[{i}].content must be a string")
            turns.append(ChatTurn(role=role, content=content))

        model = body.get("model") or ""
        if not isinstance(model, str):
            raise RequestValidationError("Invalid request: 'model' must be a string")

        plugin_ids = body.get("plugin_ids")
        if plugin_ids is not None:
            if not isinstance(plugin_ids, list) or not all(isinstance(p, str) for p in plugin_ids):
                raise RequestValidationError("Invalid request: 'plugin_ids' must be an array of strings")

        stream = body.get("stream")
        if stream is None:
            stream = False
        elif not isinstance(stream, bool):
            raise RequestValidationError("Invalid request: 'stream' must be a boolean")

        return cls(
            messages=turns,
            model=model.strip(),
            stream=stream,
            plugin_ids=plugin_ids,
        )


@dataclass(frozen=True)
class BackendMessage:
    """One message in the backend conversation request."""

    role: str
    text: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": {"role": self.role},
            "content": {"content_type": "text", "parts": [self.text]},
        }


@dataclass(frozen=True)
class ContinuationAnchor:
    """Where a truncated answer resumes: conversation plus parent message."""

    conversation_id: str
    parent_message_id: str


@dataclass(frozen=True)
class NormalizedRequest:
    """
    Backend conversation request.

    Immutable: a follow-up leg is derived with continuation(), which returns a
    new request with no messages, action "continue" and the anchor filled in.
    """

    messages: List[BackendMessage]
    model: str
    action: str = ACTION_NEXT
    parent_message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: Optional[str] = None
    history_and_training_disabled: bool = True
    arkose_token: Optional[str] = None
    plugin_ids: Optional[List[str]] = None

    def continuation(self, anchor: ContinuationAnchor) -> NormalizedRequest:
        return replace(
            self,
            messages=[],
            action=ACTION_CONTINUE,
            conversation_id=anchor.conversation_id,
            parent_message_id=anchor.parent_message_id,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action,
            "messages": [m.to_payload() for m in self.messages],
            "model": self.model,
            "history_and_training_disabled": self.history_and_training_disabled,
        }
        if self.parent_message_id:
            payload["parent_message_id"] = self.parent_message_id
        if self.conversation_id:
            payload["conversation_id"] = self.conversation_id
        if self.arkose_token:
            payload["arkose_token"] = self.arkose_token
        if self.plugin_ids:
            payload["plugin_ids"] = list(self.plugin_ids)
        return payload


@dataclass(frozen=True)
class FinishDetails:
    type: str
    stop: Optional[str] = None


@dataclass(frozen=True)
class BackendEvent:
    """One decoded event from the backend conversation stream."""

    message_id: str
    role: str
    parts: List[str]
    end_turn: bool
    message_type: str
    finish_details: Optional[FinishDetails]
    conversation_id: str
    error: Any = None

    @classmethod
    def from_payload(cls, obj: Dict[str, Any]) -> BackendEvent:
        """
        Build an event from a decoded JSON object.

        Missing or mistyped fields degrade to empty values so that the
        acceptance filter, not the parser, decides what is relevant.
        """
        message = obj.get("message")
        if not isinstance(message, dict):
            message = {}
        author = message.get("author")
        if not isinstance(author, dict):
            author = {}
        content = message.get("content")
        if not isinstance(content, dict):
            content = {}
        metadata = message.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}

        parts = content.get("parts")
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], str):
            parts = []

        finish: Optional[FinishDetails] = None
        fd = metadata.get("finish_details")
        if isinstance(fd, dict):
            finish = FinishDetails(type=str(fd.get("type") or ""), stop=fd.get("stop"))

        return cls(
            message_id=str(message.get("id") or ""),
            role=str(author.get("role") or ""),
            parts=list(parts),
            end_turn=message.get("end_turn") is not None,
            message_type=str(metadata.get("message_type") or ""),
            finish_details=finish,
            conversation_id=str(obj.get("conversation_id") or ""),
            error=obj.get("error"),
        )

    @property
    def text(self) -> str:
        """Cumulative answer text; only the first part is used."""
        return self.parts[0] if self.parts else ""

    def anchor(self) -> ContinuationAnchor:
        return ContinuationAnchor(
            conversation_id=self.conversation_id,
            parent_message_id=self.message_id,
        )


@dataclass(frozen=True)
class Delta:
    """Incremental text for the caller; role is set only on the call's first delta."""

    content: str
    role: Optional[str] = None
