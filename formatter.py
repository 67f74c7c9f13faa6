"""OpenAI-compatible output frames: completion objects, SSE chunks and error envelopes."""

from __future__ import annotations

import contextlib
import json
import logging
import time
import uuid
from typing import Any, AsyncGenerator, Dict, Optional, Tuple

from continuation import ContinuationController
from errors import GatewayError
from models import Delta

log = logging.getLogger("gateway")

ASSISTANT_ROLE = "assistant"


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def build_chunk(
    req_id: str,
    model: str,
    delta: Optional[Delta] = None,
    finish_reason: Optional[str] = None,
    *,
    role: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a chat.completion.chunk; delta fields are present only when set."""
    body: Dict[str, Any] = {}
    role = role or (delta.role if delta is not None else None)
    if role:
        body["role"] = role
    if delta is not None and delta.content:
        body["content"] = delta.content
    return {
        "id": req_id,
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "delta": body, "finish_reason": finish_reason}],
    }


def build_completion(
    req_id: str,
    model: str,
    content: str,
    finish_reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a non-streamed chat.completion object."""
    return {
        "id": req_id,
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
        "choices": [
            {
                "index": 0,
                "message": {"role": ASSISTANT_ROLE, "content": content},
                "finish_reason": finish_reason,
            }
        ],
    }


def error_envelope(
    message: Any,
    error_type: str = "invalid_request_error",
    code: Any = "error",
    param: Any = None,
) -> Dict[str, Any]:
    return {"error": {"message": message, "type": error_type, "param": param, "code": code}}


def sse_data(obj: dict) -> bytes:
    """Encode dict as an SSE data event."""
    return f"data: {json.dumps(obj, ensure_ascii=False, separators=(',', ':'))}\n\n".encode("utf-8")


def sse_done() -> bytes:
    """SSE [DONE] event."""
    return b"data: [DONE]\n\n"


async def stream_frames(
    controller: ContinuationController,
    deltas: AsyncGenerator[Delta, None],
    req_id: str,
    model: str,
    first: Optional[Delta] = None,
) -> AsyncGenerator[bytes, None]:
    """
    Render a controller's deltas as SSE frames.

    `first` is a delta already pulled from `deltas` by the caller (used to
    surface pre-content errors as a proper HTTP status). Each delta is
    flushed as its own frame. On normal completion a sentinel chunk carries
    the finish reason, followed by [DONE]. A failure after content has been
    flushed just ends the stream.
    """
    role_sent = False
    try:
        if first is not None:
            role_sent = role_sent or first.role is not None
            yield sse_data(build_chunk(req_id, model, first))
        async for delta in deltas:
            role_sent = role_sent or delta.role is not None
            yield sse_data(build_chunk(req_id, model, delta))
    except GatewayError as e:
        log.warning(
            "Stream aborted after content req_id=%s legs=%d err=%s: %s",
            req_id,
            controller.legs,
            type(e).__name__,
            e,
        )
        return
    finally:
        await deltas.aclose()

    # No content frame carried the role (empty answer): announce it on the sentinel.
    sentinel_role = None if role_sent else ASSISTANT_ROLE
    yield sse_data(build_chunk(req_id, model, finish_reason=controller.finish_reason, role=sentinel_role))
    yield sse_done()


async def aggregate(controller: ContinuationController) -> Tuple[str, Optional[str]]:
    """
    Collect every delta of every leg into one string.

    If a later leg fails after at least one leg completed, the partial text is
    returned and the failure only logged. A failure before any leg completed
    propagates.
    """
    parts = []
    try:
        async with contextlib.aclosing(controller.deltas()) as deltas:
            async for delta in deltas:
                parts.append(delta.content)
    except GatewayError as e:
        if controller.completed_legs == 0:
            raise
        log.warning(
            "Returning partial answer after leg %d failed (completed_legs=%d) err=%s: %s",
            controller.legs,
            controller.completed_legs,
            type(e).__name__,
            e,
        )
    return "".join(parts), controller.finish_reason
