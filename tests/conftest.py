"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Project root on sys.path (the project is a flat set of modules)
- Test environment variables, set before the app module is imported
- A fake conversation backend served through httpx.MockTransport
- Builders for backend event lines
"""

import json
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, List, Optional

import httpx
import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# The app loads config at import time, so the environment must be ready during collection.
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/conversation_gateway_test.log")
os.environ["DEBUG_TRAFFIC"] = "false"
for _name in ("ARKOSE_TOKEN", "ARKOSE_TOKEN_URL", "ACCESS_TOKEN_PREFIX", "MAX_LEGS"):
    os.environ.pop(_name, None)

from config import AppConfig  # noqa: E402
from upstream import ConversationTransport  # noqa: E402

BACKEND_URL = "https://backend.test/backend-api/conversation"
ACCESS_TOKEN = "eyJhbGciOiJSUzI1NiIsInR5cCI6IkpXVCJ9.test.signature"
PUID = "user-puid-123"


def event_payload(
    text: str,
    *,
    message_id: str = "msg-1",
    conversation_id: str = "conv-1",
    role: str = "assistant",
    message_type: str = "next",
    end_turn: Any = None,
    finish_type: Optional[str] = None,
    error: Any = None,
) -> dict:
    """Build one backend conversation event with cumulative `text`."""
    finish = {"type": finish_type, "stop": "<|im_end|>"} if finish_type else None
    return {
        "message": {
            "id": message_id,
            "author": {"role": role, "name": None, "metadata": {}},
            "create_time": 1700000000.0,
            "content": {"content_type": "text", "parts": [text]},
            "end_turn": end_turn,
            "weight": 1.0,
            "metadata": {
                "message_type": message_type,
                "model_slug": "text-davinci-002-render-sha",
                "finish_details": finish,
            },
            "recipient": "all",
        },
        "conversation_id": conversation_id,
        "error": error,
    }


def event_line(text: str, **kwargs: Any) -> str:
    return "data: " + json.dumps(event_payload(text, **kwargs))


def sse_body(lines: Iterable[str], done: bool = True) -> bytes:
    """Frame event lines the way the backend does, blank line between events."""
    out = "".join(f"{ln}\n\n" for ln in lines)
    if done:
        out += "data: [DONE]\n\n"
    return out.encode("utf-8")


def stream_response(lines: Iterable[str], done: bool = True) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=sse_body(lines, done=done),
    )


def growing_leg(
    pieces: List[str],
    *,
    base: str = "",
    finish_type: Optional[str] = "stop",
    message_id: str = "msg-1",
    conversation_id: str = "conv-1",
) -> List[str]:
    """
    Event lines for a leg whose cumulative text grows by `pieces`.

    The last content event carries `finish_type`; a closing end_turn event
    follows, as the backend sends it.
    """
    lines = []
    text = base
    for i, piece in enumerate(pieces):
        text += piece
        last = i == len(pieces) - 1
        lines.append(
            event_line(
                text,
                message_id=message_id,
                conversation_id=conversation_id,
                finish_type=finish_type if last else None,
            )
        )
    lines.append(
        event_line(text, message_id=message_id, conversation_id=conversation_id, end_turn=True)
    )
    return lines


class BrokenStream(httpx.AsyncByteStream):
    """Response body that dies with a read error after `chunks`."""

    def __init__(self, chunks: List[bytes]) -> None:
        self._chunks = chunks

    async def __aiter__(self):
        for c in self._chunks:
            yield c
        raise httpx.ReadError("connection reset by peer")

    async def aclose(self) -> None:
        return None


class FakeBackend:
    """Serve canned upstream responses in order and record every request."""

    def __init__(self, config: AppConfig, responses: Iterable[Any] = ()) -> None:
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []
        self.client = httpx.AsyncClient(
            transport=httpx.MockTransport(self._handle),
            follow_redirects=False,
        )
        self.transport = ConversationTransport(config, client=self.client)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(500, text="no canned response left")
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    @property
    def payloads(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def test_config() -> AppConfig:
    """Configuration pointing at the fake backend."""
    return replace(
        AppConfig.from_env(),
        backend_url=BACKEND_URL,
        proxy_url="",
        arkose_token="",
        arkose_token_url="",
        max_legs=3,
        user_agent="test-agent",
    )


@pytest.fixture
async def make_backend(test_config):
    """Factory: make_backend(response, ...) -> FakeBackend."""
    backends: List[FakeBackend] = []

    def _make(*responses: Any) -> FakeBackend:
        backend = FakeBackend(test_config, responses)
        backends.append(backend)
        return backend

    yield _make

    for backend in backends:
        await backend.client.aclose()
