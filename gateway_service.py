"""
Conversation gateway (OpenAI-compatible) -> ChatGPT web backend as upstream.

POST /v1/chat/completions accepts an OpenAI chat request and answers either
with one chat.completion object or with a chat.completion.chunk SSE stream
ending in `data: [DONE]`.

Required headers:
  Authorization: Bearer <backend access token>
  PUid: <backend session id>

Truncated answers ("max_tokens") are continued transparently, up to
MAX_LEGS upstream requests per call.
"""

from __future__ import annotations

import contextlib
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import load_config
from continuation import ContinuationController
from errors import GatewayError, RequestValidationError
from formatter import (
    aggregate,
    build_completion,
    error_envelope,
    new_completion_id,
    stream_frames,
)
from logger import mask_secret, setup_logging, setup_traffic_logging
from models import ChatRequest
from normalizer import normalize_chat_request
from token_provider import TokenProvider, build_token_provider
from upstream import ConversationTransport
from utils import dump_config, load_env_files

load_env_files()
config = load_config()
log = setup_logging(config.log_level, config.log_path)
traffic_log = setup_traffic_logging(config.debug_traffic, config.debug_traffic_log_path)
dump_config(config)


def get_transport(app: FastAPI) -> ConversationTransport:
    """Return the process-wide transport, creating it on first use."""
    transport = getattr(app.state, "transport", None)
    if transport is None:
        transport = ConversationTransport(config)
        app.state.transport = transport
    return transport


def get_token_provider(app: FastAPI) -> Optional[TokenProvider]:
    if not hasattr(app.state, "token_provider"):
        app.state.token_provider = build_token_provider(config, get_transport(app).client)
    return app.state.token_provider


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the shared transport at startup and close it on shutdown."""
    config.validate()
    get_transport(app)
    get_token_provider(app)

    yield

    transport = getattr(app.state, "transport", None)
    if transport is not None:
        with contextlib.suppress(Exception):
            await transport.aclose()


app = FastAPI(
    title="conversation-gateway",
    version="0.3.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST"],
    allow_headers=["*"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.detail, "invalid_request_error", str(exc.status_code)),
    )


@app.get("/ping")
async def ping() -> Dict[str, str]:
    return {"message": "pong"}


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


def extract_access_token(authorization: Optional[str]) -> str:
    """
    Pull the bearer token out of the Authorization header.

    When ACCESS_TOKEN_PREFIX is set, tokens that do not start with it are
    rejected (API keys are not backend access tokens).
    """
    raw = (authorization or "").strip()
    if not raw:
        raise RequestValidationError("missing header parameter Authorization")
    token = raw[len("Bearer "):].strip() if raw.startswith("Bearer ") else raw
    if not token:
        raise RequestValidationError("missing header parameter Authorization")
    if config.access_token_prefix and not token.startswith(config.access_token_prefix):
        raise RequestValidationError("wrong header parameter Authorization")
    return token


async def _read_body(request: Request) -> Any:
    # Basic request size guard (prevents trivial DoS via huge JSON bodies).
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid Content-Length header: {cl!r}")
        if n < 0:
            raise HTTPException(status_code=400, detail="Invalid Content-Length: must be non-negative")
        if n > config.max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request too large: {n} bytes (max {config.max_request_bytes})",
            )
    try:
        return await request.json()
    except Exception:
        raise RequestValidationError("Request must be proper JSON")


@app.post("/v1/chat/completions")
async def v1_chat_completions(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> Response:
    """Handle chat completion requests."""
    body = await _read_body(request)
    chat_request = ChatRequest.from_body(body)

    access_token = extract_access_token(authorization)
    puid = (request.headers.get("puid") or "").strip()
    if not puid:
        raise RequestValidationError("missing header parameter PUid")

    req_id = new_completion_id()
    client_ip = request.client.host if request.client else "unknown"
    log.info(
        "Incoming chat req_id=%s from=%s model=%r stream=%s turns=%d token=%s",
        req_id,
        client_ip,
        chat_request.model,
        chat_request.stream,
        len(chat_request.messages),
        mask_secret(access_token),
    )

    normalized = await normalize_chat_request(
        chat_request, puid, config, get_token_provider(request.app)
    )
    controller = ContinuationController(
        get_transport(request.app),
        normalized,
        access_token,
        puid,
        max_legs=config.max_legs,
        is_disconnected=request.is_disconnected,
        req_id=req_id,
    )

    if not chat_request.stream:
        content, finish_reason = await aggregate(controller)
        log.info(
            "Completed chat req_id=%s legs=%d chars=%d finish=%s",
            req_id,
            controller.legs,
            len(content),
            finish_reason,
        )
        return JSONResponse(build_completion(req_id, chat_request.model, content, finish_reason))

    # Pull the first delta before committing to a 200 event-stream, so
    # failures before any content still get a real status code.
    deltas = controller.deltas()
    try:
        first = await deltas.__anext__()
    except StopAsyncIteration:
        first = None
    except BaseException:
        with contextlib.suppress(Exception):
            await deltas.aclose()
        raise

    return StreamingResponse(
        stream_frames(controller, deltas, req_id, chat_request.model, first),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
