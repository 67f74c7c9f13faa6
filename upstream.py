"""Upstream conversation backend communication."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict

import httpx

from config import AppConfig
from errors import RequestValidationError, TransportError
from logger import mask_secret
from models import NormalizedRequest

log = logging.getLogger("gateway")

ERROR_SNIPPET_LIMIT = 2000


class ConversationTransport:
    """
    Send conversation requests to the backend.

    One instance is created per process and shared by every call; it owns the
    pooled httpx client. Pass `client` to inject a preconfigured one (tests use
    httpx.MockTransport).
    """

    def __init__(self, config: AppConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or self._build_client(config)

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    @staticmethod
    def _build_client(config: AppConfig) -> httpx.AsyncClient:
        connect_timeout = min(config.connect_timeout_s, config.request_timeout_s)
        if config.proxy_url:
            log.info("Outbound proxy configured: %s", config.proxy_url)
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                config.request_timeout_s,
                connect=connect_timeout,
                pool=connect_timeout,
            ),
            proxy=config.proxy_url or None,
            follow_redirects=False,
        )

    def get_headers(self, access_token: str, puid: str) -> Dict[str, str]:
        """Get headers for a conversation request."""
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "*/*",
            "User-Agent": self._config.user_agent,
        }
        if puid:
            headers["Cookie"] = f"_puid={puid};"
        return headers

    async def post_conversation(
        self,
        request: NormalizedRequest,
        access_token: str,
        puid: str,
    ) -> httpx.Response:
        """
        POST one conversation request and return the live streamed response.

        The caller owns the returned response and must close it. Non-200
        statuses are read, closed and raised as TransportError.
        """
        if not access_token or not access_token.strip():
            raise RequestValidationError("Missing access token", status_code=401)

        req = self._client.build_request(
            "POST",
            self._config.backend_url,
            headers=self.get_headers(access_token, puid),
            json=request.to_payload(),
        )

        t0 = time.time()
        try:
            resp = await self._client.send(req, stream=True)
        except httpx.HTTPError as e:
            log.warning(
                "Upstream conversation failed action=%s model=%s err=%s: %s",
                request.action,
                request.model,
                type(e).__name__,
                e,
            )
            raise TransportError(f"Error sending request: {type(e).__name__}") from e

        dt = (time.time() - t0) * 1000
        log.info(
            "Upstream conversation action=%s model=%s token=%s status=%s ms=%.1f",
            request.action,
            request.model,
            mask_secret(access_token),
            resp.status_code,
            dt,
        )

        if resp.status_code != 200:
            snippet = await self.read_error_snippet(resp)
            await resp.aclose()
            log.warning(
                "Upstream conversation error status=%s content-type=%s body=%r",
                resp.status_code,
                resp.headers.get("content-type", ""),
                snippet[:200],
            )
            raise self.error_from_status(resp.status_code, resp.reason_phrase, snippet)

        return resp

    @staticmethod
    def error_from_status(status_code: int, reason_phrase: str, body: str) -> TransportError:
        """Prefer the backend's structured `detail`; otherwise surface the raw body."""
        reason = f"{status_code} {reason_phrase}".strip()
        detail = extract_error_detail(body)
        if detail is not None:
            return TransportError(detail, status_code=status_code, reason=reason)
        return TransportError(body or "Unknown error", status_code=status_code, reason=reason)

    @staticmethod
    async def read_error_snippet(
        resp: httpx.Response, limit: int = ERROR_SNIPPET_LIMIT, timeout_s: float = 2.0
    ) -> str:
        """Best-effort: read small error body without risking a hang."""
        try:
            raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
        except Exception:
            return ""
        return raw.decode("utf-8", errors="replace")[:limit]

    async def aclose(self) -> None:
        await self._client.aclose()


def extract_error_detail(body: str) -> Any:
    """Return the `detail` field of a JSON error body, or None."""
    if not body:
        return None
    try:
        obj = json.loads(body)
    except ValueError:
        return None
    if isinstance(obj, dict) and obj.get("detail") is not None:
        return obj["detail"]
    return None
