"""Anti-automation (Arkose) token sources.

The gateway does not solve the challenge itself. A token is either supplied
statically through configuration or fetched from an external solver service.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from config import AppConfig
from errors import TokenAcquisitionError
from logger import mask_secret

log = logging.getLogger("gateway")


class TokenProvider:
    """Source of anti-automation tokens, keyed by the caller's session id."""

    async def get_token(self, puid: str) -> str:
        raise NotImplementedError


class StaticTokenProvider(TokenProvider):
    def __init__(self, token: str) -> None:
        self._token = token

    async def get_token(self, puid: str) -> str:
        if not self._token:
            raise TokenAcquisitionError("Static anti-automation token is empty")
        return self._token


class RemoteTokenProvider(TokenProvider):
    """
    Fetch a token from an external solver.

    The solver receives {"puid": ...} and must answer 200 with {"token": "..."}.
    """

    def __init__(self, url: str, client: httpx.AsyncClient, timeout_s: float = 30.0) -> None:
        self._url = url
        self._client = client
        self._timeout_s = timeout_s

    async def get_token(self, puid: str) -> str:
        try:
            resp = await self._client.post(
                self._url,
                json={"puid": puid},
                timeout=self._timeout_s,
            )
        except httpx.HTTPError as e:
            raise TokenAcquisitionError(f"Token service unreachable: {type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            raise TokenAcquisitionError(f"Token service returned status {resp.status_code}")

        try:
            token = resp.json().get("token")
        except (ValueError, AttributeError) as e:
            raise TokenAcquisitionError("Token service returned an invalid body") from e

        if not isinstance(token, str) or not token:
            raise TokenAcquisitionError("Token service returned no token")

        log.debug("Acquired anti-automation token %s", mask_secret(token))
        return token


def build_token_provider(config: AppConfig, client: httpx.AsyncClient) -> Optional[TokenProvider]:
    """Remote solver wins over a static token; None when neither is configured."""
    if config.arkose_token_url:
        return RemoteTokenProvider(config.arkose_token_url, client, timeout_s=config.connect_timeout_s)
    if config.arkose_token:
        return StaticTokenProvider(config.arkose_token)
    return None
