"""Bounded continuation of truncated answers across several upstream legs."""

from __future__ import annotations

import contextlib
import enum
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

from errors import GatewayError, TransportError
from models import BackendEvent, Delta, NormalizedRequest
from sse_handler import ReconstructionState, iter_backend_events
from upstream import ConversationTransport

log = logging.getLogger("gateway")

DEFAULT_MAX_LEGS = 3
TRUNCATED_FINISH_TYPE = "max_tokens"


class ControllerState(str, enum.Enum):
    STREAMING = "streaming"
    CONTINUING = "continuing"
    DONE = "done"
    FAILED = "failed"


class _LegOutcome:
    """What one leg observed: truncation flag and the last accepted event."""

    def __init__(self) -> None:
        self.truncated = False
        self.last_event: Optional[BackendEvent] = None

    def observe(self, event: BackendEvent) -> Optional[str]:
        self.last_event = event
        fd = event.finish_details
        if fd is None:
            return None
        if fd.type == TRUNCATED_FINISH_TYPE:
            self.truncated = True
        return fd.type


class ContinuationController:
    """
    Drive one external call across up to `max_legs` upstream legs.

    deltas() yields the caller-visible text in backend order. When a leg ends
    truncated ("max_tokens") the controller posts a "continue" request
    anchored on the last accepted event and keeps diffing against the same
    ReconstructionState. Reaching the ceiling while still truncated ends the
    call normally with what was produced.

    Any leg failure sets state FAILED and re-raises; deltas already yielded
    stay delivered.
    """

    def __init__(
        self,
        transport: ConversationTransport,
        request: NormalizedRequest,
        access_token: str,
        puid: str,
        *,
        max_legs: int = DEFAULT_MAX_LEGS,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        req_id: str = "",
    ) -> None:
        self._transport = transport
        self._request = request
        self._access_token = access_token
        self._puid = puid
        self._max_legs = max(1, max_legs)
        self._is_disconnected = is_disconnected
        self._req_id = req_id

        self.reconstruction = ReconstructionState()
        self.state = ControllerState.STREAMING
        self.legs = 0
        self.completed_legs = 0
        self.finish_reason: Optional[str] = None
        self.error: Optional[GatewayError] = None
        self.cancelled = False

    async def deltas(self) -> AsyncIterator[Delta]:
        while True:
            self.legs += 1
            outcome = _LegOutcome()
            try:
                async with contextlib.aclosing(self._run_leg(outcome)) as leg:
                    async for delta in leg:
                        yield delta
            except GatewayError as e:
                self.state = ControllerState.FAILED
                self.error = e
                log.warning(
                    "Leg %d failed req_id=%s err=%s: %s",
                    self.legs,
                    self._req_id,
                    type(e).__name__,
                    e,
                )
                raise
            self.completed_legs += 1

            if not outcome.truncated or outcome.last_event is None:
                self.state = ControllerState.DONE
                return

            if self.legs >= self._max_legs:
                log.info(
                    "Continuation limit reached req_id=%s legs=%d; returning truncated answer",
                    self._req_id,
                    self.legs,
                )
                self.state = ControllerState.DONE
                return

            if self._is_disconnected is not None and await self._is_disconnected():
                log.info("Caller disconnected req_id=%s; abandoning continuation", self._req_id)
                self.cancelled = True
                self.state = ControllerState.DONE
                return

            anchor = outcome.last_event.anchor()
            log.info(
                "Continuing conversation req_id=%s leg=%d conversation_id=%s parent=%s",
                self._req_id,
                self.legs + 1,
                anchor.conversation_id,
                anchor.parent_message_id,
            )
            self.state = ControllerState.CONTINUING
            self._request = self._request.continuation(anchor)

    async def _run_leg(self, outcome: _LegOutcome) -> AsyncIterator[Delta]:
        resp = await self._transport.post_conversation(self._request, self._access_token, self._puid)
        self.state = ControllerState.STREAMING
        try:
            async for event in iter_backend_events(resp.aiter_lines()):
                finish_type = outcome.observe(event)
                if finish_type is not None:
                    self.finish_reason = finish_type
                delta = self.reconstruction.apply(event)
                if delta is not None:
                    yield delta
        except httpx.HTTPError as e:
            raise TransportError(f"Upstream stream broke: {type(e).__name__}") from e
        finally:
            await resp.aclose()
