"""Backend event-stream decoding and incremental text reconstruction."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from errors import DecodeError, UpstreamProtocolError
from models import BackendEvent, Delta

log = logging.getLogger("gateway")
traffic_log = logging.getLogger("gateway.traffic")

DATA_PREFIX = "data: "
DONE_TOKEN = "[DONE]"
CONTENT_MESSAGE_TYPES = frozenset({"next", "continue"})
ASSISTANT_ROLE = "assistant"


def is_done_data_line(line: str) -> bool:
    """Accept "data: [DONE]" with anything after the token (the backend sometimes appends whitespace)."""
    if len(line) < len(DATA_PREFIX):
        return False
    return line[len(DATA_PREFIX):].startswith(DONE_TOKEN)


def parse_event_line(line: str) -> Optional[BackendEvent]:
    """
    Parse one framed line into a BackendEvent.

    Returns None for keep-alive lines shorter than the framing prefix.
    Raises DecodeError when the payload is not a JSON object.
    """
    if len(line) < len(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    try:
        obj = json.loads(payload)
    except ValueError as e:
        raise DecodeError(f"unparseable event: {payload[:200]!r}") from e
    if not isinstance(obj, dict):
        raise DecodeError(f"event is not an object: {payload[:200]!r}")
    return BackendEvent.from_payload(obj)


def is_content_event(event: BackendEvent) -> bool:
    """True for events that carry new assistant text for the caller."""
    return (
        event.role == ASSISTANT_ROLE
        and bool(event.parts)
        and event.message_type in CONTENT_MESSAGE_TYPES
        and not event.end_turn
    )


async def iter_backend_events(lines: AsyncIterator[str]) -> AsyncIterator[BackendEvent]:
    """
    Yield accepted content events from the backend's line stream, in order.

    Stops at the [DONE] terminator or at EOF. Unparseable lines are skipped.
    An event carrying an error payload raises UpstreamProtocolError.
    """
    async for raw in lines:
        line = raw.rstrip("\r\n")
        if traffic_log.isEnabledFor(logging.DEBUG) and line:
            traffic_log.debug("IN %s", line)

        if is_done_data_line(line):
            return

        try:
            event = parse_event_line(line)
        except DecodeError as e:
            log.debug("Skipping upstream line: %s", e)
            continue
        if event is None:
            continue

        if event.error is not None:
            raise UpstreamProtocolError(event.error)

        if not is_content_event(event):
            continue
        yield event


@dataclass
class ReconstructionState:
    """
    Cumulative-text diffing state for one external call.

    The backend resends the whole answer on every event. Keep one instance for
    the whole call, continuation legs included, so the baseline is never lost.
    """

    previous_text: str = ""
    role_emitted: bool = False

    def apply(self, event: BackendEvent) -> Optional[Delta]:
        """Return the new text carried by `event`, or None when nothing is new."""
        text = event.text
        prev = self.previous_text
        if text.startswith(prev):
            fragment = text[len(prev):]
        else:
            fragment = text.replace(prev, "", 1)
        self.previous_text = text

        if not fragment:
            return None
        if self.role_emitted:
            return Delta(content=fragment)
        self.role_emitted = True
        return Delta(content=fragment, role=event.role)
