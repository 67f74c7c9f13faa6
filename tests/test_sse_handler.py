"""
Tests for backend event decoding and delta reconstruction.

Tests cover:
- Line framing: keep-alives, terminator, unparseable lines
- Event acceptance filter
- Error payloads aborting the stream
- Cumulative-text diffing and the role announcement
"""

import json

import pytest

from conftest import event_line, event_payload
from errors import DecodeError, UpstreamProtocolError
from models import BackendEvent
from sse_handler import (
    ReconstructionState,
    is_content_event,
    is_done_data_line,
    iter_backend_events,
    parse_event_line,
)


def _event(text, **kwargs):
    return BackendEvent.from_payload(event_payload(text, **kwargs))


async def _lines(*lines):
    for line in lines:
        yield line


async def _collect(*lines):
    return [e async for e in iter_backend_events(_lines(*lines))]


# ============================================================================
# Helper Functions Tests
# ============================================================================

class TestLineHelpers:
    def test_is_done_data_line(self):
        assert is_done_data_line("data: [DONE]") is True
        assert is_done_data_line("data: [DONE]  ") is True
        assert is_done_data_line("data: {}") is False
        assert is_done_data_line("data:[DONE]") is False
        assert is_done_data_line("") is False

    def test_parse_short_line_is_keepalive(self):
        assert parse_event_line("") is None
        assert parse_event_line("data:") is None
        assert parse_event_line("  \r") is None

    def test_parse_bad_json(self):
        with pytest.raises(DecodeError):
            parse_event_line("data: {not json")

    def test_parse_non_object(self):
        with pytest.raises(DecodeError):
            parse_event_line("data: 12345")

    def test_parse_event(self):
        event = parse_event_line(event_line("Hi", message_id="m-7", conversation_id="c-3", finish_type="stop"))
        assert event.message_id == "m-7"
        assert event.conversation_id == "c-3"
        assert event.role == "assistant"
        assert event.parts == ["Hi"]
        assert event.text == "Hi"
        assert event.message_type == "next"
        assert event.end_turn is False
        assert event.finish_details.type == "stop"
        assert event.error is None

    def test_from_payload_tolerates_missing_fields(self):
        event = BackendEvent.from_payload({"conversation_id": "c", "error": None})
        assert event.role == ""
        assert event.parts == []
        assert event.text == ""
        assert event.finish_details is None
        assert is_content_event(event) is False

    def test_non_string_first_part_means_no_parts(self):
        payload = event_payload("x")
        payload["message"]["content"]["parts"] = [{"content_type": "image"}, "x"]
        event = BackendEvent.from_payload(payload)
        assert event.parts == []
        assert event.text == ""
        assert is_content_event(event) is False

    def test_first_string_part_is_the_text(self):
        payload = event_payload("x")
        payload["message"]["content"]["parts"] = ["Hello", {"content_type": "image"}]
        event = BackendEvent.from_payload(payload)
        assert event.text == "Hello"
        assert is_content_event(event) is True


class TestContentFilter:
    def test_accepts_assistant_next(self):
        assert is_content_event(_event("x")) is True

    def test_accepts_continue_type(self):
        assert is_content_event(_event("x", message_type="continue")) is True

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"role": "user"},
            {"role": "system"},
            {"role": "tool"},
            {"message_type": "variant"},
            {"message_type": ""},
            {"end_turn": True},
            {"end_turn": False},
        ],
    )
    def test_rejects(self, kwargs):
        assert is_content_event(_event("x", **kwargs)) is False

    def test_rejects_empty_parts(self):
        payload = event_payload("x")
        payload["message"]["content"]["parts"] = []
        assert is_content_event(BackendEvent.from_payload(payload)) is False


# ============================================================================
# iter_backend_events
# ============================================================================

class TestIterBackendEvents:
    @pytest.mark.asyncio
    async def test_yields_accepted_events_in_order(self):
        events = await _collect(
            event_line("", role="user"),
            "",
            event_line("He"),
            "",
            event_line("Hello"),
            "",
            event_line("Hello", end_turn=True),
            "data: [DONE]",
        )
        assert [e.text for e in events] == ["He", "Hello"]

    @pytest.mark.asyncio
    async def test_skips_garbage_lines(self):
        events = await _collect(
            ": ping",
            "data: {broken",
            "event: heartbeat",
            "data: \"2023-06-01T00:00:00\"",
            event_line("A"),
        )
        assert [e.text for e in events] == ["A"]

    @pytest.mark.asyncio
    async def test_stops_at_done(self):
        events = await _collect(event_line("A"), "data: [DONE]", event_line("AB"))
        assert [e.text for e in events] == ["A"]

    @pytest.mark.asyncio
    async def test_eof_without_done(self):
        events = await _collect(event_line("A"), event_line("AB"))
        assert [e.text for e in events] == ["A", "AB"]

    @pytest.mark.asyncio
    async def test_strips_line_endings(self):
        events = await _collect(event_line("A") + "\r\n")
        assert [e.text for e in events] == ["A"]

    @pytest.mark.asyncio
    async def test_error_payload_aborts(self):
        seen = []
        with pytest.raises(UpstreamProtocolError) as exc_info:
            async for event in iter_backend_events(
                _lines(
                    event_line("A"),
                    "data: " + json.dumps({"message": None, "conversation_id": "c", "error": "Something went wrong"}),
                    event_line("AB"),
                )
            ):
                seen.append(event.text)
        assert seen == ["A"]
        assert exc_info.value.message == "Something went wrong"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_structured_error_payload_kept(self):
        err = {"code": "rate_limited", "message": "slow down"}
        with pytest.raises(UpstreamProtocolError) as exc_info:
            await _collect("data: " + json.dumps({"error": err}))
        assert exc_info.value.to_envelope()["error"]["message"] == err


# ============================================================================
# ReconstructionState
# ============================================================================

def _replay(state, texts):
    out = []
    for text in texts:
        delta = state.apply(_event(text))
        if delta is not None:
            out.append(delta)
    return out


class TestReconstructionState:
    @pytest.mark.parametrize(
        "pieces",
        [
            ["Hel", "lo"],
            ["a"],
            ["The ", "quick ", "brown ", "fox"],
            ["ab", "ab", "ab", "ab"],
            ["multi\nline", "\n\ncode ```py\n", "x = 1\n```"],
            ["ünï", "cödé ", "✓"],
        ],
    )
    def test_deltas_concatenate_to_final_text(self, pieces):
        texts = []
        acc = ""
        for piece in pieces:
            acc += piece
            texts.append(acc)

        deltas = _replay(ReconstructionState(), texts)

        assert "".join(d.content for d in deltas) == acc
        assert [d.content for d in deltas] == pieces

    def test_role_only_on_first_delta(self):
        deltas = _replay(ReconstructionState(), ["He", "Hel", "Hello"])
        assert deltas[0].role == "assistant"
        assert all(d.role is None for d in deltas[1:])

    def test_repeated_text_produces_nothing(self):
        state = ReconstructionState()
        deltas = _replay(state, ["Hi", "Hi", "Hi!"])
        assert [d.content for d in deltas] == ["Hi", "!"]

    def test_empty_first_event_keeps_role_pending(self):
        deltas = _replay(ReconstructionState(), ["", "Hi"])
        assert len(deltas) == 1
        assert deltas[0].content == "Hi"
        assert deltas[0].role == "assistant"

    def test_baseline_survives_continuation(self):
        """A continuation leg that resends the whole answer only yields the new tail."""
        state = ReconstructionState()
        first = _replay(state, ["Once upon", "Once upon a time"])
        second = _replay(state, ["Once upon a time there", "Once upon a time there was"])

        assert [d.content for d in first + second] == ["Once upon", " a time", " there", " was"]
        assert [d.role for d in first + second] == ["assistant", None, None, None]

    def test_non_prefix_text_removes_literal_occurrence(self):
        state = ReconstructionState(previous_text="abc")
        delta = state.apply(_event("xabcy"))
        assert delta.content == "xy"
        assert state.previous_text == "xabcy"

    def test_unrelated_text_is_emitted_whole(self):
        state = ReconstructionState(previous_text="first leg", role_emitted=True)
        delta = state.apply(_event("second"))
        assert delta.content == "second"
        assert delta.role is None
