"""
Tests for the agent event models: wire serialization and parsing of tagged and untagged payloads.
"""

import json

import pytest

from tripmate.schemas.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
    event_to_json,
    parse_event,
)


def test_tool_start_uses_display_name_alias_on_the_wire() -> None:
    event = ToolStartEvent(id="t1", name="get_weather", display_name="Check weather", input={"city": "三亚"})
    payload = json.loads(event_to_json(event))
    assert payload == {
        "type": "tool_start",
        "id": "t1",
        "name": "get_weather",
        "displayName": "Check weather",
        "input": {"city": "三亚"},
    }


def test_tool_end_omits_unset_error() -> None:
    payload = json.loads(event_to_json(ToolEndEvent(id="t1", name="get_weather", output="Sunny")))
    assert "error" not in payload
    assert payload["output"] == "Sunny"


def test_done_serializes_with_both_markers() -> None:
    assert json.loads(event_to_json(DoneEvent())) == {"type": "done", "done": True}


@pytest.mark.parametrize(
    "event",
    [
        ThinkingEvent(content="Thinking..."),
        ToolStartEvent(id="a", name="n", display_name="N", input={}),
        ToolEndEvent(id="a", name="n", output="", error="boom"),
        ContentEvent(content="你好"),
        ErrorEvent(message="bad"),
        DoneEvent(),
    ],
)
def test_parse_accepts_serialized_events(event) -> None:
    assert parse_event(json.loads(event_to_json(event))) == event


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"done": True}, DoneEvent()),
        ({"error": "quota exceeded"}, ErrorEvent(message="quota exceeded")),
        ({"content": "片段"}, ContentEvent(content="片段")),
    ],
)
def test_parse_accepts_untagged_plain_chat_shapes(payload, expected) -> None:
    assert parse_event(payload) == expected


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "unknown"},
        {"type": "tool_start", "id": "x"},
        {"done": False},
        {"something": 1},
        ["content"],
        "done",
    ],
)
def test_parse_rejects_other_shapes(payload) -> None:
    assert parse_event(payload) is None


def test_events_are_immutable() -> None:
    event = ContentEvent(content="a")
    with pytest.raises(Exception):
        event.content = "b"
