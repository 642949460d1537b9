"""
Client side of the event transport: bytes of a text/event-stream body → AgentEvents.

Chunks may end anywhere, including inside a UTF-8 sequence or a frame; both
are held until more bytes arrive. Frames that are not `data: <json>` or whose
JSON does not parse are dropped.
"""

import codecs
import json
import logging

from tripmate.schemas.events import AgentEvent, parse_event

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data: "


def parse_frame(frame: str) -> AgentEvent | None:
    data_lines = [line[len(DATA_PREFIX):] for line in frame.split("\n") if line.startswith(DATA_PREFIX)]
    if not data_lines:
        return None
    try:
        payload = json.loads("\n".join(data_lines))
    except ValueError:
        logger.debug("[sse_parser:parse_frame] dropped unparseable frame %r", frame[:80])
        return None
    return parse_event(payload)


class SSEFrameParser:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        # A trailing "\r" may be the first half of a CRLF split across chunks
        self._pending_cr = ""

    def feed(self, chunk: bytes | str) -> list[AgentEvent]:
        """Add a chunk; return the events of every frame it completed."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        text = self._pending_cr + text
        self._pending_cr = "\r" if text.endswith("\r") else ""
        if self._pending_cr:
            text = text[:-1]
        self._buffer += text.replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split(FRAME_DELIMITER)
        events = []
        for frame in frames:
            event = parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[AgentEvent]:
        """End of body: parse whatever remains, if it forms a frame."""
        remaining = self._buffer + self._pending_cr + self._decoder.decode(b"", final=True)
        self._buffer, self._pending_cr = "", ""
        if not remaining.strip():
            return []
        event = parse_frame(remaining.replace("\r\n", "\n").strip("\r\n"))
        return [event] if event is not None else []
