"""Event-stream frames and an incremental parser for them.

The watch stream is a server-sent-event stream. Each event block ends with a
blank line and carries ``id:``/``event:``/``data:`` fields; the ``data``
payload is JSON tagged with a ``type``:

    data: {"type": "step", "stepId": "extractBrief", "status": "running"}

    data: {"type": "status", "status": "completed"}

Network reads do not line up with event blocks, so the parser buffers
input and only decodes complete blocks. Anything it cannot make sense of
(bad JSON, unknown tags, missing fields) is logged and skipped.
"""

from __future__ import annotations
import codecs
import json
import logging
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger("hackhelper.frames")

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class MessageIdFrame:
    message_id: str


@dataclass(frozen=True)
class StepFrame:
    step_id: str
    status: str


@dataclass(frozen=True)
class StatusFrame:
    status: str


@dataclass(frozen=True)
class DoneFrame:
    pass


Frame = Union[MessageIdFrame, StepFrame, StatusFrame, DoneFrame]

_STATUS_TAGS = {"status", "workflow"}


class FrameParser:
    """Turns an arbitrarily chunked byte/text stream into frames."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Undecoded tail of the stream (an incomplete block)."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[Frame]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")

        frames: list[Frame] = []
        while True:
            end = self._buffer.find("\n\n")
            if end < 0:
                break
            block = self._buffer[:end]
            self._buffer = self._buffer[end + 2:]
            frames.extend(parse_block(block))
        return frames

    def close(self) -> list[Frame]:
        """Flush whatever is left when the stream ends."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return []
        return parse_block(tail.replace("\r\n", "\n"))


def parse_block(block: str) -> list[Frame]:
    """Decode one event block into zero or more frames."""
    message_id = None
    event_name = None
    data_lines: list[str] = []

    for line in block.split("\n"):
        if not line or line.startswith(":"):
            continue
        name, sep, value = line.partition(":")
        if not sep:
            continue
        if value.startswith(" "):
            value = value[1:]
        if name == "id":
            message_id = value
        elif name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)

    frames: list[Frame] = []
    if message_id:
        frames.append(MessageIdFrame(message_id=message_id))
    if not data_lines:
        return frames

    data = "\n".join(data_lines).strip()
    if data == DONE_SENTINEL:
        frames.append(DoneFrame())
        return frames

    frame = decode_payload(data, event_name)
    if frame is not None:
        frames.append(frame)
    return frames


def decode_payload(data: str, event_name: str | None = None) -> Frame | None:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning(f"Skipping malformed event payload: {e}")
        return None

    if not isinstance(payload, dict):
        logger.debug(f"Skipping non-object event payload: {data[:80]}")
        return None

    tag = payload.get("type") or event_name
    if tag == "step":
        step_id = payload.get("stepId") or payload.get("id")
        status = payload.get("status")
        if isinstance(step_id, str) and isinstance(status, str):
            return StepFrame(step_id=step_id, status=status)
        logger.warning(f"Skipping step event without stepId/status: {data[:80]}")
        return None

    if tag in _STATUS_TAGS:
        status = payload.get("status")
        if isinstance(status, str):
            return StatusFrame(status=status)
        logger.warning(f"Skipping status event without status: {data[:80]}")
        return None

    logger.debug(f"Ignoring event with unknown type {tag!r}")
    return None
