"""Incremental parsing of server-sent event streams."""

import codecs
import json
from typing import Any

DATA_PREFIX = "data: "


class SSELineBuffer:
    """Turns arbitrarily split response bytes into ``data:`` payloads.

    Bytes are decoded incrementally so a multi-byte character split across
    reads is not corrupted. The trailing partial line is held back until the
    next read completes it.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._pending = ""

    def feed(self, data: bytes) -> list[str]:
        """Add a read and return the payloads of every line it completed."""
        self._pending += self._decoder.decode(data)
        *lines, self._pending = self._pending.split("\n")
        return [payload for payload in map(_data_payload, lines) if payload is not None]

    def flush(self) -> list[str]:
        """Drain the final unterminated line once the stream has ended."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        payload = _data_payload(tail)
        return [payload] if payload is not None else []


def _data_payload(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX) :]


def parse_event(data: str) -> dict[str, Any] | None:
    """Decode one payload; anything that is not a JSON object is ignored."""
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None
