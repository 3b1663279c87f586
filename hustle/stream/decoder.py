"""
Frame decoder -- turns a chunked byte stream into ``RawFrame`` objects.

Design goals:
  - Network reads split frames at arbitrary byte offsets (even inside a
    multi-byte UTF-8 sequence).  A single carry-over buffer holds the text
    that has not yet been terminated by ``\\n``.
  - The framing (legacy ``<tag>:<payload>`` or standard ``data: <json>``) is
    detected per line, so both may appear on the same stream.
  - A line that fails to decode never aborts the stream; it becomes an
    ``error`` frame carrying the raw text.
  - A failure of the byte source yields one ``error`` frame and then
    propagates to the caller.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable

from hustle.stream.frames import (
    DONE_MARKER,
    STANDARD_PREFIX,
    FrameTag,
    RawFrame,
    map_standard_event,
)

logger = logging.getLogger(__name__)


def decode_legacy_payload(data: str) -> Any:
    """
    Decode the payload part of a legacy frame.

    Falls back to the raw string when the payload is not JSON.  A payload that
    decodes to a string which itself looks like JSON is decoded once more
    (servers double-encode tool results); if that fails the single-decoded
    string is kept.
    """
    try:
        parsed = json.loads(data)
    except ValueError:
        return data

    if isinstance(parsed, str) and parsed.startswith(("{", "[")):
        try:
            parsed = json.loads(parsed)
        except ValueError:
            logger.debug("Keeping single-decoded payload: %.80s", parsed)
    return parsed


def parse_legacy_line(line: str) -> RawFrame:
    return RawFrame(tag=line[0], payload=decode_legacy_payload(line[2:]), source_line=line)


def parse_standard_line(line: str) -> RawFrame | None:
    data = line[len(STANDARD_PREFIX):].strip()
    if data == DONE_MARKER:
        return None

    try:
        event = json.loads(data)
    except ValueError:
        logger.warning("Failed to parse SSE data: %s", data[:200])
        return RawFrame(tag=FrameTag.ERROR.value, payload=line, source_line=line)

    if not isinstance(event, dict):
        logger.warning("SSE data is not an object: %s", data[:200])
        return RawFrame(tag=FrameTag.ERROR.value, payload=line, source_line=line)

    return map_standard_event(event, line)


def decode_line(line: str) -> RawFrame | None:
    """
    Decode one complete line (terminator already removed).

    Returns ``None`` for blank lines, ``[DONE]`` and ignored standard events.
    """
    line = line.rstrip("\r")
    if not line.strip():
        return None
    if line.startswith(STANDARD_PREFIX):
        return parse_standard_line(line)
    return parse_legacy_line(line)


class FrameDecoder:
    """
    Incremental line decoder.

    ``feed`` accepts raw bytes (or already-decoded text) and returns the frames
    completed by that chunk; ``flush`` processes whatever is left in the
    carry-over buffer as a final line.  ``decode`` drives both over an async
    byte source.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._text = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes | str) -> list[RawFrame]:
        if isinstance(chunk, bytes):
            text = self._text.decode(chunk)
        else:
            text = chunk

        self._buffer += text
        if "\n" not in self._buffer:
            return []

        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[RawFrame]:
        tail = self._buffer + self._text.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return []
        logger.debug("Processing final buffered line")
        return self._decode_lines([tail])

    async def decode(self, source: AsyncIterable[bytes | str]) -> AsyncIterator[RawFrame]:
        try:
            async for chunk in source:
                for frame in self.feed(chunk):
                    yield frame
        except Exception as exc:
            logger.debug("Byte source failed: %s", exc)
            message = str(exc) or type(exc).__name__
            yield RawFrame(tag=FrameTag.ERROR.value, payload=message, source_line=message)
            raise

        for frame in self.flush():
            yield frame

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decode_lines(self, lines: Iterable[str]) -> list[RawFrame]:
        frames: list[RawFrame] = []
        for line in lines:
            try:
                frame = decode_line(line)
            except Exception as exc:
                logger.warning("Error parsing stream line: %s", exc)
                frame = RawFrame(tag=FrameTag.ERROR.value, payload=line, source_line=line)
            if frame is not None:
                logger.debug("Frame tag=%s", frame.tag)
                frames.append(frame)
        return frames


async def decode_frames(source: AsyncIterable[bytes | str]) -> AsyncIterator[RawFrame]:
    """Convenience wrapper: decode *source* with a fresh ``FrameDecoder``."""
    async for frame in FrameDecoder().decode(source):
        yield frame
