"""
Server-Sent Event decoder for chat completion streams.

Turns the raw byte stream of an OpenAI-compatible completion endpoint into
``StreamEvent``s carrying the text accumulated so far. Lines are buffered
across chunk boundaries; a line that still fails to parse as JSON is held
and joined with the following lines until it does, up to ``max_pending``
characters.
"""

import asyncio
import codecs
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ..constants import MAX_PENDING_FRAME_CHARS, STREAM_IDLE_TIMEOUT_S
from .exceptions import StreamParseError

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class StreamEvent:
    text: str
    done: bool


class StreamDecoder:
    """Incremental decoder for ``data: {...}`` completion frames."""

    def __init__(
        self,
        idle_timeout: float = STREAM_IDLE_TIMEOUT_S,
        max_pending: int = MAX_PENDING_FRAME_CHARS,
    ):
        self.idle_timeout = idle_timeout
        self.max_pending = max_pending
        self.reset()

    def reset(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._line_buffer = ""
        self._pending = ""
        self.text = ""
        self.finished = False

    def feed(self, chunk: bytes) -> list[str]:
        """
        Consume one chunk of bytes.

        Returns the accumulated text after every delta parsed from this
        chunk, in order. Lines after ``[DONE]`` are ignored.
        """
        if self.finished:
            return []
        self._line_buffer += self._utf8.decode(chunk)
        *lines, self._line_buffer = self._line_buffer.split("\n")
        return self._consume_lines(lines)

    def close(self) -> list[str]:
        """Flush the trailing partial line at end of input."""
        if self.finished:
            return []
        tail = self._line_buffer + self._utf8.decode(b"", final=True)
        self._line_buffer = ""
        snapshots = self._consume_lines([tail])
        if self._pending:
            logger.warning(f"Stream ended with {len(self._pending)} unparsed characters")
        return snapshots

    def _consume_lines(self, lines: list[str]) -> list[str]:
        snapshots = []
        for line in lines:
            if self.finished:
                break
            if self._handle_line(line):
                snapshots.append(self.text)
        return snapshots

    def _handle_line(self, line: str) -> bool:
        line = line.strip()
        # blank separators and SSE comments such as ": keep-alive"
        if not line or line.startswith(":"):
            return False

        message = line
        if message.startswith(DATA_PREFIX):
            message = message[len(DATA_PREFIX):].lstrip()
        if message == DONE_SENTINEL:
            self.finished = True
            return False

        frame = self._parse_frame(message)
        if frame is None:
            return False
        return self._append_delta(frame)

    def _parse_frame(self, message: str) -> Any:
        try:
            return json.loads(message)
        except json.JSONDecodeError:
            pass

        if not self._pending:
            self._hold(message)
            return None

        candidate = self._pending + message
        try:
            frame = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.error(f"Could not JSON parse stream message {message!r}: {e}")
            self._pending = ""
            self._hold(candidate)
            return None
        self._pending = ""
        return frame

    def _hold(self, fragment: str) -> None:
        if len(fragment) > self.max_pending:
            raise StreamParseError(
                f"Unparsable stream data exceeded {self.max_pending} characters"
            )
        self._pending = fragment

    def _append_delta(self, frame: Any) -> bool:
        if not isinstance(frame, dict):
            return False
        choices = frame.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return False
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
        if content is None:
            return False
        self.text += content
        return True

    async def events(self, read: Callable[[], Awaitable[bytes]]) -> AsyncIterator[StreamEvent]:
        """
        Drive ``read`` until ``[DONE]``, EOF or an idle timeout.

        Yields one intermediate event per parsed delta and exactly one
        final event. ``read`` must return ``b""`` at end of stream.
        """
        self.reset()
        while not self.finished:
            try:
                chunk = await asyncio.wait_for(read(), timeout=self.idle_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"No stream data for {self.idle_timeout}s, finishing early")
                break
            if not chunk:
                break
            for text in self.feed(chunk):
                yield StreamEvent(text, False)

        for text in self.close():
            yield StreamEvent(text, False)
        yield StreamEvent(self.text, True)
