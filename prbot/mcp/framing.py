"""Newline framing over a chunked byte stream."""

import asyncio
import logging
from typing import Callable, List

from prbot.core.config import MCP_MAX_LINE_BYTES
from prbot.mcp.errors import StreamTooLongError

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]

READ_CHUNK_SIZE = 65536


class LineFramer:
    """Turns arbitrary chunks into complete lines, in arrival order.

    A fragment without its terminator stays buffered until the rest arrives.
    Subscribers are called once per line; empty lines are dropped.
    """

    def __init__(self, max_line_bytes: int = MCP_MAX_LINE_BYTES) -> None:
        if max_line_bytes <= 0:
            raise ValueError("max_line_bytes must be positive")
        self.max_line_bytes = max_line_bytes
        self._buffer = bytearray()
        self._subscribers: List[LineCallback] = []

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def subscribe(self, callback: LineCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def feed(self, chunk: bytes) -> List[str]:
        if not chunk:
            return []
        self._buffer.extend(chunk)
        lines: List[str] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            if idx > self.max_line_bytes:
                self._buffer.clear()
                self._deliver(lines)
                raise StreamTooLongError(self.max_line_bytes, idx)
            raw = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            line = self._decode(raw)
            if line:
                lines.append(line)
        self._deliver(lines)
        if len(self._buffer) > self.max_line_bytes:
            buffered = len(self._buffer)
            self._buffer.clear()
            raise StreamTooLongError(self.max_line_bytes, buffered)
        return lines

    def close(self) -> List[str]:
        """Flush an unterminated tail at end of stream."""
        if not self._buffer:
            return []
        line = self._decode(bytes(self._buffer))
        self._buffer.clear()
        lines = [line] if line else []
        self._deliver(lines)
        return lines

    def _decode(self, raw: bytes) -> str:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        return raw.decode("utf-8", errors="replace").strip()

    def _deliver(self, lines: List[str]) -> None:
        for line in lines:
            for callback in list(self._subscribers):
                try:
                    callback(line)
                except Exception as exc:
                    logger.error(f"line subscriber failed: {exc}")


async def pump_stream(
    stream: asyncio.StreamReader,
    framer: LineFramer,
    chunk_size: int = READ_CHUNK_SIZE,
) -> None:
    """Feed ``stream`` into ``framer`` until EOF."""
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        framer.feed(chunk)
    framer.close()
