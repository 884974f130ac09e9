# ioncircuit/bridge/codec.py
"""Newline-delimited JSON framing over one asyncio stream pair."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pydantic import BaseModel

logger = logging.getLogger("ioncircuit.bridge")

NEWLINE = b"\n"


class LineFramer:
    """Incremental splitter: bytes in, complete lines out.

    Keeps the unterminated tail between feeds, so a message split across TCP
    segments comes out whole. Lines longer than max_line_bytes are dropped up
    to their terminating newline.
    """

    def __init__(self, max_line_bytes: int = 64 * 1024 * 1024):
        self.max_line_bytes = int(max_line_bytes)
        self._buf = bytearray()
        self._discarding = False
        self.dropped_lines = 0

    @property
    def pending(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> list[bytes]:
        lines: list[bytes] = []
        self._buf.extend(data)
        while True:
            idx = self._buf.find(NEWLINE)
            if idx < 0:
                break
            line = bytes(self._buf[:idx])
            del self._buf[: idx + 1]
            if self._discarding:
                self._discarding = False
                continue
            line = line.rstrip(b"\r")
            if not line.strip():
                continue
            if len(line) > self.max_line_bytes:
                self._drop()
                continue
            lines.append(line)

        if len(self._buf) > self.max_line_bytes:
            self._buf.clear()
            if not self._discarding:
                self._drop()
                self._discarding = True
        return lines

    def _drop(self) -> None:
        self.dropped_lines += 1
        logger.warning(f"Dropped line over {self.max_line_bytes} bytes")


class LineCodec:
    """One JSON object per line, both directions, on a single connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        max_line_bytes: int = 64 * 1024 * 1024,
        read_chunk_bytes: int = 64 * 1024,
    ):
        self._reader = reader
        self._writer = writer
        self._framer = LineFramer(max_line_bytes)
        self._read_chunk_bytes = int(read_chunk_bytes)
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def peer(self) -> str:
        info = self._writer.get_extra_info("peername")
        return f"{info[0]}:{info[1]}" if isinstance(info, tuple) and len(info) >= 2 else str(info)

    @property
    def is_closed(self) -> bool:
        return self._closed or self._writer.is_closing()

    async def send(self, message: BaseModel) -> None:
        """Serialize and write one message as a single framed line."""
        await self.send_many(message)

    async def send_many(self, *messages: BaseModel) -> None:
        """Write several messages back to back; no other send lands between them."""
        data = b"".join(m.model_dump_json().encode("utf-8") + NEWLINE for m in messages)
        async with self._send_lock:
            if self.is_closed:
                raise ConnectionResetError("connection closed")
            self._writer.write(data)
            await self._writer.drain()

    async def lines(self) -> AsyncIterator[bytes]:
        """Yield complete lines until the peer closes the stream."""
        while not self._closed:
            chunk = await self._reader.read(self._read_chunk_bytes)
            if not chunk:
                if self._framer.pending:
                    logger.debug(f"Discarding {self._framer.pending} unterminated bytes from {self.peer}")
                return
            for line in self._framer.feed(chunk):
                yield line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            # Peer already reset the socket; nothing left to flush.
            pass
