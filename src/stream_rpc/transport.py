"""Message stream abstraction used by the RPC client.

The client never serializes anything itself. A stream hands it discrete,
already-decoded messages through ``data`` events, signals graceful close with
an ``end`` event, and accepts outbound dicts through ``write``.

Implementations:
- MockMessageStream: in-memory, for tests and embedding
- JsonLineStream: newline-delimited JSON over asyncio streams
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DATA_EVENT = "data"
END_EVENT = "end"

# Reader buffer size for subprocess pipes; longer lines are still reassembled
DEFAULT_READ_LIMIT = 1024 * 1024

# Inbound lines above this size are discarded
DEFAULT_MAX_LINE_SIZE = 64 * 1024 * 1024

DataHandler = Callable[[Any], None]
EndHandler = Callable[[], None]


@runtime_checkable
class MessageStream(Protocol):
    """Protocol for full-duplex message streams.

    Events:
    - "data": called once per inbound message, in delivery order
    - "end": called once when the peer closes the stream
    """

    def write(self, message: dict[str, Any]) -> None:
        """Send one message to the peer."""
        ...

    def on(self, event: str, handler: Callable[..., None]) -> None:
        """Register a handler for ``event``."""
        ...


class BaseMessageStream:
    """Event plumbing shared by the stock streams."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., None]]] = {DATA_EVENT: [], END_EVENT: []}
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def on(self, event: str, handler: Callable[..., None]) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown stream event: {event}")
        self._handlers[event].append(handler)

    def _emit_data(self, message: Any) -> None:
        for handler in list(self._handlers[DATA_EVENT]):
            handler(message)

    def _emit_end(self) -> None:
        if self._ended:
            return
        self._ended = True
        for handler in list(self._handlers[END_EVENT]):
            handler()


class MockMessageStream(BaseMessageStream):
    """In-memory stream for testing.

    Records written messages and lets tests inject inbound ones. No actual
    I/O; injection is delivered synchronously.

    Usage:
        stream = MockMessageStream()
        client = create_client(stream)
        client.get_balance("0xabc", callback)

        request = stream.written[0]
        stream.inject({"id": request["id"], "result": "0x10"})
    """

    def __init__(self) -> None:
        super().__init__()
        self._written: list[dict[str, Any]] = []
        self.fail_writes: Exception | None = None

    @property
    def written(self) -> list[dict[str, Any]]:
        """All messages written by the client."""
        return self._written.copy()

    @property
    def last_written(self) -> dict[str, Any] | None:
        return self._written[-1] if self._written else None

    def write(self, message: dict[str, Any]) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        self._written.append(message)

    def inject(self, message: Any) -> None:
        """Deliver an inbound message, even after ``end()``."""
        self._emit_data(message)

    def end(self) -> None:
        """Simulate the peer closing the stream."""
        self._emit_end()

    def clear(self) -> None:
        self._written.clear()


class JsonLineStream(BaseMessageStream):
    """Newline-delimited JSON over an asyncio reader/writer pair.

    Wire format:
    - Outbound: JSON object + newline
    - Inbound: one JSON object per line; blank, non-UTF-8 and non-JSON lines
      are skipped

    Lines longer than the reader's buffer limit are reassembled, up to
    ``max_line_size`` bytes. Longer lines are discarded.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        *,
        max_line_size: int = DEFAULT_MAX_LINE_SIZE,
    ) -> None:
        super().__init__()
        self._reader = reader
        self._writer = writer
        self._max_line_size = max_line_size
        self._read_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Start the background read loop."""
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop())

    def write(self, message: dict[str, Any]) -> None:
        if self._ended:
            raise ConnectionError("Stream has ended")
        line = json.dumps(message) + "\n"
        self._writer.write(line.encode("utf-8"))

    async def drain(self) -> None:
        await self._writer.drain()

    async def aclose(self) -> None:
        """Stop reading and close the writer."""
        if self._read_task:
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task
            self._read_task = None
        self._writer.close()
        with contextlib.suppress(ConnectionError):
            await self._writer.wait_closed()
        self._emit_end()

    async def _read_line(self) -> bytes | None:
        """Read one line of any length.

        Returns:
            The line, ``b""`` at EOF, or ``None`` for a discarded oversize line
        """
        chunks = bytearray()
        oversize = False
        while True:
            try:
                chunk = await self._reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF, possibly after a final unterminated line
                chunk = e.partial
                if not chunk and not chunks:
                    return b""
            except asyncio.LimitOverrunError as e:
                # Separator beyond the buffer limit: take what is buffered and keep going
                chunk = await self._reader.readexactly(e.consumed)
                if not oversize:
                    chunks.extend(chunk)
                    if len(chunks) > self._max_line_size:
                        oversize = True
                        chunks.clear()
                continue

            if oversize:
                return None
            chunks.extend(chunk)
            if len(chunks) > self._max_line_size:
                return None
            return bytes(chunks)

    async def _read_loop(self) -> None:
        try:
            while True:
                line = await self._read_line()
                if line is None:
                    logger.warning(f"Discarding line longer than {self._max_line_size} bytes")
                    continue
                if not line:
                    # EOF
                    break

                try:
                    line_str = line.decode("utf-8").strip()
                except UnicodeDecodeError as e:
                    logger.debug(f"Skipping non-UTF-8 line: {e}")
                    continue
                if not line_str:
                    continue

                try:
                    message = json.loads(line_str)
                except json.JSONDecodeError as e:
                    logger.debug(f"Skipping non-JSON line: {e} (line: {line_str[:50]})")
                    continue

                self._emit_data(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Read loop error: {e}")

        logger.info("Stream reached end of input")
        self._emit_end()


class _ProcessWriter:
    """Adapts a subprocess stdin pipe to the writer interface."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    def write(self, data: bytes) -> None:
        if not self._process.stdin:
            raise ConnectionError("Process not running")
        self._process.stdin.write(data)

    async def drain(self) -> None:
        if self._process.stdin:
            await self._process.stdin.drain()

    def close(self) -> None:
        if self._process.stdin:
            self._process.stdin.close()

    async def wait_closed(self) -> None:
        if self._process.stdin:
            await self._process.stdin.wait_closed()


async def open_subprocess_stream(
    *command: str,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    limit: int = DEFAULT_READ_LIMIT,
    max_line_size: int = DEFAULT_MAX_LINE_SIZE,
) -> tuple[JsonLineStream, asyncio.subprocess.Process]:
    """Launch ``command`` and speak newline-delimited JSON over its stdio.

    The returned stream is already reading. The caller owns the process.
    """
    process = await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        cwd=cwd,
        env={**os.environ, **env} if env else None,
        limit=limit,
    )
    if process.stdout is None:
        raise ConnectionError("Process has no stdout")

    logger.info(f"Launched subprocess: {' '.join(command)} (pid={process.pid})")

    stream = JsonLineStream(
        process.stdout, _ProcessWriter(process), max_line_size=max_line_size
    )
    stream.start()
    return stream, process
