from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from collections.abc import AsyncIterator
from pathlib import Path

from .errors import BridgeConnectionError, WriteError

_LOGGER = logging.getLogger("bridge.browser.transport")

DELIMITER = b"\n"
_MAX_FRAME_BYTES = 8_000_000
_READ_CHUNK = 65536


def frame(payload: bytes) -> bytes:
    """Terminate one encoded envelope; the browser reads up to the newline."""
    return payload + DELIMITER


class LineFramer:
    """Accumulate raw reads and hand back complete newline-terminated frames."""

    def __init__(self, *, max_frame_bytes: int = _MAX_FRAME_BYTES) -> None:
        self._buf = bytearray()
        self._max = int(max_frame_bytes)
        self._discarding = False

    @property
    def pending(self) -> bytes:
        return bytes(self._buf)

    def feed(self, chunk: bytes) -> list[bytes]:
        frames: list[bytes] = []
        self._buf.extend(chunk)
        while True:
            idx = self._buf.find(DELIMITER)
            if idx < 0:
                break
            line = bytes(self._buf[:idx]).rstrip(b"\r")
            del self._buf[: idx + 1]
            if self._discarding:
                # Tail of an oversized frame.
                self._discarding = False
                continue
            if len(line) > self._max:
                _LOGGER.warning("dropping oversized frame (%d bytes)", len(line))
                continue
            if line.strip():
                frames.append(line)
        if len(self._buf) > self._max:
            _LOGGER.warning("dropping oversized frame (%d bytes buffered)", len(self._buf))
            self._buf.clear()
            self._discarding = True
        return frames


class CommandTransport:
    """Write-only, one-message-per-connection channel to the browser's IPC socket."""

    def __init__(self, path: str | Path, *, timeout: float = 2.0) -> None:
        self.path = Path(path)
        self.timeout = float(timeout)
        self._sock: socket.socket | None = None

    def open(self) -> CommandTransport:
        if not hasattr(socket, "AF_UNIX"):
            raise BridgeConnectionError("local domain sockets are not available on this platform")
        if not self.path.exists():
            raise BridgeConnectionError(f"command socket not found: {self.path}")
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(str(self.path))
        except OSError as exc:
            with contextlib.suppress(Exception):
                sock.close()
            raise BridgeConnectionError(f"cannot connect to {self.path}: {exc}") from exc
        self._sock = sock
        return self

    def send(self, payload: bytes) -> None:
        sock = self._sock
        if sock is None:
            raise WriteError("command transport is not open")
        try:
            sock.sendall(frame(payload))
        except OSError as exc:
            raise WriteError(f"write to {self.path} failed: {exc}") from exc

    def close(self) -> None:
        sock = self._sock
        self._sock = None
        if sock is None:
            return
        with contextlib.suppress(Exception):
            sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(Exception):
            sock.close()

    def __enter__(self) -> CommandTransport:
        return self.open() if self._sock is None else self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class RpcTransport:
    """Long-lived full-duplex channel; must be used from a single event loop."""

    def __init__(self, path: str | Path, *, max_frame_bytes: int = _MAX_FRAME_BYTES) -> None:
        self.path = Path(path)
        self._max_frame_bytes = int(max_frame_bytes)
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._write_lock = asyncio.Lock()
        self._closed = False

    async def open(self) -> RpcTransport:
        if not self.path.exists():
            raise BridgeConnectionError(f"RPC socket not found: {self.path}")
        try:
            reader, writer = await asyncio.open_unix_connection(str(self.path))
        except OSError as exc:
            raise BridgeConnectionError(f"cannot connect to {self.path}: {exc}") from exc
        self._reader = reader
        self._writer = writer
        self._closed = False
        return self

    def is_alive(self) -> bool:
        writer = self._writer
        if self._closed or writer is None:
            return False
        return not writer.is_closing()

    async def send(self, payload: bytes) -> None:
        async with self._write_lock:
            writer = self._writer
            if writer is None or not self.is_alive():
                raise WriteError("RPC transport is closed")
            try:
                writer.write(frame(payload))
                await writer.drain()
            except (OSError, RuntimeError) as exc:
                raise WriteError(f"write to {self.path} failed: {exc}") from exc

    async def frames(self) -> AsyncIterator[bytes]:
        reader = self._reader
        if reader is None:
            return
        framer = LineFramer(max_frame_bytes=self._max_frame_bytes)
        while not self._closed:
            try:
                chunk = await reader.read(_READ_CHUNK)
            except (OSError, asyncio.IncompleteReadError) as exc:
                _LOGGER.debug("rpc read failed: %s", exc)
                return
            if not chunk:
                return
            for line in framer.feed(chunk):
                yield line

    async def close(self) -> None:
        self._closed = True
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is None:
            return
        with contextlib.suppress(Exception):
            writer.close()
            await writer.wait_closed()


__all__ = ["CommandTransport", "DELIMITER", "LineFramer", "RpcTransport", "frame"]
