from __future__ import annotations

import contextlib
import json
import shutil
import socket
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

# Responder return value meaning "do not answer this request (yet)".
DEFER = object()


def _default_responder(msg: dict[str, Any]) -> Any:
    if msg.get("method") == "window-info":
        return {"id": msg["id"], "result": []}
    return {"id": msg["id"], "result": {"method": msg.get("method"), "params": msg.get("params")}}


class FakeBrowser:
    """Minimal RPC backend on a Unix socket, one client at a time."""

    def __init__(self, path: Path, responder: Callable[[dict[str, Any]], Any] | None = None) -> None:
        self.path = Path(path)
        self.responder = responder or _default_responder
        self.received: list[dict[str, Any]] = []
        self.deferred: list[dict[str, Any]] = []
        self._cond = threading.Condition()
        self._conn: socket.socket | None = None
        self._stop = threading.Event()

        self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._server.bind(str(self.path))
        self._server.listen(4)
        self._server.settimeout(0.1)
        self._thread = threading.Thread(target=self._serve, name="fake-browser", daemon=True)
        self._thread.start()

    # test-facing helpers

    def send(self, obj: dict[str, Any] | bytes) -> None:
        raw = obj if isinstance(obj, bytes) else (json.dumps(obj) + "\n").encode("utf-8")
        conn = self.wait_connected()
        conn.sendall(raw)

    def wait_connected(self, timeout: float = 2.0) -> socket.socket:
        deadline = time.time() + timeout
        while time.time() < deadline:
            with self._cond:
                if self._conn is not None:
                    return self._conn
            time.sleep(0.01)
        raise TimeoutError("no client connected")

    def wait_for(self, predicate: Callable[[list[dict[str, Any]]], bool], timeout: float = 2.0) -> None:
        deadline = time.time() + timeout
        with self._cond:
            while not predicate(self.received):
                remaining = deadline - time.time()
                if remaining <= 0:
                    raise TimeoutError(f"condition not met; received={self.received!r}")
                self._cond.wait(timeout=remaining)

    def requests(self, method: str) -> list[dict[str, Any]]:
        with self._cond:
            return [m for m in self.received if m.get("method") == method and "id" in m]

    def drop_connection(self) -> None:
        with self._cond:
            conn = self._conn
            self._conn = None
        if conn is not None:
            with contextlib.suppress(OSError):
                conn.shutdown(socket.SHUT_RDWR)
            conn.close()

    def close(self) -> None:
        self._stop.set()
        self.drop_connection()
        with contextlib.suppress(OSError):
            self._server.close()
        self._thread.join(timeout=2.0)
        with contextlib.suppress(OSError):
            self.path.unlink()

    # server side

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._server.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            conn.settimeout(None)
            with self._cond:
                self._conn = conn
            self._read(conn)
            with self._cond:
                if self._conn is conn:
                    self._conn = None
            with contextlib.suppress(OSError):
                conn.close()

    def _read(self, conn: socket.socket) -> None:
        buf = b""
        while not self._stop.is_set():
            try:
                chunk = conn.recv(65536)
            except OSError:
                return
            if not chunk:
                return
            buf += chunk
            while b"\n" in buf:
                line, buf = buf.split(b"\n", 1)
                if line.strip():
                    self._handle(json.loads(line))

    def _handle(self, msg: dict[str, Any]) -> None:
        with self._cond:
            self.received.append(msg)
            self._cond.notify_all()
        if "method" not in msg or "id" not in msg:
            return
        reply = self.responder(msg)
        if reply is DEFER:
            with self._cond:
                self.deferred.append(msg)
            return
        if reply is None:
            return
        replies = reply if isinstance(reply, list) else [reply]
        for item in replies:
            self.send(item)


class CommandSocketPeer:
    """Accepts command-channel connections and records each received line."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.lines: list[bytes] = []
        self._cond = threading.Condition()
        self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._server.bind(str(self.path))
        self._server.listen(4)
        self._server.settimeout(0.1)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, name="fake-ipc", daemon=True)
        self._thread.start()

    def wait_lines(self, n: int, timeout: float = 2.0) -> list[bytes]:
        deadline = time.time() + timeout
        with self._cond:
            while len(self.lines) < n:
                remaining = deadline - time.time()
                if remaining <= 0:
                    raise TimeoutError(f"got {len(self.lines)} lines, wanted {n}")
                self._cond.wait(timeout=remaining)
            return list(self.lines)

    def close(self) -> None:
        self._stop.set()
        with contextlib.suppress(OSError):
            self._server.close()
        self._thread.join(timeout=2.0)

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._server.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            with conn:
                conn.settimeout(1.0)
                buf = b""
                while True:
                    try:
                        chunk = conn.recv(65536)
                    except OSError:
                        break
                    if not chunk:
                        break
                    buf += chunk
                with self._cond:
                    self.lines.extend(line for line in buf.split(b"\n") if line)
                    self._cond.notify_all()


@pytest.fixture
def sock_dir() -> Iterator[Path]:
    # AF_UNIX paths are length-limited; pytest's tmp_path can get too long.
    d = Path(tempfile.mkdtemp(prefix="bb-", dir="/tmp"))
    try:
        yield d
    finally:
        shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def fake_browser(sock_dir: Path) -> Iterator[FakeBrowser]:
    fb = FakeBrowser(sock_dir / "rpc.sock")
    try:
        yield fb
    finally:
        fb.close()


@pytest.fixture
def command_peer(sock_dir: Path) -> Iterator[CommandSocketPeer]:
    peer = CommandSocketPeer(sock_dir / "ipc.sock")
    try:
        yield peer
    finally:
        peer.close()
