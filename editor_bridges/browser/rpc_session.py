from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
import time
from collections.abc import Callable, Coroutine
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .codec import RpcMessage, decode_rpc, encode
from .config import BridgeConfig
from .dispatcher import WIN_ID_KEY, Dispatcher
from .errors import (
    BridgeConnectionError,
    BridgeError,
    ConnectionLost,
    DecodeError,
    RequestError,
    RequestTimeout,
    WriteError,
)
from .transport import RpcTransport

_LOGGER = logging.getLogger("bridge.browser.rpc_session")

WINDOW_INFO_METHOD = "window-info"
# Inbound requests from the browser only ever get this back.
ACK_RESULT = "ack"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(slots=True)
class PendingCall:
    id: int
    method: str
    future: Future = field(default_factory=Future)
    # Connection the request was written to; only that connection can answer it.
    transport: RpcTransport | None = None


class RpcSession:
    """Persistent JSON-RPC channel to the browser's RPC backend.

    - Sync API for callers (blocking `request`, fire-and-forget `notify`).
    - A private asyncio loop on a daemon thread owns the socket and runs the only
      read loop; it is the sole place Pending Calls get resolved.
    - Notifications are handed to the Dispatcher in wire order, on the loop thread.
    - Losing the socket fails every outstanding call with ConnectionLost.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        dispatcher: Dispatcher | None = None,
        bootstrap: Callable[[], object] | None = None,
        bootstrap_grace: float = 1.0,
        connect_timeout: float = 2.0,
        auto_reconnect: bool = True,
    ) -> None:
        self.path = Path(path)
        self.dispatcher = dispatcher if dispatcher is not None else Dispatcher()
        self._bootstrap = bootstrap
        self._bootstrap_grace = max(0.0, float(bootstrap_grace))
        self._connect_timeout = max(0.1, float(connect_timeout))
        self._auto_reconnect = bool(auto_reconnect)

        self._lock = threading.Lock()
        self._conn_lock = threading.RLock()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

        self._transport: RpcTransport | None = None
        self._reader_task: asyncio.Task | None = None
        self._state = SessionState.DISCONNECTED
        self._last_error: str | None = None

        self._next_id = 1
        self._pending: dict[int, PendingCall] = {}

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig,
        *,
        dispatcher: Dispatcher | None = None,
        bootstrap: Callable[[], object] | None = None,
    ) -> RpcSession:
        if bootstrap is None:
            from .bootstrap import ConfigSourceBootstrap

            bootstrap = ConfigSourceBootstrap.from_config(config)
        return cls(
            config.rpc_socket,
            dispatcher=dispatcher,
            bootstrap=bootstrap,
            bootstrap_grace=config.bootstrap_grace,
            connect_timeout=config.connect_timeout,
            auto_reconnect=config.auto_reconnect,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def is_connected(self) -> bool:
        with self._lock:
            transport = self._transport
        return transport is not None and transport.is_alive()

    def connect(self, *, flush: bool = False) -> RpcSession:
        if self._on_loop_thread():
            raise BridgeConnectionError("cannot (re)connect from inside the read loop")
        with self._conn_lock:
            if flush:
                self._teardown("connection flushed")
            if self.is_connected():
                return self

            with self._lock:
                self._state = SessionState.CONNECTING
            try:
                self._open_transport()
            except BridgeConnectionError as exc:
                with self._lock:
                    self._state = SessionState.DISCONNECTED
                    self._last_error = str(exc)
                raise
            with self._lock:
                self._state = SessionState.CONNECTED
                self._last_error = None
            _LOGGER.info("rpc connected path=%s", self.path)

        self._sync_window_info()
        return self

    def close(self, *, timeout: float = 2.0) -> None:
        with self._conn_lock:
            self._teardown("session closed", timeout=timeout)
            self._stop_loop(timeout=timeout)

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "socketPath": str(self.path),
                "pending": len(self._pending),
                "windows": len(self.dispatcher.store),
                **({"lastError": self._last_error} if self._last_error else {}),
            }

    def __enter__(self) -> RpcSession:
        return self.connect()

    def __exit__(self, *_exc: object) -> None:
        self.close()

    # ─────────────────────────────────────────────────────────────────────────
    # RPC
    # ─────────────────────────────────────────────────────────────────────────

    def request(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any:
        if not isinstance(method, str) or not method.strip():
            raise RequestError("RPC method is required")
        if self._on_loop_thread():
            # The reply could only be read by the thread we would be blocking.
            raise RequestError("cannot wait for a response from inside the read loop", method=method)

        transport = self._live_transport()

        with self._lock:
            if self._transport is not transport:
                raise ConnectionLost(f"connection lost before sending method={method}")
            req_id = self._next_id
            self._next_id += 1
            call = PendingCall(id=req_id, method=method, transport=transport)
            self._pending[req_id] = call

        try:
            self._send(transport, RpcMessage.request(req_id, method, params))
        except BridgeError:
            with self._lock:
                self._pending.pop(req_id, None)
            raise

        try:
            return call.future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            with self._lock:
                self._pending.pop(req_id, None)
            raise RequestTimeout(f"RPC request timed out: method={method}") from exc

    def notify(self, method: str, params: Any = None) -> None:
        if not isinstance(method, str) or not method.strip():
            raise RequestError("RPC method is required")
        self._send(self._live_transport(), RpcMessage.notification(method, params))

    def window_info(self, *, timeout: float | None = None) -> Any:
        return self.request(WINDOW_INFO_METHOD, timeout=timeout)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _on_loop_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            loop = self._loop
            thread = self._thread
        if loop is not None and thread is not None and thread.is_alive():
            return loop

        loop = asyncio.new_event_loop()
        ready = threading.Event()

        def _run() -> None:
            asyncio.set_event_loop(loop)
            loop.call_soon(ready.set)
            try:
                loop.run_forever()
            finally:
                tasks = list(asyncio.all_tasks(loop))
                for task in tasks:
                    task.cancel()
                with contextlib.suppress(Exception):
                    loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))
                with contextlib.suppress(Exception):
                    loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()

        t = threading.Thread(target=_run, name="bridge-rpc-session", daemon=True)
        with self._lock:
            self._loop = loop
            self._thread = t
        t.start()
        ready.wait(timeout=2.0)
        return loop

    def _stop_loop(self, *, timeout: float) -> None:
        with self._lock:
            loop = self._loop
            thread = self._thread
            self._loop = None
            self._thread = None
        if loop is not None:
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(loop.stop)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _submit(self, coro: Coroutine[Any, Any, Any], *, timeout: float) -> Any:
        loop = self._ensure_loop()
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return fut.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            fut.cancel()
            raise

    def _open_transport(self) -> None:
        if not self.path.exists():
            if self._bootstrap is None:
                raise BridgeConnectionError(f"RPC socket not found: {self.path}")
            _LOGGER.info("rpc socket missing, starting backend path=%s", self.path)
            try:
                self._bootstrap()
            except BridgeError as exc:
                raise BridgeConnectionError(f"RPC backend bootstrap failed: {exc}") from exc
            time.sleep(self._bootstrap_grace)

        try:
            self._submit(self._open_async(), timeout=self._connect_timeout)
        except concurrent.futures.TimeoutError as exc:
            raise BridgeConnectionError(f"timed out connecting to {self.path}") from exc

    async def _open_async(self) -> None:
        transport = RpcTransport(self.path)
        await transport.open()
        task = asyncio.get_running_loop().create_task(self._read_loop(transport))
        with self._lock:
            self._transport = transport
            self._reader_task = task
            orphaned = self._take_pending(lambda call: call.transport is not transport)
        self._fail_pending(orphaned, "connection replaced")

    def _live_transport(self) -> RpcTransport:
        with self._lock:
            transport = self._transport
        if transport is not None and transport.is_alive():
            return transport
        if self._auto_reconnect:
            self.connect()
            with self._lock:
                transport = self._transport
            if transport is not None:
                return transport
        raise BridgeConnectionError("RPC session is not connected")

    def _send(self, transport: RpcTransport, msg: RpcMessage) -> None:
        if self._on_loop_thread():
            # Called from a handler: queue the write behind the current frame.
            asyncio.get_running_loop().create_task(self._send_logged(transport, msg))
            return
        try:
            self._submit(transport.send(encode(msg)), timeout=self._connect_timeout)
        except concurrent.futures.TimeoutError as exc:
            raise WriteError(f"RPC write timed out: method={msg.method}") from exc

    async def _send_logged(self, transport: RpcTransport, msg: RpcMessage) -> None:
        try:
            await transport.send(encode(msg))
        except WriteError as exc:
            _LOGGER.warning("rpc write failed method=%s: %s", msg.method, exc)

    def _sync_window_info(self) -> None:
        try:
            result = self.window_info(timeout=self._connect_timeout)
        except BridgeError as exc:
            _LOGGER.warning("initial window-info sync failed: %s", exc)
            return

        records: list[Any] = []
        if isinstance(result, list):
            records = result
        elif isinstance(result, dict):
            for win_id, record in result.items():
                if isinstance(record, dict):
                    records.append({WIN_ID_KEY: win_id, **record})
        for record in records:
            if isinstance(record, dict):
                self.dispatcher.sync_state(record)

    def _teardown(self, reason: str, *, timeout: float = 2.0) -> None:
        with self._lock:
            transport = self._transport
            task = self._reader_task
            self._transport = None
            self._reader_task = None
            self._state = SessionState.DISCONNECTED
            pending = list(self._pending.values())
            self._pending.clear()
            loop = self._loop

        self._fail_pending(pending, reason)

        if transport is None or loop is None:
            return
        if self._on_loop_thread():
            loop.create_task(self._close_async(transport, task))
            return
        with contextlib.suppress(Exception):
            asyncio.run_coroutine_threadsafe(self._close_async(transport, task), loop).result(timeout=timeout)

    async def _close_async(self, transport: RpcTransport, task: asyncio.Task | None) -> None:
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        await transport.close()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    @staticmethod
    def _fail_pending(pending: list[PendingCall], reason: str) -> None:
        for call in pending:
            if not call.future.done():
                with contextlib.suppress(concurrent.futures.InvalidStateError):
                    call.future.set_exception(ConnectionLost(f"{reason} (method={call.method}, id={call.id})"))

    def _take_pending(self, predicate: Callable[[PendingCall], bool]) -> list[PendingCall]:
        # Caller holds self._lock.
        taken = [call for call in self._pending.values() if predicate(call)]
        for call in taken:
            del self._pending[call.id]
        return taken

    def _on_disconnect(self, transport: RpcTransport, reason: str) -> None:
        with self._lock:
            pending = self._take_pending(lambda call: call.transport is transport)
            current = self._transport is transport
            if current:
                self._transport = None
                self._reader_task = None
                self._state = SessionState.DISCONNECTED
                self._last_error = reason
        if current or pending:
            _LOGGER.info("rpc disconnected: %s (failing %d pending)", reason, len(pending))
        self._fail_pending(pending, reason)

    async def _read_loop(self, transport: RpcTransport) -> None:
        try:
            async for line in transport.frames():
                try:
                    msg = decode_rpc(line)
                except DecodeError as exc:
                    _LOGGER.warning("skipping undecodable frame: %s", exc)
                    continue
                await self._on_message(transport, msg)
        finally:
            self._on_disconnect(transport, "connection closed by browser")
            await transport.close()

    async def _on_message(self, transport: RpcTransport, msg: RpcMessage) -> None:
        if msg.kind == "response":
            self._resolve(msg)
            return

        params = msg.params if isinstance(msg.params, dict) else {}
        try:
            self.dispatcher.dispatch(str(msg.method), params)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("dispatch failed for %s", msg.method)

        if msg.kind == "request":
            try:
                await transport.send(encode(RpcMessage.response(msg.id, ACK_RESULT)))
            except WriteError as exc:
                _LOGGER.warning("failed to acknowledge %s: %s", msg.method, exc)

    def _resolve(self, msg: RpcMessage) -> None:
        req_id = msg.id
        if not isinstance(req_id, int) or isinstance(req_id, bool):
            _LOGGER.warning("dropping response with non-integer id=%r", req_id)
            return
        with self._lock:
            call = self._pending.pop(req_id, None)
        if call is None:
            _LOGGER.warning("dropping response for unknown or already resolved id=%s", req_id)
            return
        with contextlib.suppress(concurrent.futures.InvalidStateError):
            if msg.error is not None:
                call.future.set_exception(RequestError.from_payload(msg.error, method=call.method))
            else:
                call.future.set_result(msg.result)


__all__ = ["ACK_RESULT", "PendingCall", "RpcSession", "SessionState", "WINDOW_INFO_METHOD"]
