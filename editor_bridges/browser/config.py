from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .ipc_paths import command_socket_path, rpc_socket_path

PROTOCOL_VERSION = 1

DEFAULT_BINARY_CANDIDATES: list[str] = [
    "/usr/bin/qutebrowser",
    "/usr/local/bin/qutebrowser",
    "/run/current-system/sw/bin/qutebrowser",
    "/opt/homebrew/bin/qutebrowser",
    "/Applications/qutebrowser.app/Contents/MacOS/qutebrowser",
]


def _default_backend_script() -> str:
    return str(Path.home() / ".config" / "qutebrowser" / "emacs_rpc.py")


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


@dataclass
class BridgeConfig:
    binary_path: str
    ipc_socket: str
    rpc_socket: str
    backend: str = "socket"
    backend_script: str = field(default_factory=_default_backend_script)
    fifo_path: str | None = None
    extra_flags: list[str] = field(default_factory=list)
    protocol_version: int = PROTOCOL_VERSION
    bootstrap_grace: float = 1.0
    connect_timeout: float = 2.0
    auto_reconnect: bool = True

    @staticmethod
    def normalize_backend(raw: str | None) -> str:
        backend = (raw or "").strip().lower()
        if backend in {"fifo", "userscript", "qute_fifo"}:
            return "fifo"
        if backend in {"spawn", "launch", "process", "exec"}:
            return "spawn"
        if backend in {"socket", "ipc", ""}:
            return "socket"
        return "socket"

    @classmethod
    def detect_binary(cls) -> str:
        env_path = os.environ.get("BRIDGE_BROWSER_BINARY")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        found = shutil.which("qutebrowser")
        if found:
            return found
        # Last resort: rely on PATH lookup at spawn time
        return "qutebrowser"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        fifo = os.environ.get("QUTE_FIFO") or None
        raw_backend = os.environ.get("BRIDGE_BACKEND")
        # Running as a userscript: the browser handed us a FIFO to write to.
        backend = cls.normalize_backend(raw_backend) if raw_backend else ("fifo" if fifo else "socket")
        flags_raw = os.environ.get("BRIDGE_BROWSER_FLAGS", "")
        extra_flags = [flag.strip() for flag in flags_raw.split(",") if flag.strip()]
        script = os.environ.get("BRIDGE_RPC_BACKEND_SCRIPT") or _default_backend_script()
        return cls(
            binary_path=cls.detect_binary(),
            ipc_socket=str(command_socket_path()),
            rpc_socket=str(rpc_socket_path()),
            backend=backend,
            backend_script=expand_path(script),
            fifo_path=fifo,
            extra_flags=extra_flags,
            protocol_version=int(os.environ.get("BRIDGE_PROTOCOL_VERSION", str(PROTOCOL_VERSION))),
            bootstrap_grace=float(os.environ.get("BRIDGE_BOOTSTRAP_GRACE", "1.0")),
            connect_timeout=float(os.environ.get("BRIDGE_CONNECT_TIMEOUT", "2.0")),
            auto_reconnect=_env_bool("BRIDGE_RPC_AUTO_RECONNECT", True),
        )
