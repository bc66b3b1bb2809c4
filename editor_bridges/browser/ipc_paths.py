from __future__ import annotations

import getpass
import hashlib
import os
from pathlib import Path

# Well-known path the RPC backend binds inside the browser.
DEFAULT_RPC_SOCKET = "/tmp/emacs-qutebrowser-rpc"


def _username() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return str(os.getuid()) if hasattr(os, "getuid") else "user"


def _infer_xdg_runtime_dir(uid: int | None) -> Path | None:
    if uid is None or uid < 0:
        return None
    try:
        candidate = Path("/run") / "user" / str(uid)
        if candidate.exists() and candidate.is_dir() and os.access(candidate, os.W_OK | os.X_OK):
            return candidate
    except Exception:
        return None
    return None


def browser_runtime_dir() -> Path:
    """Runtime directory the browser keeps its IPC socket in.

    Mirrors the browser's own lookup: `$XDG_RUNTIME_DIR/qutebrowser`, then the
    conventional `/run/user/<uid>`, then a per-user directory under /tmp.
    Unlike a directory we own, this one is never created here.
    """
    xdg = os.environ.get("XDG_RUNTIME_DIR")
    if isinstance(xdg, str) and xdg.strip():
        return Path(xdg.strip()).expanduser() / "qutebrowser"

    uid = None
    try:
        uid = os.getuid()
    except Exception:
        uid = None
    inferred = _infer_xdg_runtime_dir(uid)
    if inferred is not None:
        return inferred / "qutebrowser"
    return Path("/tmp") / f"qutebrowser-{_username()}"


def command_socket_name(username: str | None = None) -> str:
    user = username if username is not None else _username()
    digest = hashlib.md5(user.encode("utf-8")).hexdigest()  # noqa: S324
    return f"ipc-{digest}"


def command_socket_path() -> Path:
    raw = os.environ.get("BRIDGE_IPC_SOCKET")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return browser_runtime_dir() / command_socket_name()


def rpc_socket_path() -> Path:
    raw = os.environ.get("BRIDGE_RPC_SOCKET")
    if isinstance(raw, str) and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path(DEFAULT_RPC_SOCKET)


__all__ = [
    "DEFAULT_RPC_SOCKET",
    "browser_runtime_dir",
    "command_socket_name",
    "command_socket_path",
    "rpc_socket_path",
]
