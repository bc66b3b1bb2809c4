from __future__ import annotations

import shlex
from collections.abc import Mapping
from typing import Any

from .command_sender import CommandSender
from .dispatcher import WindowState
from .rpc_session import RpcSession

_OPEN_TARGET_FLAGS: dict[str, list[str]] = {
    "auto": [],
    "current": [],
    "tab": ["-t"],
    "tab-bg": ["-b"],
    "window": ["-w"],
    "private": ["-p"],
}


def _quote(raw: str) -> str:
    return shlex.quote(str(raw))


def _one_line(code: str) -> str:
    # The browser's command line has no notion of a multi-line argument.
    return " ".join(line.strip() for line in str(code).splitlines() if line.strip())


class BrowserCommands:
    """High-level browser commands on top of the command channel.

    Window lookups go through the RPC session's window state when a session is
    attached; everything else is fire-and-forget.
    """

    def __init__(self, sender: CommandSender, *, session: RpcSession | None = None) -> None:
        self.sender = sender
        self.session = session

    def send(self, *commands: str) -> None:
        self.sender.send(list(commands))

    def open_url(self, url: str, *, target: str = "auto") -> None:
        url = str(url or "").strip()
        if not url:
            raise ValueError("url is required")
        flags = _OPEN_TARGET_FLAGS.get(str(target or "auto").strip().lower())
        if flags is None:
            raise ValueError(f"unknown open target: {target}")
        self.sender.send([" ".join([":open", *flags, _quote(url)])])

    def execute_javascript(self, code: str, *, quiet: bool = True) -> None:
        parts = [":jseval"]
        if quiet:
            parts.append("-q")
        parts.append(_quote(_one_line(code)))
        self.sender.send([" ".join(parts)])

    def execute_python(self, code: str, *, quiet: bool = True) -> None:
        parts = [":debug-pyeval"]
        if quiet:
            parts.append("-q")
        parts.append(_quote(_one_line(code)))
        self.sender.send([" ".join(parts)])

    def config_source(self, path: str) -> None:
        self.sender.send([f":config-source {_quote(path)}"])

    def fake_keys(self, keys: str, *, global_: bool = False) -> None:
        parts = [":fake-key"]
        if global_:
            parts.append("-g")
        parts.append(_quote(keys))
        self.sender.send([" ".join(parts)])

    def set_option(self, name: str, value: Any) -> None:
        if isinstance(value, bool):
            rendered = "true" if value else "false"
        else:
            rendered = str(value)
        self.sender.send([f":set {_quote(name)} {_quote(rendered)}"])

    def window(self, win_id: Any) -> WindowState | None:
        if self.session is None:
            return None
        return self.session.dispatcher.store.get(win_id)

    def windows(self) -> Mapping[Any, WindowState]:
        if self.session is None:
            return {}
        return dict(self.session.dispatcher.store.items())


__all__ = ["BrowserCommands"]
