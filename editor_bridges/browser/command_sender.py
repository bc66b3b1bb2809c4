from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from . import launcher
from .codec import CommandEnvelope, encode
from .config import PROTOCOL_VERSION, BridgeConfig
from .errors import BridgeConnectionError, WriteError
from .transport import CommandTransport

_LOGGER = logging.getLogger("bridge.browser.command_sender")


def normalize_command(raw: str) -> str:
    cmd = str(raw or "").strip()
    if not cmd:
        return ""
    return cmd if cmd.startswith(":") else f":{cmd}"


def normalize_commands(commands: Iterable[str] | str) -> list[str]:
    if isinstance(commands, str):
        commands = [commands]
    return [cmd for cmd in (normalize_command(c) for c in commands) if cmd]


class CommandStrategy(Protocol):
    name: str

    def deliver(self, commands: list[str]) -> None: ...


@dataclass
class SocketStrategy:
    path: str
    protocol_version: int = PROTOCOL_VERSION
    timeout: float = 2.0
    name: str = "socket"

    def deliver(self, commands: list[str]) -> None:
        payload = encode(CommandEnvelope(args=tuple(commands), protocol_version=self.protocol_version))
        with CommandTransport(self.path, timeout=self.timeout) as transport:
            transport.send(payload)


@dataclass
class SpawnStrategy:
    binary: str | None = None
    extra_flags: list[str] = field(default_factory=list)
    name: str = "spawn"

    def deliver(self, commands: list[str]) -> None:
        plan = launcher.build_spawn_plan(commands, binary=self.binary, extra_flags=self.extra_flags)
        launcher.spawn(plan)


@dataclass
class FifoStrategy:
    """Userscript mode: the browser handed us a FIFO (QUTE_FIFO) to write commands to."""

    path: str
    name: str = "fifo"

    def deliver(self, commands: list[str]) -> None:
        target = Path(self.path)
        if not target.exists():
            raise BridgeConnectionError(f"userscript FIFO not found: {target}")
        try:
            with open(target, "a", encoding="utf-8") as fp:
                for cmd in commands:
                    fp.write(cmd + "\n")
        except OSError as exc:
            raise WriteError(f"write to {target} failed: {exc}") from exc


def strategy_from_config(config: BridgeConfig) -> CommandStrategy:
    if config.backend == "fifo":
        fifo = config.fifo_path or os.environ.get("QUTE_FIFO")
        if not fifo:
            raise BridgeConnectionError("fifo backend selected but QUTE_FIFO is not set")
        return FifoStrategy(path=fifo)
    if config.backend == "spawn":
        return SpawnStrategy(binary=config.binary_path, extra_flags=list(config.extra_flags))
    return SocketStrategy(
        path=config.ipc_socket,
        protocol_version=config.protocol_version,
        timeout=config.connect_timeout,
    )


class CommandSender:
    """Fire-and-forget command delivery.

    Runs whichever strategy it is given. The only fallback it performs on its own
    is socket -> spawn: if the IPC socket is absent (or the write fails) a new
    browser instance is started with the same commands as startup arguments.
    """

    def __init__(
        self,
        strategy: CommandStrategy | None = None,
        *,
        fallback: CommandStrategy | None = None,
    ) -> None:
        self.strategy = strategy
        self.fallback = fallback

    @classmethod
    def from_config(cls, config: BridgeConfig | None = None) -> CommandSender:
        cfg = config or BridgeConfig.from_env()
        return cls(
            strategy_from_config(cfg),
            fallback=SpawnStrategy(binary=cfg.binary_path, extra_flags=list(cfg.extra_flags)),
        )

    def send(self, commands: Iterable[str] | str, strategy: CommandStrategy | None = None) -> None:
        cmds = normalize_commands(commands)
        if not cmds:
            return
        active = strategy or self.strategy
        if active is None:
            raise BridgeConnectionError("no command strategy configured")

        if not isinstance(active, SocketStrategy):
            active.deliver(cmds)
            return

        try:
            active.deliver(cmds)
        except (BridgeConnectionError, WriteError) as exc:
            _LOGGER.info("command socket unavailable (%s); starting new browser instance", exc)
            fallback = self.fallback or SpawnStrategy()
            fallback.deliver(cmds)


__all__ = [
    "CommandSender",
    "CommandStrategy",
    "FifoStrategy",
    "SocketStrategy",
    "SpawnStrategy",
    "normalize_command",
    "normalize_commands",
    "strategy_from_config",
]
