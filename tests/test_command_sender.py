from __future__ import annotations

import json

import pytest


class _RecordingStrategy:
    def __init__(self, name: str = "recording", exc: Exception | None = None) -> None:
        self.name = name
        self.exc = exc
        self.calls: list[list[str]] = []

    def deliver(self, commands: list[str]) -> None:
        self.calls.append(list(commands))
        if self.exc is not None:
            raise self.exc


def test_normalize_commands() -> None:
    from editor_bridges.browser.command_sender import normalize_commands

    assert normalize_commands(["open -t x", ":reload", "  ", ""]) == [":open -t x", ":reload"]
    assert normalize_commands("tab-close") == [":tab-close"]


def test_socket_strategy_round_trip(command_peer) -> None:
    from editor_bridges.browser.codec import decode_command
    from editor_bridges.browser.command_sender import CommandSender, SocketStrategy

    CommandSender(SocketStrategy(path=str(command_peer.path))).send(["open -t https://a", ":reload"])

    (line,) = command_peer.wait_lines(1)
    env = decode_command(line)
    assert env.args == (":open -t https://a", ":reload")
    assert env.protocol_version == 1
    assert json.loads(line)["target_arg"] is None


def test_socket_absent_falls_back_to_spawn(sock_dir, caplog: pytest.LogCaptureFixture) -> None:
    from editor_bridges.browser.command_sender import CommandSender, SocketStrategy

    spawn = _RecordingStrategy("spawn")
    sender = CommandSender(SocketStrategy(path=str(sock_dir / "absent")), fallback=spawn)

    with caplog.at_level("INFO", logger="bridge.browser.command_sender"):
        sender.send([":open https://a", "set-cmd-text :"])

    assert spawn.calls == [[":open https://a", ":set-cmd-text :"]]
    assert any("starting new browser instance" in r.getMessage() for r in caplog.records)


def test_fallback_uses_launcher_spawn(monkeypatch, sock_dir) -> None:
    from editor_bridges.browser import launcher
    from editor_bridges.browser.command_sender import CommandSender, SocketStrategy, SpawnStrategy

    plans = []
    monkeypatch.setattr(launcher, "spawn", lambda plan: plans.append(plan))

    sender = CommandSender(
        SocketStrategy(path=str(sock_dir / "absent")),
        fallback=SpawnStrategy(binary="/opt/qb/qutebrowser", extra_flags=["--backend", "webengine"]),
    )
    sender.send([":open https://a"])

    assert len(plans) == 1
    assert plans[0].command == ["/opt/qb/qutebrowser", "--backend", "webengine", ":open https://a"]


def test_fallback_failure_surfaces(sock_dir) -> None:
    from editor_bridges.browser.command_sender import CommandSender, SocketStrategy
    from editor_bridges.browser.errors import BridgeConnectionError

    spawn = _RecordingStrategy("spawn", exc=BridgeConnectionError("no binary"))
    sender = CommandSender(SocketStrategy(path=str(sock_dir / "absent")), fallback=spawn)

    with pytest.raises(BridgeConnectionError, match="no binary"):
        sender.send([":open https://a"])
    assert len(spawn.calls) == 1


def test_non_socket_strategy_has_no_fallback() -> None:
    from editor_bridges.browser.command_sender import CommandSender
    from editor_bridges.browser.errors import WriteError

    primary = _RecordingStrategy("fifo", exc=WriteError("gone"))
    fallback = _RecordingStrategy("spawn")
    sender = CommandSender(primary, fallback=fallback)

    with pytest.raises(WriteError):
        sender.send(["reload"])
    assert fallback.calls == []


def test_empty_command_list_is_noop() -> None:
    from editor_bridges.browser.command_sender import CommandSender

    primary = _RecordingStrategy()
    CommandSender(primary).send(["", "  "])
    assert primary.calls == []


def test_send_without_strategy() -> None:
    from editor_bridges.browser.command_sender import CommandSender
    from editor_bridges.browser.errors import BridgeConnectionError

    with pytest.raises(BridgeConnectionError):
        CommandSender().send([":reload"])


def test_per_call_strategy_override() -> None:
    from editor_bridges.browser.command_sender import CommandSender

    default = _RecordingStrategy()
    override = _RecordingStrategy()
    CommandSender(default).send([":reload"], strategy=override)

    assert default.calls == []
    assert override.calls == [[":reload"]]


def test_fifo_strategy_appends_lines(tmp_path) -> None:
    from editor_bridges.browser.command_sender import CommandSender, FifoStrategy

    fifo = tmp_path / "fifo"
    fifo.write_text(":message-info hi\n", encoding="utf-8")

    CommandSender(FifoStrategy(path=str(fifo))).send(["open -t https://a", ":tab-close"])

    assert fifo.read_text(encoding="utf-8").splitlines() == [
        ":message-info hi",
        ":open -t https://a",
        ":tab-close",
    ]


def test_fifo_strategy_missing_target(tmp_path) -> None:
    from editor_bridges.browser.command_sender import FifoStrategy
    from editor_bridges.browser.errors import BridgeConnectionError

    with pytest.raises(BridgeConnectionError):
        FifoStrategy(path=str(tmp_path / "missing")).deliver([":reload"])


def test_strategy_from_config(monkeypatch, tmp_path) -> None:
    from editor_bridges.browser.command_sender import (
        FifoStrategy,
        SocketStrategy,
        SpawnStrategy,
        strategy_from_config,
    )
    from editor_bridges.browser.config import BridgeConfig
    from editor_bridges.browser.errors import BridgeConnectionError

    base = {"binary_path": "/bin/qb", "ipc_socket": "/tmp/ipc", "rpc_socket": "/tmp/rpc"}

    sock = strategy_from_config(BridgeConfig(**base, protocol_version=2))
    assert isinstance(sock, SocketStrategy) and sock.path == "/tmp/ipc" and sock.protocol_version == 2

    spawn = strategy_from_config(BridgeConfig(**base, backend="spawn", extra_flags=["-T"]))
    assert isinstance(spawn, SpawnStrategy) and spawn.binary == "/bin/qb" and spawn.extra_flags == ["-T"]

    fifo = strategy_from_config(BridgeConfig(**base, backend="fifo", fifo_path=str(tmp_path / "f")))
    assert isinstance(fifo, FifoStrategy)

    monkeypatch.delenv("QUTE_FIFO", raising=False)
    with pytest.raises(BridgeConnectionError):
        strategy_from_config(BridgeConfig(**base, backend="fifo"))


def test_spawn_plan_and_failure(monkeypatch) -> None:
    from editor_bridges.browser import launcher
    from editor_bridges.browser.errors import BridgeConnectionError

    monkeypatch.delenv("BRIDGE_SPAWN_LOG", raising=False)
    plan = launcher.build_spawn_plan([":open x"], binary="/definitely/not/here/qutebrowser")
    assert plan.command == ["/definitely/not/here/qutebrowser", ":open x"]
    assert plan.log_path is None

    with pytest.raises(BridgeConnectionError):
        launcher.spawn(plan)


def test_spawn_runs_detached_process(monkeypatch, tmp_path) -> None:
    from editor_bridges.browser import launcher

    log = tmp_path / "logs" / "spawn.log"
    monkeypatch.setenv("BRIDGE_SPAWN_LOG", str(log))
    plan = launcher.build_spawn_plan([":open x"], binary="/bin/echo")

    proc = launcher.spawn(plan)
    assert proc.wait(timeout=5.0) == 0
    assert log.read_text().strip() == ":open x"
