from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .config import BridgeConfig, expand_path
from .errors import BridgeConnectionError

_LOGGER = logging.getLogger("bridge.browser.launcher")


@dataclass(frozen=True, slots=True)
class SpawnPlan:
    command: list[str]
    binary_path: str
    log_path: str | None = None


def build_spawn_plan(
    commands: list[str],
    *,
    binary: str | None = None,
    extra_flags: list[str] | None = None,
) -> SpawnPlan:
    binary_path = binary or os.environ.get("BRIDGE_BROWSER_BINARY") or BridgeConfig.detect_binary()
    flags = list(extra_flags or [])
    log_raw = os.environ.get("BRIDGE_SPAWN_LOG")
    return SpawnPlan(
        command=[str(binary_path), *flags, *commands],
        binary_path=str(binary_path),
        log_path=expand_path(log_raw) if log_raw else None,
    )


def spawn(plan: SpawnPlan) -> subprocess.Popen:
    """Start the browser detached from us; nothing is awaited."""
    log_fp = None
    try:
        if plan.log_path:
            Path(plan.log_path).parent.mkdir(parents=True, exist_ok=True)
            log_fp = open(plan.log_path, "ab")  # noqa: SIM115
        out = log_fp if log_fp is not None else subprocess.DEVNULL
        proc = subprocess.Popen(
            plan.command,
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=out,
            start_new_session=True,
        )
    except OSError as exc:
        _LOGGER.warning("browser_spawn_failed binary=%s %s", plan.binary_path, exc)
        raise BridgeConnectionError(f"cannot start {plan.binary_path}: {exc}") from exc
    finally:
        if log_fp is not None:
            log_fp.close()
    _LOGGER.info("browser_spawn_ok pid=%s binary=%s", proc.pid, plan.binary_path)
    return proc


__all__ = ["SpawnPlan", "build_spawn_plan", "spawn"]
