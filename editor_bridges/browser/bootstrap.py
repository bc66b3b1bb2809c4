from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass

from .command_sender import CommandSender
from .config import BridgeConfig

_LOGGER = logging.getLogger("bridge.browser.bootstrap")


@dataclass
class ConfigSourceBootstrap:
    """Start the RPC backend by making the browser source its script.

    Used by RpcSession when the RPC socket does not exist yet. The session waits
    its own grace period afterwards; nothing here blocks on the backend.
    """

    sender: CommandSender
    script_path: str

    @classmethod
    def from_config(cls, config: BridgeConfig) -> ConfigSourceBootstrap:
        return cls(sender=CommandSender.from_config(config), script_path=config.backend_script)

    def __call__(self) -> None:
        _LOGGER.info("rpc_backend_bootstrap script=%s", self.script_path)
        self.sender.send([f":config-source {shlex.quote(self.script_path)}"])


__all__ = ["ConfigSourceBootstrap"]
