"""
Command-line entry point for the editor/browser bridge.

`send`/`open` go through the command channel; `watch`/`request` open the RPC
session and log what the browser reports.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Any

from .command_sender import CommandSender
from .commands import BrowserCommands
from .config import BridgeConfig
from .dispatcher import WINDOW_FIELDS, EventKind, Notification
from .errors import BridgeConnectionError, BridgeError
from .rpc_session import RpcSession

logger = logging.getLogger("bridge.browser")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def _log_notification(note: Notification) -> None:
    fields = {k: note.params[k] for k in WINDOW_FIELDS if k in note.params}
    logger.info("event=%s win=%s %s", note.method, note.win_id, json.dumps(fields, ensure_ascii=False))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="browser-bridge", description=__doc__)
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p_send = sub.add_parser("send", help="send browser commands (e.g. ':open -t example.org')")
    p_send.add_argument("commands", nargs="+")

    p_open = sub.add_parser("open", help="open a URL")
    p_open.add_argument("url")
    p_open.add_argument("--target", default="auto", choices=["auto", "current", "tab", "tab-bg", "window", "private"])

    sub.add_parser("watch", help="connect to the RPC backend and log notifications")

    p_req = sub.add_parser("request", help="issue one RPC request and print the result")
    p_req.add_argument("method")
    p_req.add_argument("params", nargs="?", default=None, help="JSON-encoded params")
    p_req.add_argument("--timeout", type=float, default=None)
    return parser


def _run_watch(config: BridgeConfig) -> int:
    session = RpcSession.from_config(config)
    for kind in EventKind:
        session.dispatcher.register(kind, _log_notification)
    try:
        session.connect()
    except BridgeConnectionError as exc:
        logger.error("rpc_connect_failed: %s", exc)
        return 1
    for win_id, state in session.dispatcher.store.items():
        logger.info("window win=%s %s", win_id, json.dumps(state.as_dict(), ensure_ascii=False))

    try:
        while session.is_connected():
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        session.close()
    return 0


def _run_request(config: BridgeConfig, method: str, raw_params: str | None, timeout: float | None) -> int:
    try:
        params: Any = json.loads(raw_params) if raw_params else None
    except json.JSONDecodeError as exc:
        logger.error("invalid JSON params: %s", exc)
        return 1
    session = RpcSession.from_config(config)
    try:
        session.connect()
        result = session.request(method, params, timeout=timeout)
    finally:
        session.close()
    sys.stdout.write(json.dumps(result, ensure_ascii=False) + "\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    config = BridgeConfig.from_env()

    try:
        if args.command == "send":
            CommandSender.from_config(config).send(args.commands)
            return 0
        if args.command == "open":
            BrowserCommands(CommandSender.from_config(config)).open_url(args.url, target=args.target)
            return 0
        if args.command == "watch":
            return _run_watch(config)
        if args.command == "request":
            return _run_request(config, args.method, args.params, args.timeout)
    except BridgeError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
