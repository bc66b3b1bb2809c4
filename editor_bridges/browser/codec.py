"""Wire envelopes for the command socket and the RPC socket.

Both channels carry one compact JSON object per line. The codec only turns
envelopes into JSON bytes and back; appending/splitting on the newline is the
transport's job (see `transport.frame`).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .config import PROTOCOL_VERSION
from .errors import DecodeError

JSONRPC_VERSION = "2.0"


@dataclass(frozen=True, slots=True)
class CommandEnvelope:
    args: tuple[str, ...]
    target_arg: str | None = None
    protocol_version: int = PROTOCOL_VERSION

    def to_wire(self) -> dict[str, Any]:
        # target_arg is always present: the browser tells "null" apart from a missing key.
        return {
            "args": list(self.args),
            "target_arg": self.target_arg,
            "protocol_version": int(self.protocol_version),
        }


@dataclass(frozen=True, slots=True)
class RpcMessage:
    kind: str  # "request" | "response" | "notification"
    id: int | str | None = None
    method: str | None = None
    params: Any = None
    result: Any = None
    error: Any = None

    @property
    def is_error(self) -> bool:
        return self.kind == "response" and self.error is not None

    @classmethod
    def request(cls, req_id: int, method: str, params: Any = None) -> RpcMessage:
        return cls(kind="request", id=req_id, method=method, params=params)

    @classmethod
    def notification(cls, method: str, params: Any = None) -> RpcMessage:
        return cls(kind="notification", method=method, params=params)

    @classmethod
    def response(cls, req_id: int | str, result: Any = None, *, error: Any = None) -> RpcMessage:
        return cls(kind="response", id=req_id, result=result, error=error)

    def to_wire(self) -> dict[str, Any]:
        if self.kind == "response":
            out: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
            if self.error is not None:
                out["error"] = self.error
            else:
                out["result"] = self.result
            return out
        out = {"jsonrpc": JSONRPC_VERSION, "method": self.method, "params": self.params}
        if self.kind == "request":
            out["id"] = self.id
        return out


def encode(envelope: CommandEnvelope | RpcMessage | dict[str, Any]) -> bytes:
    payload = envelope if isinstance(envelope, dict) else envelope.to_wire()
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode(line: bytes | str) -> dict[str, Any]:
    try:
        text = line.decode("utf-8") if isinstance(line, (bytes, bytearray)) else str(line)
        obj = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"malformed frame: {exc}", raw=line) from exc
    if not isinstance(obj, dict):
        raise DecodeError(f"expected a JSON object, got {type(obj).__name__}", raw=line)
    return obj


def classify(obj: dict[str, Any]) -> RpcMessage:
    method = obj.get("method")
    has_id = obj.get("id") is not None
    if isinstance(method, str) and method:
        if has_id:
            return RpcMessage(kind="request", id=obj["id"], method=method, params=obj.get("params"))
        return RpcMessage(kind="notification", method=method, params=obj.get("params"))
    if has_id and ("result" in obj or "error" in obj):
        return RpcMessage(kind="response", id=obj["id"], result=obj.get("result"), error=obj.get("error"))
    raise DecodeError("frame is neither a request, a response nor a notification", raw=json.dumps(obj))


def decode_rpc(line: bytes | str) -> RpcMessage:
    return classify(decode(line))


def decode_command(line: bytes | str) -> CommandEnvelope:
    obj = decode(line)
    args = obj.get("args")
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise DecodeError("command envelope needs a list of string args", raw=line)
    target = obj.get("target_arg")
    version = obj.get("protocol_version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise DecodeError("command envelope needs an integer protocol_version", raw=line)
    return CommandEnvelope(
        args=tuple(args),
        target_arg=target if isinstance(target, str) else None,
        protocol_version=version,
    )


__all__ = [
    "CommandEnvelope",
    "JSONRPC_VERSION",
    "RpcMessage",
    "classify",
    "decode",
    "decode_command",
    "decode_rpc",
    "encode",
]
