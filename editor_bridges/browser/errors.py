from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    pass


class BridgeConnectionError(BridgeError, ConnectionError):
    """A channel could not be opened (socket missing/refused, or spawn failed)."""


class WriteError(BridgeError):
    """The channel was open but writing to it failed."""


class ConnectionLost(BridgeError):
    """The RPC channel closed while a request was outstanding."""


class RequestTimeout(ConnectionLost):
    pass


class DecodeError(BridgeError, ValueError):
    def __init__(self, message: str, *, raw: bytes | str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class RequestError(BridgeError):
    """A well-formed error response from the browser (or a refused request)."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        data: Any = None,
        method: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.data = data
        self.method = method

    @classmethod
    def from_payload(cls, error: Any, *, method: str | None = None) -> RequestError:
        if isinstance(error, dict):
            msg = error.get("message")
            code = error.get("code")
            return cls(
                msg if isinstance(msg, str) and msg else "RPC request failed",
                code=code if isinstance(code, int) else None,
                data=error.get("data"),
                method=method,
            )
        if isinstance(error, str) and error:
            return cls(error, method=method)
        return cls("RPC request failed", data=error, method=method)


__all__ = [
    "BridgeConnectionError",
    "BridgeError",
    "ConnectionLost",
    "DecodeError",
    "RequestError",
    "RequestTimeout",
    "WriteError",
]
