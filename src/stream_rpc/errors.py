"""Error types for the stream RPC client.

Remote faults, local timeouts and stream failures all surface as ``RpcError``
subclasses so a single ``except RpcError`` covers every way a call can fail.
"""

from __future__ import annotations

from typing import Any


class JsonRpcErrorCode:
    """Standard JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Generic server error
    SERVER_ERROR = -32000

    # Local codes, never sent by a peer
    REQUEST_TIMEOUT = -32050
    CONNECTION_CLOSED = -32051


class StreamRpcError(Exception):
    """Base class for all stream RPC errors."""


class RpcError(StreamRpcError):
    """A JSON-RPC error object raised or delivered to a callback.

    ``stack`` holds the remote stack trace when the peer serialized one.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
        stack: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data
        self.stack = stack

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the wire error shape."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        if self.stack is not None:
            payload["stack"] = self.stack
        return payload


class RpcTimeoutError(RpcError, TimeoutError):
    """No response arrived before the call's deadline."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(
            JsonRpcErrorCode.REQUEST_TIMEOUT,
            "No response from RPC",
            data={"method": method, "timeout": timeout},
        )
        self.method = method
        self.timeout = timeout


class RpcConnectionClosedError(RpcError, ConnectionError):
    """The stream ended or failed while the call was still pending."""

    def __init__(self, message: str = "Connection closed", method: str | None = None) -> None:
        super().__init__(
            JsonRpcErrorCode.CONNECTION_CLOSED,
            message,
            data={"method": method} if method else None,
        )
        self.method = method
