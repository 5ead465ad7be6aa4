"""Request/response correlator for JSON-RPC over a single message stream.

RpcClient owns the table of in-flight calls and the two broadcast channels.
It is the only writer to and reader from its stream.

Routing of an inbound message:
- Notification (method + params, no id, no error) -> notification channel
- Server-to-client request (method + params with an id) -> dropped
- Fault for a pending id -> that call's callback
- Fault with no pending id -> uncaught-error channel
- Result for a pending id -> that call's callback; unknown ids are dropped

Every dispatched call settles exactly once: result, fault, or timeout.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .channel import Channel
from .errors import (
    JsonRpcErrorCode,
    RpcConnectionClosedError,
    RpcError,
    RpcTimeoutError,
)
from .ids import allocate_id
from .transport import DATA_EVENT, END_EVENT, MessageStream
from .types import (
    JSONRPC_VERSION,
    CallState,
    JsonRpcErrorObject,
    JsonRpcRequest,
    MessageKind,
    PendingCall,
    RequestId,
    ResponseCallback,
    classify_message,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class RpcClientConfig:
    """Configuration for RpcClient."""

    # Seconds to wait for a response before failing the call locally
    timeout: float = DEFAULT_TIMEOUT

    # Fail still-pending calls as soon as the stream ends instead of
    # leaving them to their deadlines
    reject_pending_on_end: bool = False

    protocol_version: str = JSONRPC_VERSION

    def __post_init__(self) -> None:
        is_number = isinstance(self.timeout, (int, float)) and not isinstance(self.timeout, bool)
        if not is_number or not math.isfinite(self.timeout) or not self.timeout > 0:
            raise ValueError(f"timeout must be a positive number of seconds, got {self.timeout!r}")

    @classmethod
    def from_env(cls) -> RpcClientConfig:
        """Build a config from STREAM_RPC_* environment variables."""
        kwargs: dict[str, Any] = {}

        raw_timeout = os.getenv("STREAM_RPC_TIMEOUT")
        if raw_timeout:
            try:
                kwargs["timeout"] = float(raw_timeout)
            except ValueError as e:
                raise ValueError(f"STREAM_RPC_TIMEOUT is not a number: {raw_timeout!r}") from e

        raw_reject = os.getenv("STREAM_RPC_REJECT_PENDING_ON_END")
        if raw_reject is not None:
            kwargs["reject_pending_on_end"] = raw_reject.strip().lower() in _TRUTHY

        return cls(**kwargs)


def _error_from_payload(payload: Any) -> RpcError:
    """Build an RpcError from a fault's error member.

    A malformed payload still yields an error so the waiting call settles.
    """
    try:
        error = JsonRpcErrorObject.model_validate(payload)
    except ValidationError:
        logger.warning(f"Invalid error object in response: {payload!r}")
        return RpcError(JsonRpcErrorCode.INTERNAL_ERROR, "Invalid error object", data=payload)
    return RpcError(error.code, error.message, data=error.data, stack=error.stack)


class RpcClient:
    """JSON-RPC client multiplexing concurrent calls over one stream.

    Callbacks take ``(error, result)``; exactly one of them is meaningful.

    Usage:
        client = RpcClient(stream)
        client.on_notification(print)
        client.dispatch("eth_blockNumber", [], lambda err, res: ...)

        # or, from a coroutine
        block = await client.call("eth_blockNumber")
    """

    def __init__(
        self,
        stream: MessageStream,
        config: RpcClientConfig | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.stream = stream
        self.config = config or RpcClientConfig()
        self._loop = loop
        self._pending: dict[RequestId, PendingCall] = {}
        self._notifications: Channel[dict[str, Any]] = Channel("notification")
        self._uncaught_errors: Channel[RpcError] = Channel("uncaught error")
        self._closed = False

        stream.on(DATA_EVENT, self.handle_message)
        stream.on(END_EVENT, self.handle_end)

    @property
    def pending_count(self) -> int:
        """Number of calls still awaiting a response."""
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # =========================================================================
    # Outbound
    # =========================================================================

    def dispatch(
        self,
        method: str,
        params: list[Any] | tuple[Any, ...] | None = None,
        callback: ResponseCallback | None = None,
    ) -> RequestId:
        """Send a request and arm its deadline.

        Needs a running event loop or the ``loop=`` given to the client. Without
        one nothing is written and the callback receives an RpcError at once.

        Returns:
            The request id
        """
        request_id = allocate_id(self._pending)
        payload = JsonRpcRequest(
            jsonrpc=self.config.protocol_version,
            method=method,
            params=list(params or []),
            id=request_id,
        )
        self.send(request_id, payload.model_dump(), callback)
        return request_id

    def send(
        self,
        request_id: RequestId,
        payload: dict[str, Any],
        callback: ResponseCallback | None = None,
    ) -> None:
        """Register a pending call for a pre-built envelope and write it.

        Raises:
            ValueError: If ``request_id`` is already pending
        """
        if request_id in self._pending:
            raise ValueError(f"Request id already pending: {request_id}")

        method = str(payload.get("method", ""))
        call = PendingCall(id=request_id, method=method, callback=callback)

        try:
            loop = self._get_loop()
        except RuntimeError:
            logger.error(f"Cannot send {method} (id={request_id}): no running event loop")
            call.settle(CallState.ABANDONED)
            if callback is not None:
                error = RpcError(
                    JsonRpcErrorCode.INTERNAL_ERROR,
                    "No running event loop; create the client with loop=",
                    data={"method": method},
                )
                self._invoke(call, error, None)
            return

        self._pending[request_id] = call

        try:
            self.stream.write(payload)
        except Exception as e:
            logger.error(f"Failed to write request {request_id} ({method}): {e}")
            self._pending.pop(request_id, None)
            call.settle(CallState.ABANDONED)
            if callback is not None:
                error = RpcConnectionClosedError(f"Failed to write request: {e}", method=method)
                error.__cause__ = e
                loop.call_soon(self._invoke, call, error, None)
            return

        # A stream may deliver the reply from inside write
        if call.is_pending:
            call.timer = loop.call_later(self.config.timeout, self._on_deadline, call)
        logger.debug(f"Dispatched {method} (id={request_id})")

    def _on_deadline(self, call: PendingCall) -> None:
        if not call.settle(CallState.TIMED_OUT):
            return
        if self._pending.get(call.id) is call:
            del self._pending[call.id]
        logger.debug(f"Request {call.id} ({call.method}) timed out after {self.config.timeout}s")
        if call.callback is not None:
            self._invoke(call, RpcTimeoutError(call.method, self.config.timeout), None)

    def _invoke(self, call: PendingCall, error: Exception | None, result: Any) -> None:
        try:
            call.callback(error, result)  # type: ignore[misc]
        except Exception:
            logger.exception(f"Error in callback for {call.method} (id={call.id})")

    def _take_pending(self, request_id: Any) -> PendingCall | None:
        """Remove and settle the pending call for ``request_id``, if any."""
        if isinstance(request_id, bool) or not isinstance(request_id, (int, str)):
            return None
        call = self._pending.pop(request_id, None)
        if call is None or not call.settle(CallState.RESOLVED):
            return None
        return call

    async def call(self, method: str, *params: Any) -> Any:
        """Call ``method`` and await its result.

        Raises:
            RpcError: The peer returned an error
            RpcTimeoutError: No response before the deadline
        """
        loop = self._get_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def on_response(error: Exception | None, result: Any) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

        request_id = self.dispatch(method, list(params), on_response)
        try:
            return await future
        except asyncio.CancelledError:
            self._abandon(request_id)
            raise

    def _abandon(self, request_id: RequestId) -> None:
        call = self._pending.pop(request_id, None)
        if call is not None:
            call.settle(CallState.ABANDONED)
            logger.debug(f"Abandoned request {request_id} ({call.method})")

    # =========================================================================
    # Inbound
    # =========================================================================

    def handle_message(self, message: Any) -> None:
        """Route one inbound message. Never raises."""
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object message: {message!r:.100}")
            return

        kind = classify_message(message)

        if kind == MessageKind.NOTIFICATION:
            self._notifications.emit(message)
            return
        if kind == MessageKind.MALFORMED:
            logger.debug(f"Dropping unrecognized message: {message!r:.100}")
            return
        if kind == MessageKind.REQUEST:
            # Inbound calls are not served by this client
            logger.debug(f"Dropping server-to-client request: {message.get('method')}")
            return

        request_id = message.get("id")
        call = self._take_pending(request_id)

        if kind == MessageKind.FAULT:
            error = _error_from_payload(message["error"])
            if call is not None:
                self._invoke(call, error, None)
            else:
                self._uncaught_errors.emit(error)
            return

        if call is None:
            logger.debug(f"Dropping response for unknown request: {request_id}")
            return

        self._invoke(call, None, message.get("result"))

    def handle_end(self) -> None:
        """Stream ended: tear down the channels.

        Pending calls are left to their deadlines unless
        ``reject_pending_on_end`` is set.
        """
        logger.info(f"Stream ended with {len(self._pending)} pending call(s)")
        if self.config.reject_pending_on_end:
            self._reject_all_pending("Stream ended before a response arrived")
        self.close()

    def _reject_all_pending(self, reason: str) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for call in pending:
            if call.settle(CallState.ABANDONED) and call.callback is not None:
                self._invoke(call, RpcConnectionClosedError(reason, method=call.method), None)

    # =========================================================================
    # Channels
    # =========================================================================

    def on_notification(self, handler: Callable[[dict[str, Any]], Any]) -> Callable[[], None]:
        """Subscribe to server notifications. Returns an unsubscribe function."""
        return self._notifications.subscribe(handler)

    def on_uncaught_error(self, handler: Callable[[RpcError], Any]) -> Callable[[], None]:
        """Subscribe to errors that match no pending call."""
        return self._uncaught_errors.subscribe(handler)

    def close(self) -> None:
        """Remove all notification and uncaught-error listeners."""
        self._notifications.clear()
        self._uncaught_errors.clear()
        self._closed = True
