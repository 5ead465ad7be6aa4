"""Wire models and call bookkeeping.

Outbound envelopes and inbound error objects are pydantic models. Inbound
messages themselves stay plain dicts: their shape is decided by which keys
are present, which a single model cannot express.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

JSONRPC_VERSION = "2.0"

RequestId = int | str
ResponseCallback = Callable[[Exception | None, Any], None]


# =============================================================================
# Wire models
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request envelope with positional params."""

    model_config = ConfigDict(frozen=True)

    jsonrpc: str = JSONRPC_VERSION
    method: str
    params: list[Any]
    id: RequestId


class JsonRpcErrorObject(BaseModel):
    """Error member of a fault response."""

    code: int
    message: str
    data: Any | None = None
    stack: str | None = None


class MessageKind(str, Enum):
    """Shapes an inbound message can take."""

    NOTIFICATION = "notification"
    REQUEST = "request"
    FAULT = "fault"
    RESULT = "result"
    MALFORMED = "malformed"


def _present(message: dict[str, Any], key: str) -> bool:
    return message.get(key) is not None


def _filled(message: dict[str, Any], key: str) -> bool:
    """Present and not an empty scalar (false, 0, ""). Empty containers count."""
    value = message.get(key)
    if value is None or value is False:
        return False
    if isinstance(value, (str, int, float)):
        return bool(value)
    return True


def classify_message(message: dict[str, Any]) -> MessageKind:
    """Classify an inbound message by the keys it carries.

    A key holding ``None`` counts as absent. Notifications need both
    ``method`` and ``params`` and neither ``id`` nor ``error``. ``method``,
    ``params`` and ``error`` must also be non-empty to count as a call shape
    or a fault; an ``error: false`` reply is treated as a result.
    """
    has_call_shape = _filled(message, "method") and _filled(message, "params")
    if not _present(message, "id") and not _present(message, "error"):
        return MessageKind.NOTIFICATION if has_call_shape else MessageKind.MALFORMED
    if has_call_shape:
        return MessageKind.REQUEST
    if _filled(message, "error"):
        return MessageKind.FAULT
    return MessageKind.RESULT


# =============================================================================
# Pending call bookkeeping
# =============================================================================


class CallState(str, Enum):
    """Lifecycle of a pending call. Leaves PENDING exactly once."""

    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"


@dataclass
class PendingCall:
    """One in-flight request awaiting a response or its deadline."""

    id: RequestId
    method: str
    callback: ResponseCallback | None = None
    state: CallState = CallState.PENDING
    timer: asyncio.TimerHandle | None = None

    @property
    def is_pending(self) -> bool:
        return self.state == CallState.PENDING

    def settle(self, state: CallState) -> bool:
        """Move out of PENDING. Returns False if already settled."""
        if self.state != CallState.PENDING:
            return False
        self.state = state
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        return True
