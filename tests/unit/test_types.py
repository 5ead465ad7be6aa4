"""Unit tests for wire models, message classification and id allocation."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from stream_rpc.errors import JsonRpcErrorCode, RpcError, RpcTimeoutError
from stream_rpc.ids import MAX_SAFE_INTEGER, allocate_id, create_random_id
from stream_rpc.types import (
    CallState,
    JsonRpcErrorObject,
    JsonRpcRequest,
    MessageKind,
    PendingCall,
    classify_message,
)

# =============================================================================
# Message classification
# =============================================================================


class TestClassifyMessage:
    """Tests for inbound message shape detection."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ({"method": "chainChanged", "params": ["0x1"]}, MessageKind.NOTIFICATION),
            ({"method": "chainChanged", "params": []}, MessageKind.NOTIFICATION),
            ({"method": "ping", "params": [], "id": 7}, MessageKind.REQUEST),
            ({"method": "ping", "params": [], "error": {"code": 1}}, MessageKind.REQUEST),
            ({"id": 1, "error": {"code": -1, "message": "x"}}, MessageKind.FAULT),
            ({"error": {"code": -1, "message": "x"}}, MessageKind.FAULT),
            ({"id": 1, "result": 42}, MessageKind.RESULT),
            ({"id": 1}, MessageKind.RESULT),
            ({"method": "half"}, MessageKind.MALFORMED),
            ({}, MessageKind.MALFORMED),
            ({"method": "", "params": []}, MessageKind.MALFORMED),
            ({"method": "ping", "params": [], "id": 0}, MessageKind.REQUEST),
            ({"id": 1, "error": False, "result": 1}, MessageKind.RESULT),
            ({"id": 1, "error": "", "result": 1}, MessageKind.RESULT),
            ({"error": False}, MessageKind.RESULT),
        ],
    )
    def test_shapes(self, message: dict, expected: MessageKind) -> None:
        """Each shape maps to its kind."""
        assert classify_message(message) == expected

    def test_null_fields_count_as_absent(self) -> None:
        """Explicit nulls do not change the classification."""
        message = {"method": "x", "params": [], "id": None, "error": None}
        assert classify_message(message) == MessageKind.NOTIFICATION


# =============================================================================
# Wire models
# =============================================================================


class TestWireModels:
    """Tests for request and error models."""

    def test_request_defaults(self) -> None:
        """A request dumps to the JSON-RPC 2.0 envelope."""
        request = JsonRpcRequest(method="foo", params=[1, "a"], id=9)

        assert request.model_dump() == {
            "jsonrpc": "2.0",
            "method": "foo",
            "params": [1, "a"],
            "id": 9,
        }

    def test_request_is_frozen(self) -> None:
        """Envelopes cannot be modified after construction."""
        request = JsonRpcRequest(method="foo", params=[], id=1)

        with pytest.raises(ValidationError):
            request.method = "bar"

    def test_error_object_optional_fields(self) -> None:
        """data and stack are optional."""
        error = JsonRpcErrorObject.model_validate({"code": -32000, "message": "boom"})

        assert error.data is None
        assert error.stack is None

    def test_error_object_requires_code(self) -> None:
        """An error member without a code is invalid."""
        with pytest.raises(ValidationError):
            JsonRpcErrorObject.model_validate({"message": "boom"})


# =============================================================================
# PendingCall
# =============================================================================


class TestPendingCall:
    """Tests for the pending call state machine."""

    def test_settles_once(self) -> None:
        """Only the first transition out of PENDING succeeds."""
        call = PendingCall(id=1, method="foo")

        assert call.settle(CallState.RESOLVED) is True
        assert call.settle(CallState.TIMED_OUT) is False
        assert call.state == CallState.RESOLVED
        assert call.is_pending is False

    def test_settle_cancels_timer(self) -> None:
        """Settling cancels and drops the deadline handle."""
        timer = MagicMock()
        call = PendingCall(id=1, method="foo", timer=timer)

        call.settle(CallState.RESOLVED)

        timer.cancel.assert_called_once()
        assert call.timer is None


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    """Tests for error types."""

    def test_rpc_error_to_dict(self) -> None:
        """to_dict omits unset optional members."""
        assert RpcError(-32000, "boom").to_dict() == {"code": -32000, "message": "boom"}

        full = RpcError(-32000, "boom", data={"a": 1}, stack="trace")
        assert full.to_dict() == {
            "code": -32000,
            "message": "boom",
            "data": {"a": 1},
            "stack": "trace",
        }

    def test_rpc_error_str_is_message(self) -> None:
        """str() of an RpcError is its message."""
        assert str(RpcError(1, "boom")) == "boom"

    def test_timeout_error_is_builtin_timeout(self) -> None:
        """RpcTimeoutError can be caught as TimeoutError."""
        error = RpcTimeoutError("foo", 10.0)

        assert isinstance(error, TimeoutError)
        assert error.code == JsonRpcErrorCode.REQUEST_TIMEOUT
        assert error.data == {"method": "foo", "timeout": 10.0}


# =============================================================================
# Request ids
# =============================================================================


class TestIds:
    """Tests for random id allocation."""

    def test_random_id_in_json_safe_range(self) -> None:
        """Ids fit in a double without precision loss."""
        for _ in range(100):
            value = create_random_id()
            assert 0 <= value < MAX_SAFE_INTEGER

    def test_allocate_skips_ids_in_use(self, monkeypatch) -> None:
        """A colliding draw is retried."""
        draws = iter([5, 5, 8])
        monkeypatch.setattr("stream_rpc.ids.create_random_id", lambda: next(draws))

        assert allocate_id({5}) == 8

    def test_allocate_gives_up(self, monkeypatch) -> None:
        """Exhausting attempts raises RuntimeError."""
        monkeypatch.setattr("stream_rpc.ids.create_random_id", lambda: 1)

        with pytest.raises(RuntimeError, match="free request id"):
            allocate_id({1}, max_attempts=3)
