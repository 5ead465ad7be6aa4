"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from stream_rpc import MockMessageStream, RpcClient, RpcClientConfig

# Short enough to keep timeout tests fast
TEST_TIMEOUT = 0.01


@pytest.fixture
def stream() -> MockMessageStream:
    """In-memory stream with no peer attached."""
    return MockMessageStream()


@pytest.fixture
def client(stream: MockMessageStream) -> RpcClient:
    """Client with a 10ms deadline."""
    return RpcClient(stream, RpcClientConfig(timeout=TEST_TIMEOUT))


class CallbackRecorder:
    """Records every ``(error, result)`` pair a callback receives."""

    def __init__(self) -> None:
        self.calls: list[tuple[Exception | None, object]] = []

    def __call__(self, error: Exception | None, result: object) -> None:
        self.calls.append((error, result))

    @property
    def count(self) -> int:
        return len(self.calls)

    @property
    def error(self) -> Exception | None:
        return self.calls[-1][0]

    @property
    def result(self) -> object:
        return self.calls[-1][1]


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def make_recorder() -> type[CallbackRecorder]:
    """Factory for tests that need several independent recorders."""
    return CallbackRecorder
