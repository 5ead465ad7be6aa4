"""Dynamic call surface over RpcClient.

Any attribute that is not a real member of the client becomes a remote
method of the same name:

    client = create_client(stream)
    client.eth_getBalance("0xabc", "latest", callback)
    # -> {"jsonrpc": "2.0", "method": "eth_getBalance", "params": ["0xabc", "latest"], "id": ...}

Real members (on_notification, close, call, ...) are returned unchanged, so a
remote method that shares a name with one of them must go through
``dispatch`` or ``bind_methods`` instead.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from .client import RpcClient, RpcClientConfig
from .transport import MessageStream
from .types import RequestId


class RemoteMethod:
    """Callable bound to one remote method name.

    The final positional argument is the completion callback; the rest are
    the ordered call params.
    """

    __slots__ = ("_client", "name")

    def __init__(self, client: RpcClient, name: str) -> None:
        self._client = client
        self.name = name

    def __repr__(self) -> str:
        return f"<RemoteMethod {self.name!r}>"

    def __call__(self, *args: Any) -> RequestId:
        if not args:
            return self._client.dispatch(self.name, [], None)

        *params, callback = args
        if callback is not None and not callable(callback):
            raise TypeError(
                f"Last argument to {self.name}() must be a callback, got {type(callback).__name__}"
            )
        return self._client.dispatch(self.name, params, callback)

    async def acall(self, *params: Any) -> Any:
        """Await the result instead of passing a callback."""
        return await self._client.call(self.name, *params)


class RpcProxy:
    """Facade turning attribute access into remote method calls."""

    __slots__ = ("_client",)

    def __init__(self, client: RpcClient) -> None:
        object.__setattr__(self, "_client", client)

    @property
    def client(self) -> RpcClient:
        return self._client

    def __getattr__(self, name: str) -> Any:
        # Private and dunder lookups (copy, pickle, inspect) must not become RPCs
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return getattr(self._client, name)
        except AttributeError:
            return RemoteMethod(self._client, name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is read-only")

    def __repr__(self) -> str:
        return f"<RpcProxy pending={self._client.pending_count}>"


def create_client(stream: MessageStream, config: RpcClientConfig | None = None) -> RpcProxy:
    """Create an RpcClient on ``stream`` wrapped in the dynamic call surface."""
    return RpcProxy(RpcClient(stream, config))


def bind_methods(client: RpcClient | RpcProxy, names: Iterable[str]) -> dict[str, RemoteMethod]:
    """Build explicit wrappers for a known list of remote method names.

    Works for any name, including ones shadowed by client members.
    """
    if isinstance(client, RpcProxy):
        client = client.client
    return {name: RemoteMethod(client, name) for name in names}
