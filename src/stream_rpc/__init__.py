"""stream-rpc - bidirectional JSON-RPC client over a single message stream.

Multiplexes concurrent calls over one ordered, full-duplex stream:
- RpcClient: correlates requests with responses, with a per-call deadline
- RpcProxy / create_client: call any remote method by attribute name
- Notification and uncaught-error channels for server-initiated traffic
"""

from .client import DEFAULT_TIMEOUT, RpcClient, RpcClientConfig
from .errors import (
    JsonRpcErrorCode,
    RpcConnectionClosedError,
    RpcError,
    RpcTimeoutError,
    StreamRpcError,
)
from .proxy import RemoteMethod, RpcProxy, bind_methods, create_client
from .transport import (
    JsonLineStream,
    MessageStream,
    MockMessageStream,
    open_subprocess_stream,
)
from .types import CallState, JsonRpcErrorObject, JsonRpcRequest, PendingCall

__version__ = "0.1.0"

__all__ = [
    # Client
    "RpcClient",
    "RpcClientConfig",
    "DEFAULT_TIMEOUT",
    # Dynamic call surface
    "RpcProxy",
    "RemoteMethod",
    "create_client",
    "bind_methods",
    # Errors
    "StreamRpcError",
    "RpcError",
    "RpcTimeoutError",
    "RpcConnectionClosedError",
    "JsonRpcErrorCode",
    # Streams
    "MessageStream",
    "MockMessageStream",
    "JsonLineStream",
    "open_subprocess_stream",
    # Types
    "JsonRpcRequest",
    "JsonRpcErrorObject",
    "PendingCall",
    "CallState",
]
