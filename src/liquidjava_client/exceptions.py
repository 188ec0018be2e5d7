"""Error taxonomy for the LiquidJava client."""

from __future__ import annotations


class NeverThrown(RuntimeError):
    """Raised by ``never()`` when a code path believed unreachable is hit.

    The keyword environment passed to ``never()`` is kept on the exception so
    callers and tests can inspect the offending values.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})


class ClientError(RuntimeError):
    pass


class PrerequisiteMissing(ClientError):
    """The API jar or the Java runtime could not be found."""


class PortAllocationFailed(ClientError):
    pass


class SpawnFailed(ClientError):
    pass


class ConnectFailed(ClientError):
    pass


class HandshakeFailed(ClientError):
    pass


class SessionEnded(ClientError):
    """The protocol session is no longer live."""


class ResponseError(ClientError):
    def __init__(self, code: int, message: str, data: object = None):
        super().__init__(f"LSP error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class RpcFramingError(ClientError):
    pass
