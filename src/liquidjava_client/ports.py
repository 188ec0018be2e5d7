from __future__ import annotations

from dataclasses import dataclass
import socket
from typing import Callable

from liquidjava_client.exceptions import PortAllocationFailed

SocketFactory = Callable[..., socket.socket]


@dataclass(frozen=True)
class PortAllocator:
    """Hands out a local port for the engine to listen on.

    The probe socket is closed before the engine binds the port, so another
    process may grab it in between. That failure shows up as a connect error
    and is never retried here.
    """

    host: str = "127.0.0.1"
    debug_port: int | None = None
    socket_factory: SocketFactory = socket.socket

    def reserve(self) -> int:
        if self.debug_port is not None:
            return int(self.debug_port)
        try:
            with self.socket_factory(socket.AF_INET, socket.SOCK_STREAM) as probe:
                probe.bind((self.host, 0))
                port = int(probe.getsockname()[1])
        except OSError as exc:
            raise PortAllocationFailed(f"Could not reserve a local port: {exc}") from exc
        if port <= 0:
            raise PortAllocationFailed(f"Invalid port assigned: {port}")
        return port
