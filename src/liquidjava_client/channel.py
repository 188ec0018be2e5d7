from __future__ import annotations

import asyncio
import logging

from liquidjava_client.exceptions import ConnectFailed

LOGGER = logging.getLogger(__name__)

Endpoint = tuple[str, int]


def _endpoint(value: object) -> Endpoint | None:
    if isinstance(value, tuple) and len(value) >= 2:
        return str(value[0]), int(value[1])
    return None


class Channel:
    """Bidirectional byte stream to the engine."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self.local: Endpoint | None = _endpoint(writer.get_extra_info("sockname"))
        self.remote: Endpoint | None = _endpoint(writer.get_extra_info("peername"))
        self._closed = False

    @classmethod
    async def connect(cls, port: int, timeout: float, host: str = "127.0.0.1") -> Channel:
        """Make a single connection attempt to ``host:port``."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            raise ConnectFailed(f"Timed out connecting to {host}:{port}") from exc
        except OSError as exc:
            raise ConnectFailed(f"Could not connect to {host}:{port}: {exc}") from exc
        return cls(reader, writer)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        LOGGER.debug("closing channel %s -> %s", self.local, self.remote)
        self.writer.close()

    async def wait_closed(self) -> None:
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            # the peer already reset the connection
            return

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Channel({self.local} -> {self.remote}, {state})"
