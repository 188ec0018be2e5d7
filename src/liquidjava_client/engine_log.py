from __future__ import annotations

from dataclasses import dataclass, field
import logging

CLIENT_LOGGER_NAME = "liquidjava_client.client"
SERVER_LOGGER_NAME = "liquidjava_client.server"

_LOG_FORMAT = "%(asctime)s [%(origin)s] %(levelname)s %(message)s"
_ORIGINS = {CLIENT_LOGGER_NAME: "client", SERVER_LOGGER_NAME: "server"}


@dataclass(frozen=True)
class EngineLogger:
    """Line-oriented log sink split by origin.

    ``client`` carries supervisor messages, ``server`` carries whatever the
    engine writes to stdout/stderr or sends as ``window/logMessage``.
    """

    client: logging.Logger = field(default_factory=lambda: logging.getLogger(CLIENT_LOGGER_NAME))
    server: logging.Logger = field(default_factory=lambda: logging.getLogger(SERVER_LOGGER_NAME))


class _OriginFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.origin = _ORIGINS.get(record.name, record.name)
        return True


def configure_logging(level: str | int = logging.INFO) -> logging.Handler:
    """Install the origin-tagged stream handler once; later calls only set the level."""
    root = logging.getLogger("liquidjava_client")
    root.setLevel(level)
    for existing in root.handlers:
        if any(isinstance(item, _OriginFilter) for item in existing.filters):
            return existing
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler.addFilter(_OriginFilter())
    root.addHandler(handler)
    return handler
