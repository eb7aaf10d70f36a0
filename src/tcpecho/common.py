from __future__ import annotations

import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler

DEFAULT_PORT = 8888
LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"


@dataclass(frozen=True)
class TcpTarget:
    host: str
    port: int


class BindError(RuntimeError):
    """The listener could not bind or listen on its configured address."""

    def __init__(self, host: str, port: int, reason: OSError) -> None:
        super().__init__(
            f"Failed to listen on tcp://{host}:{port} ({reason.strerror or reason}). "
            "Is the port already in use?"
        )
        self.host = host
        self.port = port
        self.reason = reason


def configure_logging(level: str = "INFO", log_file: str | None = None) -> logging.Logger:
    logger = logging.getLogger("tcpecho")
    logger.setLevel(level.upper())
    if logger.handlers:
        return logger

    fmt = logging.Formatter(LOG_FORMAT)
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)
    if log_file:
        fh = RotatingFileHandler(log_file, maxBytes=5_000_000, backupCount=3)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    return logger
