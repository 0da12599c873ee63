"""Process-wide logging setup for the web app."""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(environment: str = "dev") -> None:
    """Apply `logging.basicConfig` once, honouring LOG_LEVEL.

    Defaults to DEBUG in development and INFO elsewhere. Unknown level names
    fall back to INFO rather than failing startup.
    """
    default = "DEBUG" if (environment or "dev").lower() in ("dev", "development", "local") else "INFO"
    level_name = (os.getenv("LOG_LEVEL") or default).strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("clearcourse").setLevel(level)
    # httpx logs every request at INFO; keep it quieter than our own events
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


__all__ = ["configure_logging", "LOG_FORMAT"]
