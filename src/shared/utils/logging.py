"""Logging setup shared by the Cloud Function entry point, local server and CLI."""

from __future__ import annotations

import logging
import os
import sys
from typing import Iterable, Optional

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
PLAIN_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

# SDK loggers that emit one INFO line per HTTP request
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "hpack", "supabase", "google_genai")


def resolve_level(level: Optional[str]) -> int:
    """Map a level name (or LOG_LEVEL) to a logging constant, defaulting to INFO."""
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Optional[str] = None,
    *,
    include_timestamp: bool = True,
    noisy_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Configure the root logger to write to stdout.

    Cloud Functions collect stdout, so one stream handler is enough. Calling
    this again replaces the previous configuration.

    Args:
        level: Level name; falls back to LOG_LEVEL, then INFO
        include_timestamp: Prefix lines with a timestamp (off for Cloud Logging)
        noisy_loggers: Third-party loggers capped at WARNING

    Example:
        >>> setup_logging("DEBUG")
        >>> logging.getLogger(__name__).debug("ready")
    """
    logging.basicConfig(
        level=resolve_level(level),
        format=DEFAULT_FORMAT if include_timestamp else PLAIN_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,
    )

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
