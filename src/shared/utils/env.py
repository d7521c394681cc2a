"""Environment variable helpers.

``.env`` files are loaded with python-dotenv; typed getters read ``os.environ``
on every call so settings can change between requests and in tests.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def load_env(env_file: Optional[str] = None, override: bool = False) -> bool:
    """Load variables from a .env file.

    Args:
        env_file: Explicit path. If None, the nearest .env walking up from the
                 working directory is used.
        override: Whether values in the file replace existing variables.

    Returns:
        True when a file was found and loaded
    """
    path = Path(env_file) if env_file else None
    if path is None:
        found = find_dotenv(usecwd=True)
        path = Path(found) if found else None

    if path is None or not path.exists():
        logger.debug("No .env file found, using system environment")
        return False

    load_dotenv(path, override=override)
    logger.debug("Loaded environment from %s", path)
    return True


def get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.getenv(key, default)


def get_env_int(key: str, default: int) -> int:
    """Read an integer environment variable, raising ValueError on junk."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be an integer, got {raw!r}") from exc


def get_env_float(key: str, default: float) -> float:
    """Read a float environment variable, raising ValueError on junk."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be numeric, got {raw!r}") from exc


def get_env_bool(key: str, default: bool) -> bool:
    """Read a boolean environment variable (true/false, 1/0, yes/no, on/off)."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable {key} must be a boolean, got {raw!r}")
