"""Shared utility functions."""

from .env import get_env, get_env_bool, get_env_float, get_env_int, load_env
from .logging import setup_logging

__all__ = [
    "get_env",
    "get_env_bool",
    "get_env_float",
    "get_env_int",
    "load_env",
    "setup_logging",
]
