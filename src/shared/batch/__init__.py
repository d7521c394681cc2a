"""Shared batch processing infrastructure.

Provides generic utilities for pipelines that push work items through
unreliable remote services:
- CheckpointStore: Durable per-record checkpoints with atomic writes
- WriteResult: Outcome of a best-effort persistence call
- ProgressTracker: Processing progress and metrics
- with_retry: Async retry with exponential backoff and fatal-error short-circuit

Usage:
    from src.shared.batch import CheckpointStore, ProgressTracker, WriteResult
    from src.shared.batch import is_fatal_error, with_retry
"""

from .checkpoint import CheckpointStore, WriteResult
from .progress import ProgressTracker
from .retry import is_fatal_error, with_retry

__all__ = [
    "CheckpointStore",
    "WriteResult",
    "ProgressTracker",
    "is_fatal_error",
    "with_retry",
]
