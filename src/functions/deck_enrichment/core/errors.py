"""Exceptions raised by the deck enrichment pipeline."""

from __future__ import annotations


class UnitNotFoundError(RuntimeError):
    """Raised when an operation names a unit id that is not in the deck."""


class UnitBusyError(RuntimeError):
    """Raised when a user action targets a unit whose stage is still in progress."""


class InvalidTransitionError(RuntimeError):
    """Raised when a stage change is not in the transition table."""


class RenderError(RuntimeError):
    """Raised when a document cannot be rendered into page images."""
