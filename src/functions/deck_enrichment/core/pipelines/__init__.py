"""Pipeline scheduling."""

from .scheduler import PipelineScheduler

__all__ = ["PipelineScheduler"]
