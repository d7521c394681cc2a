"""Contracts for slides and their enrichment results."""

from .unit import (
    AUTO_ELIGIBLE_STAGES,
    CONTENT_LIST_FIELDS,
    IN_PROGRESS_STAGES,
    GeneratedAsset,
    GroundingSource,
    SelectionRect,
    SlideContent,
    Unit,
    UnitStage,
    VideoPlacement,
)

__all__ = [
    "AUTO_ELIGIBLE_STAGES",
    "CONTENT_LIST_FIELDS",
    "IN_PROGRESS_STAGES",
    "GeneratedAsset",
    "GroundingSource",
    "SelectionRect",
    "SlideContent",
    "Unit",
    "UnitStage",
    "VideoPlacement",
]
