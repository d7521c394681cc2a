"""Core services for the deck_enrichment module."""

from .config import (
    EnrichmentRequest,
    LLMConfig,
    PipelineConfig,
    StorageConfig,
    SupabaseConfig,
)
from .contracts import SelectionRect, SlideContent, Unit, UnitStage, VideoPlacement
from .errors import InvalidTransitionError, RenderError, UnitBusyError, UnitNotFoundError
from .factory import request_from_payload
from .parsing import parse_model_json
from .service import DeckEnrichmentService

__all__ = [
    "DeckEnrichmentService",
    "EnrichmentRequest",
    "InvalidTransitionError",
    "LLMConfig",
    "PipelineConfig",
    "RenderError",
    "SelectionRect",
    "SlideContent",
    "StorageConfig",
    "SupabaseConfig",
    "Unit",
    "UnitBusyError",
    "UnitNotFoundError",
    "UnitStage",
    "VideoPlacement",
    "parse_model_json",
    "request_from_payload",
]
