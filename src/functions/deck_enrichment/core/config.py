"""Configuration models for the deck enrichment pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from src.shared.utils.env import get_env, get_env_bool, get_env_float, get_env_int

logger = logging.getLogger(__name__)

DocumentSource = Union[str, Path, bytes]


def _ensure_non_empty(value: Optional[str], field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be provided")
    return value.strip()


def _ensure_positive(value: float, field_name: str) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be numeric") from exc
    if numeric <= 0:
        raise ValueError(f"{field_name} must be positive")
    return numeric


def _ensure_attempts(value: int, field_name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValueError(f"{field_name} must be an integer >= 1")
    return value


@dataclass
class LLMConfig:
    """Models and call limits for the Gemini collaborator."""

    api_key: Optional[str] = None
    analysis_model: str = "gemini-3-pro-preview"
    image_model: str = "gemini-2.5-flash-image"
    video_model: str = "veo-3.1-fast-generate-preview"
    enable_search_grounding: bool = True
    deep_thinking_budget: int = 32768
    edit_thinking_budget: int = 16384
    timeout_seconds: float = 120.0
    video_timeout_seconds: float = 600.0
    video_poll_interval: float = 10.0
    max_attempts: int = 3
    image_max_attempts: int = 2
    retry_initial_delay: float = 1.0

    def validate(self) -> None:
        self.api_key = _ensure_non_empty(self.api_key, "llm.api_key")
        self.analysis_model = _ensure_non_empty(self.analysis_model, "llm.analysis_model")
        self.image_model = _ensure_non_empty(self.image_model, "llm.image_model")
        self.video_model = _ensure_non_empty(self.video_model, "llm.video_model")
        self.timeout_seconds = _ensure_positive(self.timeout_seconds, "llm.timeout_seconds")
        self.video_timeout_seconds = _ensure_positive(
            self.video_timeout_seconds, "llm.video_timeout_seconds"
        )
        self.video_poll_interval = _ensure_positive(self.video_poll_interval, "llm.video_poll_interval")
        self.retry_initial_delay = _ensure_positive(self.retry_initial_delay, "llm.retry_initial_delay")
        self.max_attempts = _ensure_attempts(self.max_attempts, "llm.max_attempts")
        self.image_max_attempts = _ensure_attempts(self.image_max_attempts, "llm.image_max_attempts")


@dataclass
class PipelineConfig:
    """Scheduler and stage behaviour controls."""

    max_concurrent: int = 3
    poll_interval: float = 0.5
    generate_assets: bool = False
    max_assets_per_unit: int = 3

    def validate(self) -> None:
        if not isinstance(self.max_concurrent, int) or self.max_concurrent < 1:
            raise ValueError("pipeline.max_concurrent must be an integer >= 1")
        self.poll_interval = _ensure_positive(self.poll_interval, "pipeline.poll_interval")
        if not isinstance(self.max_assets_per_unit, int) or self.max_assets_per_unit < 0:
            raise ValueError("pipeline.max_assets_per_unit must be a non-negative integer")


@dataclass
class SupabaseConfig:
    """Configuration for Supabase storage uploads and deck mirroring."""

    url: str
    key: str
    bucket: str = "media"
    deck_table: str = "lumina_decks"
    task_table: str = "lumina_tasks"
    deck_id: str = "current_project"
    schema: str = "public"
    mirror_debounce_seconds: float = 3.0

    def validate(self) -> None:
        if not self.url or not self.key:
            raise ValueError("supabase.url and supabase.key are required when Supabase is enabled")
        self.mirror_debounce_seconds = _ensure_positive(
            self.mirror_debounce_seconds, "supabase.mirror_debounce_seconds"
        )


@dataclass
class StorageConfig:
    """Where durable local checkpoints are written."""

    checkpoint_path: Path = field(default_factory=lambda: Path("./checkpoints/deck.json"))

    def validate(self) -> None:
        self.checkpoint_path = Path(self.checkpoint_path)


@dataclass
class EnrichmentRequest:
    """A request to ingest a document or resume the saved project."""

    document: Optional[DocumentSource] = None
    resume: bool = False
    llm_config: Optional[LLMConfig] = None
    pipeline_config: PipelineConfig = field(default_factory=PipelineConfig)
    supabase_config: Optional[SupabaseConfig] = None
    storage_config: StorageConfig = field(default_factory=StorageConfig)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    include_source_images: bool = False

    def validate(self) -> None:
        """Validate the request and raise ValueError on problems."""

        if self.document is None and not self.resume:
            raise ValueError("Provide a document to ingest or set resume=true")
        if self.document is not None and self.resume:
            raise ValueError("document and resume are mutually exclusive")
        if isinstance(self.document, bytes) and not self.document:
            raise ValueError("document bytes must not be empty")

        if self.llm_config is None:
            raise ValueError("llm configuration is required")
        self.llm_config.validate()
        self.pipeline_config.validate()
        self.storage_config.validate()

        for action in self.actions:
            if not isinstance(action, dict) or not action.get("type"):
                raise ValueError("Each action must be an object with a type")

        if self.supabase_config:
            self.supabase_config.validate()
        else:
            logger.info(
                "Supabase configuration missing; media stays inline and the deck is not mirrored."
            )


def llm_config_from_env() -> LLMConfig:
    """Build an LLMConfig from GEMINI_* environment variables."""

    config = LLMConfig(api_key=get_env("GEMINI_API_KEY") or get_env("GOOGLE_API_KEY"))
    config.analysis_model = get_env("GEMINI_ANALYSIS_MODEL", config.analysis_model)
    config.image_model = get_env("GEMINI_IMAGE_MODEL", config.image_model)
    config.video_model = get_env("GEMINI_VIDEO_MODEL", config.video_model)
    config.enable_search_grounding = get_env_bool(
        "GEMINI_ENABLE_SEARCH", config.enable_search_grounding
    )
    config.timeout_seconds = get_env_float("GEMINI_TIMEOUT_SECONDS", config.timeout_seconds)
    config.video_timeout_seconds = get_env_float(
        "GEMINI_VIDEO_TIMEOUT_SECONDS", config.video_timeout_seconds
    )
    return config


def pipeline_config_from_env() -> PipelineConfig:
    return PipelineConfig(
        max_concurrent=get_env_int("DECK_MAX_CONCURRENT", 3),
        poll_interval=get_env_float("DECK_POLL_INTERVAL", 0.5),
        generate_assets=get_env_bool("DECK_GENERATE_ASSETS", False),
        max_assets_per_unit=get_env_int("DECK_MAX_ASSETS", 3),
    )


def supabase_config_from_env() -> Optional[SupabaseConfig]:
    """Return Supabase settings when both URL and key are set, else None."""

    url = get_env("SUPABASE_URL")
    key = get_env("SUPABASE_KEY") or get_env("SUPABASE_ANON_KEY")
    if not url and not key:
        return None
    if not url or not key:
        raise ValueError("Both SUPABASE_URL and SUPABASE_KEY are required to enable Supabase")
    return SupabaseConfig(
        url=url,
        key=key,
        bucket=get_env("SUPABASE_BUCKET", "media"),
        schema=get_env("SUPABASE_SCHEMA", "public"),
    )


def storage_config_from_env() -> StorageConfig:
    return StorageConfig(checkpoint_path=Path(get_env("DECK_CHECKPOINT_PATH", "./checkpoints/deck.json")))
