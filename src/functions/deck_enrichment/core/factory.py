"""Factories for constructing deck enrichment requests."""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import (
    EnrichmentRequest,
    LLMConfig,
    PipelineConfig,
    StorageConfig,
    SupabaseConfig,
    llm_config_from_env,
    pipeline_config_from_env,
    storage_config_from_env,
    supabase_config_from_env,
)

_LLM_FIELDS = (
    "analysis_model",
    "image_model",
    "video_model",
    "enable_search_grounding",
    "deep_thinking_budget",
    "edit_thinking_budget",
    "timeout_seconds",
    "video_timeout_seconds",
    "video_poll_interval",
    "max_attempts",
    "image_max_attempts",
    "retry_initial_delay",
)


def _decode_document(payload: Dict[str, Any]) -> Optional[bytes | str]:
    encoded = payload.get("document_base64")
    if encoded:
        if not isinstance(encoded, str):
            raise ValueError("document_base64 must be a string")
        if encoded.startswith("data:"):
            encoded = encoded.split(",", 1)[-1]
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("document_base64 is not valid base64") from exc
    path = payload.get("document_path")
    if path:
        return str(path)
    return None


def _llm_from_payload(llm_payload: Any) -> LLMConfig:
    config = llm_config_from_env()
    if llm_payload is None:
        return config
    if not isinstance(llm_payload, dict):
        raise ValueError("llm configuration must be an object when provided")
    if llm_payload.get("api_key"):
        config.api_key = llm_payload["api_key"]
    for name in _LLM_FIELDS:
        if name in llm_payload:
            setattr(config, name, llm_payload[name])
    return config


def _pipeline_from_payload(pipeline_payload: Any) -> PipelineConfig:
    config = pipeline_config_from_env()
    if pipeline_payload is None:
        return config
    if not isinstance(pipeline_payload, dict):
        raise ValueError("pipeline configuration must be an object when provided")
    if "max_concurrent" in pipeline_payload:
        config.max_concurrent = int(pipeline_payload["max_concurrent"])
    if "poll_interval" in pipeline_payload:
        config.poll_interval = float(pipeline_payload["poll_interval"])
    if "generate_assets" in pipeline_payload:
        config.generate_assets = bool(pipeline_payload["generate_assets"])
    if "max_assets_per_unit" in pipeline_payload:
        config.max_assets_per_unit = int(pipeline_payload["max_assets_per_unit"])
    return config


def _supabase_from_payload(supabase_payload: Any) -> Optional[SupabaseConfig]:
    if supabase_payload is None:
        return supabase_config_from_env()
    if not isinstance(supabase_payload, dict):
        raise ValueError("supabase configuration must be an object when provided")
    if supabase_payload.get("enabled") is False:
        return None

    url = supabase_payload.get("url")
    key = supabase_payload.get("key")
    if not url and not key:
        return supabase_config_from_env()
    if not url or not key:
        raise ValueError(
            "Both supabase.url and supabase.key are required when enabling Supabase persistence"
        )
    return SupabaseConfig(
        url=url,
        key=key,
        bucket=supabase_payload.get("bucket", "media"),
        deck_table=supabase_payload.get("deck_table", "lumina_decks"),
        task_table=supabase_payload.get("task_table", "lumina_tasks"),
        deck_id=supabase_payload.get("deck_id", "current_project"),
        schema=supabase_payload.get("schema", "public"),
        mirror_debounce_seconds=float(supabase_payload.get("mirror_debounce_seconds", 3.0)),
    )


def _actions_from_payload(actions_payload: Any) -> List[Dict[str, Any]]:
    if actions_payload is None:
        return []
    if not isinstance(actions_payload, list):
        raise ValueError("actions must be a list when provided")
    return [dict(action) if isinstance(action, dict) else action for action in actions_payload]


def request_from_payload(payload: Dict[str, Any]) -> EnrichmentRequest:
    """Build an EnrichmentRequest from an API-style payload."""

    if not isinstance(payload, dict):
        raise ValueError("Request payload must be a JSON object")

    storage_payload = payload.get("storage")
    storage_config = storage_config_from_env()
    if isinstance(storage_payload, dict) and storage_payload.get("checkpoint_path"):
        storage_config = StorageConfig(checkpoint_path=Path(storage_payload["checkpoint_path"]))

    request_model = EnrichmentRequest(
        document=_decode_document(payload),
        resume=bool(payload.get("resume", False)),
        llm_config=_llm_from_payload(payload.get("llm")),
        pipeline_config=_pipeline_from_payload(payload.get("pipeline")),
        supabase_config=_supabase_from_payload(payload.get("supabase")),
        storage_config=storage_config,
        actions=_actions_from_payload(payload.get("actions")),
        include_source_images=bool(payload.get("include_source_images", False)),
    )
    request_model.validate()
    return request_model
