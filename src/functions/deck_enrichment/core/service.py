"""Deck enrichment service wiring storage, the state machine and the scheduler."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from src.shared.batch.checkpoint import CheckpointStore
from src.shared.batch.progress import ProgressTracker
from src.shared.db.connection import SupabaseConfig as SharedSupabaseConfig
from src.shared.db.connection import get_supabase_client

from .config import DocumentSource, EnrichmentRequest
from .contracts import SelectionRect, Unit, UnitStage, VideoPlacement
from .db import DeckMirror, SupabaseMediaStore, UnitStore
from .errors import InvalidTransitionError, UnitBusyError, UnitNotFoundError
from .interfaces import EnrichmentModel, MediaStore
from .llm import GeminiClient
from .pipelines import PipelineScheduler
from .processors import UnitStateMachine, recover_interrupted
from .rendering import render_document

logger = logging.getLogger(__name__)

Renderer = Callable[[DocumentSource], List[str]]


class DeckEnrichmentService:
    """Service orchestrating ingestion, enrichment and persistence of a deck."""

    def __init__(
        self,
        request: EnrichmentRequest,
        *,
        model: Optional[EnrichmentModel] = None,
        media_store: Optional[MediaStore] = None,
        supabase_client: Optional[Any] = None,
        renderer: Renderer = render_document,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        request.validate()
        self.request = request
        self._renderer = renderer

        self.model = model or GeminiClient(request.llm_config)

        self.mirror: Optional[DeckMirror] = None
        supabase_cfg = request.supabase_config
        if supabase_cfg:
            if supabase_client is None:
                supabase_client = get_supabase_client(
                    SharedSupabaseConfig(url=supabase_cfg.url, key=supabase_cfg.key, schema=supabase_cfg.schema)
                )
            media_store = media_store or SupabaseMediaStore(supabase_client, supabase_cfg)
            self.mirror = DeckMirror(supabase_client, supabase_cfg)
        else:
            logger.info("Supabase disabled; media stays inline and the deck is only checkpointed locally.")
        self.media_store = media_store

        self.checkpoint = CheckpointStore(request.storage_config.checkpoint_path)
        self.store = UnitStore()
        if self.mirror is not None:
            self.store.subscribe(self.mirror.notify)

        pipeline_cfg = request.pipeline_config
        self.state_machine = UnitStateMachine(
            self.store,
            self.model,
            media_store=self.media_store,
            checkpoint=self.checkpoint,
            llm_config=request.llm_config,
            pipeline_config=pipeline_cfg,
            sleep=sleep,
        )
        self.scheduler = PipelineScheduler(
            self.store,
            self.state_machine,
            max_concurrent=pipeline_cfg.max_concurrent,
            poll_interval=pipeline_cfg.poll_interval,
            on_settled=self._on_unit_settled,
        )
        self.progress = ProgressTracker(total_items=0, label="slides")
        self.action_results: List[Dict[str, Any]] = []

    @property
    def units(self) -> List[Unit]:
        return self.store.snapshot()

    async def process(self) -> List[Unit]:
        """Main entry point: ingest or resume, run to idle, then apply requested actions."""
        if self.request.resume:
            self.resume()
        else:
            await self.ingest(self.request.document)
        units = await self.run()

        if self.request.actions:
            self.action_results = [await self._run_action(action) for action in self.request.actions]
            # Deep analysis hands the unit back to the scheduler for a new visual
            units = await self.run()
        return units

    async def _run_action(self, action: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply one requested action, reporting a rejection instead of aborting the batch."""
        result: Dict[str, Any] = {"type": action.get("type")}
        for key in ("unit_id", "page_index"):
            if key in action:
                result[key] = action[key]
        try:
            unit = await self.apply_action(action)
        except (UnitNotFoundError, UnitBusyError, InvalidTransitionError, ValueError) as exc:
            logger.warning("Action %s rejected: %s", action.get("type"), exc)
            result.update(status="error", error=str(exc))
            return result
        logger.info("Action %s finished with unit %s in %s", action.get("type"), unit.id, unit.stage.value)
        result.update(status="ok", unit_id=unit.id, stage=unit.stage.value, last_error=unit.last_error)
        return result

    async def ingest(self, document: DocumentSource) -> List[Unit]:
        """Render *document* and replace the current project with one unit per page.

        Raises:
            RenderError: If the document cannot be rendered; the current
                project is left untouched
        """
        images = await asyncio.to_thread(self._renderer, document)
        units = [
            Unit(id=uuid.uuid4().hex, sequence_index=index, source_image=image)
            for index, image in enumerate(images)
        ]
        self.checkpoint.clear()
        self.store.replace_all(units)
        result = self.checkpoint.save_project([unit.to_dict() for unit in units])
        if not result.ok:
            logger.warning("Initial project snapshot failed: %s", result.error)
        self._reset_progress(units)
        logger.info("Ingested document with %d pages", len(units))
        return units

    def resume(self) -> List[Unit]:
        """Load the saved project from the local checkpoint.

        Raises:
            ValueError: If no saved project exists
        """
        records = self.checkpoint.load_project()
        if not records:
            raise ValueError(f"No saved project found at {self.checkpoint.filepath}")
        units = [recover_interrupted(Unit.from_dict(record)) for record in records]
        self.store.replace_all(units)
        self._reset_progress(units)
        logger.info(
            "Resumed project with %d slides (%d still to process)",
            len(units),
            sum(1 for unit in units if unit.stage.is_auto_eligible),
        )
        return units

    async def run(self, timeout: Optional[float] = None) -> List[Unit]:
        """Drive the scheduler until no unit has automatic work left."""
        await self.scheduler.run_until_idle(timeout=timeout)
        await self.flush()
        self.progress.log_summary()
        return self.units

    async def flush(self) -> None:
        """Wait for pending checkpoint writes, snapshot the project and sync the mirror."""
        await self.state_machine.drain()
        result = self.checkpoint.save_project([unit.to_dict() for unit in self.units])
        if not result.ok:
            logger.warning("Project snapshot failed: %s", result.error)
        if self.mirror is not None:
            await self.mirror.drain()

    async def generate_video(
        self,
        unit_id: str,
        prompt: str,
        placement: VideoPlacement | str = VideoPlacement.BACKGROUND,
    ) -> Unit:
        unit = await self.state_machine.generate_video(unit_id, prompt, VideoPlacement(placement))
        await self.state_machine.drain()
        return unit

    async def edit_area(self, unit_id: str, rect: SelectionRect, instruction: str) -> Unit:
        unit = await self.state_machine.edit_area(unit_id, rect, instruction)
        await self.state_machine.drain()
        return unit

    async def deep_analyze(self, unit_id: str) -> Unit:
        unit = await self.state_machine.deep_analyze(unit_id)
        await self.state_machine.drain()
        if unit.stage is UnitStage.ANALYZED:
            # The unit goes round the scheduler again and settles a second time
            self.progress.set_total(self.progress.total_items + 1)
        return unit

    def retry(self, unit_id: str) -> Unit:
        unit = self.state_machine.retry(unit_id)
        self.progress.set_total(self.progress.total_items + 1)
        return unit

    async def apply_action(self, action: Mapping[str, Any]) -> Unit:
        """Run one user action described by an API-style mapping.

        The unit is addressed by ``unit_id`` or ``page_index``. Supported
        ``type`` values are ``deep_analyze``, ``edit_area``, ``generate_video``
        and ``retry``.
        """
        if not isinstance(action, Mapping):
            raise ValueError("Each action must be an object")
        kind = action.get("type")
        unit_id = self._resolve_unit_id(action)

        if kind == "deep_analyze":
            return await self.deep_analyze(unit_id)
        if kind == "edit_area":
            rect = action.get("rect")
            if not isinstance(rect, Mapping):
                raise ValueError("edit_area requires a rect object")
            return await self.edit_area(unit_id, SelectionRect.from_dict(rect), str(action.get("instruction", "")))
        if kind == "generate_video":
            prompt = action.get("prompt")
            if not prompt:
                unit = self.store.require(unit_id)
                prompt = (unit.content.suggested_motion if unit.content else None) or "slow cinematic camera motion"
            return await self.generate_video(unit_id, str(prompt), action.get("placement", "background"))
        if kind == "retry":
            return self.retry(unit_id)
        raise ValueError(f"Unknown action type: {kind!r}")

    def response(self, *, include_source_images: bool = False) -> Dict[str, Any]:
        """Summarise the deck for API and CLI output."""
        slides = []
        for unit in self.units:
            payload = unit.to_dict()
            if not include_source_images:
                payload.pop("originalImage", None)
            slides.append(payload)
        rejected = any(result["status"] == "error" for result in self.action_results)
        response: Dict[str, Any] = {
            "status": "partial" if rejected else "success",
            "count": len(slides),
            "slides": slides,
            "stats": self.stats(),
        }
        if self.action_results:
            response["actions"] = list(self.action_results)
        return response

    def _resolve_unit_id(self, action: Mapping[str, Any]) -> str:
        if action.get("unit_id"):
            return str(action["unit_id"])
        page_index = action.get("page_index")
        if page_index is None:
            raise ValueError("Action requires unit_id or page_index")
        for unit in self.units:
            if unit.sequence_index == int(page_index):
                return unit.id
        raise UnitNotFoundError(f"No slide at page_index {page_index}")

    def reset(self) -> None:
        """Discard the whole project, in memory and on disk."""
        self.store.clear()
        self.action_results = []
        result = self.checkpoint.clear()
        if not result.ok:
            logger.warning("Failed to clear checkpoint: %s", result.error)
        self._reset_progress([])

    def stats(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {stage.value: 0 for stage in UnitStage}
        units = self.units
        for unit in units:
            counts[unit.stage.value] += 1
        return {
            "total_units": len(units),
            "stage_counts": counts,
            "in_flight": len(self.scheduler.in_flight),
            "peak_in_flight": self.scheduler.peak_in_flight,
            "progress": self.progress.get_stats(),
        }

    def _reset_progress(self, units: List[Unit]) -> None:
        remaining = sum(1 for unit in units if unit.stage.is_auto_eligible)
        self.progress = ProgressTracker(total_items=remaining, label="slides")

    def _on_unit_settled(self, unit: Unit) -> None:
        if unit.stage not in (UnitStage.COMPLETE, UnitStage.ERROR):
            return
        self.progress.increment(success=unit.stage is UnitStage.COMPLETE)
        if self.progress.should_log():
            self.progress.log_progress(extra_stats={"in_flight": len(self.scheduler.in_flight)})
