"""Per-unit state machine: stage transitions, enrichment stages and user actions."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from src.shared.batch.checkpoint import CheckpointStore, WriteResult
from src.shared.batch.retry import with_retry

from ..config import LLMConfig, PipelineConfig
from ..contracts import GeneratedAsset, SelectionRect, SlideContent, Unit, UnitStage, VideoPlacement
from ..db.supabase_store import asset_image_path, slide_image_path, video_path
from ..db.unit_store import UnitStore
from ..errors import InvalidTransitionError, UnitBusyError
from ..interfaces import EnrichmentModel, MediaStore, NullMediaStore
from ..media import is_data_uri
from ..parsing import normalise_content

logger = logging.getLogger(__name__)

S = UnitStage

TRANSITIONS: Dict[UnitStage, FrozenSet[UnitStage]] = {
    S.PENDING: frozenset({S.ANALYZING}),
    S.ANALYZING: frozenset({S.ANALYZED, S.ERROR, S.COMPLETE}),
    S.ANALYZED: frozenset({S.GENERATING_IMAGE, S.GENERATING_VIDEO, S.EDITING_AREA, S.ANALYZING}),
    S.GENERATING_IMAGE: frozenset({S.GENERATING_ASSETS, S.COMPLETE, S.ERROR}),
    S.GENERATING_ASSETS: frozenset({S.COMPLETE, S.ERROR}),
    S.COMPLETE: frozenset({S.GENERATING_VIDEO, S.EDITING_AREA, S.ANALYZING}),
    S.GENERATING_VIDEO: frozenset({S.COMPLETE}),
    S.EDITING_AREA: frozenset({S.COMPLETE}),
    S.ERROR: frozenset({S.ANALYZING, S.PENDING}),
}

_EDITABLE_STAGES = frozenset({S.ANALYZED, S.COMPLETE})
_DEEP_ANALYSIS_SOURCES = frozenset({S.ANALYZED, S.COMPLETE, S.ERROR})
_DEEP_ANALYSIS_LAYOUT = "strategic-pillars"
# Video renders are slow and billed per clip, so they get a single attempt
_VIDEO_ATTEMPTS = 1
_WRITE_HISTORY = 500


def can_transition(current: UnitStage, target: UnitStage) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def recover_interrupted(unit: Unit) -> Unit:
    """Map a unit saved mid-stage back to the last stage it had finished.

    Nothing is in flight right after a reload, so an in-progress stage can only
    mean the previous run stopped part-way.
    """
    if not unit.stage.is_in_progress:
        return unit
    if unit.stage is S.ANALYZING:
        target = S.ANALYZED if unit.content is not None else S.PENDING
    elif unit.stage in (S.GENERATING_IMAGE, S.GENERATING_ASSETS):
        target = S.ANALYZED
    else:
        target = S.COMPLETE
    logger.info("Unit %s was interrupted in %s; resuming from %s", unit.id, unit.stage.value, target.value)
    return unit.with_updates(stage=target)


class UnitStateMachine:
    """Owns every stage change of every unit.

    Scheduler work enters through :meth:`advance`; user actions enter through
    :meth:`generate_video`, :meth:`edit_area`, :meth:`deep_analyze` and
    :meth:`retry`. Remote calls go through :func:`with_retry`; the model
    collaborator itself performs a single attempt per call.
    """

    def __init__(
        self,
        store: UnitStore,
        model: EnrichmentModel,
        *,
        media_store: Optional[MediaStore] = None,
        checkpoint: Optional[CheckpointStore] = None,
        llm_config: Optional[LLMConfig] = None,
        pipeline_config: Optional[PipelineConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.model = model
        self.media_store: MediaStore = media_store or NullMediaStore()
        self.checkpoint = checkpoint
        self.llm_config = llm_config or LLMConfig()
        self.pipeline_config = pipeline_config or PipelineConfig()
        self._sleep = sleep
        self._pending_writes: Set[asyncio.Task] = set()
        self._checkpoint_lock = threading.Lock()
        self.write_results: Deque[WriteResult] = deque(maxlen=_WRITE_HISTORY)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(self, unit_id: str, target: UnitStage, **changes: Any) -> Unit:
        """Move a unit to *target*, applying *changes* in the same write."""

        def _move(current: Unit) -> Unit:
            if not can_transition(current.stage, target):
                raise InvalidTransitionError(
                    f"Unit {unit_id}: {current.stage.value} -> {target.value} is not allowed"
                )
            return current.with_updates(stage=target, **changes)

        unit = self.store.update(unit_id, _move)
        logger.debug("Unit %s -> %s", unit_id, target.value)
        self._schedule_checkpoint(unit_id)
        return unit

    def _claim(
        self,
        unit_id: str,
        target: UnitStage,
        allowed_from: Iterable[UnitStage],
        **changes: Any,
    ) -> Unit:
        """Start a user action, refusing units that are already mid-stage."""
        allowed = frozenset(allowed_from)

        def _start(current: Unit) -> Unit:
            if current.stage.is_in_progress:
                raise UnitBusyError(f"Unit {unit_id} is busy ({current.stage.value})")
            if current.stage not in allowed or not can_transition(current.stage, target):
                raise InvalidTransitionError(
                    f"Unit {unit_id}: cannot start {target.value} from {current.stage.value}"
                )
            return current.with_updates(stage=target, **changes)

        unit = self.store.update(unit_id, _start)
        logger.info("Unit %s -> %s (user action)", unit_id, target.value)
        self._schedule_checkpoint(unit_id)
        return unit

    # ------------------------------------------------------------------
    # Scheduler-driven stages
    # ------------------------------------------------------------------

    async def advance(self, unit_id: str) -> None:
        """Perform the next automatic stage for the unit, if it has one."""
        unit = self.store.require(unit_id)
        try:
            if unit.stage is S.PENDING:
                await self._run_analysis(unit)
            elif unit.stage is S.ANALYZED:
                await self._run_visual(unit)
            else:
                logger.debug("Unit %s in stage %s has no automatic step", unit_id, unit.stage.value)
        except Exception as exc:
            self._fail_if_stuck(unit_id, exc)
            raise

    async def _run_analysis(self, unit: Unit) -> None:
        self.transition(unit.id, S.ANALYZING)
        try:
            content, sources = await self._retry(
                lambda: self.model.analyze_slide(unit.source_image),
                f"analyze_slide[{unit.sequence_index}]",
            )
        except Exception as exc:
            logger.error("Analysis failed for unit %s: %s", unit.id, exc)
            self.transition(unit.id, S.ERROR, last_error=str(exc))
            return

        if unit.content is not None:
            # A re-run only replaces the fields the model filled this time
            content = unit.content.merged(content.filled_fields())

        self.transition(
            unit.id,
            S.ANALYZED,
            content=content,
            grounding_sources=list(sources),
            last_error=None,
        )

    async def _run_visual(self, unit: Unit) -> None:
        unit = self.transition(unit.id, S.GENERATING_IMAGE)
        content = unit.content or SlideContent()
        changes: Dict[str, Any] = {"last_error": None}

        if content.visual_prompt:
            try:
                image = await self._retry(
                    lambda: self.model.generate_visual(content.visual_prompt),
                    f"generate_visual[{unit.sequence_index}]",
                    max_attempts=self.llm_config.image_max_attempts,
                )
            except Exception as exc:
                logger.error("Visual generation failed for unit %s: %s", unit.id, exc)
                self.transition(unit.id, S.ERROR, last_error=str(exc))
                return
            if image:
                public_url = await self.media_store.upload(slide_image_path(unit.id), image)
                changes["enriched_image"] = public_url or image
        else:
            logger.info("Unit %s has no visual prompt; skipping image generation", unit.id)

        prompts = content.asset_prompts[: self.pipeline_config.max_assets_per_unit]
        if self.pipeline_config.generate_assets and prompts:
            self.transition(unit.id, S.GENERATING_ASSETS, **changes)
            assets, failures = await self._generate_assets(unit, prompts)
            changes = {"generated_assets": assets, "last_error": None}
            if failures:
                changes["last_error"] = "Asset generation failed: " + "; ".join(failures)

        final = self.transition(unit.id, S.COMPLETE, **changes)
        await self.media_store.log_task(unit.id, final.stage.value, _task_payload(final))

    async def _generate_assets(self, unit: Unit, prompts: List[str]) -> Tuple[List[GeneratedAsset], List[str]]:
        assets: List[GeneratedAsset] = []
        failures: List[str] = []
        for prompt in prompts:
            try:
                image = await self._retry(
                    lambda: self.model.generate_visual(prompt),
                    f"generate_asset[{unit.sequence_index}]",
                    max_attempts=self.llm_config.image_max_attempts,
                )
            except Exception as exc:
                logger.warning("Asset generation failed for unit %s: %s", unit.id, exc)
                failures.append(str(exc))
                continue
            if not image:
                failures.append(f"no image returned for '{prompt[:40]}'")
                continue
            asset_id = uuid.uuid4().hex[:12]
            public_url = await self.media_store.upload(asset_image_path(unit.id, asset_id), image)
            assets.append(GeneratedAsset(id=asset_id, prompt=prompt, image_ref=public_url or image))
        return assets, failures

    def _fail_if_stuck(self, unit_id: str, exc: BaseException) -> None:
        unit = self.store.get(unit_id)
        if unit is None or not unit.stage.is_in_progress:
            return
        if can_transition(unit.stage, S.ERROR):
            self.transition(unit_id, S.ERROR, last_error=str(exc))
        elif can_transition(unit.stage, S.COMPLETE):
            self.transition(unit_id, S.COMPLETE, last_error=str(exc))

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def generate_video(
        self,
        unit_id: str,
        prompt: str,
        placement: VideoPlacement = VideoPlacement.BACKGROUND,
        *,
        aspect_ratio: str = "16:9",
    ) -> Unit:
        placement = VideoPlacement(placement)
        unit = self._claim(unit_id, S.GENERATING_VIDEO, _EDITABLE_STAGES)

        try:
            base_image = await self._video_base_image(unit)
            video = await self._retry(
                lambda: self.model.generate_video(base_image, prompt, aspect_ratio),
                f"generate_video[{unit.sequence_index}]",
                max_attempts=_VIDEO_ATTEMPTS,
            )
            if not video:
                raise RuntimeError("no video was returned")
        except Exception as exc:
            logger.error("Video generation failed for unit %s: %s", unit_id, exc)
            return self.transition(unit_id, S.COMPLETE, last_error=f"Video generation failed: {exc}")

        # Inline clips are uploaded; links returned by the model are stored as-is
        media_ref = video
        if is_data_uri(video):
            media_ref = await self.media_store.upload(video_path(unit_id, placement), video) or video

        changes: Dict[str, Any] = {"video_placement": placement, "last_error": None}
        if placement is VideoPlacement.INTRO:
            changes.update(intro_media_ref=media_ref, transition_type="cinematic")
        else:
            changes["background_media_ref"] = media_ref
        return self.transition(unit_id, S.COMPLETE, **changes)

    async def _video_base_image(self, unit: Unit) -> str:
        """Inline image the video model animates: the visual when present, else the page."""
        enriched = unit.enriched_image
        if not enriched:
            return unit.source_image
        if is_data_uri(enriched):
            return enriched
        # Uploaded visuals are kept as public URLs; the model needs the bytes
        inline = await self.media_store.download(slide_image_path(unit.id))
        if inline:
            return inline
        logger.warning("Could not read back the visual of unit %s; animating the source page", unit.id)
        return unit.source_image

    async def edit_area(self, unit_id: str, rect: SelectionRect, instruction: str) -> Unit:
        if not instruction or not instruction.strip():
            raise ValueError("instruction must not be empty")
        unit = self._claim(unit_id, S.EDITING_AREA, _EDITABLE_STAGES)

        try:
            updates = await self._retry(
                lambda: self.model.edit_area(unit.source_image, rect, instruction),
                f"edit_area[{unit.sequence_index}]",
            )
        except Exception as exc:
            logger.error("Area edit failed for unit %s: %s", unit_id, exc)
            return self.transition(unit_id, S.COMPLETE, last_error=f"Area edit failed: {exc}")

        content = (unit.content or SlideContent()).merged(updates)
        return self.transition(unit_id, S.COMPLETE, content=content, last_error=None)

    async def deep_analyze(self, unit_id: str) -> Unit:
        unit = self._claim(unit_id, S.ANALYZING, _DEEP_ANALYSIS_SOURCES)

        try:
            updates = await self._retry(
                lambda: self.model.deep_analyze_slide(unit.source_image),
                f"deep_analyze[{unit.sequence_index}]",
            )
        except Exception as exc:
            logger.error("Deep analysis failed for unit %s: %s", unit_id, exc)
            message = f"Deep analysis failed: {exc}"
            if unit.content is not None:
                return self.transition(unit_id, S.COMPLETE, last_error=message)
            return self.transition(unit_id, S.ERROR, last_error=message)

        if unit.content is not None:
            content = unit.content.merged(updates)
        else:
            content = normalise_content(updates, default_layout=_DEEP_ANALYSIS_LAYOUT)
        return self.transition(unit_id, S.ANALYZED, content=content, last_error=None)

    def retry(self, unit_id: str) -> Unit:
        """Send a failed unit back to the scheduler."""
        return self._claim(unit_id, S.PENDING, {S.ERROR}, last_error=None)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _retry(self, operation: Callable[[], Awaitable[Any]], name: str, *, max_attempts: Optional[int] = None) -> Any:
        return await with_retry(
            operation,
            max_attempts or self.llm_config.max_attempts,
            initial_delay=self.llm_config.retry_initial_delay,
            sleep=self._sleep,
            operation_name=name,
        )

    def _schedule_checkpoint(self, unit_id: str) -> None:
        if self.checkpoint is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._record_write(self._write_checkpoint(unit_id))
            return
        task = loop.create_task(asyncio.to_thread(self._write_checkpoint, unit_id))
        self._pending_writes.add(task)
        task.add_done_callback(self._on_write_done)

    def _write_checkpoint(self, unit_id: str) -> WriteResult:
        # Read and put under one lock: the last write to finish saw the newest state
        with self._checkpoint_lock:
            unit = self.store.get(unit_id)
            if unit is None:
                return WriteResult.failure(unit_id, "unit no longer exists")
            return self.checkpoint.put(unit.to_dict())

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Checkpoint write raised: %s", error)
            self._record_write(WriteResult.failure("checkpoint", error))
            return
        self._record_write(task.result())

    def _record_write(self, result: WriteResult) -> None:
        if not result.ok:
            logger.warning("Checkpoint write to %s failed: %s", result.target, result.error)
        self.write_results.append(result)

    async def drain(self) -> None:
        """Wait for every scheduled checkpoint write to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)


def _task_payload(unit: Unit) -> Dict[str, Any]:
    enriched = unit.enriched_image
    # Inline images would bloat the task log row
    if enriched and is_data_uri(enriched):
        enriched = None
    return {"status": unit.stage.value, "enhancedImage": enriched, "error": unit.last_error}
