import asyncio
import json
import threading
import time
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from src.shared.batch.checkpoint import CheckpointStore, WriteResult

from src.functions.deck_enrichment.core.config import LLMConfig, PipelineConfig
from src.functions.deck_enrichment.core.contracts import (
    GroundingSource,
    SelectionRect,
    SlideContent,
    Unit,
    UnitStage,
    VideoPlacement,
)
from src.functions.deck_enrichment.core.db.unit_store import UnitStore
from src.functions.deck_enrichment.core.errors import (
    InvalidTransitionError,
    UnitBusyError,
    UnitNotFoundError,
)
from src.functions.deck_enrichment.core.llm import GeminiClient
from src.functions.deck_enrichment.core.processors.stages import (
    UnitStateMachine,
    recover_interrupted,
)

SOURCE = "data:image/jpeg;base64,AAAA"
VISUAL = "data:image/png;base64,BBBB"
VIDEO = "data:video/mp4;base64,CCCC"


class PermissionDenied(Exception):
    code = 403


class FakeModel:
    def __init__(self):
        self.calls: List[str] = []
        self.analysis_errors: List[Exception] = []
        self.visual_errors: List[Exception] = []
        self.visual_results: List[Optional[str]] = []
        self.video_error: Optional[Exception] = None
        self.edit_result: Dict[str, Any] = {"subtitle": "Edited"}
        self.edit_error: Optional[Exception] = None
        self.deep_result: Dict[str, Any] = {"actionTitle": "Deeper", "consultingLayout": "strategic-pillars"}
        self.deep_error: Optional[Exception] = None

    async def analyze_slide(self, image):
        self.calls.append("analyze")
        if self.analysis_errors:
            raise self.analysis_errors.pop(0)
        content = SlideContent.from_payload(
            {"actionTitle": "Title", "visualPrompt": "city skyline", "assetPrompts": ["icon a", "icon b"]}
        )
        return content, [GroundingSource(title="Src", uri="https://example.com")]

    async def deep_analyze_slide(self, image):
        self.calls.append("deep")
        if self.deep_error:
            raise self.deep_error
        return dict(self.deep_result)

    async def edit_area(self, image, rect, instruction):
        self.calls.append("edit")
        if self.edit_error:
            raise self.edit_error
        return dict(self.edit_result)

    async def generate_visual(self, prompt):
        self.calls.append(f"visual:{prompt}")
        if self.visual_errors:
            raise self.visual_errors.pop(0)
        if self.visual_results:
            return self.visual_results.pop(0)
        return VISUAL

    async def generate_video(self, image, prompt, aspect_ratio="16:9"):
        self.calls.append(f"video:{image}")
        if self.video_error:
            raise self.video_error
        return VIDEO


class FakeMediaStore:
    def __init__(self, fail_uploads: bool = False):
        self.fail_uploads = fail_uploads
        self.uploads: List[str] = []
        self.objects: Dict[str, str] = {}
        self.tasks: List[tuple] = []

    async def upload(self, path, data_uri):
        self.uploads.append(path)
        if self.fail_uploads:
            return None
        self.objects[path] = data_uri
        return f"https://cdn.example.com/{path}"

    async def download(self, path):
        return self.objects.get(path)

    async def log_task(self, unit_id, status, payload):
        self.tasks.append((unit_id, status, payload))
        return WriteResult.success("tasks")


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _unit(stage=UnitStage.PENDING, content=None, **extra) -> Unit:
    return Unit(id="u1", sequence_index=0, source_image=SOURCE, stage=stage, content=content, **extra)


def _content() -> SlideContent:
    return SlideContent.from_payload(
        {"actionTitle": "Title", "subtitle": "Sub", "visualPrompt": "city skyline", "assetPrompts": ["icon a", "icon b"]}
    )


def _machine(unit: Unit, model=None, media=None, checkpoint=None, generate_assets=False):
    store = UnitStore([unit])
    sleep = RecordingSleep()
    machine = UnitStateMachine(
        store,
        model or FakeModel(),
        media_store=media,
        checkpoint=checkpoint,
        llm_config=LLMConfig(api_key="test"),
        pipeline_config=PipelineConfig(generate_assets=generate_assets),
        sleep=sleep,
    )
    return store, machine, sleep


def test_analysis_moves_pending_unit_to_analyzed():
    store, machine, _ = _machine(_unit())

    asyncio.run(machine.advance("u1"))

    unit = store.get("u1")
    assert unit.stage is UnitStage.ANALYZED
    assert unit.content.action_title == "Title"
    assert unit.content.key_takeaways == []
    assert unit.grounding_sources == [GroundingSource(title="Src", uri="https://example.com")]
    assert unit.last_error is None


def test_analysis_exhausting_retries_lands_in_error():
    model = FakeModel()
    model.analysis_errors = [RuntimeError("503 one"), RuntimeError("503 two"), RuntimeError("503 three")]
    store, machine, sleep = _machine(_unit(), model=model)

    asyncio.run(machine.advance("u1"))

    unit = store.get("u1")
    assert unit.stage is UnitStage.ERROR
    assert unit.last_error == "503 three"
    assert unit.content is None
    assert model.calls.count("analyze") == 3
    assert sleep.delays == [1.0, 2.0]


def test_fatal_analysis_error_is_not_retried():
    model = FakeModel()
    model.analysis_errors = [PermissionDenied("forbidden")]
    store, machine, sleep = _machine(_unit(), model=model)

    asyncio.run(machine.advance("u1"))

    assert store.get("u1").stage is UnitStage.ERROR
    assert model.calls.count("analyze") == 1
    assert sleep.delays == []


def test_visual_stage_uploads_image_and_logs_task():
    media = FakeMediaStore()
    store, machine, _ = _machine(_unit(UnitStage.ANALYZED, _content()), media=media)

    asyncio.run(machine.advance("u1"))

    unit = store.get("u1")
    assert unit.stage is UnitStage.COMPLETE
    assert unit.enriched_image == "https://cdn.example.com/slides/u1_bg.png"
    assert unit.generated_assets == []
    assert media.tasks[0][:2] == ("u1", "complete")


def test_upload_failure_keeps_inline_image():
    store, machine, _ = _machine(_unit(UnitStage.ANALYZED, _content()), media=FakeMediaStore(fail_uploads=True))

    asyncio.run(machine.advance("u1"))

    unit = store.get("u1")
    assert unit.stage is UnitStage.COMPLETE
    assert unit.enriched_image == VISUAL


def test_visual_failure_uses_image_attempt_budget():
    model = FakeModel()
    model.visual_errors = [RuntimeError("overloaded"), RuntimeError("still overloaded")]
    store, machine, sleep = _machine(_unit(UnitStage.ANALYZED, _content()), model=model)

    asyncio.run(machine.advance("u1"))

    unit = store.get("u1")
    assert unit.stage is UnitStage.ERROR
    assert unit.last_error == "still overloaded"
    assert unit.content == _content()
    assert sleep.delays == [1.0]


def test_asset_failures_are_informational():
    model = FakeModel()
    model.visual_results = [VISUAL, VISUAL, None]
    store, machine, _ = _machine(
        _unit(UnitStage.ANALYZED, _content()), model=model, media=FakeMediaStore(), generate_assets=True
    )

    asyncio.run(machine.advance("u1"))

    unit = store.get("u1")
    assert unit.stage is UnitStage.COMPLETE
    assert [asset.prompt for asset in unit.generated_assets] == ["icon a"]
    assert unit.generated_assets[0].image_ref.startswith("https://cdn.example.com/slides/u1_asset_")
    assert unit.last_error.startswith("Asset generation failed")


def test_advance_ignores_units_without_automatic_step():
    model = FakeModel()
    store, machine, _ = _machine(_unit(UnitStage.COMPLETE, _content()), model=model)

    asyncio.run(machine.advance("u1"))

    assert store.get("u1").stage is UnitStage.COMPLETE
    assert model.calls == []


def test_transition_table_is_enforced():
    store, machine, _ = _machine(_unit())

    with pytest.raises(InvalidTransitionError):
        machine.transition("u1", UnitStage.COMPLETE)
    assert store.get("u1").stage is UnitStage.PENDING


def test_video_failure_returns_unit_to_complete():
    model = FakeModel()
    model.video_error = RuntimeError("quota")
    store, machine, _ = _machine(_unit(UnitStage.COMPLETE, _content()), model=model)

    unit = asyncio.run(machine.generate_video("u1", "pan", VideoPlacement.BACKGROUND))

    assert unit.stage is UnitStage.COMPLETE
    assert unit.last_error == "Video generation failed: quota"
    assert unit.background_media_ref is None


def test_intro_video_sets_cinematic_transition():
    model = FakeModel()
    media = FakeMediaStore()
    store, machine, _ = _machine(
        _unit(UnitStage.COMPLETE, _content(), enriched_image=VISUAL), model=model, media=media
    )

    unit = asyncio.run(machine.generate_video("u1", "pan", VideoPlacement.INTRO))

    assert unit.stage is UnitStage.COMPLETE
    assert unit.intro_media_ref == "https://cdn.example.com/videos/u1_intro.mp4"
    assert unit.transition_type == "cinematic"
    assert unit.video_placement is VideoPlacement.INTRO
    assert model.calls == [f"video:{VISUAL}"]


def test_user_actions_respect_soft_lock():
    store, machine, _ = _machine(_unit(UnitStage.GENERATING_IMAGE, _content()))

    with pytest.raises(UnitBusyError):
        asyncio.run(machine.edit_area("u1", SelectionRect(0, 0, 10, 10), "shorter title"))
    with pytest.raises(UnitNotFoundError):
        asyncio.run(machine.deep_analyze("nope"))


def test_edit_area_merges_only_returned_fields():
    store, machine, _ = _machine(_unit(UnitStage.COMPLETE, _content()))

    unit = asyncio.run(machine.edit_area("u1", SelectionRect(10, 20, 30, 40), "rename subtitle"))

    assert unit.stage is UnitStage.COMPLETE
    assert unit.content.subtitle == "Edited"
    assert unit.content.action_title == "Title"
    assert unit.content.asset_prompts == ["icon a", "icon b"]


def test_edit_area_failure_never_leaves_unit_editing():
    model = FakeModel()
    model.edit_error = RuntimeError("bad gateway")
    store, machine, _ = _machine(_unit(UnitStage.ANALYZED, _content()), model=model)

    unit = asyncio.run(machine.edit_area("u1", SelectionRect(10, 20, 30, 40), "rename"))

    assert unit.stage is UnitStage.COMPLETE
    assert unit.content == _content()
    assert "bad gateway" in unit.last_error


def test_deep_analysis_merges_over_existing_content():
    store, machine, _ = _machine(_unit(UnitStage.COMPLETE, _content(), enriched_image=VISUAL))

    unit = asyncio.run(machine.deep_analyze("u1"))

    assert unit.stage is UnitStage.ANALYZED
    assert unit.content.action_title == "Deeper"
    assert unit.content.subtitle == "Sub"
    assert unit.content.consulting_layout == "strategic-pillars"
    assert unit.enriched_image == VISUAL


def test_deep_analysis_failure_depends_on_existing_content():
    model = FakeModel()
    model.deep_error = RuntimeError("unavailable")
    _, with_content, _ = _machine(_unit(UnitStage.COMPLETE, _content()), model=model)
    _, without_content, _ = _machine(_unit(UnitStage.ERROR), model=model)

    kept = asyncio.run(with_content.deep_analyze("u1"))
    failed = asyncio.run(without_content.deep_analyze("u1"))

    assert kept.stage is UnitStage.COMPLETE
    assert kept.last_error.startswith("Deep analysis failed")
    assert failed.stage is UnitStage.ERROR


def test_retry_sends_error_unit_back_to_pending():
    store, machine, _ = _machine(_unit(UnitStage.ERROR, last_error="boom"))

    unit = machine.retry("u1")

    assert unit.stage is UnitStage.PENDING
    assert unit.last_error is None
    with pytest.raises(InvalidTransitionError):
        machine.retry("u1")


def test_transitions_are_checkpointed(tmp_path):
    checkpoint = CheckpointStore(tmp_path / "deck.json")
    store, machine, _ = _machine(_unit(), checkpoint=checkpoint)

    async def scenario():
        await machine.advance("u1")
        await machine.drain()

    asyncio.run(scenario())

    saved = CheckpointStore(tmp_path / "deck.json").get("u1")
    assert saved["status"] == "analyzed"
    assert saved["analysis"]["actionTitle"] == "Title"
    assert all(result.ok for result in machine.write_results)


@pytest.mark.parametrize(
    ("stage", "has_content", "expected"),
    [
        (UnitStage.ANALYZING, False, UnitStage.PENDING),
        (UnitStage.ANALYZING, True, UnitStage.ANALYZED),
        (UnitStage.GENERATING_IMAGE, True, UnitStage.ANALYZED),
        (UnitStage.GENERATING_VIDEO, True, UnitStage.COMPLETE),
        (UnitStage.ERROR, False, UnitStage.ERROR),
    ],
)
def test_recover_interrupted(stage, has_content, expected):
    unit = _unit(stage, _content() if has_content else None)

    assert recover_interrupted(unit).stage is expected


class FakeGenaiModels:
    """Stands in for ``genai.Client().models`` behind a real GeminiClient."""

    def __init__(self):
        self.video_images: List[bytes] = []

    def generate_content(self, *, model, contents, config):
        if model == LLMConfig().image_model:
            part = SimpleNamespace(inline_data=SimpleNamespace(data=b"rendered-visual"))
            return SimpleNamespace(text=None, candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
        return SimpleNamespace(text=json.dumps({"actionTitle": "Title", "visualPrompt": "city skyline"}), candidates=[])

    def generate_videos(self, *, model, prompt, image, config):
        self.video_images.append(image.image_bytes)
        video = SimpleNamespace(video_bytes=b"clip")
        return SimpleNamespace(
            done=True, error=None, response=SimpleNamespace(generated_videos=[SimpleNamespace(video=video)])
        )


def test_video_animates_uploaded_visual():
    models = FakeGenaiModels()
    client = GeminiClient(
        LLMConfig(api_key="test"), client=SimpleNamespace(models=models, operations=SimpleNamespace(get=None))
    )
    media = FakeMediaStore()
    store, machine, _ = _machine(_unit(), model=client, media=media)

    async def scenario():
        await machine.advance("u1")
        await machine.advance("u1")
        return await machine.generate_video("u1", "pan")

    unit = asyncio.run(scenario())

    assert unit.enriched_image == "https://cdn.example.com/slides/u1_bg.png"
    assert unit.stage is UnitStage.COMPLETE
    assert unit.last_error is None
    assert unit.background_media_ref == "https://cdn.example.com/videos/u1_background.mp4"
    assert models.video_images == [b"rendered-visual"]


def test_video_falls_back_to_source_when_visual_is_unreadable():
    model = FakeModel()
    store, machine, _ = _machine(
        _unit(UnitStage.COMPLETE, _content(), enriched_image="https://cdn.example.com/slides/u1_bg.png"),
        model=model,
        media=FakeMediaStore(),
    )

    unit = asyncio.run(machine.generate_video("u1", "pan"))

    assert unit.last_error is None
    assert model.calls == [f"video:{SOURCE}"]


def test_analysis_rerun_keeps_fields_the_model_left_out():
    existing = SlideContent.from_payload(
        {"actionTitle": "Old title", "subtitle": "Keep me", "note": "from the speaker"}
    )
    store, machine, _ = _machine(_unit(UnitStage.ERROR, existing, last_error="image failed"))

    machine.retry("u1")
    asyncio.run(machine.advance("u1"))

    content = store.get("u1").content
    assert store.get("u1").stage is UnitStage.ANALYZED
    assert content.action_title == "Title"
    assert content.visual_prompt == "city skyline"
    assert content.subtitle == "Keep me"
    assert content.extras == {"note": "from the speaker"}


class SlowCheckpoint:
    def __init__(self):
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.saved: List[str] = []

    def put(self, record):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.01)
        self.saved.append(record["status"])
        with self.lock:
            self.active -= 1
        return WriteResult.success("checkpoint")


def test_checkpoint_writes_for_a_unit_are_serialised():
    checkpoint = SlowCheckpoint()
    store, machine, _ = _machine(_unit(), checkpoint=checkpoint)

    async def scenario():
        machine.transition("u1", UnitStage.ANALYZING)
        machine.transition("u1", UnitStage.ERROR, last_error="boom")
        machine.transition("u1", UnitStage.PENDING, last_error=None)
        await machine.drain()

    asyncio.run(scenario())

    assert checkpoint.max_active == 1
    assert len(checkpoint.saved) == 3
    assert checkpoint.saved[-1] == "pending"
