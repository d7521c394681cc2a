import asyncio
from typing import List

import pytest

from src.shared.batch.checkpoint import CheckpointStore

from src.functions.deck_enrichment.core.config import (
    EnrichmentRequest,
    LLMConfig,
    PipelineConfig,
    StorageConfig,
)
from src.functions.deck_enrichment.core.contracts import GroundingSource, SlideContent, UnitStage
from src.functions.deck_enrichment.core.errors import RenderError
from src.functions.deck_enrichment.core.service import DeckEnrichmentService

PAGES = ["data:image/jpeg;base64,UDA=", "data:image/jpeg;base64,UDE=", "data:image/jpeg;base64,UDI="]


class FakeModel:
    def __init__(self):
        self.visual_calls = 0
        self.deep_calls = 0

    async def analyze_slide(self, image):
        page = PAGES.index(image)
        content = SlideContent.from_payload({"actionTitle": f"Page {page}", "visualPrompt": f"scene {page}"})
        return content, [GroundingSource(title="src", uri="https://example.com")]

    async def deep_analyze_slide(self, image):
        self.deep_calls += 1
        return {"actionTitle": "Synthesised", "consultingLayout": "strategic-pillars"}

    async def edit_area(self, image, rect, instruction):
        return {"subtitle": instruction}

    async def generate_visual(self, prompt):
        self.visual_calls += 1
        return "data:image/png;base64,Vg=="

    async def generate_video(self, image, prompt, aspect_ratio="16:9"):
        return "data:video/mp4;base64,Vg=="


def fake_renderer(document) -> List[str]:
    return list(PAGES)


def _request(tmp_path, **overrides) -> EnrichmentRequest:
    values = {
        "document": b"%PDF-1.4",
        "llm_config": LLMConfig(api_key="test"),
        "pipeline_config": PipelineConfig(max_concurrent=2, poll_interval=0.001),
        "storage_config": StorageConfig(checkpoint_path=tmp_path / "deck.json"),
    }
    values.update(overrides)
    return EnrichmentRequest(**values)


def test_process_enriches_every_page_and_checkpoints(tmp_path):
    model = FakeModel()
    service = DeckEnrichmentService(_request(tmp_path), model=model, renderer=fake_renderer)

    units = asyncio.run(service.process())

    assert [unit.sequence_index for unit in units] == [0, 1, 2]
    assert all(unit.stage is UnitStage.COMPLETE for unit in units)
    assert [unit.content.action_title for unit in units] == ["Page 0", "Page 1", "Page 2"]
    assert model.visual_calls == 3

    saved = CheckpointStore(tmp_path / "deck.json").load_project()
    assert [record["status"] for record in saved] == ["complete"] * 3

    stats = service.stats()
    assert stats["stage_counts"]["complete"] == 3
    assert stats["progress"]["successful"] == 3
    assert stats["peak_in_flight"] <= 2

    response = service.response()
    assert response["count"] == 3
    assert "originalImage" not in response["slides"][0]


def test_resume_recovers_interrupted_units(tmp_path):
    first = DeckEnrichmentService(_request(tmp_path), model=FakeModel(), renderer=fake_renderer)
    asyncio.run(first.ingest(b"%PDF"))
    unit_id = first.units[1].id
    first.store.apply(
        unit_id,
        stage=UnitStage.GENERATING_IMAGE,
        content=SlideContent.from_payload({"actionTitle": "Saved", "visualPrompt": "scene"}),
    )
    first.checkpoint.put(first.store.get(unit_id).to_dict())

    model = FakeModel()
    resumed = DeckEnrichmentService(
        _request(tmp_path, document=None, resume=True), model=model, renderer=fake_renderer
    )
    units = asyncio.run(resumed.process())

    assert all(unit.stage is UnitStage.COMPLETE for unit in units)
    assert resumed.store.get(unit_id).content.action_title == "Saved"
    assert model.visual_calls == 3


def test_resume_without_saved_project_fails(tmp_path):
    service = DeckEnrichmentService(
        _request(tmp_path, document=None, resume=True), model=FakeModel(), renderer=fake_renderer
    )

    with pytest.raises(ValueError):
        service.resume()


def test_actions_run_after_pipeline(tmp_path):
    model = FakeModel()
    request = _request(
        tmp_path,
        actions=[
            {"type": "deep_analyze", "page_index": 0},
            {"type": "edit_area", "page_index": 1, "rect": {"x": 5, "y": 5, "width": 20, "height": 10},
             "instruction": "Shorter subtitle"},
            {"type": "generate_video", "page_index": 2, "placement": "intro", "prompt": "push in"},
        ],
    )
    service = DeckEnrichmentService(request, model=model, renderer=fake_renderer)

    units = asyncio.run(service.process())

    assert units[0].stage is UnitStage.COMPLETE
    assert units[0].content.action_title == "Synthesised"
    # The deep-analysed slide goes back through visual generation
    assert model.visual_calls == 4
    assert units[1].content.subtitle == "Shorter subtitle"
    assert units[2].transition_type == "cinematic"
    assert units[2].intro_media_ref == "data:video/mp4;base64,Vg=="

    progress = service.stats()["progress"]
    assert progress["processed"] == progress["total"] == 4
    assert service.response()["status"] == "success"


def test_rejected_actions_are_reported_with_the_deck(tmp_path):
    request = _request(
        tmp_path,
        actions=[
            {"type": "retry", "page_index": 9},
            {"type": "retry", "page_index": 0},
            {"type": "generate_video", "page_index": 1, "prompt": "pan"},
        ],
    )
    service = DeckEnrichmentService(request, model=FakeModel(), renderer=fake_renderer)

    units = asyncio.run(service.process())
    response = service.response()

    assert all(unit.stage is UnitStage.COMPLETE for unit in units)
    assert response["status"] == "partial"
    assert response["count"] == 3
    missing, not_failed, video = response["actions"]
    assert missing["status"] == "error"
    assert "page_index 9" in missing["error"]
    assert not_failed["status"] == "error"
    assert video["status"] == "ok"
    assert units[1].background_media_ref == "data:video/mp4;base64,Vg=="


def test_render_failure_leaves_project_untouched(tmp_path):
    def broken_renderer(document):
        raise RenderError("not a pdf")

    service = DeckEnrichmentService(_request(tmp_path), model=FakeModel(), renderer=broken_renderer)

    with pytest.raises(RenderError):
        asyncio.run(service.process())
    assert service.units == []


def test_reset_discards_project(tmp_path):
    service = DeckEnrichmentService(_request(tmp_path), model=FakeModel(), renderer=fake_renderer)
    asyncio.run(service.process())

    service.reset()

    assert service.units == []
    assert CheckpointStore(tmp_path / "deck.json").load_project() is None
