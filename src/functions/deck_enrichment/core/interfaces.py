"""Narrow interfaces for the external services the pipeline talks to."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from src.shared.batch.checkpoint import WriteResult

from .contracts import GroundingSource, SelectionRect, SlideContent, Unit


class EnrichmentModel(Protocol):
    """Generative model calls; each method performs a single attempt."""

    async def analyze_slide(self, image: str) -> Tuple[SlideContent, List[GroundingSource]]:
        ...

    async def deep_analyze_slide(self, image: str) -> Dict[str, Any]:
        ...

    async def edit_area(self, image: str, rect: SelectionRect, instruction: str) -> Dict[str, Any]:
        ...

    async def generate_visual(self, prompt: str) -> Optional[str]:
        ...

    async def generate_video(
        self, image: str, prompt: str, aspect_ratio: str = "16:9"
    ) -> Optional[str]:
        ...


class MediaStore(Protocol):
    """Remote object storage. Failures are reported, never raised."""

    async def upload(self, path: str, data_uri: str) -> Optional[str]:
        ...

    async def download(self, path: str) -> Optional[str]:
        ...

    async def log_task(self, unit_id: str, status: str, payload: Dict[str, Any]) -> WriteResult:
        ...


class DeckSnapshotSink(Protocol):
    """Receives the full deck after every change (remote mirror)."""

    def notify(self, units: Sequence[Unit]) -> None:
        ...


class NullMediaStore:
    """Media store used when no remote storage is configured."""

    async def upload(self, path: str, data_uri: str) -> Optional[str]:
        return None

    async def download(self, path: str) -> Optional[str]:
        return None

    async def log_task(self, unit_id: str, status: str, payload: Dict[str, Any]) -> WriteResult:
        return WriteResult.success("noop")
