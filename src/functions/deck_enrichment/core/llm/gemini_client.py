"""Async wrapper around the google-genai SDK for slide enrichment calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from google import genai
from google.genai import types

from ..config import LLMConfig
from ..contracts import GroundingSource, SelectionRect, SlideContent
from ..media import decode_data_uri, to_data_uri
from ..parsing import extract_grounding_sources, normalise_content, parse_model_json
from .prompts import (
    ANALYSIS_PROMPT,
    DEEP_ANALYSIS_PROMPT,
    build_edit_prompt,
    build_video_prompt,
    build_visual_prompt,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ANALYSIS_LAYOUT = "data-evidence"
_DEEP_ANALYSIS_LAYOUT = "strategic-pillars"


class GeminiClientError(RuntimeError):
    """Raised when a Gemini call times out or returns nothing usable."""


class GeminiClient:
    """Single-attempt Gemini calls; retrying is the caller's concern.

    The SDK is synchronous, so every call runs in a worker thread and is bounded
    by ``asyncio.wait_for``. SDK ``APIError`` instances propagate unchanged so
    the retry wrapper can read their status code.
    """

    def __init__(self, config: LLMConfig, *, client: Optional[Any] = None) -> None:
        self.config = config
        self._client = client or genai.Client(api_key=config.api_key)

    async def analyze_slide(self, image: str) -> Tuple[SlideContent, List[GroundingSource]]:
        tools = [types.Tool(google_search=types.GoogleSearch())] if self.config.enable_search_grounding else None
        response = await self._generate(
            self.config.analysis_model,
            [self._image_part(image), ANALYSIS_PROMPT],
            types.GenerateContentConfig(response_mime_type="application/json", tools=tools),
            label="analyze_slide",
        )
        payload = parse_model_json(_response_text(response))
        content = normalise_content(payload, default_layout=_ANALYSIS_LAYOUT)
        return content, extract_grounding_sources(response)

    async def deep_analyze_slide(self, image: str) -> Dict[str, Any]:
        response = await self._generate(
            self.config.analysis_model,
            [self._image_part(image), DEEP_ANALYSIS_PROMPT],
            types.GenerateContentConfig(
                response_mime_type="application/json",
                thinking_config=types.ThinkingConfig(thinking_budget=self.config.deep_thinking_budget),
            ),
            label="deep_analyze_slide",
        )
        payload = parse_model_json(_response_text(response))
        payload.setdefault("consultingLayout", _DEEP_ANALYSIS_LAYOUT)
        return payload

    async def edit_area(self, image: str, rect: SelectionRect, instruction: str) -> Dict[str, Any]:
        response = await self._generate(
            self.config.analysis_model,
            [self._image_part(image), build_edit_prompt(rect, instruction)],
            types.GenerateContentConfig(
                response_mime_type="application/json",
                thinking_config=types.ThinkingConfig(thinking_budget=self.config.edit_thinking_budget),
            ),
            label="edit_area",
        )
        return parse_model_json(_response_text(response))

    async def generate_visual(self, prompt: str) -> Optional[str]:
        """Render an image for *prompt*; returns a PNG data URI or None when no image came back."""
        response = await self._generate(
            self.config.image_model,
            [build_visual_prompt(prompt)],
            None,
            label="generate_visual",
        )
        for part in _response_parts(response):
            inline = getattr(part, "inline_data", None)
            data = getattr(inline, "data", None)
            if not data:
                continue
            if isinstance(data, str):
                return f"data:image/png;base64,{data}"
            return to_data_uri(data, "image/png")
        logger.warning("Image model returned no inline image data")
        return None

    async def generate_video(
        self, image: str, prompt: str, aspect_ratio: str = "16:9"
    ) -> Optional[str]:
        """Animate *image* and return the clip as an MP4 data URI.

        The whole long-running operation, polling included, is bounded by
        ``video_timeout_seconds``.
        """
        image_bytes, mime_type = decode_data_uri(image)

        async def _run() -> Optional[str]:
            operation = await asyncio.to_thread(
                self._client.models.generate_videos,
                model=self.config.video_model,
                prompt=build_video_prompt(prompt),
                image=types.Image(image_bytes=image_bytes, mime_type=mime_type),
                config=types.GenerateVideosConfig(
                    number_of_videos=1,
                    resolution="720p",
                    aspect_ratio=aspect_ratio,
                ),
            )
            while not operation.done:
                await asyncio.sleep(self.config.video_poll_interval)
                operation = await asyncio.to_thread(self._client.operations.get, operation)

            error = getattr(operation, "error", None)
            if error:
                raise GeminiClientError(f"Video operation failed: {error}")

            videos = getattr(getattr(operation, "response", None), "generated_videos", None) or []
            if not videos or getattr(videos[0], "video", None) is None:
                logger.warning("Video operation finished without a generated video")
                return None
            video = videos[0].video
            data = getattr(video, "video_bytes", None)
            if not data:
                data = await asyncio.to_thread(self._client.files.download, file=video)
            return to_data_uri(data, "video/mp4")

        return await self._bounded(_run(), self.config.video_timeout_seconds, "generate_video")

    def _image_part(self, image: str) -> types.Part:
        data, mime_type = decode_data_uri(image)
        return types.Part.from_bytes(data=data, mime_type=mime_type)

    async def _generate(
        self,
        model: str,
        contents: List[Any],
        config: Optional[types.GenerateContentConfig],
        *,
        label: str,
    ) -> Any:
        call: Callable[[], Any] = lambda: self._client.models.generate_content(
            model=model, contents=contents, config=config
        )
        return await self._bounded(asyncio.to_thread(call), self.config.timeout_seconds, label)

    async def _bounded(self, awaitable: Awaitable[T], timeout: float, label: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise GeminiClientError(f"{label} timed out after {timeout:.0f}s") from exc


def _response_text(response: Any) -> str:
    try:
        text = getattr(response, "text", None)
    except ValueError:
        text = None
    return text or ""


def _response_parts(response: Any) -> List[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])
