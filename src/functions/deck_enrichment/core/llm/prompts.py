"""Prompt templates for slide analysis, editing and media generation."""

from __future__ import annotations

from textwrap import dedent

from ..contracts import SelectionRect

_CONTENT_SCHEMA = (
    '{ "actionTitle", "subtitle", "keyTakeaways": [], "script", "visualPrompt", '
    '"assetPrompts": [], "consultingLayout", "suggestedMotion", "keywords": [] }'
)

ANALYSIS_PROMPT = dedent(
    f"""
    Act as a Lead Strategy Analyst. Use Google Search to verify any figures or claims in this slide.
    Extract key takeaways and suggest a cinematic motion (e.g. 'slow drone sweep over city',
    'dynamic camera pull back') for a video background.
    Output ONLY RAW JSON. Do not include markdown or citations like [1] in the JSON fields.
    JSON Schema: {_CONTENT_SCHEMA}
    """
).strip()

DEEP_ANALYSIS_PROMPT = dedent(
    f"""
    Perform a complex strategic synthesis. Recommend a specific cinematic transition motion.
    Output ONLY RAW JSON. JSON Schema: {_CONTENT_SCHEMA}
    """
).strip()

VISUAL_STYLE_SUFFIX = ", cinematic 4k, corporate strategy aesthetic"
VIDEO_STYLE_SUFFIX = ", professional slow cinematic camera motion, high-end production"


def build_edit_prompt(rect: SelectionRect, instruction: str) -> str:
    return (
        f"The user has selected a region at X:{rect.x}%, Y:{rect.y}%. "
        f'Instruction: "{instruction}". Output updated JSON parts only.'
    )


def build_visual_prompt(prompt: str) -> str:
    return f"{prompt.strip()}{VISUAL_STYLE_SUFFIX}"


def build_video_prompt(prompt: str) -> str:
    return f"{prompt.strip()}{VIDEO_STYLE_SUFFIX}"
