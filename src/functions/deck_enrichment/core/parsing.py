"""Recover structured records from unreliable model output.

Gemini is asked for raw JSON but regularly returns it wrapped in markdown
fences, sprinkled with search citation markers such as ``[3]``, surrounded by
prose, or cut off mid-object. :func:`parse_model_json` repairs what it can and
otherwise degrades to an empty record; it never raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

from .contracts import GroundingSource, SlideContent

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```$")
_CITATION_MARKER = re.compile(r"\[\d+\]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_CLOSERS = {"{": "}", "[": "]"}


def parse_model_json(text: Optional[str]) -> Dict[str, Any]:
    """Parse near-JSON model output into a dict.

    Steps run in order and the first one that yields a JSON object wins:

    1. strip markdown code fences, keeping the inner content
    2. strip bracketed numeric citation markers (``[1]``)
    3. keep only the span between the first ``{`` and the last ``}``
    4. drop trailing commas and append missing closing braces
    5. close every unterminated string, array and object

    Args:
        text: Raw model response text

    Returns:
        Parsed mapping, or an empty dict when nothing could be recovered
    """
    if not isinstance(text, str) or not text.strip():
        return {}

    # Keep only tab, newline and carriage return among control characters
    candidate = "".join(ch for ch in text if ord(ch) >= 32 or ch in "\t\n\r")

    cleanups: List[Callable[[str], str]] = [
        _strip_code_fences,
        _strip_citation_markers,
        _slice_outer_object,
    ]
    for cleanup in cleanups:
        candidate = cleanup(candidate)
        parsed = _loads_mapping(candidate)
        if parsed is not None:
            return parsed

    # Repairs are alternatives applied to the cleaned text, not a chain
    for repair in (_balance_braces, _close_open_structures):
        parsed = _loads_mapping(repair(candidate))
        if parsed is not None:
            return parsed

    logger.warning("Could not recover JSON from model output (first 200 chars: %r)", text[:200])
    return {}


def _loads_mapping(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate, strict=False)
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(parsed, dict):
        return parsed
    return None


def _strip_code_fences(text: str) -> str:
    cleaned = _FENCED_BLOCK.sub(r"\1", text).strip()
    # A truncated response can open a fence that never closes
    cleaned = _LEADING_FENCE.sub("", cleaned)
    return _TRAILING_FENCE.sub("", cleaned).strip()


def _strip_citation_markers(text: str) -> str:
    return _CITATION_MARKER.sub("", text)


def _slice_outer_object(text: str) -> str:
    start = text.find("{")
    if start == -1:
        return text
    end = text.rfind("}")
    if end < start:
        return text[start:]
    return text[start:end + 1]


def _balance_braces(text: str) -> str:
    fixed = _TRAILING_COMMA.sub(r"\1", text)
    missing = fixed.count("{") - fixed.count("}")
    return fixed + "}" * max(0, missing)


def _close_open_structures(text: str) -> str:
    """Close whatever a truncated response left open, respecting string literals."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    repaired = text
    if in_string:
        repaired += '"'
    repaired = repaired.rstrip()
    # A dangling separator or key means the last member is incomplete
    while repaired and repaired[-1] in ",:":
        repaired = repaired[:-1].rstrip()
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    return repaired + "".join(reversed(stack))


def normalise_content(
    payload: Mapping[str, Any],
    *,
    default_layout: str = "data-evidence",
) -> SlideContent:
    """Turn a parsed payload into content whose list fields are always lists."""
    return SlideContent.from_payload(payload or {}, default_layout=default_layout)


def extract_grounding_sources(response: Any) -> List[GroundingSource]:
    """Collect web citations from a Gemini response's grounding metadata."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []

    sources: List[GroundingSource] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        title = getattr(web, "title", None)
        uri = getattr(web, "uri", None)
        if title or uri:
            sources.append(GroundingSource(title=title, uri=uri))
    return sources
