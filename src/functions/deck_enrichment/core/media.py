"""Helpers for inline (data URI) media."""

from __future__ import annotations

import base64
import binascii
from typing import Tuple

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
}


def to_data_uri(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def is_data_uri(value: str) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def decode_data_uri(value: str) -> Tuple[bytes, str]:
    """Split a ``data:<mime>;base64,<payload>`` URI into bytes and mime type.

    Raises:
        ValueError: If *value* is not a base64 data URI
    """
    if not is_data_uri(value) or "," not in value:
        raise ValueError("Expected a base64 data URI")
    header, payload = value.split(",", 1)
    mime_type = header[5:].split(";", 1)[0] or "application/octet-stream"
    if ";base64" not in header:
        raise ValueError("Only base64 data URIs are supported")
    try:
        return base64.b64decode(payload), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Data URI payload is not valid base64") from exc


def mime_type_for(path: str) -> str:
    """Guess the media type of a storage path from its extension."""
    lowered = path.lower()
    for mime_type, extension in _EXTENSIONS.items():
        if lowered.endswith(extension):
            return mime_type
    return "application/octet-stream"
