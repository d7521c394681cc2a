"""Unit storage and Supabase persistence."""

from .supabase_store import DeckMirror, SupabaseMediaStore, asset_image_path, slide_image_path, video_path
from .unit_store import UnitStore

__all__ = [
    "DeckMirror",
    "SupabaseMediaStore",
    "UnitStore",
    "asset_image_path",
    "slide_image_path",
    "video_path",
]
