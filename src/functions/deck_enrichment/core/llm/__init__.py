"""Gemini integration for slide enrichment."""

from .gemini_client import GeminiClient, GeminiClientError

__all__ = ["GeminiClient", "GeminiClientError"]
