"""Gemini backend adapter."""

from .core import GeminiAdapter
from .registry import GeminiToolRegistry

__all__ = ["GeminiAdapter", "GeminiToolRegistry"]
