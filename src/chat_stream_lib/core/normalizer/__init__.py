"""Chunk normalization and prompt helpers."""

from .chunk_normalizer import (
    REASONING_KEYS,
    THINKING_MARKERS,
    NormalizedChunk,
    normalize_chunk,
    fold_chunks,
    aggregate_usage,
    extract_usage,
    extract_thinking,
)
from .prompts import enhance_system_prompt

__all__ = [
    "REASONING_KEYS",
    "THINKING_MARKERS",
    "NormalizedChunk",
    "normalize_chunk",
    "fold_chunks",
    "aggregate_usage",
    "extract_usage",
    "extract_thinking",
    "enhance_system_prompt",
]
