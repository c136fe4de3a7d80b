"""Expose the OpenAI adapter, its OpenAI compatible vendors and the tool registry."""

from .core import OpenAIAdapter
from .registry import OpenAIToolRegistry
from .vendors import DeepSeekAdapter, GroqAdapter

__all__ = ["OpenAIAdapter", "OpenAIToolRegistry", "DeepSeekAdapter", "GroqAdapter"]
