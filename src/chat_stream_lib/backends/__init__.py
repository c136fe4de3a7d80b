"""Backend adapters and the registry that hands them out."""

from .registry import BackendRegistry, DEFAULT_BACKENDS, AdapterFactory, unsupported_backend_message
from .openai_api import OpenAIAdapter, OpenAIToolRegistry, DeepSeekAdapter, GroqAdapter
from .gemini import GeminiAdapter, GeminiToolRegistry

__all__ = [
    "BackendRegistry",
    "DEFAULT_BACKENDS",
    "AdapterFactory",
    "unsupported_backend_message",
    "OpenAIAdapter",
    "OpenAIToolRegistry",
    "DeepSeekAdapter",
    "GroqAdapter",
    "GeminiAdapter",
    "GeminiToolRegistry",
]
