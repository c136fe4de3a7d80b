"""Lookup of backend adapters by backend id."""

from typing import Callable, Dict, List, Mapping, Optional

from chat_stream_lib.core.base import ModelAdapter
from chat_stream_lib.core.exceptions import UNSUPPORTED_BACKEND_MESSAGE
from chat_stream_lib.core.logger import get_logger
from .gemini import GeminiAdapter
from .openai_api import DeepSeekAdapter, GroqAdapter, OpenAIAdapter

logger = get_logger(__name__)

AdapterFactory = Callable[[], ModelAdapter]

DEFAULT_BACKENDS: Dict[str, AdapterFactory] = {
    "openai": OpenAIAdapter,
    "deepseek": DeepSeekAdapter,
    "groq": GroqAdapter,
    "gemini": GeminiAdapter,
}


class BackendRegistry:
    """
    Maps a closed set of backend ids to adapter constructors.

    Unknown ids are not an error: ``get_adapter`` returns None so callers can
    report an unsupported backend as ordinary output.
    """

    def __init__(self, factories: Optional[Mapping[str, AdapterFactory]] = None):
        """
        Args:
            factories: Backend id to constructor mapping. Defaults to the built-in backends.
        """
        source = DEFAULT_BACKENDS if factories is None else factories
        self._factories: Dict[str, AdapterFactory] = {key.lower(): factory for key, factory in source.items()}

    def get_adapter(self, backend_id: str) -> Optional[ModelAdapter]:
        """
        Create a fresh adapter for a backend.

        Args:
            backend_id: Id of the backend, compared case-insensitively.

        Returns:
            A new, uninitialized adapter, or None for an unknown id.
        """
        factory = self._factories.get((backend_id or "").strip().lower())
        if factory is None:
            logger.warning(f"No adapter registered for backend '{backend_id}'.")
            return None
        return factory()

    def is_supported(self, backend_id: str) -> bool:
        return (backend_id or "").strip().lower() in self._factories

    def supported_backends(self) -> List[str]:
        return sorted(self._factories)


def unsupported_backend_message(backend_id: str) -> str:
    """User-facing text for a backend id without adapter."""
    return UNSUPPORTED_BACKEND_MESSAGE.format(backend_id=backend_id)
