"""Runtime settings for streaming, persistence and pagination."""

import os
from typing import Any, Dict

from dotenv import load_dotenv, find_dotenv
from pydantic import BaseModel, Field

from .logger import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "CHAT_STREAM_"


class StreamSettings(BaseModel):
    """Tunables shared by the orchestrator, the store and the conversation view.

    Attributes:
        ui_interval: Minimum seconds between two UI deliveries while streaming.
        store_debounce: Quiet period in seconds before a debounced store write runs.
        store_growth_threshold: Characters of growth since the last write that arm a store write.
        final_echo_delay: Seconds after the final UI callback before the duplicate callback.
        placeholder_text: Text shown in the assistant message before the first chunk arrives.
        initial_page_size: Messages fetched by the first conversation load.
        page_size: Messages fetched by each backward pagination step.
        load_cooldown: Seconds after a fetch during which another fetch is refused.
        sync_window: Number of most recent messages compared by the sync repair.
        max_context_messages: Number of prior messages sent to the backend as history.
        test_timeout: Seconds a connectivity test may take before it counts as a timeout.
        database_path: Location of the sqlite database file.
    """

    ui_interval: float = Field(default=0.12, ge=0)
    store_debounce: float = Field(default=0.2, ge=0)
    store_growth_threshold: int = Field(default=250, ge=0)
    final_echo_delay: float = Field(default=0.5, ge=0)
    placeholder_text: str = "Thinking..."
    initial_page_size: int = Field(default=15, gt=0)
    page_size: int = Field(default=10, gt=0)
    load_cooldown: float = Field(default=0.5, ge=0)
    sync_window: int = Field(default=10, gt=0)
    max_context_messages: int = Field(default=10, ge=0)
    test_timeout: float = Field(default=10.0, gt=0)
    database_path: str = "chat.db"

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides: Any) -> "StreamSettings":
        """Build settings from environment variables, optionally read from a ``.env`` file.

        Every field can be overridden with ``<prefix><FIELD_NAME>`` in upper case,
        e.g. ``CHAT_STREAM_UI_INTERVAL=0.2``. Explicit keyword overrides win over the environment.

        Args:
            prefix: Prefix of the environment variables to consider.
            **overrides: Field values that take precedence over the environment.

        Returns:
            The validated settings.
        """
        env_file = find_dotenv(usecwd=True)
        if env_file:
            logger.debug(f"Loading settings from {env_file}")
            load_dotenv(env_file)

        values: Dict[str, Any] = {}
        for field_name in cls.model_fields:
            raw = os.getenv(f"{prefix}{field_name.upper()}")
            if raw is not None:
                values[field_name] = raw
        values.update(overrides)
        return cls(**values)
