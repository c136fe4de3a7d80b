"""Re-export the adapter contract and the configuration models used by every backend."""

from .base import ModelAdapter, BackendConfig, ModelTestResult, ModelTestError, CONTINUE_PROMPT
from .cancellation import CancellationToken

__all__ = [
    "ModelAdapter",
    "BackendConfig",
    "ModelTestResult",
    "ModelTestError",
    "CONTINUE_PROMPT",
    "CancellationToken",
]
