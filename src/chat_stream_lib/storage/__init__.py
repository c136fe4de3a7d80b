"""Durable message storage."""

from .database import MessageStore, WriteResult
from .schema import SCHEMA_VERSION, OPTIONAL_COLUMNS

__all__ = ["MessageStore", "WriteResult", "SCHEMA_VERSION", "OPTIONAL_COLUMNS"]
