"""Conversation view, reconciliation with the store and the send flow."""

from .reconciler import ConversationView, SyncReport
from .session import ChatSession

__all__ = ["ConversationView", "SyncReport", "ChatSession"]
