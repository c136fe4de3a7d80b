"""In-memory view of a conversation, kept consistent with the message store."""

import time
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from chat_stream_lib.core.config import StreamSettings
from chat_stream_lib.core.logger import get_logger
from chat_stream_lib.core.messages import Message
from chat_stream_lib.storage import MessageStore, WriteResult

logger = get_logger(__name__)


class SyncReport(BaseModel):
    """Result of ``ConversationView.sync_repair``.

    Attributes:
        checked: Number of in-memory messages compared with the store.
        repaired: Ids that were missing in the store and have been written again.
        failed: Ids that were missing in the store and could not be written.
        missing_in_view: Ids among the newest stored messages that the view did not hold.
    """

    checked: int = 0
    repaired: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    missing_in_view: List[str] = Field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not (self.repaired or self.failed or self.missing_in_view)


class ConversationView:
    """
    Ordered, id-unique set of the messages of one conversation.

    The first load only fetches the newest messages. Older messages are pulled in
    page by page with ``load_more``. Messages are kept in ascending timestamp order,
    newest last.
    """

    def __init__(self, store: MessageStore, conversation_id: str, settings: Optional[StreamSettings] = None):
        """
        Args:
            store: The message store.
            conversation_id: Id of the conversation shown by this view.
            settings: Page sizes, load cooldown and sync window.
        """
        self.store = store
        self.conversation_id = conversation_id
        self.settings = settings or StreamSettings()

        self.messages: List[Message] = []
        self.all_loaded = False
        self.is_loading = False
        self._last_load: Optional[float] = None

    @property
    def message_ids(self) -> List[str]:
        return [m.id for m in self.messages]

    def get(self, message_id: str) -> Optional[Message]:
        return next((m for m in self.messages if m.id == message_id), None)

    async def load_initial(self) -> List[Message]:
        """
        Replace the view with the newest ``initial_page_size`` messages.

        Returns:
            The loaded messages, oldest first.
        """
        self.is_loading = True
        try:
            total = await self.store.count_messages(self.conversation_id)
            size = self.settings.initial_page_size
            offset = max(0, total - size)
            rows = await self.store.get_messages(self.conversation_id, limit=size, offset=offset)
            self.messages = []
            self._merge(rows)
            self.all_loaded = offset == 0
            logger.debug(
                f"Loaded {len(self.messages)} of {total} messages of conversation '{self.conversation_id}'."
            )
        finally:
            self.is_loading = False
            self._last_load = time.monotonic()
        return list(self.messages)

    async def load_more(self) -> List[Message]:
        """
        Load the next page of older messages.

        The request is refused while another load is running, within the cooldown
        after the previous load, and once everything has been loaded.

        Returns:
            The messages that were newly added to the view.
        """
        if self.is_loading or self.all_loaded:
            return []
        if self._last_load is not None and time.monotonic() - self._last_load < self.settings.load_cooldown:
            logger.debug("Ignoring load_more request during cooldown.")
            return []

        self.is_loading = True
        try:
            total = await self.store.count_messages(self.conversation_id)
            remaining = total - len(self.messages)
            if remaining <= 0:
                self.all_loaded = True
                return []
            offset = max(0, remaining - self.settings.page_size)
            rows = await self.store.get_messages(self.conversation_id, limit=remaining - offset, offset=offset)
            added = self._merge(rows)
            if offset == 0:
                self.all_loaded = True
            logger.debug(f"Loaded {len(added)} older messages, all_loaded={self.all_loaded}.")
            return added
        finally:
            self.is_loading = False
            self._last_load = time.monotonic()

    def add_message(self, message: Message) -> None:
        """Insert or replace a message by id and keep the view ordered."""
        self._merge([message])

    async def remove_messages(self, message_ids: Iterable[str]) -> WriteResult:
        """Delete messages from the store and from the view."""
        ids = set(message_ids)
        result = await self.store.delete_messages(ids)
        if not result.success:
            logger.warning(f"Deleting messages from the store failed: {result.error}")
        self.messages = [m for m in self.messages if m.id not in ids]
        return result

    async def clear(self) -> WriteResult:
        """Delete the whole conversation."""
        result = await self.store.delete_conversation(self.conversation_id)
        self.messages = []
        self.all_loaded = True
        return result

    async def refresh(self) -> List[Message]:
        """Drop the in-memory state and load the newest messages again."""
        self.messages = []
        self.all_loaded = False
        self._last_load = None
        return await self.load_initial()

    def latest_message_pair(self) -> Tuple[Optional[Message], Optional[Message]]:
        """Return the newest user message and the assistant reply that follows it."""
        for index in range(len(self.messages) - 1, -1, -1):
            message = self.messages[index]
            if message.role == "user":
                reply = next((m for m in self.messages[index + 1 :] if m.role == "assistant"), None)
                return message, reply
        return None, None

    async def sync_repair(self) -> SyncReport:
        """
        Compare the newest messages of the view with the newest stored ones.

        Messages held in memory but missing in the store are written again. Newer
        stored messages that the view lacks are merged into the view.

        Returns:
            What was compared and repaired.
        """
        window = self.settings.sync_window
        tail = self.messages[-window:]
        stored = await self.store.get_recent_messages(self.conversation_id, window)
        stored_ids = {m.id for m in stored}

        report = SyncReport(checked=len(tail))
        for message in tail:
            if message.id in stored_ids:
                continue
            result = await self.store.add_message(message)
            if not result.success:
                report.failed.append(message.id)
            elif not result.skipped:
                report.repaired.append(message.id)

        known = set(self.message_ids)
        report.missing_in_view = [m.id for m in stored if m.id not in known]
        if report.missing_in_view:
            logger.info(f"Merging {len(report.missing_in_view)} stored messages missing from the view.")
            self._merge(m for m in stored if m.id in report.missing_in_view)
        if report.repaired or report.failed:
            logger.info(f"Sync repair re-persisted {len(report.repaired)}, failed {len(report.failed)} message(s).")
        return report

    def _merge(self, messages: Iterable[Message]) -> List[Message]:
        by_id: Dict[str, Message] = {m.id: m for m in self.messages}
        added: List[Message] = []
        for message in messages:
            if message.id not in by_id:
                added.append(message)
            by_id[message.id] = message
        self.messages = sorted(by_id.values(), key=lambda m: m.timestamp)
        return added
