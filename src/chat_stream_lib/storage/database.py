"""Durable, schema-evolving sqlite storage for conversation messages."""

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .schema import (
    BASE_COLUMNS,
    BASE_SCHEMA,
    JSON_COLUMNS,
    MESSAGE_TYPE_COLUMN,
    OPTIONAL_COLUMNS,
    SCHEMA_VERSION,
)
from ..core.exceptions import PersistenceError
from ..core.logger import get_logger
from ..core.messages import (
    TERMINAL_STATUSES,
    VALID_CONTENT_TYPES,
    VALID_ROLES,
    VALID_STATUSES,
    Message,
    MessageExtras,
    TokenUsage,
)

logger = get_logger(__name__)

T = TypeVar("T")

_EXTRA_COLUMNS = {
    "thinking_content": "thinking_content",
    "token_usage": "token_usage",
    "tool_calls": "tool_calls",
    "invalid_tool_calls": "invalid_tool_calls",
    "metadata": "metadata",
}


class WriteResult(BaseModel):
    """Outcome of a store write.

    Attributes:
        success: Whether the store is in the requested state.
        skipped: The write was a no-op, e.g. the message already existed.
        error: Error text of a failed write.
    """

    success: bool
    skipped: bool = False
    error: Optional[str] = None


class MessageStore:
    """
    Message persistence on top of a single sqlite connection.

    The schema starts with the base columns and widens at runtime: optional columns
    are added the first time a write needs them. Statements run in a worker thread
    and are serialized, so the store can be shared by every coroutine of the process.
    Errors never escape the public read and write methods; they are logged and
    reported through the return value.
    """

    def __init__(self, path: Union[str, Path] = "chat.db"):
        """
        Initializes the store. Nothing is opened until the first use.

        Args:
            path: Database file, or ``:memory:`` for a private in-memory database.
        """
        self.path = str(path)
        self._conn: Optional[sqlite3.Connection] = None
        self._init_task: Optional[asyncio.Future] = None
        self._lock = asyncio.Lock()
        self._columns: Set[str] = set()

    # ---- lifecycle -------------------------------------------------------

    async def initialize(self) -> None:
        """Open the database once.

        Concurrent callers await the same initialization. A failed initialization is
        forgotten so that a later call can try again.

        Raises:
            PersistenceError: If the database cannot be opened or migrated.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(asyncio.to_thread(self._open))
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def close(self) -> None:
        """Close the connection. The store can be initialized again afterwards."""
        if self._init_task is not None and not self._init_task.done():
            await asyncio.gather(self._init_task, return_exceptions=True)
        async with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._init_task = None
            self._columns.clear()

    def _open(self) -> None:
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.executescript(BASE_SCHEMA)
            self._conn = conn
            self._refresh_columns()
            self._add_column(*MESSAGE_TYPE_COLUMN)
            conn.execute(
                "INSERT INTO app_info (key, value) VALUES ('db_version', ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (str(SCHEMA_VERSION),),
            )
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            logger.error(f"Failed to open message database '{self.path}': {e}")
            raise PersistenceError(f"Failed to open message database '{self.path}': {e}") from e
        logger.info(f"Message database ready at '{self.path}' (schema version {SCHEMA_VERSION}).")

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        await self.initialize()
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    async def _guarded(self, action: str, call: Awaitable[T], default: T) -> T:
        try:
            return await call
        except (sqlite3.Error, PersistenceError) as e:
            logger.error(f"Failed to {action}: {e}")
            return default

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("Message database is not open.")
        return self._conn

    # ---- columns ---------------------------------------------------------

    def _refresh_columns(self) -> None:
        rows = self.conn.execute("PRAGMA table_info(messages)").fetchall()
        self._columns = {row["name"] for row in rows}

    def _add_column(self, name: str, definition: str) -> bool:
        if name in self._columns:
            return True
        self._refresh_columns()
        if name in self._columns:
            return True
        try:
            self.conn.execute(f"ALTER TABLE messages ADD COLUMN {name} {definition}")
            logger.info(f"Added column '{name}' to the messages table.")
        except sqlite3.OperationalError as e:
            text = str(e).lower()
            if "duplicate column name" not in text and "already exists" not in text:
                logger.warning(f"Could not add column '{name}': {e}")
                return False
        self._columns.add(name)
        return True

    async def has_column(self, name: str) -> bool:
        """Check whether the messages table currently has a column."""

        def probe() -> bool:
            self._refresh_columns()
            return name in self._columns

        return await self._guarded("probe columns", self._run(probe), False)

    # ---- writes ----------------------------------------------------------

    async def add_message(self, message: Message) -> WriteResult:
        """
        Insert a message unless its id is already stored.

        Args:
            message: The message to insert.

        Returns:
            ``skipped=True`` when the id already existed, including an insert race.
        """
        if message.role not in VALID_ROLES:
            logger.warning(f"Refusing to store message '{message.id}' with invalid role '{message.role}'.")
            return WriteResult(success=False, error=f"Invalid role: {message.role}")
        return await self._write(f"add message '{message.id}'", self._add_message_sync, message)

    def _add_message_sync(self, message: Message) -> WriteResult:
        conn = self.conn
        if conn.execute("SELECT 1 FROM messages WHERE id = ?", (message.id,)).fetchone():
            logger.debug(f"Message '{message.id}' already stored, skipping insert.")
            return WriteResult(success=True, skipped=True)
        try:
            conn.execute(
                "INSERT INTO messages (id, conversationId, role, content, timestamp, contentType, status, error, "
                "messageType) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.conversation_id,
                    message.role,
                    message.content,
                    message.timestamp,
                    message.content_type,
                    message.status,
                    message.error,
                    message.message_type,
                ),
            )
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "unique" in str(e).lower():
                logger.debug(f"Message '{message.id}' inserted concurrently, skipping.")
                return WriteResult(success=True, skipped=True)
            raise
        self._write_extras(message.id, message.extras())
        conn.commit()
        return WriteResult(success=True)

    async def update_message(
        self,
        message_id: str,
        content: str,
        status: str,
        content_type: str = "markdown",
        extras: Optional[MessageExtras] = None,
        error: Optional[str] = None,
    ) -> WriteResult:
        """
        Update content, status and any supplied optional fields of a message.

        Optional fields left as None keep their stored value. Once a message is
        ``sent`` or ``error`` its status is final; a write with another status is skipped.

        Args:
            message_id: Id of the message.
            content: Full content.
            status: New status.
            content_type: ``plain`` or ``markdown``.
            extras: Optional token usage, tool calls, thinking text and metadata.
            error: Optional error text.

        Returns:
            The write result.
        """
        return await self._write(
            f"update message '{message_id}'",
            self._update_message_sync,
            message_id,
            {"content": content, "status": status, "contentType": content_type, "error": error},
            extras,
        )

    async def update_message_status(self, message_id: str, status: str, error: Optional[str] = None) -> WriteResult:
        """Update only the status, and the error text when given."""
        return await self._write(
            f"update status of '{message_id}'",
            self._update_message_sync,
            message_id,
            {"status": status, "error": error},
            None,
        )

    def _update_message_sync(
        self, message_id: str, fields: Dict[str, Any], extras: Optional[MessageExtras]
    ) -> WriteResult:
        conn = self.conn
        row = conn.execute("SELECT status FROM messages WHERE id = ?", (message_id,)).fetchone()
        if row is None:
            return WriteResult(success=False, error=f"Message '{message_id}' not found.")
        if row["status"] in TERMINAL_STATUSES and fields["status"] != row["status"]:
            logger.debug(f"Ignoring '{fields['status']}' write for message '{message_id}' finalized as '{row['status']}'.")
            return WriteResult(success=True, skipped=True)

        values = {k: v for k, v in fields.items() if v is not None}
        assignments = ", ".join(f"{column} = ?" for column in values)
        try:
            conn.execute(f"UPDATE messages SET {assignments} WHERE id = ?", (*values.values(), message_id))
            if extras is not None:
                self._write_extras(message_id, extras)
        except sqlite3.Error:
            conn.rollback()
            raise
        conn.commit()
        return WriteResult(success=True)

    def _write_extras(self, message_id: str, extras: MessageExtras) -> None:
        values: Dict[str, Any] = {}
        for field, column in _EXTRA_COLUMNS.items():
            value = getattr(extras, field)
            if value is None:
                continue
            if not self._add_column(column, OPTIONAL_COLUMNS[column]):
                continue
            if isinstance(value, TokenUsage):
                value = json.dumps(value.model_dump())
            elif column in JSON_COLUMNS:
                value = json.dumps(value, ensure_ascii=False, default=str)
            values[column] = value
        if not values:
            return
        assignments = ", ".join(f"{column} = ?" for column in values)
        self.conn.execute(f"UPDATE messages SET {assignments} WHERE id = ?", (*values.values(), message_id))

    async def _write(self, action: str, func: Callable[..., WriteResult], *args: Any) -> WriteResult:
        try:
            return await self._run(func, *args)
        except (sqlite3.Error, PersistenceError) as e:
            logger.error(f"Failed to {action}: {e}")
            return WriteResult(success=False, error=str(e))

    # ---- deletes ---------------------------------------------------------

    async def delete_message(self, message_id: str) -> WriteResult:
        return await self.delete_messages([message_id])

    async def delete_messages(self, message_ids: Iterable[str]) -> WriteResult:
        """Delete several messages in one transaction."""
        ids = list(message_ids)
        if not ids:
            return WriteResult(success=True, skipped=True)

        def delete() -> WriteResult:
            placeholders = ", ".join("?" for _ in ids)
            self.conn.execute(f"DELETE FROM messages WHERE id IN ({placeholders})", ids)
            self.conn.commit()
            return WriteResult(success=True)

        return await self._write(f"delete {len(ids)} message(s)", delete)

    async def delete_conversation(self, conversation_id: str) -> WriteResult:
        """Delete every message of a conversation."""

        def delete() -> WriteResult:
            self.conn.execute("DELETE FROM messages WHERE conversationId = ?", (conversation_id,))
            self.conn.commit()
            return WriteResult(success=True)

        return await self._write(f"delete conversation '{conversation_id}'", delete)

    # ---- reads -----------------------------------------------------------

    async def get_messages(self, conversation_id: str, limit: int = 50, offset: int = 0) -> List[Message]:
        """
        Read a page of a conversation in ascending timestamp order.

        Args:
            conversation_id: Id of the conversation.
            limit: Maximum number of messages.
            offset: Number of oldest messages to skip.

        Returns:
            The valid messages of the page. Invalid rows are left out.
        """

        def read() -> List[Message]:
            rows = self.conn.execute(
                f"SELECT {self._select_columns()} FROM messages WHERE conversationId = ? "
                "ORDER BY timestamp ASC LIMIT ? OFFSET ?",
                (conversation_id, limit, max(offset, 0)),
            ).fetchall()
            return self._rows_to_messages(rows)

        return await self._guarded(f"read messages of '{conversation_id}'", self._run(read), [])

    async def get_recent_messages(self, conversation_id: str, limit: int = 10) -> List[Message]:
        """Read the newest ``limit`` messages of a conversation, oldest first."""

        def read() -> List[Message]:
            rows = self.conn.execute(
                f"SELECT {self._select_columns()} FROM messages WHERE conversationId = ? "
                "ORDER BY timestamp DESC LIMIT ?",
                (conversation_id, limit),
            ).fetchall()
            return self._rows_to_messages(reversed(rows))

        return await self._guarded(f"read recent messages of '{conversation_id}'", self._run(read), [])

    async def get_message(self, message_id: str) -> Optional[Message]:
        def read() -> Optional[Message]:
            row = self.conn.execute(
                f"SELECT {self._select_columns()} FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
            return self._row_to_message(row) if row is not None else None

        return await self._guarded(f"read message '{message_id}'", self._run(read), None)

    async def count_messages(self, conversation_id: str) -> int:
        def count() -> int:
            row = self.conn.execute(
                "SELECT COUNT(*) AS total FROM messages WHERE conversationId = ?", (conversation_id,)
            ).fetchone()
            return int(row["total"])

        return await self._guarded(f"count messages of '{conversation_id}'", self._run(count), 0)

    async def get_schema_version(self) -> Optional[int]:
        def read() -> Optional[int]:
            row = self.conn.execute("SELECT value FROM app_info WHERE key = 'db_version'").fetchone()
            return int(row["value"]) if row is not None else None

        return await self._guarded("read schema version", self._run(read), None)

    def _select_columns(self) -> str:
        self._refresh_columns()
        columns = list(BASE_COLUMNS)
        columns += [c for c in (MESSAGE_TYPE_COLUMN[0], *OPTIONAL_COLUMNS) if c in self._columns]
        return ", ".join(columns)

    def _rows_to_messages(self, rows: Iterable[sqlite3.Row]) -> List[Message]:
        messages = []
        for row in rows:
            message = self._row_to_message(row)
            if message is not None:
                messages.append(message)
        return messages

    def _row_to_message(self, row: sqlite3.Row) -> Optional[Message]:
        record = dict(row)
        message_id = record.get("id")
        if not message_id or record.get("content") is None or record.get("timestamp") is None:
            logger.warning(f"Skipping invalid message row: {message_id!r}")
            return None
        if record.get("role") not in VALID_ROLES:
            logger.warning(f"Skipping message '{message_id}' with unknown role '{record.get('role')}'.")
            return None

        data: Dict[str, Any] = {
            "id": message_id,
            "conversation_id": record["conversationId"],
            "role": record["role"],
            "content": record["content"],
            "timestamp": record["timestamp"],
            "content_type": _known_value(message_id, "contentType", record.get("contentType"), VALID_CONTENT_TYPES, "plain"),
            "status": _known_value(message_id, "status", record.get("status"), VALID_STATUSES, "sent"),
            "error": record.get("error"),
            "message_type": record.get("messageType") or "normal",
        }
        if record.get("thinking_content"):
            data["thinking_content"] = record["thinking_content"]
        for column in JSON_COLUMNS:
            value = _load_json(message_id, column, record.get(column))
            if value is not None:
                data[column] = value

        try:
            return Message.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Skipping invalid message row '{message_id}': {e}")
            return None


_JSON_SHAPES: Dict[str, Callable[[Any], bool]] = {
    "token_usage": lambda v: isinstance(v, dict) and _is_valid_usage(v),
    "tool_calls": lambda v: isinstance(v, list) and all(isinstance(c, dict) for c in v),
    "invalid_tool_calls": lambda v: isinstance(v, list) and all(isinstance(c, dict) for c in v),
    "metadata": lambda v: isinstance(v, dict),
}


def _is_valid_usage(value: Dict[str, Any]) -> bool:
    try:
        TokenUsage.model_validate(value)
    except ValidationError:
        return False
    return True


def _load_json(message_id: str, column: str, raw: Optional[str]) -> Any:
    """Parse one serialized column, returning None when it is absent or malformed."""
    if raw is None or raw == "":
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not parse field '{column}' of message '{message_id}': {e}")
        return None
    if value is None:
        return None
    if not _JSON_SHAPES[column](value):
        logger.warning(f"Ignoring field '{column}' of message '{message_id}' with unexpected shape.")
        return None
    return value


def _known_value(message_id: str, column: str, value: Any, allowed: Sequence[str], default: str) -> str:
    if value in allowed:
        return value
    if value:
        logger.warning(f"Message '{message_id}' has unknown {column} '{value}', reading it as '{default}'.")
    return default
