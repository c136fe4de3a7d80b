"""Table layout of the message database."""

SCHEMA_VERSION = 2

BASE_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
  id TEXT PRIMARY KEY,
  conversationId TEXT NOT NULL,
  role TEXT NOT NULL,
  content TEXT NOT NULL,
  timestamp INTEGER NOT NULL,
  contentType TEXT NOT NULL DEFAULT 'plain',
  status TEXT NOT NULL DEFAULT 'sent' CHECK (status IN ('sending', 'streaming', 'sent', 'error')),
  error TEXT
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation_timestamp
ON messages(conversationId, timestamp);

CREATE TABLE IF NOT EXISTS app_info (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""

BASE_COLUMNS = ("id", "conversationId", "role", "content", "timestamp", "contentType", "status", "error")

# Added when the database is opened.
MESSAGE_TYPE_COLUMN = ("messageType", "TEXT NOT NULL DEFAULT 'normal'")

# Added on first write that needs them.
OPTIONAL_COLUMNS = {
    "thinking_content": "TEXT",
    "token_usage": "TEXT",
    "tool_calls": "TEXT",
    "invalid_tool_calls": "TEXT",
    "metadata": "TEXT",
}

JSON_COLUMNS = ("token_usage", "tool_calls", "invalid_tool_calls", "metadata")
