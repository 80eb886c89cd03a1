"""
Conversation Store - Persists conversations, their messages and flow state.

Handles:
- Conversation creation with a title derived from the first message
- Message rows for user input and node output
- Flow state snapshots per conversation
"""
import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from ..errors import NotFoundError
from ..models.state import FlowState

logger = structlog.get_logger()

TITLE_LENGTH = 50


@dataclass
class ConversationMessage:
    """A message row of a conversation."""

    role: str
    content: str
    node_id: str | None = None
    node_type: str | None = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Conversation:
    """A conversation record."""

    id: str
    flow_id: str
    title: str
    flow_state: FlowState | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    last_message_at: datetime | None = None
    messages: list[ConversationMessage] = field(default_factory=list)


def conversation_title(message: ConversationMessage | None) -> str:
    """Title for a new conversation."""
    if message and message.content:
        suffix = "..." if len(message.content) > TITLE_LENGTH else ""
        return f"Conversation about: {message.content[:TITLE_LENGTH]}{suffix}"
    return f"Conversation {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S')}"


class ConversationStore(ABC):
    """
    Abstract conversation store.

    Turns of one conversation must be serialized by the caller.
    """

    @abstractmethod
    async def load(self, conversation_id: str) -> FlowState | None:
        """Stored flow state of a conversation, or None if unknown."""
        pass

    @abstractmethod
    async def save(
        self,
        flow_state: FlowState,
        flow_id: str,
        conversation_id: str | None = None,
        message: ConversationMessage | None = None,
    ) -> str:
        """
        Persist a flow state.

        Creates the conversation when ``conversation_id`` is None or
        unknown, otherwise replaces its flow state. ``message`` is appended
        as a message row.

        Returns:
            Conversation id
        """
        pass

    @abstractmethod
    async def add_message(self, conversation_id: str, message: ConversationMessage) -> None:
        """
        Append a message row.

        Raises:
            NotFoundError: unknown conversation
        """
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Conversation with its messages, or None if unknown."""
        pass

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> list[ConversationMessage]:
        pass

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation; returns False if it did not exist."""
        pass


class InMemoryConversationStore(ConversationStore):
    """In-memory store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    async def load(self, conversation_id: str) -> FlowState | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.flow_state is None:
            return None
        return conversation.flow_state.copy()

    async def save(
        self,
        flow_state: FlowState,
        flow_id: str,
        conversation_id: str | None = None,
        message: ConversationMessage | None = None,
    ) -> str:
        now = datetime.utcnow()
        conversation = self._conversations.get(conversation_id) if conversation_id else None

        if conversation is None:
            conversation = Conversation(
                id=conversation_id or str(uuid.uuid4()),
                flow_id=flow_id,
                title=conversation_title(message),
            )
            self._conversations[conversation.id] = conversation
            logger.info("conversation_created", conversation_id=conversation.id, flow_id=flow_id)

        conversation.flow_state = flow_state.copy()
        conversation.updated_at = now

        if message and message.content:
            conversation.messages.append(message)
            conversation.last_message_at = now

        return conversation.id

    async def add_message(self, conversation_id: str, message: ConversationMessage) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")

        conversation.messages.append(message)
        conversation.last_message_at = message.timestamp

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def list_messages(self, conversation_id: str) -> list[ConversationMessage]:
        conversation = self._conversations.get(conversation_id)
        return list(conversation.messages) if conversation else []

    async def delete(self, conversation_id: str) -> bool:
        return self._conversations.pop(conversation_id, None) is not None

    def count(self) -> int:
        return len(self._conversations)


class SQLiteConversationStore(ConversationStore):
    """SQLite-backed store."""

    def __init__(self, db_path: str = "./data/conversations.db"):
        self.db_path = db_path
        self._ensure_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                flow_id TEXT NOT NULL,
                title TEXT NOT NULL,
                flow_state TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                last_message_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversation_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                node_id TEXT,
                node_type TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_conversation
            ON conversation_messages(conversation_id)
        """)

        conn.commit()
        conn.close()

    def _insert_message(
        self,
        cursor: sqlite3.Cursor,
        conversation_id: str,
        message: ConversationMessage,
    ) -> None:
        cursor.execute(
            """
            INSERT INTO conversation_messages
                (conversation_id, role, content, node_id, node_type, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                conversation_id,
                message.role,
                message.content,
                message.node_id,
                message.node_type,
                message.timestamp.isoformat(),
            ),
        )
        cursor.execute(
            "UPDATE conversations SET last_message_at = ? WHERE id = ?",
            (message.timestamp.isoformat(), conversation_id),
        )

    async def load(self, conversation_id: str) -> FlowState | None:
        conn = self._connect()
        row = conn.execute(
            "SELECT flow_state FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        conn.close()

        if row is None or row[0] is None:
            return None
        return FlowState.from_dict(json.loads(row[0]))

    async def save(
        self,
        flow_state: FlowState,
        flow_id: str,
        conversation_id: str | None = None,
        message: ConversationMessage | None = None,
    ) -> str:
        now = datetime.utcnow().isoformat()
        state_json = json.dumps(flow_state.to_dict(), default=str)

        conn = self._connect()
        cursor = conn.cursor()

        exists = False
        if conversation_id:
            exists = cursor.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone() is not None

        if exists:
            cursor.execute(
                "UPDATE conversations SET flow_state = ?, updated_at = ? WHERE id = ?",
                (state_json, now, conversation_id),
            )
        else:
            conversation_id = conversation_id or str(uuid.uuid4())
            cursor.execute(
                """
                INSERT INTO conversations (id, flow_id, title, flow_state, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (conversation_id, flow_id, conversation_title(message), state_json, now, now),
            )
            logger.info("conversation_created", conversation_id=conversation_id, flow_id=flow_id)

        if message and message.content:
            self._insert_message(cursor, conversation_id, message)

        conn.commit()
        conn.close()
        return conversation_id

    async def add_message(self, conversation_id: str, message: ConversationMessage) -> None:
        conn = self._connect()
        cursor = conn.cursor()
        try:
            if cursor.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone() is None:
                raise NotFoundError(f"Conversation not found: {conversation_id}")

            self._insert_message(cursor, conversation_id, message)
            conn.commit()
        finally:
            conn.close()

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conn = self._connect()
        row = conn.execute(
            """
            SELECT id, flow_id, title, flow_state, created_at, updated_at, last_message_at
            FROM conversations WHERE id = ?
            """,
            (conversation_id,),
        ).fetchone()
        conn.close()

        if row is None:
            return None

        _, flow_id, title, state_json, created_at, updated_at, last_message_at = row
        return Conversation(
            id=conversation_id,
            flow_id=flow_id,
            title=title,
            flow_state=FlowState.from_dict(json.loads(state_json)) if state_json else None,
            created_at=datetime.fromisoformat(created_at),
            updated_at=datetime.fromisoformat(updated_at),
            last_message_at=datetime.fromisoformat(last_message_at) if last_message_at else None,
            messages=await self.list_messages(conversation_id),
        )

    async def list_messages(self, conversation_id: str) -> list[ConversationMessage]:
        conn = self._connect()
        rows = conn.execute(
            """
            SELECT role, content, node_id, node_type, created_at
            FROM conversation_messages WHERE conversation_id = ? ORDER BY id
            """,
            (conversation_id,),
        ).fetchall()
        conn.close()

        return [
            ConversationMessage(
                role=role,
                content=content,
                node_id=node_id,
                node_type=node_type,
                timestamp=datetime.fromisoformat(created_at),
            )
            for role, content, node_id, node_type, created_at in rows
        ]

    async def delete(self, conversation_id: str) -> bool:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        count = cursor.rowcount
        conn.commit()
        conn.close()

        if count:
            logger.info("conversation_deleted", conversation_id=conversation_id)
        return count > 0


def create_conversation_store(backend: str, database_path: str) -> ConversationStore:
    """Factory function to create the conversation store."""
    if backend == "sqlite":
        return SQLiteConversationStore(database_path)
    return InMemoryConversationStore()
