"""Business logic services."""
from .conversation_store import (
    Conversation,
    ConversationMessage,
    ConversationStore,
    InMemoryConversationStore,
    SQLiteConversationStore,
    create_conversation_store,
)
from .flow_repository import FileFlowRepository, FlowRepository, InMemoryFlowRepository
from .flow_service import FlowService, Turn

__all__ = [
    "Conversation",
    "ConversationMessage",
    "ConversationStore",
    "InMemoryConversationStore",
    "SQLiteConversationStore",
    "create_conversation_store",
    "FileFlowRepository",
    "FlowRepository",
    "InMemoryFlowRepository",
    "FlowService",
    "Turn",
]
