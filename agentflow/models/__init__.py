"""Data models for the Agent Flow Service."""
from .flow import (
    BeginForm,
    Category,
    CategorizeForm,
    Edge,
    Flow,
    GenerateForm,
    InputReference,
    InterfaceForm,
    Node,
    RetrievalForm,
    VariableDeclaration,
)
from .state import (
    ExecutionInfo,
    ExecutionResult,
    FlowState,
    HistoryEntry,
    MessagePart,
    NodeInfo,
)

__all__ = [
    "BeginForm",
    "Category",
    "CategorizeForm",
    "Edge",
    "Flow",
    "GenerateForm",
    "InputReference",
    "InterfaceForm",
    "Node",
    "RetrievalForm",
    "VariableDeclaration",
    "ExecutionInfo",
    "ExecutionResult",
    "FlowState",
    "HistoryEntry",
    "MessagePart",
    "NodeInfo",
]
