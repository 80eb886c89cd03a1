"""
Run-time models: flow state, execution results and turn input.
"""

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import ExecutionStatus, MessageRole


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


@dataclass
class MessagePart:
    """Input handed to a node."""

    role: MessageRole
    content: str = ""

    @property
    def is_user_input(self) -> bool:
        return self.role == MessageRole.USER and bool(self.content.strip())


@dataclass
class HistoryEntry:
    """One step of engine progress within a conversation."""

    node_id: str
    node_type: str
    timestamp: int = field(default_factory=now_ms)
    output: Any = None
    input: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "timestamp": self.timestamp,
        }
        if self.output is not None:
            data["output"] = self.output
        if self.input is not None:
            data["input"] = self.input
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            node_id=data["nodeId"],
            node_type=data.get("nodeType", ""),
            timestamp=data.get("timestamp") or now_ms(),
            output=data.get("output"),
            input=data.get("input"),
        )


@dataclass
class FlowState:
    """
    Per-conversation run-time record.

    The engine never mutates a FlowState it was handed; it works on
    ``copy()`` and returns the new value.
    """

    current_node_id: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    components: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    history: List[HistoryEntry] = field(default_factory=list)
    completed: bool = False

    def copy(self) -> "FlowState":
        return copy.deepcopy(self)

    def merge(self, delta: Optional["FlowState"]) -> None:
        """Merge variables and components from ``delta``; delta values win."""
        if delta is None:
            return
        self.variables.update(copy.deepcopy(delta.variables))
        self.components.update(copy.deepcopy(delta.components))

    def latest_output(self, node_type: str) -> Optional[Any]:
        for entry in reversed(self.history):
            if entry.node_type == node_type and entry.output is not None:
                return entry.output
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentNodeId": self.current_node_id,
            "variables": copy.deepcopy(self.variables),
            "components": copy.deepcopy(self.components),
            "history": [entry.to_dict() for entry in self.history],
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlowState":
        return cls(
            current_node_id=data.get("currentNodeId"),
            variables=dict(data.get("variables") or {}),
            components=dict(data.get("components") or {}),
            history=[HistoryEntry.from_dict(h) for h in data.get("history") or []],
            completed=bool(data.get("completed", False)),
        )


@dataclass
class NodeInfo:
    id: str
    name: str
    kind: str
    role: MessageRole


@dataclass
class ExecutionInfo:
    output: Any
    node_id: str
    node_name: str
    start_time: int = field(default_factory=now_ms)
    end_time: Optional[int] = None


@dataclass
class ExecutionResult:
    """Result of a single node execution."""

    status: ExecutionStatus
    node_info: NodeInfo
    execution: ExecutionInfo
    next_node_id: Optional[str] = None
    flow_state: Optional[FlowState] = None
    message: Optional[str] = None

    @property
    def output_text(self) -> str:
        output = self.execution.output
        if output is None:
            return ""
        return output if isinstance(output, str) else str(output)
