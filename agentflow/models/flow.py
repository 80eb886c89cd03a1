"""
Flow definition models.

A flow is the static node graph authored in the flow editor. Nodes are a
closed set of kinds, each carrying a kind-specific form; the form class is
picked from the kind tag when the flow is parsed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..config import NodeKind, OutputFormat
from ..errors import ConfigurationError


# =============================================================================
# Form Models
# =============================================================================


@dataclass
class InputReference:
    """Maps another node's output to a named input of this node."""

    source_node_id: str
    output_name: str
    input_name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InputReference":
        return cls(
            source_node_id=data.get("sourceNodeId", ""),
            output_name=data.get("outputName", ""),
            input_name=data.get("inputName", ""),
        )


@dataclass
class VariableDeclaration:
    """Variable declared by the begin node."""

    name: str
    default: Any = ""


@dataclass
class Category:
    """A categorize node label."""

    name: str
    description: str = ""
    examples: List[str] = field(default_factory=list)
    target_node: Optional[str] = None


@dataclass
class BeginForm:
    name: str = ""
    description: str = ""
    greeting: str = "Hello!"
    variables: List[VariableDeclaration] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BeginForm":
        variables = []
        for item in data.get("variables") or []:
            if isinstance(item, str):
                variables.append(VariableDeclaration(name=item))
                continue
            name = item.get("title") or item.get("name") or item.get("key")
            if name:
                variables.append(VariableDeclaration(name=name, default=item.get("default", "")))

        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            greeting=data.get("greeting") or "Hello!",
            variables=variables,
        )


@dataclass
class InterfaceForm:
    name: str = ""
    description: str = ""
    template: str = ""
    placeholder: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InterfaceForm":
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            template=data.get("template", ""),
            placeholder=data.get("placeholder", ""),
        )


@dataclass
class GenerateForm:
    name: str = ""
    description: str = ""
    prompt: str = ""
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerateForm":
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            prompt=data.get("prompt", ""),
            model=data.get("model") or None,
        )


@dataclass
class CategorizeForm:
    name: str = ""
    description: str = ""
    categories: List[Category] = field(default_factory=list)
    default_category: str = ""
    model: Optional[str] = None
    input_source: Optional[str] = None
    input_refs: List[InputReference] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategorizeForm":
        categories = [
            Category(
                name=c["name"],
                description=c.get("description", ""),
                examples=list(c.get("examples") or []),
                target_node=c.get("targetNode") or None,
            )
            for c in data.get("categories") or []
            if c.get("name")
        ]
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            categories=categories,
            default_category=data.get("defaultCategory", ""),
            model=data.get("model") or None,
            input_source=data.get("inputSource") or None,
            input_refs=[InputReference.from_dict(r) for r in data.get("inputRefs") or []],
        )

    @property
    def labels(self) -> List[str]:
        return [c.name for c in self.categories]


@dataclass
class RetrievalForm:
    name: str = ""
    description: str = ""
    knowledge_ids: List[str] = field(default_factory=list)
    max_results: int = 3
    threshold: float = 0.7
    output_format: OutputFormat = OutputFormat.PLAIN
    input_refs: List[InputReference] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetrievalForm":
        try:
            output_format = OutputFormat(data.get("outputFormat") or "plain")
        except ValueError:
            output_format = OutputFormat.PLAIN

        threshold = data.get("threshold")

        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            knowledge_ids=list(data.get("knowledgeIds") or []),
            max_results=int(data.get("maxResults") or 3),
            threshold=0.7 if threshold is None else float(threshold),
            output_format=output_format,
            input_refs=[InputReference.from_dict(r) for r in data.get("inputRefs") or []],
        )


NodeForm = Union[BeginForm, InterfaceForm, GenerateForm, CategorizeForm, RetrievalForm]

FORM_TYPES = {
    NodeKind.BEGIN: BeginForm,
    NodeKind.INTERFACE: InterfaceForm,
    NodeKind.GENERATE: GenerateForm,
    NodeKind.CATEGORIZE: CategorizeForm,
    NodeKind.RETRIEVAL: RetrievalForm,
}


# =============================================================================
# Graph Models
# =============================================================================


@dataclass
class Node:
    """Instance of a node in a flow."""

    id: str
    kind: NodeKind
    form: NodeForm
    label: Optional[str] = None

    @property
    def name(self) -> str:
        return self.form.name or self.label or self.id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        node_data = data.get("data") or {}
        kind_name = data.get("type") or node_data.get("type")

        try:
            kind = NodeKind(kind_name)
        except ValueError:
            raise ConfigurationError(f"Unsupported node type: {kind_name}")

        return cls(
            id=data["id"],
            kind=kind,
            form=FORM_TYPES[kind].from_dict(node_data.get("form") or {}),
            label=node_data.get("label"),
        )


@dataclass
class Edge:
    """Directed connection between two nodes."""

    source: str
    target: str
    source_handle: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        return cls(
            source=data["source"],
            target=data["target"],
            source_handle=data.get("sourceHandle"),
            id=data.get("id"),
        )


@dataclass
class Flow:
    """
    Static flow definition.

    Node and edge order are kept as authored; edge order decides which
    branch the navigator takes when a node has several outgoing edges.
    """

    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    id: Optional[str] = None

    def __post_init__(self) -> None:
        self._index = {node.id: node for node in self.nodes}

    def get_node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self._index.get(node_id)

    def nodes_of_kind(self, kind: NodeKind) -> List[Node]:
        return [n for n in self.nodes if n.kind == kind]

    def validate(self) -> "Flow":
        """
        Check the structural invariants of the flow.

        Raises:
            ConfigurationError: if the flow cannot be executed
        """
        if len(self._index) != len(self.nodes):
            raise ConfigurationError("Node ids must be unique")

        begin_count = len(self.nodes_of_kind(NodeKind.BEGIN))
        if begin_count != 1:
            raise ConfigurationError(
                f"Flow must have exactly one begin node, found {begin_count}"
            )

        if not self.nodes_of_kind(NodeKind.INTERFACE):
            raise ConfigurationError("Flow must have at least one interface node")

        for edge in self.edges:
            if edge.source not in self._index or edge.target not in self._index:
                raise ConfigurationError(
                    f"Dangling edge from {edge.source} to {edge.target}"
                )

        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any], flow_id: Optional[str] = None) -> "Flow":
        """Parse a stored flow configuration."""
        return cls(
            nodes=[Node.from_dict(n) for n in data.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in data.get("edges") or []],
            id=flow_id or data.get("id"),
        )
