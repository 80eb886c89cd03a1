"""
Graph navigation over flow edges.
"""

from typing import List, Optional

from ..config import NodeKind
from ..errors import ConfigurationError
from ..models.flow import Edge, Flow, Node

EDGE_HANDLE_PREFIX = "out-"


def outgoing_edges(flow: Flow, node_id: str) -> List[Edge]:
    """Edges leaving ``node_id``, in definition order."""
    return [edge for edge in flow.edges if edge.source == node_id]


def find_next_node(
    flow: Flow,
    current_node_id: str,
    edge_selector: Optional[str] = None,
) -> Optional[str]:
    """
    Find the node that follows ``current_node_id``.

    Args:
        flow: Flow definition
        current_node_id: Node whose outgoing edges are followed
        edge_selector: Branch label; matches the edge with source handle
            ``out-<label>``

    Returns:
        Target node id, or None when there is nothing to follow
    """
    edges = outgoing_edges(flow, current_node_id)
    if not edges:
        return None

    if edge_selector is not None:
        handle = EDGE_HANDLE_PREFIX + edge_selector
        for edge in edges:
            if edge.source_handle == handle:
                return edge.target
        return None

    return edges[0].target


def find_begin_node(flow: Flow) -> Optional[Node]:
    begin_nodes = flow.nodes_of_kind(NodeKind.BEGIN)
    return begin_nodes[0] if begin_nodes else None


def resolve_current_node(flow: Flow, node_id: Optional[str]) -> Node:
    """Node referenced by ``node_id``, falling back to the begin node."""
    node = flow.get_node(node_id)
    if node is not None:
        return node

    begin = find_begin_node(flow)
    if begin is None:
        raise ConfigurationError("No begin node found in flow")
    return begin
