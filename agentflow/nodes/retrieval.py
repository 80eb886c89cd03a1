"""
Retrieval node: searches knowledge bases and formats the hits.
"""

import asyncio
import json
from typing import List

import structlog

from ..adapters.retrieval_adapter import RetrievalAdapter, RetrievalHit
from ..config import ExecutionStatus, MessageRole, NodeKind, OutputFormat
from ..engine.inputs import resolve_input_references
from ..engine.navigator import find_next_node
from ..errors import ConfigurationError
from ..models.flow import Node, RetrievalForm
from ..models.state import ExecutionResult, now_ms
from .base import NodeContext, NodeHandler

logger = structlog.get_logger()


def format_hits(hits: List[RetrievalHit], output_format: OutputFormat) -> str:
    """Render hits as numbered plain text, inline citations or JSON."""
    if output_format == OutputFormat.JSON:
        return json.dumps([hit.to_dict() for hit in hits], indent=2)

    if output_format == OutputFormat.CITATIONS:
        body = "\n\n".join(f"{hit.text} [{i}]" for i, hit in enumerate(hits, start=1))
        sources = "\n".join(f"[{i}] {hit.source}" for i, hit in enumerate(hits, start=1))
        return f"{body}\n\nSources:\n{sources}"

    return "\n\n".join(
        f"[{i}] {hit.text}\nSource: {hit.source}" for i, hit in enumerate(hits, start=1)
    )


class RetrievalNodeHandler(NodeHandler):
    """
    Fans out one search per knowledge base and joins the results.

    Missing knowledge bases, a missing query and provider failures come
    back as error results rather than exceptions.
    """

    kind = NodeKind.RETRIEVAL

    def __init__(self, retriever: RetrievalAdapter) -> None:
        self.retriever = retriever

    def resolve_query(self, form: RetrievalForm, context: NodeContext) -> str:
        resolved = resolve_input_references(form.input_refs, context.flow_state)
        for value in resolved.values():
            if value:
                return str(value)

        user_input = context.flow_state.variables.get("userInput")
        if user_input:
            return str(user_input)

        return context.input.content or ""

    async def execute(self, node: Node, context: NodeContext) -> ExecutionResult:
        started_at = now_ms()
        form: RetrievalForm = node.form

        if not form.knowledge_ids:
            return self.error(node, context, "No knowledge bases specified", started_at=started_at)

        query = self.resolve_query(form, context).strip()
        if not query:
            return self.error(node, context, "No query available for retrieval", started_at=started_at)

        try:
            results = await asyncio.gather(
                *(
                    self.retriever.search(
                        knowledge_id,
                        query,
                        limit=form.max_results,
                        threshold=form.threshold,
                    )
                    for knowledge_id in form.knowledge_ids
                )
            )
        except Exception as e:
            logger.exception("retrieval_failed", node_id=node.id, error=str(e))
            return self.error(
                node,
                context,
                f"Error retrieving information: {e}",
                started_at=started_at,
            )

        hits = [hit for batch in results for hit in batch][: form.max_results]
        formatted = format_hits(hits, form.output_format)

        self.record_output(node, context.flow_state, formatted)
        context.flow_state.variables["retrievalContext"] = formatted

        next_node_id = find_next_node(context.flow, node.id)
        if next_node_id is None:
            raise ConfigurationError(f"No next node found after retrieval node {node.name}")

        logger.debug(
            "retrieval_node_executed",
            node_id=node.id,
            knowledge_bases=len(form.knowledge_ids),
            hits=len(hits),
        )

        return self.result(
            node,
            context,
            ExecutionStatus.IN_PROGRESS,
            output=formatted,
            role=MessageRole.DEVELOPER,
            next_node_id=next_node_id,
            started_at=started_at,
        )
