"""
Categorize node: classifies input and branches on the chosen label.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import structlog

from ..adapters.llm_adapter import LLMAdapter
from ..adapters.model_catalog import MOCK_PROVIDER_TYPE, ModelCatalog, ModelConfig
from ..config import ExecutionStatus, MessageRole, NodeKind
from ..engine.inputs import get_input_from_source, resolve_input_references
from ..engine.navigator import find_next_node
from ..errors import ConfigurationError, ValidationError
from ..models.flow import Category, CategorizeForm, Node
from ..models.state import ExecutionResult, now_ms
from .base import NodeContext, NodeHandler

logger = structlog.get_logger()

RESPONSE_JSON_PATTERN = re.compile(r'\{[^{]*"category"[^}]*\}')


@dataclass
class Classification:
    category: Optional[str]
    confidence: float = 0.0


class Classifier(ABC):
    """Picks one of a set of categories for a text."""

    @abstractmethod
    async def classify(self, text: str, categories: List[Category]) -> Classification:
        """Return the matching category name, or None when nothing matches."""


class KeywordClassifier(Classifier):
    """
    Matches category names and examples as words in the text.

    Used when no model is available for categorization, or when the model
    is served by the mock provider, whose echo never names a category.
    """

    async def classify(self, text: str, categories: List[Category]) -> Classification:
        lowered = text.lower()
        best: Optional[str] = None
        best_hits = 0

        for category in categories:
            terms = [category.name, *category.examples]
            hits = sum(
                1
                for term in terms
                if term and re.search(rf"\b{re.escape(term.lower())}\b", lowered)
            )
            if hits > best_hits:
                best, best_hits = category.name, hits

        if best is None:
            return Classification(category=None)
        return Classification(category=best, confidence=1.0)


class LLMClassifier(Classifier):
    """Asks a model for a JSON answer ``{"category": ..., "confidence": ...}``."""

    def __init__(self, llm: LLMAdapter, model: ModelConfig, temperature: float = 0.3) -> None:
        self.llm = llm
        self.model = model
        self.temperature = temperature

    def build_prompt(self, text: str, categories: List[Category]) -> str:
        lines = []
        for category in categories:
            line = f"- {category.name}: {category.description}"
            if category.examples:
                line += f"\n  Examples: {', '.join(category.examples)}"
            lines.append(line)

        return (
            "I need to categorize the following text into one of these categories:\n\n"
            + "\n".join(lines)
            + '\n\nText to categorize:\n"""\n'
            + text
            + '\n"""\n\n'
            "Analyze the text and determine which category it belongs to. Respond with "
            "ONLY the category name and a confidence score between 0 and 1, in this exact "
            'JSON format:\n{"category": "category_name", "confidence": 0.95}'
        )

    async def classify(self, text: str, categories: List[Category]) -> Classification:
        response = await self.llm.complete(
            self.model.provider,
            self.model,
            self.build_prompt(text, categories),
            temperature=self.temperature,
        )
        return self.parse_response(response, categories)

    @staticmethod
    def parse_response(response: str, categories: List[Category]) -> Classification:
        match = RESPONSE_JSON_PATTERN.search(response or "")
        if not match:
            return Classification(category=None)

        try:
            answer = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning("categorize_response_unparseable", response=response[:100])
            return Classification(category=None)

        names = {c.name for c in categories}
        category = answer.get("category")
        if category not in names:
            return Classification(category=None)

        confidence = answer.get("confidence")
        if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
            confidence = min(max(float(confidence), 0.0), 1.0)
        else:
            confidence = 1.0
        return Classification(category=category, confidence=confidence)


class CategorizeNodeHandler(NodeHandler):
    kind = NodeKind.CATEGORIZE

    def __init__(
        self,
        llm: Optional[LLMAdapter] = None,
        catalog: Optional[ModelCatalog] = None,
        temperature: float = 0.3,
    ) -> None:
        self.llm = llm
        self.catalog = catalog
        self.temperature = temperature
        self.fallback = KeywordClassifier()

    def classifier_for(self, form: CategorizeForm) -> Classifier:
        if self.llm is None or self.catalog is None:
            return self.fallback

        if form.model:
            model = self.catalog.get_model(form.model)
        else:
            model = self.catalog.default_chat_model()

        if model is None or model.provider.provider_type == MOCK_PROVIDER_TYPE:
            return self.fallback
        return LLMClassifier(self.llm, model, temperature=self.temperature)

    def resolve_input(self, form: CategorizeForm, context: NodeContext) -> Optional[str]:
        flow_state = context.flow_state

        resolved = resolve_input_references(form.input_refs, flow_state)
        if form.input_source:
            return get_input_from_source(form.input_source, flow_state)

        for value in resolved.values():
            if value:
                return str(value)

        return (
            flow_state.variables.get("userInput")
            or context.input.content
            or get_input_from_source(None, flow_state)
        )

    async def execute(self, node: Node, context: NodeContext) -> ExecutionResult:
        started_at = now_ms()
        form: CategorizeForm = node.form

        if not form.categories:
            raise ConfigurationError("No categories defined for categorization")

        text = self.resolve_input(form, context)
        if not text:
            raise ValidationError("No input available to categorize")

        classification = await self.classifier_for(form).classify(text, form.categories)
        label = classification.category or form.default_category

        context.flow_state.variables["category"] = label
        context.flow_state.variables["categorization"] = {
            "input": text,
            "result": label,
            "confidence": classification.confidence if classification.category else 0.0,
        }
        self.record_output(node, context.flow_state, label)

        category = next((c for c in form.categories if c.name == label), None)
        if category is not None and category.target_node:
            next_node_id = category.target_node
        else:
            next_node_id = find_next_node(context.flow, node.id, edge_selector=label)

        if next_node_id is None:
            raise ConfigurationError(
                f"No branch for category '{label}' after categorize node {node.name}"
            )

        logger.debug(
            "categorize_node_executed",
            node_id=node.id,
            category=label,
            matched=classification.category is not None,
        )

        return self.result(
            node,
            context,
            ExecutionStatus.IN_PROGRESS,
            output=label,
            role=MessageRole.DEVELOPER,
            next_node_id=next_node_id,
            started_at=started_at,
        )
