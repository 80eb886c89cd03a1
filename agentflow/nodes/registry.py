"""
Handler Registry.

Maps every node kind to the handler that executes it.
"""

from typing import Dict, Iterable, List, Optional

import structlog

from ..adapters.llm_adapter import LLMAdapter
from ..adapters.model_catalog import ModelCatalog
from ..adapters.retrieval_adapter import RetrievalAdapter
from ..config import NodeKind
from ..errors import ConfigurationError
from .base import NodeHandler
from .begin import BeginNodeHandler
from .categorize import CategorizeNodeHandler
from .generate import GenerateNodeHandler
from .interface import InterfaceNodeHandler
from .retrieval import RetrievalNodeHandler

logger = structlog.get_logger()


class HandlerRegistry:
    """
    Lookup table from node kind to handler.

    Construction fails unless every node kind has a handler.
    """

    def __init__(self, handlers: Iterable[NodeHandler]):
        self._handlers: Dict[NodeKind, NodeHandler] = {}
        for handler in handlers:
            if handler.kind in self._handlers:
                logger.warning("handler_overwritten", kind=handler.kind.value)
            self._handlers[handler.kind] = handler

        missing = [kind.value for kind in NodeKind if kind not in self._handlers]
        if missing:
            raise ConfigurationError(f"No handler registered for node kinds: {', '.join(missing)}")

    def get(self, kind: NodeKind) -> NodeHandler:
        return self._handlers[kind]

    def kinds(self) -> List[NodeKind]:
        return list(self._handlers.keys())


def create_handler_registry(
    llm: LLMAdapter,
    catalog: ModelCatalog,
    retriever: RetrievalAdapter,
    categorize_temperature: float = 0.3,
    overrides: Optional[Iterable[NodeHandler]] = None,
) -> HandlerRegistry:
    """Build the registry with the built-in handlers."""
    handlers: List[NodeHandler] = [
        BeginNodeHandler(),
        InterfaceNodeHandler(),
        GenerateNodeHandler(llm, catalog),
        CategorizeNodeHandler(llm, catalog, temperature=categorize_temperature),
        RetrievalNodeHandler(retriever),
    ]
    handlers.extend(overrides or [])
    return HandlerRegistry(handlers)
