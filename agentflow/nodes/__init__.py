"""
Node Handlers and Registry.

One handler per node kind, looked up by kind at dispatch time.
"""

from .base import NodeContext, NodeHandler
from .begin import BeginNodeHandler
from .categorize import (
    CategorizeNodeHandler,
    Classification,
    Classifier,
    KeywordClassifier,
    LLMClassifier,
)
from .generate import GenerateNodeHandler
from .interface import InterfaceNodeHandler
from .registry import HandlerRegistry, create_handler_registry
from .retrieval import RetrievalNodeHandler, format_hits

__all__ = [
    "NodeContext",
    "NodeHandler",
    "BeginNodeHandler",
    "CategorizeNodeHandler",
    "Classification",
    "Classifier",
    "KeywordClassifier",
    "LLMClassifier",
    "GenerateNodeHandler",
    "InterfaceNodeHandler",
    "HandlerRegistry",
    "create_handler_registry",
    "RetrievalNodeHandler",
    "format_hits",
]
