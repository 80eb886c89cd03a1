"""
Flow Repository - Loads flow definitions by id.
"""
import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

from ..errors import ConfigurationError, NotFoundError
from ..models.flow import Flow

logger = structlog.get_logger()

FLOW_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class FlowRepository(ABC):
    """Source of flow definitions."""

    @abstractmethod
    async def get(self, flow_id: str) -> Flow:
        """
        Load and validate a flow.

        Raises:
            NotFoundError: unknown flow
            ConfigurationError: the flow is invalid
        """
        pass


class InMemoryFlowRepository(FlowRepository):
    """Flows registered in-process."""

    def __init__(self) -> None:
        self._flows: dict[str, Flow] = {}

    def add(self, flow_id: str, config: dict[str, Any] | Flow) -> Flow:
        flow = config if isinstance(config, Flow) else Flow.from_dict(config, flow_id=flow_id)
        flow.id = flow_id
        self._flows[flow_id] = flow.validate()
        return flow

    async def get(self, flow_id: str) -> Flow:
        flow = self._flows.get(flow_id)
        if flow is None:
            raise NotFoundError(f"Flow not found: {flow_id}")
        return flow


class FileFlowRepository(FlowRepository):
    """Flows stored as ``<flows_dir>/<flow_id>.json``."""

    def __init__(self, flows_dir: str) -> None:
        self.flows_dir = Path(flows_dir)

    async def get(self, flow_id: str) -> Flow:
        if not FLOW_ID_PATTERN.match(flow_id):
            raise NotFoundError(f"Flow not found: {flow_id}")

        path = self.flows_dir / f"{flow_id}.json"
        if not path.is_file():
            raise NotFoundError(f"Flow not found: {flow_id}")

        try:
            config = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid flow configuration {flow_id}: {e}")

        flow = Flow.from_dict(config, flow_id=flow_id).validate()
        logger.debug("flow_loaded", flow_id=flow_id, nodes=len(flow.nodes), edges=len(flow.edges))
        return flow
