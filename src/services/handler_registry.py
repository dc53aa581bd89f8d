"""Registry mapping node type tags to handler objects."""

import logging
from typing import Any, Protocol

from models.definition import WorkflowNode
from models.outcome import HandlerResult
from services.errors import WorkflowError

logger = logging.getLogger(__name__)


class NodeHandler(Protocol):
    """Contract every node handler implements."""

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult: ...


class HandlerRegistry:
    """Looks up the handler for a node type. Unknown types are fatal."""

    def __init__(self):
        self._handlers: dict[str, NodeHandler] = {}

    def register(self, node_type: str, handler: NodeHandler) -> None:
        """Register handler for node_type, replacing any previous one."""
        if not node_type or not node_type.strip():
            raise ValueError("node_type is required")
        if handler is None:
            raise ValueError("handler is required")

        key = node_type.strip().upper()
        if key in self._handlers:
            logger.info(f"Replacing handler for node type {key}")
        self._handlers[key] = handler

    def get(self, node_type: str) -> NodeHandler:
        """Handler for node_type. Raises WorkflowError if none is registered."""
        handler = self._handlers.get((node_type or "").upper())
        if handler is None:
            raise WorkflowError(f"Unknown node type: {node_type}")
        return handler

    def has(self, node_type: str) -> bool:
        return (node_type or "").upper() in self._handlers

    @property
    def node_types(self) -> list[str]:
        return sorted(self._handlers)
