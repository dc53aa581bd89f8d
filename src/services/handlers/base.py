"""Shared plumbing for node handlers."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from models.definition import WorkflowNode
from services.effect_ledger import RedisEffectLedger
from services.template_resolver import resolve_value

logger = logging.getLogger(__name__)

# Config keys read by the engine itself and never template-resolved.
ENGINE_KEYS = frozenset(
    {"type", "conditions", "branches", "default", "errorHandling", "schema", "formSchema"}
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseHandler:
    """Base class giving handlers resolved config and effect-ledger access."""

    def __init__(self, ledger: RedisEffectLedger | None = None):
        self._ledger = ledger

    def resolved_config(
        self, node: WorkflowNode, context: dict[str, Any]
    ) -> dict[str, Any]:
        """Node config with {{...}} templates resolved against context."""
        return {
            key: value if key in ENGINE_KEYS else resolve_value(value, context)
            for key, value in node.config.items()
        }

    def once(
        self,
        instance_id: str,
        node_id: str,
        effect: str,
        perform: Callable[[], Any],
    ) -> Any:
        """Run perform unless the ledger already holds its result for this node."""
        if self._ledger is None:
            raise ValueError("ledger is required for side-effecting handlers")

        if self._ledger.has(instance_id, node_id, effect):
            logger.info(f"Reusing recorded {effect} for {instance_id}/{node_id}")
            return self._ledger.get(instance_id, node_id, effect)

        result = perform()
        return self._ledger.record(instance_id, node_id, effect, result)
