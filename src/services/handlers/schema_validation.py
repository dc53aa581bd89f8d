"""Handler for SCHEMA_VALIDATION nodes."""

import logging
from typing import Any

from models.definition import WorkflowNode
from models.outcome import HandlerResult
from services.collaborators import MessagingGateway
from services.effect_ledger import RedisEffectLedger
from services.errors import ValidationError, WorkflowError
from services.handlers.base import BaseHandler
from services.json_schema import validation_errors
from services.template_resolver import find_unresolved

logger = logging.getLogger(__name__)


class SchemaValidationHandler(BaseHandler):
    """Validates a context value against a JSON Schema."""

    def __init__(self, messaging: MessagingGateway, ledger: RedisEffectLedger):
        super().__init__(ledger)
        if messaging is None:
            raise ValueError("messaging is required")
        self._messaging = messaging

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)
        schema = node.config.get("schema")
        if not isinstance(schema, dict):
            raise WorkflowError("schema is required", node_id=node.id)

        data = config.get("dataSource")
        if isinstance(data, str) and find_unresolved(data):
            data = None

        try:
            errors = validation_errors(schema, data)
        except ValidationError as e:
            raise WorkflowError(str(e), node_id=node.id) from e

        if not errors:
            return HandlerResult.ok({"valid": True, "data": data})

        logger.info(f"Schema validation failed for {instance_id}/{node.id}: {errors}")
        on_fail = config.get("onValidationFail", "FAIL")

        if on_fail == "SKIP":
            return HandlerResult.ok({"valid": False, "errors": errors})

        if on_fail == "ESCALATE":
            escalation = {
                "escalate_to": config.get("escalateTo", "manager"),
                "reason": config.get("errorMessage") or "Schema validation failed",
                "errors": errors,
                "workflow_instance_id": instance_id,
                "node_id": node.id,
            }
            self.once(
                instance_id,
                node.id,
                "escalation",
                lambda: self._messaging.escalate(escalation),
            )
            return HandlerResult.ok({"valid": False, "errors": errors, "escalated": True})

        message = config.get("errorMessage") or "Schema validation failed"
        return HandlerResult.fail(f"{message}: {'; '.join(errors)}")
