"""Handler for MANUAL_DATA_ENTRY nodes."""

import logging
from typing import Any

from models.definition import WorkflowNode
from models.outcome import HandlerResult
from models.state import ManualEntryStatus
from services.handlers.base import BaseHandler
from services.state_store import RedisStateStore

logger = logging.getLogger(__name__)


class ManualDataEntryHandler(BaseHandler):
    """Creates the node's form record once and waits until it is submitted."""

    def __init__(self, state_store: RedisStateStore):
        super().__init__()
        if state_store is None:
            raise ValueError("state_store is required")
        self._state_store = state_store

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = node.config
        entry, created = self._state_store.get_or_create_manual_entry(
            instance_id,
            node.id,
            form_schema=config.get("formSchema") or {},
            form_ui={
                "title": config.get("formTitle", node.label),
                "description": config.get("formDescription", ""),
                "submitButtonText": config.get("submitButtonText", "Submit"),
            },
            assign_to=config.get("assignTo"),
            allow_edit=bool(config.get("allowEdit", False)),
        )
        if created:
            logger.info(f"Created manual entry {entry.id} for {instance_id}/{node.id}")

        if entry.status == ManualEntryStatus.COMPLETED:
            return HandlerResult.ok(entry.submitted_data)

        if config.get("required", True) is False:
            return HandlerResult.ok({"entry_id": entry.id, "status": entry.status.value})

        return HandlerResult.wait(
            {
                "message": "Waiting for manual data entry",
                "entry_id": entry.id,
                "assign_to": entry.assign_to,
            }
        )
