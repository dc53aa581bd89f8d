"""Submission of manual data entry forms."""

import logging
from typing import Any

from pydantic import BaseModel

from models.state import (
    InstanceStatus,
    ManualEntryRecord,
    ManualEntryStatus,
    PauseReason,
    WorkflowInstance,
)
from services.errors import ConflictError, ValidationError
from services.instance_manager import InstanceManager
from services.json_schema import form_to_json_schema, validation_errors
from services.state_store import RedisStateStore

logger = logging.getLogger(__name__)


class ManualEntrySubmitResult(BaseModel):
    """A recorded submission and the owning instance afterwards."""

    entry: ManualEntryRecord
    instance: WorkflowInstance | None = None
    resumed: bool = False


class ManualEntryService:
    """Validates and records form submissions, then resumes the waiting instance."""

    def __init__(
        self,
        state_store: RedisStateStore,
        instance_manager: InstanceManager,
        resume_on_submit: bool = True,
    ):
        if state_store is None:
            raise ValueError("state_store is required")
        if instance_manager is None:
            raise ValueError("instance_manager is required")
        self._state_store = state_store
        self._instances = instance_manager
        self._resume_on_submit = resume_on_submit

    def get(self, entry_id: str) -> ManualEntryRecord:
        return self._state_store.get_manual_entry(entry_id)

    def list_pending(self, assign_to: str | None = None) -> list[ManualEntryRecord]:
        return self._state_store.list_pending_manual_entries(assign_to)

    def submit(
        self, entry_id: str, data: dict[str, Any], user_id: str
    ) -> ManualEntrySubmitResult:
        """Record form data for an entry.

        Raises ValidationError when the data does not satisfy the form schema
        and ConflictError when the entry was already submitted and is not
        editable.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if not isinstance(data, dict):
            raise ValidationError("data must be an object")

        entry = self._state_store.get_manual_entry(entry_id)
        if entry.status == ManualEntryStatus.COMPLETED and not entry.allow_edit:
            raise ConflictError(f"Manual entry already submitted: {entry_id}")

        errors = validation_errors(form_to_json_schema(entry.form_schema), data)
        if errors:
            raise ValidationError(f"Form data invalid: {'; '.join(errors)}")

        entry = self._state_store.complete_manual_entry(entry_id, data, user_id)
        logger.info(f"Manual entry {entry_id} submitted by {user_id}")

        instance = self._instances.get(entry.instance_id)
        if not self._resume_on_submit or not self._is_waiting_on(instance, entry):
            return ManualEntrySubmitResult(entry=entry, instance=instance)

        try:
            instance = self._instances.resume(entry.instance_id, {})
        except ConflictError as e:
            logger.warning(f"Could not resume {entry.instance_id} after submission: {e}")
            return ManualEntrySubmitResult(entry=entry, instance=instance)
        return ManualEntrySubmitResult(entry=entry, instance=instance, resumed=True)

    def _is_waiting_on(self, instance: WorkflowInstance, entry: ManualEntryRecord) -> bool:
        return (
            instance.status == InstanceStatus.PAUSED
            and instance.pause_reason == PauseReason.WAITING_FOR_INPUT
            and instance.current_node_id == entry.node_id
        )
