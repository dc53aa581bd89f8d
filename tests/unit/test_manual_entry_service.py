"""Unit tests for ManualEntryService."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import fakeredis
import pytest

from models.state import (
    EntityType,
    InstanceStatus,
    ManualEntryStatus,
    PauseReason,
    WorkflowInstance,
)
from services.errors import ConflictError, NotFoundError, ValidationError
from services.manual_entry_service import ManualEntryService
from services.state_store import RedisStateStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

FORM = {
    "fields": [
        {"name": "gstin", "type": "text", "required": True, "validation": {"minLength": 15}},
        {"name": "credit_days", "type": "number", "validation": {"min": 0, "max": 90}},
    ]
}


def waiting_instance(**overrides) -> WorkflowInstance:
    fields = {
        "id": "inst-1",
        "definition_id": "def-1",
        "definition_version": 1,
        "entity_type": EntityType.CUSTOMER,
        "status": InstanceStatus.PAUSED,
        "pause_reason": PauseReason.WAITING_FOR_INPUT,
        "current_node_id": "collect",
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return WorkflowInstance(**fields)


@pytest.fixture
def state_store():
    return RedisStateStore(fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def instances():
    manager = MagicMock()
    manager.get.return_value = waiting_instance()
    manager.resume.return_value = waiting_instance(
        status=InstanceStatus.COMPLETED, pause_reason=None
    )
    return manager


@pytest.fixture
def service(state_store, instances):
    return ManualEntryService(state_store, instances)


@pytest.fixture
def entry(state_store):
    entry, _ = state_store.get_or_create_manual_entry(
        "inst-1", "collect", form_schema=FORM, assign_to="finance"
    )
    return entry


class TestManualEntryService:
    """Tests for form submission."""

    def test_init_requires_instance_manager(self, state_store):
        with pytest.raises(ValueError, match="instance_manager is required"):
            ManualEntryService(state_store, None)

    def test_submit_resumes_instance(self, service, entry, instances):
        result = service.submit(entry.id, {"gstin": "29ABCDE1234F1Z5"}, "u-1")

        assert result.entry.status == ManualEntryStatus.COMPLETED
        assert result.entry.submitted_by == "u-1"
        assert result.resumed is True
        assert result.instance.status == InstanceStatus.COMPLETED
        instances.resume.assert_called_once_with("inst-1", {})

    def test_invalid_data_rejected(self, service, entry, state_store):
        with pytest.raises(ValidationError, match="Form data invalid"):
            service.submit(entry.id, {"gstin": "short", "credit_days": 120}, "u-1")
        assert state_store.get_manual_entry(entry.id).status == ManualEntryStatus.PENDING

    def test_missing_required_field(self, service, entry):
        with pytest.raises(ValidationError, match="gstin"):
            service.submit(entry.id, {"credit_days": 30}, "u-1")

    def test_requires_user(self, service, entry):
        with pytest.raises(ValidationError, match="user_id is required"):
            service.submit(entry.id, {"gstin": "29ABCDE1234F1Z5"}, "")

    def test_data_must_be_object(self, service, entry):
        with pytest.raises(ValidationError, match="data must be an object"):
            service.submit(entry.id, ["x"], "u-1")

    def test_second_submit_conflicts(self, service, entry):
        service.submit(entry.id, {"gstin": "29ABCDE1234F1Z5"}, "u-1")
        with pytest.raises(ConflictError, match="already submitted"):
            service.submit(entry.id, {"gstin": "29ABCDE1234F1Z6"}, "u-2")

    def test_unknown_entry(self, service):
        with pytest.raises(NotFoundError):
            service.submit("entry-missing", {}, "u-1")

    def test_no_resume_when_not_waiting_there(self, service, entry, instances):
        instances.get.return_value = waiting_instance(current_node_id="other")

        result = service.submit(entry.id, {"gstin": "29ABCDE1234F1Z5"}, "u-1")

        assert result.resumed is False
        instances.resume.assert_not_called()

    def test_resume_disabled(self, state_store, instances, entry):
        service = ManualEntryService(state_store, instances, resume_on_submit=False)
        result = service.submit(entry.id, {"gstin": "29ABCDE1234F1Z5"}, "u-1")

        assert result.resumed is False
        instances.resume.assert_not_called()

    def test_busy_instance_keeps_submission(self, service, entry, instances):
        instances.resume.side_effect = ConflictError("Instance is busy: inst-1")

        result = service.submit(entry.id, {"gstin": "29ABCDE1234F1Z5"}, "u-1")

        assert result.resumed is False
        assert result.entry.status == ManualEntryStatus.COMPLETED

    def test_list_pending(self, service, entry):
        assert [e.id for e in service.list_pending("finance")] == [entry.id]
        assert service.list_pending("sales") == []
