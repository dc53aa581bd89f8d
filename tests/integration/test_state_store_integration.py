"""Integration tests for the Redis stores with real Redis."""

from datetime import datetime, timedelta, timezone

import pytest
from redis import Redis
from testcontainers.redis import RedisContainer

from models.state import EntityType, InstanceStatus, ManualEntryStatus, WorkflowInstance
from models.timer import TimerEntry, TimerKind
from services.due_index import RedisDueIndex
from services.errors import ConflictError
from services.state_store import InstanceInterrupted, RedisStateStore

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="module")
def redis_container():
    with RedisContainer() as container:
        yield container


@pytest.fixture
def redis_client(redis_container):
    client = Redis(
        host=redis_container.get_container_host_ip(),
        port=redis_container.get_exposed_port(6379),
        decode_responses=True,
    )
    yield client
    client.flushdb()
    client.close()


@pytest.fixture
def state_store(redis_client):
    return RedisStateStore(redis_client, lock_timeout=5, lock_wait=0.2)


def make_instance(instance_id: str = "inst-int-1", **overrides) -> WorkflowInstance:
    fields = {
        "id": instance_id,
        "definition_id": "def-1",
        "definition_version": 1,
        "entity_type": EntityType.SHIPMENT,
        "entity_id": "SHP-1",
        "status": InstanceStatus.IN_PROGRESS,
        "current_node_id": "start",
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return WorkflowInstance(**fields)


class TestInstanceIntegration:
    """Integration tests for instance persistence."""

    def test_instance_lifecycle(self, state_store):
        state_store.create_instance(make_instance())

        saved = state_store.save_instance(
            make_instance(current_node_id="notify", context={"quote": {"total": 1200}})
        )
        assert saved.current_node_id == "notify"

        retrieved = state_store.get_instance("inst-int-1")
        assert retrieved.context == {"quote": {"total": 1200}}
        assert retrieved.entity_type == EntityType.SHIPMENT

    def test_cancel_wins_over_running_save(self, state_store):
        state_store.create_instance(make_instance())
        state_store.update_instance(
            "inst-int-1",
            (InstanceStatus.IN_PROGRESS,),
            {"status": InstanceStatus.CANCELLED},
        )

        with pytest.raises(InstanceInterrupted):
            state_store.save_instance(make_instance(current_node_id="notify"))
        assert state_store.get_instance("inst-int-1").status == InstanceStatus.CANCELLED

    def test_lock_is_exclusive(self, state_store):
        state_store.create_instance(make_instance())

        with state_store.instance_lock("inst-int-1"):
            with pytest.raises(ConflictError, match="busy"):
                with state_store.instance_lock("inst-int-1"):
                    pass

        with state_store.instance_lock("inst-int-1"):
            pass

    def test_list_by_status(self, state_store):
        state_store.create_instance(make_instance("inst-a"))
        state_store.create_instance(
            make_instance("inst-b", status=InstanceStatus.COMPLETED)
        )

        running = state_store.list_instances(InstanceStatus.IN_PROGRESS)
        assert [i.id for i in running] == ["inst-a"]


class TestManualEntryIntegration:
    """Integration tests for manual entry records."""

    def test_entry_created_once_and_completed(self, state_store):
        entry, created = state_store.get_or_create_manual_entry(
            "inst-int-1", "collect", assign_to="finance"
        )
        again, created_again = state_store.get_or_create_manual_entry(
            "inst-int-1", "collect"
        )
        assert created is True
        assert created_again is False
        assert again.id == entry.id

        completed = state_store.complete_manual_entry(entry.id, {"gstin": "X"}, "u-1")
        assert completed.status == ManualEntryStatus.COMPLETED
        assert state_store.list_pending_manual_entries() == []

        with pytest.raises(ConflictError):
            state_store.complete_manual_entry(entry.id, {"gstin": "Y"}, "u-2")


class TestDueIndexIntegration:
    """Integration tests for timer claiming."""

    def test_claim_fires_once(self, redis_client):
        due_index = RedisDueIndex(redis_client)
        entry = due_index.schedule(
            TimerEntry(
                instance_id="inst-int-1",
                node_id="wait",
                kind=TimerKind.RESUME,
                due_at=NOW,
            )
        )

        later = NOW + timedelta(minutes=1)
        assert [e.id for e in due_index.due(later, 10)] == [entry.id]
        assert due_index.claim(entry.id, later) is not None
        assert due_index.claim(entry.id, later) is None
        assert due_index.count() == 0
