"""Unit tests for RedisDefinitionStore."""

import fakeredis
import pytest

from models.definition import DefinitionStatus, WorkflowDefinitionInput
from services.definition_store import RedisDefinitionStore
from services.errors import ConflictError, NotFoundError


def definition_input(name: str = "quote-follow-up") -> WorkflowDefinitionInput:
    return WorkflowDefinitionInput.model_validate(
        {
            "name": name,
            "nodes": [{"id": "start", "type": "START"}, {"id": "end", "type": "END"}],
            "edges": [{"source": "start", "target": "end"}],
            "slaConfig": {
                "resolutionTimeMinutes": 60,
                "escalationRules": [{"afterMinutes": 30, "escalateTo": ["ops"]}],
            },
        }
    )


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisDefinitionStore(redis_client)


class TestRedisDefinitionStoreInit:
    def test_init_without_client_raises(self):
        with pytest.raises(ValueError, match="redis_client is required"):
            RedisDefinitionStore(None)


class TestCreate:
    """Tests for versioned creation."""

    def test_create_assigns_id_and_version(self, store):
        definition = store.create(definition_input())

        assert definition.id.startswith("def-")
        assert definition.version == 1
        assert definition.status == DefinitionStatus.DRAFT

    def test_versions_monotonic_per_name(self, store):
        first = store.create(definition_input())
        second = store.create(definition_input())
        other = store.create(definition_input("kyc-chase"))

        assert (first.version, second.version) == (1, 2)
        assert other.version == 1
        assert first.id != second.id

    def test_round_trip_keeps_sla(self, store):
        created = store.create(definition_input())
        loaded = store.get(created.id)

        assert loaded.sla_config.resolution_time_minutes == 60
        assert loaded.sla_config.escalation_rules[0].escalate_to == ["ops"]
        assert loaded.nodes == created.nodes

    def test_latest_version(self, store):
        store.create(definition_input())
        second = store.create(definition_input())
        assert store.latest_version("quote-follow-up").id == second.id

    def test_latest_version_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.latest_version("nope")

    def test_get_unknown(self, store):
        with pytest.raises(NotFoundError, match="Definition not found: def-x"):
            store.get("def-x")


class TestStatus:
    """Tests for activate and archive."""

    def test_activate_lists_active(self, store):
        draft = store.create(definition_input())
        active = store.activate(draft.id)

        assert active.status == DefinitionStatus.ACTIVE
        assert [d.id for d in store.list_active()] == [draft.id]

    def test_archive_removes_from_active(self, store):
        definition = store.create(definition_input())
        store.activate(definition.id)
        archived = store.archive(definition.id)

        assert archived.status == DefinitionStatus.ARCHIVED
        assert store.list_active() == []

    def test_archived_cannot_be_activated(self, store):
        definition = store.create(definition_input())
        store.archive(definition.id)
        with pytest.raises(ConflictError, match="archived"):
            store.activate(definition.id)

    def test_status_change_keeps_graph(self, store):
        definition = store.create(definition_input())
        store.activate(definition.id)
        assert store.get(definition.id).edges == definition.edges
