"""Redis-based store for versioned workflow definitions."""

import logging
import uuid
from datetime import datetime, timezone

from redis import Redis

from models.definition import DefinitionStatus, WorkflowDefinition, WorkflowDefinitionInput
from services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class RedisDefinitionStore:
    """Stores definitions as immutable graph snapshots, one key per version."""

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client

    def _definition_key(self, definition_id: str) -> str:
        return f"definition:{definition_id}"

    def _version_counter_key(self, name: str) -> str:
        return f"definition_versions:{name}"

    def _versions_key(self, name: str) -> str:
        return f"definition_names:{name}"

    def _active_key(self) -> str:
        return "definitions:active"

    def _utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    def create(self, definition_input: WorkflowDefinitionInput) -> WorkflowDefinition:
        """Store a new DRAFT version of the named definition."""
        if definition_input is None:
            raise ValueError("definition_input is required")

        version = self._redis.incr(self._version_counter_key(definition_input.name))
        now = self._utc_now()
        definition = WorkflowDefinition(
            **definition_input.model_dump(),
            id=f"def-{uuid.uuid4().hex[:12]}",
            version=version,
            status=DefinitionStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )

        self._redis.set(self._definition_key(definition.id), definition.model_dump_json())
        self._redis.zadd(self._versions_key(definition.name), {definition.id: version})
        logger.info(
            f"Created definition {definition.id} ({definition.name} v{version})"
        )
        return definition

    def get(self, definition_id: str) -> WorkflowDefinition:
        """Get a definition by id."""
        if not definition_id:
            raise ValueError("definition_id is required")

        data = self._redis.get(self._definition_key(definition_id))
        if data is None:
            raise NotFoundError("Definition", definition_id)
        return WorkflowDefinition.model_validate_json(data)

    def latest_version(self, name: str) -> WorkflowDefinition:
        """Get the highest version stored under name."""
        if not name:
            raise ValueError("name is required")

        ids = self._redis.zrange(self._versions_key(name), -1, -1)
        if not ids:
            raise NotFoundError("Definition", name)
        return self.get(ids[0])

    def list_active(self) -> list[WorkflowDefinition]:
        """All ACTIVE definitions, ordered by name then version."""
        definitions = [self.get(def_id) for def_id in self._redis.smembers(self._active_key())]
        return sorted(definitions, key=lambda d: (d.name, d.version))

    def activate(self, definition_id: str) -> WorkflowDefinition:
        """Mark a definition ACTIVE so instances can be started from it."""
        definition = self.get(definition_id)
        if definition.status == DefinitionStatus.ARCHIVED:
            raise ConflictError(f"Definition is archived: {definition_id}")
        updated = self._set_status(definition, DefinitionStatus.ACTIVE)
        self._redis.sadd(self._active_key(), definition_id)
        return updated

    def archive(self, definition_id: str) -> WorkflowDefinition:
        """Archive a definition. Running instances keep their pinned snapshot."""
        definition = self.get(definition_id)
        updated = self._set_status(definition, DefinitionStatus.ARCHIVED)
        self._redis.srem(self._active_key(), definition_id)
        return updated

    def _set_status(
        self, definition: WorkflowDefinition, status: DefinitionStatus
    ) -> WorkflowDefinition:
        updated = definition.model_copy(
            update={"status": status, "updated_at": self._utc_now()}
        )
        self._redis.set(self._definition_key(definition.id), updated.model_dump_json())
        logger.info(f"Definition {definition.id} is now {status.value}")
        return updated
