"""Redis-based state store for workflow instances and manual entry records."""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from redis import Redis
from redis.exceptions import LockError

from models.state import (
    InstanceStatus,
    ManualEntryRecord,
    ManualEntryStatus,
    PauseReason,
    WorkflowInstance,
)
from services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class InstanceInterrupted(Exception):
    """Raised when an instance was cancelled or operator-paused while a run held it."""

    def __init__(self, instance: WorkflowInstance):
        self.instance = instance
        super().__init__(
            f"Instance {instance.id} was interrupted: {instance.status.value}"
        )


class RedisStateStore:
    """Manages instance and manual entry state in Redis."""

    def __init__(
        self,
        redis_client: Redis,
        lock_timeout: float = 300.0,
        lock_wait: float = 5.0,
    ):
        if redis_client is None:
            raise ValueError("redis_client is required")
        if lock_timeout <= 0:
            raise ValueError("lock_timeout must be positive")
        if lock_wait < 0:
            raise ValueError("lock_wait must be non-negative")
        self._redis = redis_client
        self._lock_timeout = lock_timeout
        self._lock_wait = lock_wait

    def _instance_key(self, instance_id: str) -> str:
        return f"instance:{instance_id}"

    def _instances_key(self) -> str:
        return "instances"

    def _lock_key(self, instance_id: str) -> str:
        return f"lock:instance:{instance_id}"

    def _entry_key(self, entry_id: str) -> str:
        return f"manual_entry:{entry_id}"

    def _entry_index_key(self, instance_id: str, node_id: str) -> str:
        return f"manual_entry_index:{instance_id}:{node_id}"

    def _pending_entries_key(self) -> str:
        return "manual_entries:pending"

    def _utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    # Instances

    def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist a new instance. Fails if the id is already taken."""
        if instance is None:
            raise ValueError("instance is required")

        created = self._redis.set(
            self._instance_key(instance.id), instance.model_dump_json(), nx=True
        )
        if not created:
            raise ConflictError(f"Instance already exists: {instance.id}")

        self._redis.zadd(
            self._instances_key(), {instance.id: instance.created_at.timestamp()}
        )
        return instance

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        """Get instance state by id."""
        if not instance_id:
            raise ValueError("instance_id is required")

        data = self._redis.get(self._instance_key(instance_id))
        if data is None:
            raise NotFoundError("Instance", instance_id)
        return WorkflowInstance.model_validate_json(data)

    def list_instances(
        self,
        status: InstanceStatus | None = None,
        definition_id: str | None = None,
    ) -> list[WorkflowInstance]:
        """List instances oldest first, optionally filtered."""
        instances = []
        for instance_id in self._redis.zrange(self._instances_key(), 0, -1):
            instance = self.get_instance(instance_id)
            if status is not None and instance.status != status:
                continue
            if definition_id is not None and instance.definition_id != definition_id:
                continue
            instances.append(instance)
        return instances

    def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Write run progress, unless the stored record was interrupted meanwhile.

        A stored CANCELLED status is never overwritten. A stored operator pause
        keeps the progress but stays PAUSED. Both raise InstanceInterrupted.
        """
        if instance is None:
            raise ValueError("instance is required")

        key = self._instance_key(instance.id)

        def _save(pipe) -> tuple[WorkflowInstance, bool]:
            data = pipe.get(key)
            if data is None:
                raise NotFoundError("Instance", instance.id)
            stored = WorkflowInstance.model_validate_json(data)

            if stored.status == InstanceStatus.CANCELLED:
                return stored, True

            interrupted = False
            to_write = instance
            if (
                stored.status == InstanceStatus.PAUSED
                and stored.pause_reason == PauseReason.OPERATOR
                and instance.status == InstanceStatus.IN_PROGRESS
            ):
                to_write = instance.model_copy(
                    update={
                        "status": InstanceStatus.PAUSED,
                        "pause_reason": PauseReason.OPERATOR,
                        "paused_at": stored.paused_at,
                    }
                )
                interrupted = True

            pipe.multi()
            pipe.set(key, to_write.model_dump_json())
            return to_write, interrupted

        saved, interrupted = self._redis.transaction(
            _save, key, value_from_callable=True
        )
        if interrupted:
            raise InstanceInterrupted(saved)
        return saved

    def update_instance(
        self,
        instance_id: str,
        allowed_from: tuple[InstanceStatus, ...],
        update: dict[str, Any],
    ) -> WorkflowInstance:
        """Apply an administrative status change atomically.

        Raises ConflictError when the stored status is not in allowed_from.
        """
        key = self._instance_key(instance_id)

        def _update(pipe) -> WorkflowInstance:
            data = pipe.get(key)
            if data is None:
                raise NotFoundError("Instance", instance_id)
            stored = WorkflowInstance.model_validate_json(data)
            if stored.status not in allowed_from:
                raise ConflictError(
                    f"Instance {instance_id} is {stored.status.value}"
                )
            updated = stored.model_copy(
                update={**update, "updated_at": self._utc_now()}
            )
            pipe.multi()
            pipe.set(key, updated.model_dump_json())
            return updated

        return self._redis.transaction(_update, key, value_from_callable=True)

    @contextmanager
    def instance_lock(self, instance_id: str) -> Iterator[None]:
        """Hold the exclusive per-instance run lock.

        Raises ConflictError if another run keeps it past the wait time.
        """
        lock = self._redis.lock(
            self._lock_key(instance_id),
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_wait,
        )
        if not lock.acquire():
            raise ConflictError(f"Instance is busy: {instance_id}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError as e:
                logger.warning(f"Lock for instance {instance_id} expired early: {e}")

    # Manual entries

    def get_or_create_manual_entry(
        self,
        instance_id: str,
        node_id: str,
        form_schema: dict[str, Any] | None = None,
        form_ui: dict[str, Any] | None = None,
        assign_to: str | None = None,
        allow_edit: bool = False,
    ) -> tuple[ManualEntryRecord, bool]:
        """Return the entry for (instance, node), creating it on first call.

        The second element is True when a new record was created.
        """
        if not instance_id:
            raise ValueError("instance_id is required")
        if not node_id:
            raise ValueError("node_id is required")

        index_key = self._entry_index_key(instance_id, node_id)
        entry_id = f"entry-{uuid.uuid4().hex[:12]}"
        if not self._redis.set(index_key, entry_id, nx=True):
            return self.get_manual_entry(self._redis.get(index_key)), False

        now = self._utc_now()
        entry = ManualEntryRecord(
            id=entry_id,
            instance_id=instance_id,
            node_id=node_id,
            form_schema=form_schema or {},
            form_ui=form_ui or {},
            assign_to=assign_to,
            allow_edit=allow_edit,
            status=ManualEntryStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._redis.set(self._entry_key(entry_id), entry.model_dump_json())
        self._redis.zadd(self._pending_entries_key(), {entry_id: now.timestamp()})
        return entry, True

    def get_manual_entry(self, entry_id: str) -> ManualEntryRecord:
        """Get a manual entry record by id."""
        if not entry_id:
            raise ValueError("entry_id is required")

        data = self._redis.get(self._entry_key(entry_id))
        if data is None:
            raise NotFoundError("ManualEntry", entry_id)
        return ManualEntryRecord.model_validate_json(data)

    def find_manual_entry(
        self, instance_id: str, node_id: str
    ) -> ManualEntryRecord | None:
        """Entry for (instance, node), if one has been created."""
        entry_id = self._redis.get(self._entry_index_key(instance_id, node_id))
        if entry_id is None:
            return None
        return self.get_manual_entry(entry_id)

    def list_pending_manual_entries(
        self, assign_to: str | None = None
    ) -> list[ManualEntryRecord]:
        """PENDING entries oldest first, optionally for one assignee."""
        entries = []
        for entry_id in self._redis.zrange(self._pending_entries_key(), 0, -1):
            entry = self.get_manual_entry(entry_id)
            if assign_to is not None and entry.assign_to != assign_to:
                continue
            entries.append(entry)
        return entries

    def complete_manual_entry(
        self,
        entry_id: str,
        data: dict[str, Any],
        user_id: str,
    ) -> ManualEntryRecord:
        """Record a submission. A COMPLETED entry only accepts edits when allow_edit is set."""
        key = self._entry_key(entry_id)

        def _complete(pipe) -> ManualEntryRecord:
            raw = pipe.get(key)
            if raw is None:
                raise NotFoundError("ManualEntry", entry_id)
            entry = ManualEntryRecord.model_validate_json(raw)
            if entry.status == ManualEntryStatus.COMPLETED and not entry.allow_edit:
                raise ConflictError(f"Manual entry already submitted: {entry_id}")

            now = self._utc_now()
            updated = entry.model_copy(
                update={
                    "status": ManualEntryStatus.COMPLETED,
                    "submitted_data": data,
                    "submitted_by": user_id,
                    "submitted_at": now,
                    "updated_at": now,
                }
            )
            pipe.multi()
            pipe.set(key, updated.model_dump_json())
            pipe.zrem(self._pending_entries_key(), entry_id)
            return updated

        return self._redis.transaction(_complete, key, value_from_callable=True)
