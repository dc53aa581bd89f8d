"""Redis sorted-set index of timer deadlines."""

from datetime import datetime, timedelta

from redis import Redis

from models.timer import TimerEntry


class RedisDueIndex:
    """ZSET-based due-index scored by deadline timestamp."""

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client

    def _index_key(self) -> str:
        return "timers:due"

    def _entry_key(self, entry_id: str) -> str:
        return f"timer:{entry_id}"

    def _instance_key(self, instance_id: str) -> str:
        return f"timers:instance:{instance_id}"

    def schedule(self, entry: TimerEntry) -> TimerEntry:
        """Add entry unless one with the same id exists. Returns the stored entry."""
        if entry is None:
            raise ValueError("entry is required")

        key = self._entry_key(entry.id)
        if not self._redis.set(key, entry.model_dump_json(), nx=True):
            return self.get(entry.id)

        self._redis.zadd(self._index_key(), {entry.id: entry.due_at.timestamp()})
        self._redis.sadd(self._instance_key(entry.instance_id), entry.id)
        return entry

    def get(self, entry_id: str) -> TimerEntry | None:
        """Stored entry, or None once removed."""
        data = self._redis.get(self._entry_key(entry_id))
        if data is None:
            return None
        return TimerEntry.model_validate_json(data)

    def due(self, now: datetime, limit: int = 100) -> list[TimerEntry]:
        """Entries whose deadline is at or before now, earliest first."""
        if limit <= 0:
            raise ValueError("limit must be positive")

        ids = self._redis.zrangebyscore(
            self._index_key(), "-inf", now.timestamp(), start=0, num=limit
        )
        entries = []
        for entry_id in ids:
            entry = self.get(entry_id)
            if entry is None:
                self._redis.zrem(self._index_key(), entry_id)
                continue
            entries.append(entry)
        return entries

    def claim(self, entry_id: str, now: datetime) -> TimerEntry | None:
        """Record a firing atomically.

        Returns the updated entry when this caller may fire it, or None when it
        was removed or already fired within its interval. A repeating entry is
        rescheduled one interval later; a one-shot entry leaves the index.
        """
        key = self._entry_key(entry_id)

        def _claim(pipe) -> TimerEntry | None:
            data = pipe.get(key)
            if data is None:
                return None
            entry = TimerEntry.model_validate_json(data)
            if not entry.can_fire(now):
                return None

            fired = entry.model_copy(
                update={"last_fired_at": now, "fire_count": entry.fire_count + 1}
            )
            pipe.multi()
            pipe.set(key, fired.model_dump_json())
            if fired.repeats:
                next_due = now + timedelta(seconds=fired.interval_seconds)
                pipe.zadd(self._index_key(), {entry_id: next_due.timestamp()})
            else:
                pipe.zrem(self._index_key(), entry_id)
            return fired

        return self._redis.transaction(_claim, key, value_from_callable=True)

    def restore(self, entry: TimerEntry) -> None:
        """Put back an entry as it was before a claim whose firing failed."""
        key = self._entry_key(entry.id)
        if not self._redis.exists(key):
            return
        self._redis.set(key, entry.model_dump_json())
        self._redis.zadd(self._index_key(), {entry.id: entry.due_at.timestamp()})

    def remove(self, entry: TimerEntry) -> None:
        """Drop an entry from the index."""
        self._redis.zrem(self._index_key(), entry.id)
        self._redis.srem(self._instance_key(entry.instance_id), entry.id)
        self._redis.delete(self._entry_key(entry.id))

    def list_for_instance(self, instance_id: str) -> list[TimerEntry]:
        """All entries registered for an instance."""
        if not instance_id:
            raise ValueError("instance_id is required")

        entries = []
        for entry_id in self._redis.smembers(self._instance_key(instance_id)):
            entry = self.get(entry_id)
            if entry is not None:
                entries.append(entry)
        return sorted(entries, key=lambda e: e.due_at)

    def clear_node(self, instance_id: str, node_id: str) -> int:
        """Remove every node-level entry for (instance, node). Returns the count."""
        removed = 0
        for entry in self.list_for_instance(instance_id):
            if entry.node_id == node_id:
                self.remove(entry)
                removed += 1
        return removed

    def clear_instance(self, instance_id: str) -> int:
        """Remove every entry for an instance. Returns the count."""
        entries = self.list_for_instance(instance_id)
        for entry in entries:
            self.remove(entry)
        self._redis.delete(self._instance_key(instance_id))
        return len(entries)

    def count(self) -> int:
        """Number of entries in the index."""
        return self._redis.zcard(self._index_key())
