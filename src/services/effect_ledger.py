"""Per-node record of side effects already performed, for idempotent re-entry."""

import json
from typing import Any

from redis import Redis


class RedisEffectLedger:
    """Stores named effect results per (instance, node) in a Redis hash.

    A handler checks the ledger before performing a side effect and records
    the result right after, so a resumed node returns the cached result
    instead of repeating the effect.
    """

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client

    def _ledger_key(self, instance_id: str, node_id: str) -> str:
        return f"effect:{instance_id}:{node_id}"

    def has(self, instance_id: str, node_id: str, effect: str) -> bool:
        """Whether an effect was recorded, even with a None result."""
        if not instance_id:
            raise ValueError("instance_id is required")
        if not node_id:
            raise ValueError("node_id is required")
        return bool(self._redis.hexists(self._ledger_key(instance_id, node_id), effect))

    def get(self, instance_id: str, node_id: str, effect: str) -> Any | None:
        """Cached result of an effect, or None if it has not happened.

        Use ``has`` to tell a recorded None from a missing record.
        """
        if not instance_id:
            raise ValueError("instance_id is required")
        if not node_id:
            raise ValueError("node_id is required")

        raw = self._redis.hget(self._ledger_key(instance_id, node_id), effect)
        if raw is None:
            return None
        return json.loads(raw)

    def record(self, instance_id: str, node_id: str, effect: str, result: Any) -> Any:
        """Record an effect result. The first recorded result wins and is returned."""
        if not instance_id:
            raise ValueError("instance_id is required")
        if not node_id:
            raise ValueError("node_id is required")

        key = self._ledger_key(instance_id, node_id)
        if self._redis.hsetnx(key, effect, json.dumps(result, default=str)):
            return result
        return json.loads(self._redis.hget(key, effect))

    def clear(self, instance_id: str, node_id: str) -> None:
        """Forget all effects for a node, before it is entered afresh."""
        self._redis.delete(self._ledger_key(instance_id, node_id))
