"""Redis-based store for AI suggestions."""

from datetime import datetime, timezone
from typing import Any

from redis import Redis

from models.suggestion import AISuggestion, PendingFilters, SuggestionStatus
from services.errors import ConflictError, NotFoundError


class RedisSuggestionStore:
    """Persists suggestions and guards their PENDING to terminal transition."""

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client

    def _suggestion_key(self, suggestion_id: str) -> str:
        return f"suggestion:{suggestion_id}"

    def _all_key(self) -> str:
        return "suggestions"

    def _pending_key(self) -> str:
        return "suggestions:pending"

    def _decided_key(self) -> str:
        return "suggestions:decided"

    def _utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    def create(self, suggestion: AISuggestion) -> AISuggestion:
        """Persist a new suggestion."""
        if suggestion is None:
            raise ValueError("suggestion is required")

        key = self._suggestion_key(suggestion.id)
        if not self._redis.set(key, suggestion.model_dump_json(), nx=True):
            raise ConflictError(f"Suggestion already exists: {suggestion.id}")

        score = suggestion.created_at.timestamp()
        self._redis.zadd(self._all_key(), {suggestion.id: score})
        if suggestion.status == SuggestionStatus.PENDING:
            self._redis.zadd(self._pending_key(), {suggestion.id: score})
        return suggestion

    def get(self, suggestion_id: str) -> AISuggestion:
        """Get suggestion by id."""
        if not suggestion_id:
            raise ValueError("suggestion_id is required")

        data = self._redis.get(self._suggestion_key(suggestion_id))
        if data is None:
            raise NotFoundError("Suggestion", suggestion_id)
        return AISuggestion.model_validate_json(data)

    def decide(
        self,
        suggestion_id: str,
        status: SuggestionStatus,
        update: dict[str, Any],
    ) -> AISuggestion:
        """Move a PENDING suggestion to a terminal status atomically.

        Raises ConflictError when the suggestion is already terminal.
        """
        if not status.is_terminal:
            raise ValueError("status must be terminal")

        key = self._suggestion_key(suggestion_id)

        def _decide(pipe) -> AISuggestion:
            data = pipe.get(key)
            if data is None:
                raise NotFoundError("Suggestion", suggestion_id)
            suggestion = AISuggestion.model_validate_json(data)
            if suggestion.status.is_terminal:
                raise ConflictError(
                    f"Suggestion {suggestion_id} is already {suggestion.status.value}"
                )

            now = self._utc_now()
            decided = suggestion.model_copy(
                update={**update, "status": status, "updated_at": now}
            )
            pipe.multi()
            pipe.set(key, decided.model_dump_json())
            pipe.zrem(self._pending_key(), suggestion_id)
            decided_at = decided.approved_at or now
            pipe.zadd(self._decided_key(), {suggestion_id: decided_at.timestamp()})
            return decided

        return self._redis.transaction(_decide, key, value_from_callable=True)

    def list_pending(self, filters: PendingFilters | None = None) -> list[AISuggestion]:
        """PENDING suggestions oldest first, filtered."""
        filters = filters or PendingFilters()
        suggestions = []
        for suggestion_id in self._redis.zrange(self._pending_key(), 0, -1):
            suggestion = self.get(suggestion_id)
            if not _matches(suggestion, filters):
                continue
            suggestions.append(suggestion)
        return suggestions

    def list_created_since(self, since: datetime) -> list[AISuggestion]:
        """Suggestions created at or after since, oldest first."""
        ids = self._redis.zrangebyscore(self._all_key(), since.timestamp(), "+inf")
        return [self.get(suggestion_id) for suggestion_id in ids]

    def list_decided_since(self, since: datetime) -> list[AISuggestion]:
        """Suggestions approved, edited or rejected at or after since."""
        ids = self._redis.zrangebyscore(self._decided_key(), since.timestamp(), "+inf")
        return [self.get(suggestion_id) for suggestion_id in ids]


def _matches(suggestion: AISuggestion, filters: PendingFilters) -> bool:
    if filters.suggestion_type and suggestion.suggestion_type != filters.suggestion_type:
        return False
    if (
        filters.workflow_instance_id
        and suggestion.workflow_instance_id != filters.workflow_instance_id
    ):
        return False
    if (
        filters.min_confidence is not None
        and suggestion.confidence_score < filters.min_confidence
    ):
        return False
    if (
        filters.max_confidence is not None
        and suggestion.confidence_score > filters.max_confidence
    ):
        return False
    return True
