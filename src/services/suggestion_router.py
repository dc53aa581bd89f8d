"""Confidence-gated routing and approval of AI suggestions."""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from models.suggestion import (
    AISuggestion,
    ApprovalRules,
    BulkApprovalResult,
    BulkItemResult,
    BulkRejectionResult,
    ConfidenceBreakdown,
    PendingFilters,
    RoutingTier,
    SubmissionResult,
    SuggestionStats,
    SuggestionStatus,
    SuggestionSubmission,
)
from services.approval_rules_store import RedisApprovalRulesStore
from services.errors import EngineError, ValidationError
from services.notifiers import SuggestionNotifier
from services.suggestion_store import RedisSuggestionStore

logger = logging.getLogger(__name__)

MAX_BULK_IDS = 50


def route_by_confidence(confidence: float, rules: ApprovalRules) -> RoutingTier:
    """Routing tier for a score. Non-decreasing leniency as confidence rises."""
    if confidence >= rules.auto_approve_threshold:
        return RoutingTier.AUTO_APPROVED
    if confidence >= rules.require_review_threshold:
        return RoutingTier.QUEUE
    return RoutingTier.ESCALATED


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SuggestionRouter:
    """Routes submitted suggestions and runs the approval state machine."""

    def __init__(
        self,
        suggestion_store: RedisSuggestionStore,
        rules_store: RedisApprovalRulesStore,
        default_rules: ApprovalRules | None = None,
        notifier: SuggestionNotifier | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if suggestion_store is None:
            raise ValueError("suggestion_store is required")
        if rules_store is None:
            raise ValueError("rules_store is required")

        self._store = suggestion_store
        self._rules_store = rules_store
        self._default_rules = default_rules or ApprovalRules()
        self._notifier = notifier
        self._clock = clock

    def rules_for(
        self, agent_id: str | None, suggestion_type: str | None = None
    ) -> ApprovalRules:
        """Agent override if one is stored, else the configured defaults."""
        rules = self._rules_store.rules_for(agent_id, suggestion_type)
        return rules if rules is not None else self._default_rules

    def submit(self, submission: SuggestionSubmission | dict[str, Any]) -> SubmissionResult:
        """Persist a suggestion and route it by confidence."""
        if submission is None:
            raise ValidationError("submission is required")
        if isinstance(submission, dict):
            try:
                submission = SuggestionSubmission.model_validate(submission)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid suggestion: {e}") from e

        confidence = submission.confidence_score
        if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
            raise ValidationError(
                f"confidence_score must be between 0 and 1, got {confidence}"
            )

        rules = self.rules_for(submission.agent_id, submission.suggestion_type)
        tier = route_by_confidence(confidence, rules)
        now = self._clock()

        auto = tier == RoutingTier.AUTO_APPROVED
        suggestion = AISuggestion(
            id=f"sug-{uuid.uuid4().hex[:12]}",
            **submission.model_dump(),
            requires_approval=not auto,
            routed_to=tier,
            assigned_to=rules.escalate_to_role if tier == RoutingTier.ESCALATED else None,
            status=SuggestionStatus.APPROVED if auto else SuggestionStatus.PENDING,
            approved_at=now if auto else None,
            created_at=now,
            updated_at=now,
        )
        self._store.create(suggestion)
        logger.info(
            f"Suggestion {suggestion.id} ({suggestion.suggestion_type}, "
            f"confidence {confidence:.2f}) routed to {tier.value}"
        )

        if auto:
            self._notify(suggestion, "auto_approved")

        return SubmissionResult(
            suggestion_id=suggestion.id,
            status=suggestion.status,
            routed_to=tier,
            assigned_to=suggestion.assigned_to,
        )

    def get(self, suggestion_id: str) -> AISuggestion:
        """Get suggestion by id."""
        return self._store.get(suggestion_id)

    def approve(
        self,
        suggestion_id: str,
        user_id: str,
        edited_data: dict[str, Any] | None = None,
    ) -> AISuggestion:
        """Approve a PENDING suggestion, as EDITED when edited_data is given."""
        if not user_id:
            raise ValidationError("user_id is required")

        status = (
            SuggestionStatus.EDITED if edited_data is not None else SuggestionStatus.APPROVED
        )
        update: dict[str, Any] = {"approved_by": user_id, "approved_at": self._clock()}
        if edited_data is not None:
            update["edited_data"] = edited_data

        suggestion = self._store.decide(suggestion_id, status, update)
        logger.info(f"Suggestion {suggestion_id} {status.value.lower()} by {user_id}")
        self._notify(suggestion, status.value.lower())
        return suggestion

    def reject(self, suggestion_id: str, user_id: str, reason: str) -> AISuggestion:
        """Reject a PENDING suggestion. A reason is mandatory."""
        if not user_id:
            raise ValidationError("user_id is required")
        if not reason or not reason.strip():
            raise ValidationError("reason is required")

        suggestion = self._store.decide(
            suggestion_id,
            SuggestionStatus.REJECTED,
            {
                "approved_by": user_id,
                "approved_at": self._clock(),
                "rejection_reason": reason.strip(),
            },
        )
        logger.info(f"Suggestion {suggestion_id} rejected by {user_id}: {reason}")
        self._notify(suggestion, "rejected")
        return suggestion

    def bulk_approve(self, suggestion_ids: list[str], user_id: str) -> BulkApprovalResult:
        """Approve each id independently and report per-item outcomes."""
        self._check_bulk_ids(suggestion_ids)
        results = [
            self._bulk_item(suggestion_id, lambda sid: self.approve(sid, user_id))
            for suggestion_id in suggestion_ids
        ]
        approved = sum(1 for r in results if r.status == "fulfilled")
        return BulkApprovalResult(
            total=len(results),
            approved=approved,
            failed=len(results) - approved,
            results=results,
        )

    def bulk_reject(
        self, suggestion_ids: list[str], user_id: str, reason: str
    ) -> BulkRejectionResult:
        """Reject each id independently and report per-item outcomes."""
        self._check_bulk_ids(suggestion_ids)
        if not reason or not reason.strip():
            raise ValidationError("reason is required")

        results = [
            self._bulk_item(suggestion_id, lambda sid: self.reject(sid, user_id, reason))
            for suggestion_id in suggestion_ids
        ]
        rejected = sum(1 for r in results if r.status == "fulfilled")
        return BulkRejectionResult(
            total=len(results),
            rejected=rejected,
            failed=len(results) - rejected,
            results=results,
        )

    def list_pending(self, filters: PendingFilters | None = None) -> list[AISuggestion]:
        """PENDING suggestions oldest first."""
        return self._store.list_pending(filters)

    def stats(self) -> SuggestionStats:
        """Pending counts by confidence band and the last 24h review figures."""
        pending = self._store.list_pending()
        breakdown = {"high": 0, "medium": 0, "low": 0}
        for suggestion in pending:
            rules = self.rules_for(suggestion.agent_id, suggestion.suggestion_type)
            if suggestion.confidence_score >= rules.auto_approve_threshold:
                breakdown["high"] += 1
            elif suggestion.confidence_score >= rules.require_review_threshold:
                breakdown["medium"] += 1
            else:
                breakdown["low"] += 1

        now = self._clock()
        since = now - timedelta(hours=24)
        recent = self._store.list_created_since(since)
        approved = sum(
            1
            for s in recent
            if s.status in (SuggestionStatus.APPROVED, SuggestionStatus.EDITED)
        )
        approval_rate = approved / len(recent) if recent else 0.0

        review_times = [
            (s.approved_at - s.created_at).total_seconds()
            for s in self._store.list_decided_since(since)
            if s.approved_at is not None and s.routed_to != RoutingTier.AUTO_APPROVED
        ]
        avg_review = sum(review_times) / len(review_times) if review_times else 0.0

        return SuggestionStats(
            total_pending=len(pending),
            by_confidence=ConfidenceBreakdown(**breakdown),
            approval_rate_24h=round(approval_rate, 4),
            avg_review_time_seconds=round(avg_review, 2),
        )

    def _check_bulk_ids(self, suggestion_ids: list[str]) -> None:
        if not suggestion_ids:
            raise ValidationError("suggestion_ids must not be empty")
        if len(suggestion_ids) > MAX_BULK_IDS:
            raise ValidationError(f"At most {MAX_BULK_IDS} suggestion_ids per request")

    def _bulk_item(
        self, suggestion_id: str, action: Callable[[str], AISuggestion]
    ) -> BulkItemResult:
        try:
            action(suggestion_id)
        except EngineError as e:
            logger.warning(f"Bulk action failed for suggestion {suggestion_id}: {e}")
            return BulkItemResult(suggestion_id=suggestion_id, status="rejected", error=str(e))
        return BulkItemResult(suggestion_id=suggestion_id, status="fulfilled")

    def _notify(self, suggestion: AISuggestion, event: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(suggestion, event)
        except Exception as e:
            logger.warning(f"Notification failed for suggestion {suggestion.id}: {e}")
