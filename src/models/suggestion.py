"""AI suggestion and approval rule models."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class SuggestionStatus(str, Enum):
    """AI suggestion status. Everything but PENDING is terminal."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EDITED = "EDITED"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


class SuggestionType(str, Enum):
    """Kinds of machine-generated suggestions."""

    EMAIL_DRAFT = "EMAIL_DRAFT"
    NEXT_STEP = "NEXT_STEP"
    DATA_EXTRACTION = "DATA_EXTRACTION"
    QUOTATION_DRAFT = "QUOTATION_DRAFT"
    DOCUMENT_CLASSIFICATION = "DOCUMENT_CLASSIFICATION"


class RoutingTier(str, Enum):
    """Where a suggestion is routed, from most to least lenient."""

    AUTO_APPROVED = "auto_approved"
    QUEUE = "queue"
    ESCALATED = "escalated"


def _check_unit_interval(name: str, v: float) -> float:
    if not 0.0 <= v <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1")
    return v


class ApprovalRules(BaseModel):
    """Confidence thresholds that decide how a suggestion is routed."""

    model_config = ConfigDict(frozen=True)

    auto_approve_threshold: float = 0.90
    require_review_threshold: float = 0.70
    escalate_below_threshold: float = 0.50
    escalate_to_role: str = "manager"

    @model_validator(mode="after")
    def thresholds_ordered(self) -> "ApprovalRules":
        _check_unit_interval("auto_approve_threshold", self.auto_approve_threshold)
        _check_unit_interval("require_review_threshold", self.require_review_threshold)
        _check_unit_interval("escalate_below_threshold", self.escalate_below_threshold)
        if not (
            self.auto_approve_threshold
            >= self.require_review_threshold
            >= self.escalate_below_threshold
        ):
            raise ValueError(
                "thresholds must satisfy auto_approve >= require_review >= escalate_below"
            )
        return self


class AgentApprovalRule(BaseModel):
    """Approval rules override for one agent, optionally for one suggestion type."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    suggestion_type: str | None = None
    rules: ApprovalRules

    @field_validator("agent_id")
    @classmethod
    def agent_id_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("agent_id is required")
        return v


class SuggestionSubmission(BaseModel):
    """Suggestion as submitted by an automation."""

    model_config = ConfigDict(frozen=True)

    workflow_instance_id: str
    node_id: str | None = None
    agent_id: str | None = None
    suggestion_type: str
    suggestion_data: dict[str, Any] = {}
    confidence_score: float
    guard_rail_checks: dict[str, Any] = {}

    @field_validator("workflow_instance_id", "suggestion_type")
    @classmethod
    def required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("value is required")
        return v


class AISuggestion(BaseModel):
    """Persisted suggestion with its approval state."""

    id: str
    workflow_instance_id: str
    node_id: str | None = None
    agent_id: str | None = None
    suggestion_type: str
    suggestion_data: dict[str, Any] = {}
    confidence_score: float
    guard_rail_checks: dict[str, Any] = {}
    requires_approval: bool = True
    routed_to: RoutingTier
    assigned_to: str | None = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    edited_data: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def effective_data(self) -> dict[str, Any]:
        """Data to act on: the reviewer's edit when present, else the original."""
        if self.edited_data is not None:
            return self.edited_data
        return self.suggestion_data


class SubmissionResult(BaseModel):
    """Routing decision returned from submit."""

    model_config = ConfigDict(frozen=True)

    suggestion_id: str
    status: SuggestionStatus
    routed_to: RoutingTier
    assigned_to: str | None = None


class BulkItemResult(BaseModel):
    """Outcome for one id in a bulk request."""

    model_config = ConfigDict(frozen=True)

    suggestion_id: str
    status: Literal["fulfilled", "rejected"]
    error: str | None = None


class BulkApprovalResult(BaseModel):
    """Per-item results and counts for a bulk approve."""

    model_config = ConfigDict(frozen=True)

    total: int
    approved: int
    failed: int
    results: list[BulkItemResult]


class BulkRejectionResult(BaseModel):
    """Per-item results and counts for a bulk reject."""

    model_config = ConfigDict(frozen=True)

    total: int
    rejected: int
    failed: int
    results: list[BulkItemResult]


class PendingFilters(BaseModel):
    """Filters for listing pending suggestions."""

    model_config = ConfigDict(frozen=True)

    suggestion_type: str | None = None
    min_confidence: float | None = None
    max_confidence: float | None = None
    workflow_instance_id: str | None = None


class ConfidenceBreakdown(BaseModel):
    """Pending suggestion counts by confidence band."""

    model_config = ConfigDict(frozen=True)

    high: int = 0
    medium: int = 0
    low: int = 0


class SuggestionStats(BaseModel):
    """Review dashboard statistics."""

    model_config = ConfigDict(frozen=True)

    total_pending: int
    by_confidence: ConfidenceBreakdown
    approval_rate_24h: float
    avg_review_time_seconds: float
