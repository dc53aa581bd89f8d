"""State models for workflow instances and manual entry records."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class InstanceStatus(str, Enum):
    """Workflow instance execution status."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            InstanceStatus.COMPLETED,
            InstanceStatus.FAILED,
            InstanceStatus.CANCELLED,
        )


class PauseReason(str, Enum):
    """Why a PAUSED instance is paused."""

    WAITING_FOR_INPUT = "WAITING_FOR_INPUT"
    OPERATOR = "OPERATOR"


class EntityType(str, Enum):
    """Business object an instance is bound to."""

    SHIPMENT = "SHIPMENT"
    THREAD = "THREAD"
    CUSTOMER = "CUSTOMER"
    QUOTATION = "QUOTATION"
    STANDALONE = "STANDALONE"


class EntityBinding(BaseModel):
    """Binding of an instance to the business object driving it."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType = EntityType.STANDALONE
    entity_id: str | None = None


class StepStatus(str, Enum):
    """Status of a single execution log entry."""

    COMPLETED = "COMPLETED"
    WAITING = "WAITING"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ExecutionLogEntry(BaseModel):
    """Append-only record of one node execution attempt."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    node_type: str
    status: StepStatus
    started_at: datetime
    completed_at: datetime
    attempt: int = 0
    input: dict[str, Any] = {}
    output: Any = None
    error: str | None = None


class InstanceError(BaseModel):
    """User-visible failure record."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    message: str
    timestamp: datetime
    retry_count: int = 0
    error_type: str = "ExternalServiceError"


class WorkflowInstance(BaseModel):
    """Persistent state of one running execution of a definition."""

    id: str
    definition_id: str
    definition_version: int
    entity_type: EntityType
    entity_id: str | None = None
    status: InstanceStatus
    current_node_id: str | None = None
    pause_reason: PauseReason | None = None
    context: dict[str, Any] = {}
    execution_log: list[ExecutionLogEntry] = []
    errors: list[InstanceError] = []
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None


class ManualEntryStatus(str, Enum):
    """Manual entry record status."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class ManualEntryRecord(BaseModel):
    """Form a human must fill in before a MANUAL_DATA_ENTRY node continues."""

    id: str
    instance_id: str
    node_id: str
    form_schema: dict[str, Any] = {}
    form_ui: dict[str, Any] = {}
    assign_to: str | None = None
    allow_edit: bool = False
    status: ManualEntryStatus = ManualEntryStatus.PENDING
    submitted_data: dict[str, Any] | None = None
    submitted_by: str | None = None
    submitted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
