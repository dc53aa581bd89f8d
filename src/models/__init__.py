"""Models package."""

from models.definition import (
    Condition,
    DefinitionStatus,
    NodeType,
    SlaConfig,
    WorkflowDefinition,
    WorkflowDefinitionInput,
    WorkflowEdge,
    WorkflowNode,
    WorkflowTrigger,
)
from models.outcome import Completed, Failed, HandlerResult, Outcome, Suspended
from models.state import (
    EntityBinding,
    EntityType,
    InstanceStatus,
    ManualEntryRecord,
    ManualEntryStatus,
    PauseReason,
    WorkflowInstance,
)
from models.suggestion import (
    AISuggestion,
    ApprovalRules,
    RoutingTier,
    SuggestionStatus,
    SuggestionSubmission,
)
from models.timer import TimerEntry, TimerKind

__all__ = [
    "AISuggestion",
    "ApprovalRules",
    "Completed",
    "Condition",
    "DefinitionStatus",
    "EntityBinding",
    "EntityType",
    "Failed",
    "HandlerResult",
    "InstanceStatus",
    "ManualEntryRecord",
    "ManualEntryStatus",
    "NodeType",
    "Outcome",
    "PauseReason",
    "RoutingTier",
    "SlaConfig",
    "SuggestionStatus",
    "SuggestionSubmission",
    "Suspended",
    "TimerEntry",
    "TimerKind",
    "WorkflowDefinition",
    "WorkflowDefinitionInput",
    "WorkflowEdge",
    "WorkflowInstance",
    "WorkflowNode",
    "WorkflowTrigger",
]
