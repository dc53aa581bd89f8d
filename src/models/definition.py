"""Workflow definition models: nodes, edges, triggers and SLA configuration."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DefinitionStatus(str, Enum):
    """Lifecycle of a workflow definition version."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class NodeType(str, Enum):
    """Node type tags shipped with the engine. The registry accepts others."""

    START = "START"
    END = "END"
    CONDITION = "CONDITION"

    SEND_EMAIL = "SEND_EMAIL"
    SEND_WHATSAPP = "SEND_WHATSAPP"
    SEND_SMS = "SEND_SMS"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"
    CREATE_TASK = "CREATE_TASK"
    ESCALATE = "ESCALATE"

    DELAY = "DELAY"
    WAIT_FOR_EVENT = "WAIT_FOR_EVENT"

    MANUAL_DATA_ENTRY = "MANUAL_DATA_ENTRY"
    CRM_LOOKUP = "CRM_LOOKUP"
    CRM_UPDATE = "CRM_UPDATE"
    KYC_VERIFICATION = "KYC_VERIFICATION"
    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"
    AI_GENERATE_EMAIL = "AI_GENERATE_EMAIL"
    AI_SUGGEST_NEXT_STEP = "AI_SUGGEST_NEXT_STEP"
    SCHEMA_VALIDATION = "SCHEMA_VALIDATION"


class Condition(BaseModel):
    """A single branch predicate evaluated against the instance context."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: str
    value: Any = None
    logic: str | None = None

    @field_validator("field")
    @classmethod
    def field_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("field is required")
        return v.strip()

    @field_validator("operator")
    @classmethod
    def operator_known(cls, v: str) -> str:
        if v not in CONDITION_OPERATORS:
            raise ValueError(f"Unknown operator: {v}")
        return v

    @field_validator("logic")
    @classmethod
    def logic_known(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.upper()
        if v not in ("AND", "OR"):
            raise ValueError(f"Unknown logic: {v}")
        return v


CONDITION_OPERATORS = (
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "contains",
    "in",
    "not_in",
)


class WorkflowNode(BaseModel):
    """A typed step in a workflow graph."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    label: str = ""
    config: dict[str, Any] = {}

    @field_validator("id")
    @classmethod
    def id_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("node id is required")
        return v

    @field_validator("type")
    @classmethod
    def type_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("node type is required")
        return v.strip().upper()


class WorkflowEdge(BaseModel):
    """Directed connection between two nodes."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    label: str | None = None
    condition: list[Condition] | None = None

    @field_validator("condition", mode="before")
    @classmethod
    def condition_as_list(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return [v]
        return v


class WorkflowTrigger(BaseModel):
    """Event type that starts the workflow, with optional conditions on the event data."""

    model_config = ConfigDict(frozen=True)

    type: str
    config: dict[str, Any] = {}


class EscalationRule(BaseModel):
    """SLA escalation step."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    after_minutes: int = Field(alias="afterMinutes")
    escalate_to: list[str] = Field(default=[], alias="escalateTo")
    notify_via: list[str] = Field(default=[], alias="notifyVia")


class SlaConfig(BaseModel):
    """Response and resolution time targets for an instance."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    response_time_minutes: int | None = Field(default=None, alias="responseTimeMinutes")
    resolution_time_minutes: int = Field(alias="resolutionTimeMinutes")
    escalation_rules: list[EscalationRule] = Field(default=[], alias="escalationRules")

    @field_validator("resolution_time_minutes")
    @classmethod
    def resolution_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("resolutionTimeMinutes must be positive")
        return v


class WorkflowDefinitionInput(BaseModel):
    """Definition body as authored, before it is stored and versioned."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    nodes: list[WorkflowNode]
    edges: list[WorkflowEdge] = []
    triggers: list[WorkflowTrigger] = []
    sla_config: SlaConfig | None = Field(default=None, alias="slaConfig")
    escalation_workflow_id: str | None = Field(
        default=None, alias="escalationWorkflowId"
    )

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @model_validator(mode="after")
    def edges_reference_nodes(self) -> "WorkflowDefinitionInput":
        if not self.nodes:
            raise ValueError("definition must have at least one node")

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)

        for edge in self.edges:
            if edge.source not in seen:
                raise ValueError(f"Edge source not found: {edge.source}")
            if edge.target not in seen:
                raise ValueError(f"Edge target not found: {edge.target}")
        return self


class WorkflowDefinition(WorkflowDefinitionInput):
    """Stored, versioned definition. Its graph is never rewritten once stored."""

    id: str
    version: int
    status: DefinitionStatus = DefinitionStatus.DRAFT
    created_at: datetime
    updated_at: datetime

    @field_validator("version")
    @classmethod
    def version_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("version must be >= 1")
        return v

    def get_node(self, node_id: str) -> WorkflowNode | None:
        """Return the node with the given id, if present."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> list[WorkflowEdge]:
        """Edges leaving node_id, in definition order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def start_node(self) -> WorkflowNode | None:
        """The graph's START node."""
        for node in self.nodes:
            if node.type == NodeType.START.value:
                return node
        return None
