"""Request and response models for REST API."""

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from models.state import EntityType


class StartInstanceRequest(BaseModel):
    """Request to start an instance of a definition."""

    model_config = ConfigDict(extra="forbid")

    definition_id: str
    entity_type: EntityType = EntityType.STANDALONE
    entity_id: str | None = None
    context: dict[str, Any] = {}

    @field_validator("definition_id")
    @classmethod
    def definition_id_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("definition_id is required")
        return v


class ResumeRequest(BaseModel):
    """Input event merged into the instance context on resume."""

    model_config = ConfigDict(extra="forbid")

    input: dict[str, Any] = {}


class ManualEntrySubmitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data: dict[str, Any]


class ApproveRequest(BaseModel):
    """Approval, optionally with edited suggestion data."""

    model_config = ConfigDict(extra="forbid")

    edited_data: dict[str, Any] | None = None


class RejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = ""


class BulkApproveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    suggestion_ids: list[str]


class BulkRejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    suggestion_ids: list[str]
    reason: str = ""


class EventRequest(BaseModel):
    """Platform event that may start workflows."""

    model_config = ConfigDict(extra="forbid")

    event_type: str
    event_data: dict[str, Any] = {}
    entity_type: str | None = None
    entity_id: str | None = None


class DeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    deleted: bool


class ErrorResponse(BaseModel):
    """Error response."""

    model_config = ConfigDict(frozen=True)

    detail: str


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(frozen=True)

    status: str
    redis: str
