# API package

from api.app import WorkflowEngineAPI
from api.models import (
    ApproveRequest,
    BulkApproveRequest,
    BulkRejectRequest,
    ErrorResponse,
    EventRequest,
    HealthResponse,
    ManualEntrySubmitRequest,
    RejectRequest,
    ResumeRequest,
    StartInstanceRequest,
)

__all__ = [
    "ApproveRequest",
    "BulkApproveRequest",
    "BulkRejectRequest",
    "ErrorResponse",
    "EventRequest",
    "HealthResponse",
    "ManualEntrySubmitRequest",
    "RejectRequest",
    "ResumeRequest",
    "StartInstanceRequest",
    "WorkflowEngineAPI",
]
