"""FastAPI REST API for the workflow engine and suggestion router."""

import logging
from typing import Any

from fastapi import Body, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from redis import Redis
from redis.exceptions import RedisError

from api.models import (
    ApproveRequest,
    BulkApproveRequest,
    BulkRejectRequest,
    DeleteResponse,
    ErrorResponse,
    EventRequest,
    HealthResponse,
    ManualEntrySubmitRequest,
    RejectRequest,
    ResumeRequest,
    StartInstanceRequest,
)
from models.definition import WorkflowDefinition
from models.state import EntityBinding, InstanceStatus, ManualEntryRecord, WorkflowInstance
from models.suggestion import (
    AgentApprovalRule,
    AISuggestion,
    BulkApprovalResult,
    BulkRejectionResult,
    PendingFilters,
    SubmissionResult,
    SuggestionStats,
)
from services.approval_rules_store import RedisApprovalRulesStore
from services.definition_parser import DefinitionParser
from services.definition_store import RedisDefinitionStore
from services.errors import (
    ConflictError,
    EngineError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from services.instance_manager import InstanceManager
from services.manual_entry_service import ManualEntryService, ManualEntrySubmitResult
from services.suggestion_router import SuggestionRouter
from services.trigger_service import EventTriggerService, TriggerResult

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    ExternalServiceError: 502,
    WorkflowError: 422,
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def status_for(error: EngineError) -> int:
    """HTTP status code for an engine error."""
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


def _require_user(user_id: str | None) -> str:
    if not user_id or not user_id.strip():
        raise ValidationError("X-User-Id header is required")
    return user_id.strip()


class WorkflowEngineAPI:
    """REST API over the workflow engine and suggestion router."""

    def __init__(
        self,
        definition_store: RedisDefinitionStore,
        definition_parser: DefinitionParser,
        instance_manager: InstanceManager,
        manual_entries: ManualEntryService,
        router: SuggestionRouter,
        rules_store: RedisApprovalRulesStore,
        triggers: EventTriggerService,
        redis_client: Redis,
    ):
        """Initialize API with dependencies."""
        if definition_store is None:
            raise ValueError("definition_store is required")
        if definition_parser is None:
            raise ValueError("definition_parser is required")
        if instance_manager is None:
            raise ValueError("instance_manager is required")
        if manual_entries is None:
            raise ValueError("manual_entries is required")
        if router is None:
            raise ValueError("router is required")
        if rules_store is None:
            raise ValueError("rules_store is required")
        if triggers is None:
            raise ValueError("triggers is required")
        if redis_client is None:
            raise ValueError("redis_client is required")

        self._definitions = definition_store
        self._parser = definition_parser
        self._instances = instance_manager
        self._manual_entries = manual_entries
        self._router = router
        self._rules_store = rules_store
        self._triggers = triggers
        self._redis = redis_client

    def create_app(self) -> FastAPI:
        """Create FastAPI application."""
        app = FastAPI(
            title="Freight Workflow Engine API",
            description="Workflow instances, manual entries and AI suggestion review",
            version="1.0.0",
        )

        @app.exception_handler(EngineError)
        def engine_error(request: Request, exc: EngineError) -> JSONResponse:
            status = status_for(exc)
            if status >= 500:
                logger.warning(f"{request.method} {request.url.path} failed: {exc}")
            return JSONResponse(status_code=status, content={"detail": str(exc)})

        # Definitions

        @app.post(
            "/definitions",
            response_model=WorkflowDefinition,
            status_code=201,
            responses=ERROR_RESPONSES,
        )
        def create_definition(
            definition: dict[str, Any] = Body(...),
        ) -> WorkflowDefinition:
            """Validate and store a new definition version as DRAFT."""
            parsed = self._parser.parse_json(definition)
            return self._definitions.create(parsed)

        @app.get("/definitions", response_model=list[WorkflowDefinition])
        def list_definitions(name: str | None = None) -> list[WorkflowDefinition]:
            """ACTIVE definitions, or the latest version of one name."""
            if name:
                return [self._definitions.latest_version(name)]
            return self._definitions.list_active()

        @app.get(
            "/definitions/{definition_id}",
            response_model=WorkflowDefinition,
            responses=ERROR_RESPONSES,
        )
        def get_definition(definition_id: str) -> WorkflowDefinition:
            return self._definitions.get(definition_id)

        @app.post(
            "/definitions/{definition_id}/activate",
            response_model=WorkflowDefinition,
            responses=ERROR_RESPONSES,
        )
        def activate_definition(definition_id: str) -> WorkflowDefinition:
            return self._definitions.activate(definition_id)

        @app.post(
            "/definitions/{definition_id}/archive",
            response_model=WorkflowDefinition,
            responses=ERROR_RESPONSES,
        )
        def archive_definition(definition_id: str) -> WorkflowDefinition:
            return self._definitions.archive(definition_id)

        # Instances

        @app.post(
            "/instances",
            response_model=WorkflowInstance,
            status_code=201,
            responses=ERROR_RESPONSES,
        )
        def start_instance(request: StartInstanceRequest) -> WorkflowInstance:
            """Start an instance and run it until it waits or ends."""
            entity = EntityBinding(
                entity_type=request.entity_type, entity_id=request.entity_id
            )
            return self._instances.start(request.definition_id, entity, request.context)

        @app.get("/instances", response_model=list[WorkflowInstance])
        def list_instances(
            status: InstanceStatus | None = None,
            definition_id: str | None = None,
        ) -> list[WorkflowInstance]:
            return self._instances.list_instances(status, definition_id)

        @app.get(
            "/instances/{instance_id}",
            response_model=WorkflowInstance,
            responses=ERROR_RESPONSES,
        )
        def get_instance(instance_id: str) -> WorkflowInstance:
            return self._instances.get(instance_id)

        @app.post(
            "/instances/{instance_id}/resume",
            response_model=WorkflowInstance,
            responses=ERROR_RESPONSES,
        )
        def resume_instance(
            instance_id: str, request: ResumeRequest | None = None
        ) -> WorkflowInstance:
            """Resume a PAUSED instance with an input event."""
            return self._instances.resume(instance_id, request.input if request else {})

        @app.post(
            "/instances/{instance_id}/pause",
            response_model=WorkflowInstance,
            responses=ERROR_RESPONSES,
        )
        def pause_instance(instance_id: str) -> WorkflowInstance:
            return self._instances.pause(instance_id)

        @app.post(
            "/instances/{instance_id}/cancel",
            response_model=WorkflowInstance,
            responses=ERROR_RESPONSES,
        )
        def cancel_instance(instance_id: str) -> WorkflowInstance:
            return self._instances.cancel(instance_id)

        # Manual entries

        @app.get("/manual-entries", response_model=list[ManualEntryRecord])
        def list_manual_entries(assign_to: str | None = None) -> list[ManualEntryRecord]:
            """PENDING manual entries, oldest first."""
            return self._manual_entries.list_pending(assign_to)

        @app.get(
            "/manual-entries/{entry_id}",
            response_model=ManualEntryRecord,
            responses=ERROR_RESPONSES,
        )
        def get_manual_entry(entry_id: str) -> ManualEntryRecord:
            return self._manual_entries.get(entry_id)

        @app.post(
            "/manual-entries/{entry_id}/submit",
            response_model=ManualEntrySubmitResult,
            responses=ERROR_RESPONSES,
        )
        def submit_manual_entry(
            entry_id: str,
            request: ManualEntrySubmitRequest,
            x_user_id: str | None = Header(default=None),
        ) -> ManualEntrySubmitResult:
            """Submit form data and resume the waiting instance."""
            user_id = _require_user(x_user_id)
            return self._manual_entries.submit(entry_id, request.data, user_id)

        # Suggestions

        @app.post(
            "/suggestions",
            response_model=SubmissionResult,
            status_code=201,
            responses=ERROR_RESPONSES,
        )
        def submit_suggestion(
            submission: dict[str, Any] = Body(...),
        ) -> SubmissionResult:
            """Submit a suggestion and route it by confidence."""
            return self._router.submit(submission)

        @app.get("/suggestions/pending", response_model=list[AISuggestion])
        def list_pending_suggestions(
            suggestion_type: str | None = None,
            min_confidence: float | None = None,
            max_confidence: float | None = None,
            workflow_instance_id: str | None = None,
        ) -> list[AISuggestion]:
            filters = PendingFilters(
                suggestion_type=suggestion_type,
                min_confidence=min_confidence,
                max_confidence=max_confidence,
                workflow_instance_id=workflow_instance_id,
            )
            return self._router.list_pending(filters)

        @app.get("/suggestions/stats", response_model=SuggestionStats)
        def suggestion_stats() -> SuggestionStats:
            return self._router.stats()

        @app.post(
            "/suggestions/bulk-approve",
            response_model=BulkApprovalResult,
            responses=ERROR_RESPONSES,
        )
        def bulk_approve(
            request: BulkApproveRequest,
            x_user_id: str | None = Header(default=None),
        ) -> BulkApprovalResult:
            user_id = _require_user(x_user_id)
            return self._router.bulk_approve(request.suggestion_ids, user_id)

        @app.post(
            "/suggestions/bulk-reject",
            response_model=BulkRejectionResult,
            responses=ERROR_RESPONSES,
        )
        def bulk_reject(
            request: BulkRejectRequest,
            x_user_id: str | None = Header(default=None),
        ) -> BulkRejectionResult:
            user_id = _require_user(x_user_id)
            return self._router.bulk_reject(request.suggestion_ids, user_id, request.reason)

        @app.get(
            "/suggestions/{suggestion_id}",
            response_model=AISuggestion,
            responses=ERROR_RESPONSES,
        )
        def get_suggestion(suggestion_id: str) -> AISuggestion:
            return self._router.get(suggestion_id)

        @app.post(
            "/suggestions/{suggestion_id}/approve",
            response_model=AISuggestion,
            responses=ERROR_RESPONSES,
        )
        def approve_suggestion(
            suggestion_id: str,
            request: ApproveRequest | None = None,
            x_user_id: str | None = Header(default=None),
        ) -> AISuggestion:
            """Approve a PENDING suggestion, as EDITED when edited_data is sent."""
            user_id = _require_user(x_user_id)
            edited = request.edited_data if request else None
            return self._router.approve(suggestion_id, user_id, edited)

        @app.post(
            "/suggestions/{suggestion_id}/reject",
            response_model=AISuggestion,
            responses=ERROR_RESPONSES,
        )
        def reject_suggestion(
            suggestion_id: str,
            request: RejectRequest,
            x_user_id: str | None = Header(default=None),
        ) -> AISuggestion:
            user_id = _require_user(x_user_id)
            return self._router.reject(suggestion_id, user_id, request.reason)

        # Approval rules

        @app.get("/approval-rules", response_model=list[AgentApprovalRule])
        def list_approval_rules() -> list[AgentApprovalRule]:
            return self._rules_store.list_rules()

        @app.put(
            "/approval-rules",
            response_model=AgentApprovalRule,
            responses=ERROR_RESPONSES,
        )
        def set_approval_rule(rule: dict[str, Any] = Body(...)) -> AgentApprovalRule:
            """Store an agent override. Thresholds are checked before writing."""
            try:
                parsed = AgentApprovalRule.model_validate(rule)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid approval rule: {e}") from e
            return self._rules_store.set_rule(parsed)

        @app.delete("/approval-rules/{agent_id}", response_model=DeleteResponse)
        def delete_approval_rule(
            agent_id: str, suggestion_type: str | None = None
        ) -> DeleteResponse:
            deleted = self._rules_store.delete_rule(agent_id, suggestion_type)
            return DeleteResponse(deleted=deleted)

        # Events

        @app.post("/events", response_model=TriggerResult, responses=ERROR_RESPONSES)
        def handle_event(request: EventRequest) -> TriggerResult:
            """Start every ACTIVE definition triggered by the event."""
            return self._triggers.handle_event(
                request.event_type,
                request.event_data,
                request.entity_type,
                request.entity_id,
            )

        @app.get("/health", response_model=HealthResponse)
        def health_check() -> HealthResponse:
            """Health check endpoint."""
            try:
                self._redis.ping()
                redis_status = "ok"
            except RedisError as e:
                logger.warning(f"Redis ping failed: {e}")
                redis_status = "unavailable"
            return HealthResponse(
                status="ok" if redis_status == "ok" else "degraded",
                redis=redis_status,
            )

        return app
