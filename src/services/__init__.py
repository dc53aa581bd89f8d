# Services package

from services.approval_rules_store import RedisApprovalRulesStore
from services.condition_evaluator import evaluate_condition, evaluate_conditions
from services.definition_parser import DefinitionParseError, DefinitionParser
from services.definition_store import RedisDefinitionStore
from services.dispatcher import Dispatcher, StepOutcome
from services.due_index import RedisDueIndex
from services.effect_ledger import RedisEffectLedger
from services.errors import (
    ConflictError,
    EngineError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from services.graph_service import GraphService
from services.handler_registry import HandlerRegistry
from services.instance_manager import InstanceManager
from services.integration_client import IntegrationClient, IntegrationClientError
from services.log_service import DailySizeRotatingHandler, configure_logging
from services.manual_entry_service import ManualEntryService
from services.settings import EngineSettings
from services.state_store import InstanceInterrupted, RedisStateStore
from services.suggestion_router import SuggestionRouter
from services.suggestion_store import RedisSuggestionStore
from services.template_resolver import resolve_template, resolve_value
from services.timer_service import TimerScheduler, TimerSweeper
from services.trigger_service import EventTriggerService

__all__ = [
    "ConflictError",
    "DailySizeRotatingHandler",
    "DefinitionParseError",
    "DefinitionParser",
    "Dispatcher",
    "EngineError",
    "EngineSettings",
    "EventTriggerService",
    "ExternalServiceError",
    "GraphService",
    "HandlerRegistry",
    "InstanceInterrupted",
    "InstanceManager",
    "IntegrationClient",
    "IntegrationClientError",
    "ManualEntryService",
    "NotFoundError",
    "RedisApprovalRulesStore",
    "RedisDefinitionStore",
    "RedisDueIndex",
    "RedisEffectLedger",
    "RedisStateStore",
    "RedisSuggestionStore",
    "StepOutcome",
    "SuggestionRouter",
    "TimerScheduler",
    "TimerSweeper",
    "ValidationError",
    "WorkflowError",
    "configure_logging",
    "evaluate_condition",
    "evaluate_conditions",
    "resolve_template",
    "resolve_value",
]
