"""Main entry point for the workflow engine API server."""

import argparse
import logging
import sys
from dataclasses import dataclass

import redis
import uvicorn

from api.app import WorkflowEngineAPI
from models.suggestion import ApprovalRules
from services.approval_rules_store import RedisApprovalRulesStore
from services.definition_parser import DefinitionParser
from services.definition_store import RedisDefinitionStore
from services.dispatcher import Dispatcher
from services.due_index import RedisDueIndex
from services.effect_ledger import RedisEffectLedger
from services.handler_registry import HandlerRegistry
from services.handlers import register_default_handlers
from services.instance_manager import InstanceManager
from services.integration_client import IntegrationClient
from services.log_service import configure_logging, level_from_name
from services.manual_entry_service import ManualEntryService
from services.notifiers import AgentWebhookNotifier, CompositeNotifier, WorkflowResumeNotifier
from services.settings import EngineSettings
from services.state_store import RedisStateStore
from services.suggestion_router import SuggestionRouter
from services.suggestion_store import RedisSuggestionStore
from services.timer_service import TimerScheduler, TimerSweeper
from services.trigger_service import EventTriggerService

logger = logging.getLogger(__name__)


@dataclass
class EngineServices:
    """Every long-lived service of one process, wired together."""

    settings: EngineSettings
    redis_client: redis.Redis
    definition_store: RedisDefinitionStore
    definition_parser: DefinitionParser
    state_store: RedisStateStore
    registry: HandlerRegistry
    instance_manager: InstanceManager
    manual_entries: ManualEntryService
    router: SuggestionRouter
    rules_store: RedisApprovalRulesStore
    triggers: EventTriggerService
    sweeper: TimerSweeper


def get_redis_client(settings: EngineSettings) -> redis.Redis:
    """Create Redis client from settings."""
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


def build_services(
    settings: EngineSettings,
    redis_client: redis.Redis,
    integration: IntegrationClient | None = None,
) -> EngineServices:
    """Construct every service once and inject the references it needs."""
    integration = integration or IntegrationClient(
        settings.integration_base_url, settings.integration_timeout
    )

    definition_store = RedisDefinitionStore(redis_client)
    state_store = RedisStateStore(
        redis_client,
        lock_timeout=settings.lock_timeout_seconds,
        lock_wait=settings.lock_wait_seconds,
    )
    ledger = RedisEffectLedger(redis_client)
    due_index = RedisDueIndex(redis_client)
    rules_store = RedisApprovalRulesStore(redis_client)

    notifier = CompositeNotifier()
    if settings.agent_webhook_url:
        notifier.add(AgentWebhookNotifier(settings.agent_webhook_url))

    router = SuggestionRouter(
        RedisSuggestionStore(redis_client),
        rules_store,
        default_rules=ApprovalRules(
            auto_approve_threshold=settings.auto_approve_threshold,
            require_review_threshold=settings.require_review_threshold,
            escalate_below_threshold=settings.escalate_below_threshold,
            escalate_to_role=settings.escalate_to_role,
        ),
        notifier=notifier,
    )

    registry = register_default_handlers(
        HandlerRegistry(),
        state_store=state_store,
        ledger=ledger,
        crm=integration,
        documents=integration,
        messaging=integration,
        ai=integration,
        router=router,
    )
    instance_manager = InstanceManager(
        definition_store,
        state_store,
        # Retry back-off stays well inside the instance lock.
        Dispatcher(registry, max_retry_wait=settings.lock_timeout_seconds / 2),
        ledger,
        scheduler=TimerScheduler(due_index),
        max_steps=settings.max_steps_per_run,
    )
    notifier.add(WorkflowResumeNotifier(instance_manager))

    return EngineServices(
        settings=settings,
        redis_client=redis_client,
        definition_store=definition_store,
        definition_parser=DefinitionParser(),
        state_store=state_store,
        registry=registry,
        instance_manager=instance_manager,
        manual_entries=ManualEntryService(
            state_store,
            instance_manager,
            resume_on_submit=settings.resume_on_manual_submit,
        ),
        router=router,
        rules_store=rules_store,
        triggers=EventTriggerService(definition_store, instance_manager),
        sweeper=TimerSweeper(due_index, instance_manager, integration),
    )


def create_app(services: EngineServices | None = None) -> "uvicorn.ASGIApplication":
    """Create FastAPI application with all dependencies."""
    if services is None:
        settings = EngineSettings.from_env()
        services = build_services(settings, get_redis_client(settings))

    api = WorkflowEngineAPI(
        services.definition_store,
        services.definition_parser,
        services.instance_manager,
        services.manual_entries,
        services.router,
        services.rules_store,
        services.triggers,
        services.redis_client,
    )
    return api.create_app()


def main() -> int:
    """Run the workflow engine API server."""
    settings = EngineSettings.from_env()

    parser = argparse.ArgumentParser(description="Workflow Engine API Server")
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default=settings.log_level,
        help="Log level (default: info)",
    )
    args = parser.parse_args()

    configure_logging(
        "engine",
        log_dir=settings.log_dir,
        level=level_from_name(args.log_level),
    )

    logger.info("Starting workflow engine API server")
    logger.info(f"Redis: {settings.redis_url}")

    services = build_services(settings, get_redis_client(settings))
    uvicorn.run(
        create_app(services), host=args.host, port=args.port, log_level=args.log_level
    )
    return 0


def get_app() -> "uvicorn.ASGIApplication":
    """Get or create the FastAPI application (for uvicorn import)."""
    return create_app()


if __name__ == "__main__":
    sys.exit(main())
