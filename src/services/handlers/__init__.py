"""Built-in node handlers."""

from datetime import datetime
from typing import Callable

from models.definition import NodeType
from services.collaborators import AIDraftingGateway, CrmGateway, DocumentGateway, MessagingGateway
from services.effect_ledger import RedisEffectLedger
from services.handler_registry import HandlerRegistry
from services.handlers.ai import AIGenerateEmailHandler, AISuggestNextStepHandler
from services.handlers.base import BaseHandler, utc_now
from services.handlers.core import (
    ConditionHandler,
    CreateTaskHandler,
    DelayHandler,
    EndHandler,
    EscalateHandler,
    MessageHandler,
    StartHandler,
    WaitForEventHandler,
)
from services.handlers.crm import CrmLookupHandler, CrmUpdateHandler
from services.handlers.documents import DocumentUploadHandler, KycVerificationHandler
from services.handlers.manual_entry import ManualDataEntryHandler
from services.handlers.schema_validation import SchemaValidationHandler
from services.state_store import RedisStateStore
from services.suggestion_router import SuggestionRouter


def register_default_handlers(
    registry: HandlerRegistry,
    state_store: RedisStateStore,
    ledger: RedisEffectLedger,
    crm: CrmGateway,
    documents: DocumentGateway,
    messaging: MessagingGateway,
    ai: AIDraftingGateway,
    router: SuggestionRouter,
    clock: Callable[[], datetime] = utc_now,
) -> HandlerRegistry:
    """Register a handler for every built-in node type."""
    registry.register(NodeType.START.value, StartHandler())
    registry.register(NodeType.END.value, EndHandler())
    registry.register(NodeType.CONDITION.value, ConditionHandler())

    messages = MessageHandler(messaging, ledger)
    for node_type in (
        NodeType.SEND_EMAIL,
        NodeType.SEND_WHATSAPP,
        NodeType.SEND_SMS,
        NodeType.SEND_NOTIFICATION,
    ):
        registry.register(node_type.value, messages)
    registry.register(NodeType.CREATE_TASK.value, CreateTaskHandler(messaging, ledger))
    registry.register(NodeType.ESCALATE.value, EscalateHandler(messaging, ledger))

    registry.register(NodeType.DELAY.value, DelayHandler(ledger, clock))
    registry.register(NodeType.WAIT_FOR_EVENT.value, WaitForEventHandler())

    registry.register(
        NodeType.MANUAL_DATA_ENTRY.value, ManualDataEntryHandler(state_store)
    )
    registry.register(NodeType.CRM_LOOKUP.value, CrmLookupHandler(crm, ledger))
    registry.register(NodeType.CRM_UPDATE.value, CrmUpdateHandler(crm, ledger))
    registry.register(
        NodeType.KYC_VERIFICATION.value,
        KycVerificationHandler(documents, messaging, ledger),
    )
    registry.register(NodeType.DOCUMENT_UPLOAD.value, DocumentUploadHandler(documents))
    registry.register(
        NodeType.AI_GENERATE_EMAIL.value, AIGenerateEmailHandler(ai, router, ledger)
    )
    registry.register(
        NodeType.AI_SUGGEST_NEXT_STEP.value, AISuggestNextStepHandler(ai, router, ledger)
    )
    registry.register(
        NodeType.SCHEMA_VALIDATION.value, SchemaValidationHandler(messaging, ledger)
    )
    return registry


__all__ = [
    "AIGenerateEmailHandler",
    "AISuggestNextStepHandler",
    "BaseHandler",
    "ConditionHandler",
    "CreateTaskHandler",
    "CrmLookupHandler",
    "CrmUpdateHandler",
    "DelayHandler",
    "DocumentUploadHandler",
    "EndHandler",
    "EscalateHandler",
    "KycVerificationHandler",
    "ManualDataEntryHandler",
    "MessageHandler",
    "SchemaValidationHandler",
    "StartHandler",
    "WaitForEventHandler",
    "register_default_handlers",
]
