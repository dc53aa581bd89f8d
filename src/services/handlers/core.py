"""Handlers for control-flow, messaging and wait nodes."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from models.definition import WorkflowNode
from models.outcome import HandlerResult
from services.collaborators import MessagingGateway
from services.condition_evaluator import evaluate_conditions
from services.effect_ledger import RedisEffectLedger
from services.handlers.base import BaseHandler, utc_now
from services.template_resolver import MISSING, find_unresolved, resolve_path

logger = logging.getLogger(__name__)

MESSAGE_CHANNELS = {
    "SEND_EMAIL": "email",
    "SEND_WHATSAPP": "whatsapp",
    "SEND_SMS": "sms",
    "SEND_NOTIFICATION": "notification",
}


class StartHandler(BaseHandler):
    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        return HandlerResult.ok()


class EndHandler(BaseHandler):
    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        return HandlerResult.ok({"outcome": node.config.get("outcome", "SUCCESS")})


class ConditionHandler(BaseHandler):
    """Evaluates the node's conditions and picks the true or false branch.

    When ``branches`` has no target for the result, the dispatcher follows the
    edge labelled "true"/"false", then ``default``.
    """

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        result = evaluate_conditions(node.config.get("conditions") or [], context)
        branch = "true" if result else "false"
        branches = node.config.get("branches") or {}
        return HandlerResult.ok(
            {"result": result}, next_node_id=branches.get(branch), branch=branch
        )


class MessageHandler(BaseHandler):
    """Sends a message on the channel implied by the node type."""

    def __init__(self, messaging: MessagingGateway, ledger: RedisEffectLedger):
        super().__init__(ledger)
        if messaging is None:
            raise ValueError("messaging is required")
        self._messaging = messaging

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        channel = MESSAGE_CHANNELS.get(node.type, "notification")
        config = self.resolved_config(node, context)
        message = {k: v for k, v in config.items() if k not in ("type", "contextKey")}

        if not message.get("to") and channel != "notification":
            return HandlerResult.fail(f"No recipient for {channel} message")
        unresolved = find_unresolved(message.get("to"))
        if unresolved:
            return HandlerResult.fail(f"Unresolved recipient: {', '.join(unresolved)}")

        message["workflow_instance_id"] = instance_id
        sent = self.once(
            instance_id,
            node.id,
            "message",
            lambda: self._messaging.send_message(channel, message),
        )
        logger.info(f"Sent {channel} message for {instance_id}/{node.id}")
        return HandlerResult.ok(sent)


class CreateTaskHandler(BaseHandler):
    def __init__(self, messaging: MessagingGateway, ledger: RedisEffectLedger):
        super().__init__(ledger)
        if messaging is None:
            raise ValueError("messaging is required")
        self._messaging = messaging

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)
        task = {k: v for k, v in config.items() if k not in ("type", "contextKey")}
        task["workflow_instance_id"] = instance_id
        task["node_id"] = node.id
        created = self.once(
            instance_id, node.id, "task", lambda: self._messaging.create_task(task)
        )
        return HandlerResult.ok(created)


class EscalateHandler(BaseHandler):
    def __init__(self, messaging: MessagingGateway, ledger: RedisEffectLedger):
        super().__init__(ledger)
        if messaging is None:
            raise ValueError("messaging is required")
        self._messaging = messaging

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)
        if not config.get("escalateTo"):
            return HandlerResult.fail("escalateTo is required")

        escalation = {
            "escalate_to": config["escalateTo"],
            "reason": config.get("reason", ""),
            "priority": config.get("priority", "HIGH"),
            "workflow_instance_id": instance_id,
            "node_id": node.id,
        }
        sent = self.once(
            instance_id,
            node.id,
            "escalation",
            lambda: self._messaging.escalate(escalation),
        )
        logger.info(f"Escalated {instance_id}/{node.id} to {config['escalateTo']}")
        return HandlerResult.ok(sent)


class DelayHandler(BaseHandler):
    """Waits until delayMinutes have passed since the node was first entered."""

    def __init__(
        self,
        ledger: RedisEffectLedger,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(ledger)
        self._clock = clock

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        minutes = node.config.get("delayMinutes")
        if minutes is None or float(minutes) < 0:
            return HandlerResult.fail("delayMinutes must be a non-negative number")

        entered = self.once(
            instance_id, node.id, "entered_at", lambda: self._clock().isoformat()
        )
        resume_at = datetime.fromisoformat(entered) + timedelta(minutes=float(minutes))
        if self._clock() >= resume_at:
            return HandlerResult.ok({"delayed_until": resume_at.isoformat()})

        return HandlerResult.wait(
            {"message": "Waiting for delay", "resume_at": resume_at.isoformat()}
        )


class WaitForEventHandler(BaseHandler):
    """Waits until the configured event key appears in the context."""

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        event_key = node.config.get("eventKey")
        if not event_key:
            return HandlerResult.fail("eventKey is required")

        value = resolve_path(context, event_key)
        if value is MISSING:
            return HandlerResult.wait(
                {"message": f"Waiting for event {event_key}", "event_key": event_key}
            )
        return HandlerResult.ok(value)
