"""Handlers for AI_GENERATE_EMAIL and AI_SUGGEST_NEXT_STEP nodes.

Both ask the AI drafting service once, submit the result to the suggestion
router once, and then follow the suggestion's approval state on every
re-entry.
"""

import logging
from typing import Any

from models.definition import WorkflowNode
from models.outcome import HandlerResult
from models.suggestion import SuggestionStatus, SuggestionSubmission, SuggestionType
from services.collaborators import AIDraftingGateway
from services.effect_ledger import RedisEffectLedger
from services.handlers.base import BaseHandler
from services.suggestion_router import SuggestionRouter

logger = logging.getLogger(__name__)


class SuggestionBackedHandler(BaseHandler):
    """Shared submit-once, follow-approval flow."""

    suggestion_type: SuggestionType

    def __init__(
        self,
        ai: AIDraftingGateway,
        router: SuggestionRouter,
        ledger: RedisEffectLedger,
    ):
        super().__init__(ledger)
        if ai is None:
            raise ValueError("ai is required")
        if router is None:
            raise ValueError("router is required")
        self._ai = ai
        self._router = router

    def build_request(
        self, node: WorkflowNode, instance_id: str, config: dict[str, Any]
    ) -> dict[str, Any]:
        raise NotImplementedError

    def generate(self, request: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def requires_approval(self, config: dict[str, Any]) -> bool:
        return True

    def execute(
        self, node: WorkflowNode, instance_id: str, context: dict[str, Any]
    ) -> HandlerResult:
        config = self.resolved_config(node, context)

        draft = self.once(
            instance_id,
            node.id,
            "draft",
            lambda: self.generate(self.build_request(node, instance_id, config)),
        )
        suggestion_id = self.once(
            instance_id,
            node.id,
            "suggestion_id",
            lambda: self._submit(node, instance_id, config, draft),
        )

        suggestion = self._router.get(suggestion_id)
        result = {
            "suggestion_id": suggestion.id,
            "status": suggestion.status.value,
            "routed_to": suggestion.routed_to.value,
        }

        if suggestion.status in (SuggestionStatus.APPROVED, SuggestionStatus.EDITED):
            return HandlerResult.ok({**result, **suggestion.effective_data})

        if suggestion.status == SuggestionStatus.REJECTED:
            if config.get("onRejected") == "CONTINUE":
                return HandlerResult.ok(
                    {**result, "rejection_reason": suggestion.rejection_reason}
                )
            return HandlerResult.fail(
                f"Suggestion {suggestion.id} rejected: {suggestion.rejection_reason}"
            )

        if not self.requires_approval(config):
            return HandlerResult.ok({**result, **suggestion.suggestion_data})

        return HandlerResult.wait(
            {
                **result,
                "message": "Waiting for suggestion review",
                "assigned_to": suggestion.assigned_to,
            }
        )

    def _submit(
        self,
        node: WorkflowNode,
        instance_id: str,
        config: dict[str, Any],
        draft: dict[str, Any],
    ) -> str:
        data = {
            k: v for k, v in draft.items() if k not in ("confidence", "guard_rail_checks")
        }
        submission = SuggestionSubmission(
            workflow_instance_id=instance_id,
            node_id=node.id,
            agent_id=config.get("agentId"),
            suggestion_type=self.suggestion_type.value,
            suggestion_data=data,
            confidence_score=float(draft.get("confidence", 0.0)),
            guard_rail_checks=draft.get("guard_rail_checks") or {},
        )
        submitted = self._router.submit(submission)
        logger.info(
            f"Submitted suggestion {submitted.suggestion_id} for {instance_id}/{node.id}"
        )
        return submitted.suggestion_id


class AIGenerateEmailHandler(SuggestionBackedHandler):
    suggestion_type = SuggestionType.EMAIL_DRAFT

    def build_request(
        self, node: WorkflowNode, instance_id: str, config: dict[str, Any]
    ) -> dict[str, Any]:
        return {
            "workflow_instance_id": instance_id,
            "purpose": config.get("purpose", "CUSTOM"),
            "context": config.get("context") or {},
            "template": config.get("template", "professional"),
            "tone": config.get("tone", "neutral"),
            "max_words": config.get("maxWords"),
            "to": config.get("toEmail"),
            "cc": config.get("ccEmail"),
            "guardrails": config.get("guardrails") or {},
        }

    def generate(self, request: dict[str, Any]) -> dict[str, Any]:
        return self._ai.draft_email(request)

    def requires_approval(self, config: dict[str, Any]) -> bool:
        return config.get("requireApproval", True) is not False


class AISuggestNextStepHandler(SuggestionBackedHandler):
    suggestion_type = SuggestionType.NEXT_STEP

    def build_request(
        self, node: WorkflowNode, instance_id: str, config: dict[str, Any]
    ) -> dict[str, Any]:
        return {
            "workflow_instance_id": instance_id,
            "analyze": config.get("analyzeCurrent") or {},
            "actions": config.get("suggestActions") or [],
            "max_suggestions": config.get("maxSuggestions", 1),
            "guardrails": config.get("guardrails") or {},
        }

    def generate(self, request: dict[str, Any]) -> dict[str, Any]:
        return self._ai.suggest_next_step(request)
