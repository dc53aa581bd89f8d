"""Notification of the automation that originated a suggestion."""

import logging
from typing import TYPE_CHECKING, Protocol

import httpx

from models.state import InstanceStatus, PauseReason
from models.suggestion import AISuggestion
from services.errors import NotFoundError

if TYPE_CHECKING:
    from services.instance_manager import InstanceManager

logger = logging.getLogger(__name__)


class SuggestionNotifier(Protocol):
    def notify(self, suggestion: AISuggestion, event: str) -> None: ...


class AgentWebhookNotifier:
    """POSTs suggestion decisions to the agent webhook. Failures are logged only."""

    def __init__(self, url: str, timeout: float = 10.0):
        if not url or not url.strip():
            raise ValueError("url is required")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._url = url
        self._timeout = timeout

    def notify(self, suggestion: AISuggestion, event: str) -> None:
        payload = {
            "event": event,
            "suggestion_id": suggestion.id,
            "workflow_instance_id": suggestion.workflow_instance_id,
            "node_id": suggestion.node_id,
            "agent_id": suggestion.agent_id,
            "status": suggestion.status.value,
            "data": suggestion.effective_data,
            "rejection_reason": suggestion.rejection_reason,
        }
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(self._url, json=payload)
        except httpx.RequestError as e:
            logger.warning(f"Agent webhook failed for {suggestion.id}: {e}")
            return

        if response.status_code >= 400:
            logger.warning(
                f"Agent webhook returned HTTP {response.status_code} for {suggestion.id}"
            )


class WorkflowResumeNotifier:
    """Resumes the owning instance when it is paused on the suggestion's node."""

    def __init__(self, instance_manager: "InstanceManager"):
        if instance_manager is None:
            raise ValueError("instance_manager is required")
        self._instance_manager = instance_manager

    def notify(self, suggestion: AISuggestion, event: str) -> None:
        if not suggestion.node_id:
            return

        try:
            instance = self._instance_manager.get(suggestion.workflow_instance_id)
        except NotFoundError:
            logger.warning(
                f"Suggestion {suggestion.id} references unknown instance "
                f"{suggestion.workflow_instance_id}"
            )
            return

        if (
            instance.status != InstanceStatus.PAUSED
            or instance.pause_reason != PauseReason.WAITING_FOR_INPUT
            or instance.current_node_id != suggestion.node_id
        ):
            return

        logger.info(
            f"Resuming instance {instance.id} after suggestion {suggestion.id} {event}"
        )
        self._instance_manager.resume(instance.id, {})


class CompositeNotifier:
    """Fans a notification out to several notifiers. One failing does not stop the rest."""

    def __init__(self, notifiers: list[SuggestionNotifier] | None = None):
        self._notifiers = list(notifiers or [])

    def add(self, notifier: SuggestionNotifier) -> None:
        if notifier is None:
            raise ValueError("notifier is required")
        self._notifiers.append(notifier)

    def notify(self, suggestion: AISuggestion, event: str) -> None:
        for notifier in self._notifiers:
            try:
                notifier.notify(suggestion, event)
            except Exception as e:
                logger.warning(
                    f"{type(notifier).__name__} failed for suggestion "
                    f"{suggestion.id}: {e}"
                )
