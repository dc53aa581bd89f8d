"""Workflow instance lifecycle: start, resume, pause, cancel and the run loop."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from models.definition import DefinitionStatus, WorkflowDefinition
from models.state import (
    EntityBinding,
    InstanceStatus,
    PauseReason,
    WorkflowInstance,
)
from services.definition_store import RedisDefinitionStore
from services.dispatcher import Dispatcher, StepOutcome
from services.effect_ledger import RedisEffectLedger
from services.errors import ConflictError, NotFoundError, WorkflowError
from services.state_store import InstanceInterrupted, RedisStateStore
from services.timer_service import TimerScheduler

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (
    InstanceStatus.NOT_STARTED,
    InstanceStatus.IN_PROGRESS,
    InstanceStatus.PAUSED,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InstanceManager:
    """Drives instances through the dispatcher, one run per instance at a time."""

    def __init__(
        self,
        definition_store: RedisDefinitionStore,
        state_store: RedisStateStore,
        dispatcher: Dispatcher,
        ledger: RedisEffectLedger,
        scheduler: TimerScheduler | None = None,
        max_steps: int = 500,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if definition_store is None:
            raise ValueError("definition_store is required")
        if state_store is None:
            raise ValueError("state_store is required")
        if dispatcher is None:
            raise ValueError("dispatcher is required")
        if ledger is None:
            raise ValueError("ledger is required")
        if max_steps <= 0:
            raise ValueError("max_steps must be positive")

        self._definitions = definition_store
        self._state_store = state_store
        self._dispatcher = dispatcher
        self._ledger = ledger
        self._scheduler = scheduler
        self._max_steps = max_steps
        self._clock = clock

    def start(
        self,
        definition_id: str,
        entity: EntityBinding | None = None,
        initial_context: dict[str, Any] | None = None,
    ) -> WorkflowInstance:
        """Create an instance at the START node and run it until it waits or ends."""
        if not definition_id:
            raise ValueError("definition_id is required")

        definition = self._definitions.get(definition_id)
        if definition.status != DefinitionStatus.ACTIVE:
            raise ConflictError(
                f"Definition {definition_id} is {definition.status.value}, not ACTIVE"
            )
        start_node = definition.start_node()
        if start_node is None:
            raise WorkflowError(f"Definition {definition_id} has no START node")

        entity = entity or EntityBinding()
        now = self._clock()
        instance = WorkflowInstance(
            id=f"inst-{uuid.uuid4().hex[:12]}",
            definition_id=definition.id,
            definition_version=definition.version,
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            status=InstanceStatus.IN_PROGRESS,
            current_node_id=start_node.id,
            context=dict(initial_context or {}),
            created_at=now,
            updated_at=now,
            started_at=now,
        )
        self._state_store.create_instance(instance)
        logger.info(
            f"Started instance {instance.id} of {definition.name} v{definition.version}"
        )
        if self._scheduler is not None:
            self._scheduler.register_sla(instance, definition)

        with self._state_store.instance_lock(instance.id):
            return self._run(definition, instance)

    def get(self, instance_id: str) -> WorkflowInstance:
        return self._state_store.get_instance(instance_id)

    def list_instances(
        self,
        status: InstanceStatus | None = None,
        definition_id: str | None = None,
    ) -> list[WorkflowInstance]:
        return self._state_store.list_instances(status, definition_id)

    def resume(
        self, instance_id: str, input_event: dict[str, Any] | None = None
    ) -> WorkflowInstance:
        """Merge input into a PAUSED instance's context and re-run its current node."""
        if not instance_id:
            raise ValueError("instance_id is required")

        with self._state_store.instance_lock(instance_id):
            stored = self._state_store.get_instance(instance_id)
            if stored.status != InstanceStatus.PAUSED:
                raise ConflictError(
                    f"Instance {instance_id} is {stored.status.value}, not PAUSED"
                )

            instance = self._state_store.update_instance(
                instance_id,
                (InstanceStatus.PAUSED,),
                {
                    "status": InstanceStatus.IN_PROGRESS,
                    "pause_reason": None,
                    "paused_at": None,
                    "context": {**stored.context, **(input_event or {})},
                },
            )
            logger.info(f"Resumed instance {instance_id} at {instance.current_node_id}")
            return self._run(self._definition_for(instance), instance)

    def pause(self, instance_id: str) -> WorkflowInstance:
        """Operator pause. A running loop stops at its next save."""
        instance = self._state_store.update_instance(
            instance_id,
            (InstanceStatus.IN_PROGRESS, InstanceStatus.PAUSED),
            {
                "status": InstanceStatus.PAUSED,
                "pause_reason": PauseReason.OPERATOR,
                "paused_at": self._clock(),
            },
        )
        logger.info(f"Paused instance {instance_id} by operator")
        return instance

    def cancel(self, instance_id: str) -> WorkflowInstance:
        """Cancel from any non-terminal status. Performed side effects stay done."""
        instance = self._state_store.update_instance(
            instance_id,
            ACTIVE_STATUSES,
            {
                "status": InstanceStatus.CANCELLED,
                "pause_reason": None,
                "completed_at": self._clock(),
            },
        )
        if self._scheduler is not None:
            self._scheduler.clear_instance(instance_id)
        logger.info(f"Cancelled instance {instance_id}")
        return instance

    def handle_timeout(self, instance_id: str, node_id: str) -> WorkflowInstance:
        """Time out the node an instance is waiting on and continue the run."""
        return self._leave_waiting_node(
            instance_id, node_id, "timeout", self._dispatcher.time_out
        )

    def handle_escalation(self, instance_id: str, node_id: str) -> WorkflowInstance:
        """Follow the waiting node's ``escalate`` edge and continue the run.

        A node without such an edge keeps waiting.
        """
        return self._leave_waiting_node(
            instance_id, node_id, "escalate", self._dispatcher.escalate
        )

    def _leave_waiting_node(
        self,
        instance_id: str,
        node_id: str,
        label: str,
        transition: Callable[..., tuple[WorkflowInstance, StepOutcome]],
    ) -> WorkflowInstance:
        with self._state_store.instance_lock(instance_id):
            instance = self._state_store.get_instance(instance_id)
            if (
                instance.status != InstanceStatus.PAUSED
                or instance.pause_reason != PauseReason.WAITING_FOR_INPUT
                or instance.current_node_id != node_id
            ):
                logger.info(f"Ignoring {label} for {instance_id}/{node_id}")
                return instance

            definition = self._definition_for(instance)
            node = definition.get_node(node_id)
            if node is None:
                raise NotFoundError("Node", node_id)
            if label == "escalate" and not any(
                e.label == "escalate" for e in definition.outgoing_edges(node_id)
            ):
                logger.info(f"No escalate edge from {node_id}, {instance_id} keeps waiting")
                return instance

            instance, outcome = transition(definition, instance, node)
            try:
                instance = self._state_store.save_instance(instance)
            except InstanceInterrupted as e:
                return self._interrupted(e)
            self._after_step(definition, instance, outcome)
            return self._run(definition, instance)

    def _definition_for(self, instance: WorkflowInstance) -> WorkflowDefinition:
        definition = self._definitions.get(instance.definition_id)
        if definition.version != instance.definition_version:
            raise ConflictError(
                f"Definition {definition.id} is v{definition.version}, "
                f"instance pinned v{instance.definition_version}"
            )
        return definition

    def _run(
        self, definition: WorkflowDefinition, instance: WorkflowInstance
    ) -> WorkflowInstance:
        steps = 0
        while instance.status == InstanceStatus.IN_PROGRESS:
            if steps >= self._max_steps:
                instance, outcome = self._dispatcher.fail(
                    instance,
                    WorkflowError(
                        f"Step limit of {self._max_steps} exceeded",
                        node_id=instance.current_node_id,
                    ),
                )
            else:
                instance, outcome = self._dispatcher.step(definition, instance)
                steps += 1

            try:
                instance = self._state_store.save_instance(instance)
            except InstanceInterrupted as e:
                return self._interrupted(e)
            self._after_step(definition, instance, outcome)

        return instance

    def _after_step(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        outcome: StepOutcome,
    ) -> None:
        if outcome.kind == "advanced":
            if self._scheduler is not None:
                self._scheduler.clear_node(instance.id, outcome.node_id)
            self._ledger.clear(instance.id, outcome.next_node_id)
        elif outcome.kind == "suspended":
            if self._scheduler is not None:
                node = definition.get_node(outcome.node_id)
                self._scheduler.register_node(instance, node, outcome.data)
        else:
            if self._scheduler is not None:
                self._scheduler.clear_instance(instance.id)
            if outcome.kind == "failed":
                logger.warning(
                    f"Instance {instance.id} failed at {outcome.node_id}: {outcome.error}"
                )
            else:
                logger.info(f"Instance {instance.id} completed")

    def _interrupted(self, e: InstanceInterrupted) -> WorkflowInstance:
        instance = e.instance
        logger.info(f"Run of instance {instance.id} stopped: {instance.status.value}")
        if instance.status == InstanceStatus.CANCELLED and self._scheduler is not None:
            self._scheduler.clear_instance(instance.id)
        return instance
