"""Starts workflow instances from platform events."""

import logging
from typing import Any

from pydantic import BaseModel

from models.definition import WorkflowDefinition, WorkflowTrigger
from models.state import EntityBinding, EntityType
from services.condition_evaluator import evaluate_conditions
from services.definition_store import RedisDefinitionStore
from services.errors import EngineError, ValidationError
from services.instance_manager import InstanceManager

logger = logging.getLogger(__name__)


class TriggerFailure(BaseModel):
    definition_id: str
    error: str


class TriggerResult(BaseModel):
    """Instances started for one event and the definitions that failed to start."""

    event_type: str
    started: list[str] = []
    failures: list[TriggerFailure] = []


class EventTriggerService:
    """Matches events against the triggers of ACTIVE definitions."""

    def __init__(
        self,
        definition_store: RedisDefinitionStore,
        instance_manager: InstanceManager,
    ):
        if definition_store is None:
            raise ValueError("definition_store is required")
        if instance_manager is None:
            raise ValueError("instance_manager is required")
        self._definitions = definition_store
        self._instances = instance_manager

    def matching_definitions(
        self, event_type: str, event_data: dict[str, Any]
    ) -> list[WorkflowDefinition]:
        """ACTIVE definitions with a trigger for event_type whose conditions hold."""
        matches = []
        for definition in self._definitions.list_active():
            triggers = [t for t in definition.triggers if t.type == event_type]
            if any(self._trigger_holds(t, event_data) for t in triggers):
                matches.append(definition)

        return sorted(
            matches,
            key=lambda d: max(
                int(t.config.get("priority", 0))
                for t in d.triggers
                if t.type == event_type
            ),
            reverse=True,
        )

    def handle_event(
        self,
        event_type: str,
        event_data: dict[str, Any] | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> TriggerResult:
        """Start an instance of every matching definition.

        One definition failing to start does not stop the others.
        """
        if not event_type:
            raise ValidationError("event_type is required")

        event_data = event_data or {}
        try:
            entity = EntityBinding(
                entity_type=EntityType(entity_type or EntityType.STANDALONE.value),
                entity_id=entity_id,
            )
        except ValueError as e:
            raise ValidationError(f"Unknown entity type: {entity_type}") from e

        result = TriggerResult(event_type=event_type)
        definitions = self.matching_definitions(event_type, event_data)
        if not definitions:
            logger.info(f"No active triggers for {event_type}")
            return result

        for definition in definitions:
            try:
                instance = self._instances.start(
                    definition.id,
                    entity,
                    {**event_data, "event_type": event_type},
                )
            except EngineError as e:
                logger.warning(
                    f"Trigger {event_type} failed for definition {definition.id}: {e}"
                )
                result.failures.append(
                    TriggerFailure(definition_id=definition.id, error=str(e))
                )
                continue

            logger.info(
                f"Event {event_type} started {definition.name} ({instance.id})"
            )
            result.started.append(instance.id)

        return result

    def _trigger_holds(self, trigger: WorkflowTrigger, event_data: dict[str, Any]) -> bool:
        conditions = trigger.config.get("conditions")
        if isinstance(conditions, dict):
            conditions = [conditions]
        try:
            return evaluate_conditions(conditions, event_data)
        except ValueError as e:
            logger.warning(f"Ignoring trigger {trigger.type} with bad conditions: {e}")
            return False
