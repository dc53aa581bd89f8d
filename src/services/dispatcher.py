"""Node dispatcher: runs one node's handler and applies the resulting transition."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict

from models.definition import NodeType, WorkflowDefinition, WorkflowNode
from models.outcome import Completed, Failed, HandlerResult, Outcome, Suspended
from models.state import (
    ExecutionLogEntry,
    InstanceError,
    InstanceStatus,
    PauseReason,
    StepStatus,
    WorkflowInstance,
)
from services.condition_evaluator import evaluate_conditions
from services.errors import WorkflowError
from services.handler_registry import HandlerRegistry

logger = logging.getLogger(__name__)

# Edge labels only followed by the timer service, never on normal completion.
RESERVED_EDGE_LABELS = frozenset({"timeout", "escalate"})


class ErrorHandling(BaseModel):
    """Per-node retry policy from ``config.errorHandling``."""

    model_config = ConfigDict(frozen=True)

    retries: int = 0
    retry_delay: float = 0.0
    fallback_value: Any = None
    has_fallback: bool = False

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ErrorHandling":
        raw = config.get("errorHandling") or {}
        return cls(
            retries=max(0, int(raw.get("retries", 0))),
            retry_delay=max(0.0, float(raw.get("retryDelay", 0))),
            fallback_value=raw.get("fallbackValue"),
            has_fallback="fallbackValue" in raw,
        )


class StepOutcome(BaseModel):
    """What one dispatcher step did to the instance."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["advanced", "suspended", "completed", "failed"]
    node_id: str
    next_node_id: str | None = None
    data: Any = None
    error: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Dispatcher:
    """Executes the current node of an instance and moves it along the graph.

    Works on instance values only. Persisting the returned instance is the
    caller's job.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utc_now,
        max_retry_wait: float | None = None,
    ):
        if registry is None:
            raise ValueError("registry is required")
        if max_retry_wait is not None and max_retry_wait < 0:
            raise ValueError("max_retry_wait must be non-negative")
        self._registry = registry
        self._sleep = sleep
        self._clock = clock
        self._max_retry_wait = max_retry_wait

    def step(
        self, definition: WorkflowDefinition, instance: WorkflowInstance
    ) -> tuple[WorkflowInstance, StepOutcome]:
        """Run the current node and apply its outcome."""
        node_id = instance.current_node_id
        node = definition.get_node(node_id) if node_id else None
        if node is None:
            return self.fail(
                instance,
                WorkflowError(f"Node not found in definition: {node_id}", node_id=node_id),
            )

        instance, outcome = self.execute_node(instance, node)

        if isinstance(outcome, Suspended):
            return self._suspend(instance, node, outcome)
        if isinstance(outcome, Failed):
            return self._mark_failed(instance, node.id, outcome.error)
        return self.complete_node(definition, instance, node, outcome)

    def execute_node(
        self, instance: WorkflowInstance, node: WorkflowNode
    ) -> tuple[WorkflowInstance, Outcome]:
        """Invoke the node's handler under its retry policy.

        Every failed attempt is logged. Exceptions never escape. Total sleep
        between attempts never exceeds ``max_retry_wait``, so a run cannot
        outlive the instance lock while it backs off.
        """
        policy = ErrorHandling.from_config(node.config)
        snapshot = dict(instance.context)
        attempts = policy.retries + 1
        last_error = ""
        waited = 0.0

        for attempt in range(attempts):
            started = self._clock()
            try:
                handler = self._registry.get(node.type)
                result = handler.execute(node, instance.id, snapshot)
                if not isinstance(result, HandlerResult):
                    raise WorkflowError(
                        f"Handler for {node.type} returned {type(result).__name__}",
                        node_id=node.id,
                    )
                outcome = result.to_outcome()
                error_type = "HandlerError"
            except WorkflowError as e:
                logger.error(f"Fatal error at {instance.id}/{node.id}: {e}")
                instance = self._record_failure(
                    instance, node, snapshot, started, str(e), attempt, "WorkflowError"
                )
                return instance, Failed(error=str(e))
            except Exception as e:
                outcome = Failed(error=str(e) or type(e).__name__)
                error_type = type(e).__name__

            if not isinstance(outcome, Failed):
                status = (
                    StepStatus.WAITING
                    if isinstance(outcome, Suspended)
                    else StepStatus.COMPLETED
                )
                instance = self._append_log(
                    instance,
                    ExecutionLogEntry(
                        node_id=node.id,
                        node_type=node.type,
                        status=status,
                        started_at=started,
                        completed_at=self._clock(),
                        attempt=attempt,
                        input=snapshot,
                        output=outcome.data,
                    ),
                )
                logger.info(
                    f"Node {node.id} ({node.type}) {status.value.lower()} "
                    f"for instance {instance.id}"
                )
                return instance, outcome

            last_error = outcome.error
            instance = self._record_failure(
                instance, node, snapshot, started, last_error, attempt, error_type
            )
            if attempt + 1 < attempts:
                delay = policy.retry_delay
                if self._max_retry_wait is not None:
                    delay = min(delay, max(0.0, self._max_retry_wait - waited))
                logger.warning(
                    f"Node {node.id} failed (attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay}s: {last_error}"
                )
                if delay:
                    self._sleep(delay)
                    waited += delay

        if policy.has_fallback:
            logger.warning(f"Node {node.id} exhausted retries, using fallback value")
            instance = self._append_log(
                instance,
                ExecutionLogEntry(
                    node_id=node.id,
                    node_type=node.type,
                    status=StepStatus.COMPLETED,
                    started_at=self._clock(),
                    completed_at=self._clock(),
                    attempt=attempts,
                    input=snapshot,
                    output=policy.fallback_value,
                ),
            )
            return instance, Completed(data=policy.fallback_value)

        logger.warning(f"Node {node.id} failed for instance {instance.id}: {last_error}")
        return instance, Failed(error=last_error)

    def complete_node(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        node: WorkflowNode,
        outcome: Completed,
    ) -> tuple[WorkflowInstance, StepOutcome]:
        """Store the node output in a new context and move to the next node."""
        context = self.merge_output(instance.context, node, outcome.data)
        instance = instance.model_copy(
            update={"context": context, "updated_at": self._clock()}
        )

        try:
            next_node_id = self.resolve_next(definition, node, outcome, context)
        except WorkflowError as e:
            return self.fail(instance, e, node.type)

        if next_node_id is None:
            now = self._clock()
            instance = instance.model_copy(
                update={
                    "status": InstanceStatus.COMPLETED,
                    "completed_at": now,
                    "updated_at": now,
                }
            )
            logger.info(f"Instance {instance.id} completed at node {node.id}")
            return instance, StepOutcome(kind="completed", node_id=node.id, data=outcome.data)

        instance = instance.model_copy(update={"current_node_id": next_node_id})
        return instance, StepOutcome(
            kind="advanced", node_id=node.id, next_node_id=next_node_id, data=outcome.data
        )

    def follow_edge(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        node: WorkflowNode,
        label: str,
    ) -> tuple[WorkflowInstance, StepOutcome]:
        """Leave a waiting node through its edge with the given label."""
        edge = next(
            (e for e in definition.outgoing_edges(node.id) if e.label == label), None
        )
        if edge is None:
            return self.fail(
                instance,
                WorkflowError(f"No '{label}' edge from node {node.id}", node_id=node.id),
                node.type,
            )

        now = self._clock()
        instance = instance.model_copy(
            update={
                "status": InstanceStatus.IN_PROGRESS,
                "pause_reason": None,
                "paused_at": None,
                "current_node_id": edge.target,
                "updated_at": now,
            }
        )
        return instance, StepOutcome(
            kind="advanced", node_id=node.id, next_node_id=edge.target
        )

    def escalate(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        node: WorkflowNode,
    ) -> tuple[WorkflowInstance, StepOutcome]:
        """Leave an overdue waiting node through its ``escalate`` edge."""
        now = self._clock()
        instance = self._append_log(
            instance,
            ExecutionLogEntry(
                node_id=node.id,
                node_type=node.type,
                status=StepStatus.SKIPPED,
                started_at=now,
                completed_at=now,
                input=dict(instance.context),
                output={"escalated": True},
            ),
        )
        logger.info(f"Instance {instance.id} escalated at {node.id}")
        return self.follow_edge(definition, instance, node, "escalate")

    def time_out(
        self,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        node: WorkflowNode,
    ) -> tuple[WorkflowInstance, StepOutcome]:
        """Apply a waiting node's timeout: its ``timeout`` edge, SKIP or FAIL."""
        if any(e.label == "timeout" for e in definition.outgoing_edges(node.id)):
            logger.info(f"Instance {instance.id} timed out at {node.id}, following timeout edge")
            return self.follow_edge(definition, instance, node, "timeout")

        now = self._clock()
        message = f"Node {node.id} timed out"
        if node.config.get("onTimeout") == "SKIP":
            instance = self._append_log(
                instance,
                ExecutionLogEntry(
                    node_id=node.id,
                    node_type=node.type,
                    status=StepStatus.SKIPPED,
                    started_at=now,
                    completed_at=now,
                    input=dict(instance.context),
                    output={"timed_out": True},
                ),
            ).model_copy(
                update={
                    "status": InstanceStatus.IN_PROGRESS,
                    "pause_reason": None,
                    "paused_at": None,
                }
            )
            logger.info(f"Instance {instance.id} skipping timed out node {node.id}")
            return self.complete_node(
                definition, instance, node, Completed(data={"timed_out": True})
            )

        instance = instance.model_copy(
            update={
                "errors": [
                    *instance.errors,
                    InstanceError(
                        node_id=node.id, message=message, timestamp=now, error_type="Timeout"
                    ),
                ],
            }
        )
        logger.warning(f"Instance {instance.id}: {message}")
        return self._mark_failed(instance, node.id, message)

    def resolve_next(
        self,
        definition: WorkflowDefinition,
        node: WorkflowNode,
        outcome: Completed,
        context: dict[str, Any],
    ) -> str | None:
        """Successor of a completed node, or None when the instance is done."""
        if node.type == NodeType.END.value:
            return None

        if outcome.next_node_id:
            if definition.get_node(outcome.next_node_id) is None:
                raise WorkflowError(
                    f"Next node not found: {outcome.next_node_id}", node_id=node.id
                )
            return outcome.next_node_id

        edges = definition.outgoing_edges(node.id)
        default = node.config.get("default")

        if outcome.branch:
            for edge in edges:
                if edge.label == outcome.branch:
                    return edge.target
            if default:
                return self._checked_target(definition, node, default)
            raise WorkflowError(
                f"No branch '{outcome.branch}' and no default for node {node.id}",
                node_id=node.id,
            )

        candidates = [e for e in edges if e.label not in RESERVED_EDGE_LABELS]
        if not candidates:
            return None

        for edge in candidates:
            if edge.condition is None or evaluate_conditions(edge.condition, context):
                return edge.target
        if default:
            return self._checked_target(definition, node, default)
        raise WorkflowError(
            f"No outgoing edge condition holds for node {node.id}", node_id=node.id
        )

    def merge_output(
        self, context: dict[str, Any], node: WorkflowNode, data: Any
    ) -> dict[str, Any]:
        """New context with the node output added. The old context is untouched."""
        if data is None or node.config.get("saveToContext") is False:
            return dict(context)
        key = node.config.get("contextKey") or node.id
        return {**context, key: data}

    def fail(
        self,
        instance: WorkflowInstance,
        error: WorkflowError,
        node_type: str = "",
    ) -> tuple[WorkflowInstance, StepOutcome]:
        """Fail the instance with a WorkflowError recorded against its node."""
        node_id = error.node_id or instance.current_node_id or ""
        logger.error(f"Instance {instance.id} failed at {node_id}: {error}")
        now = self._clock()
        instance = instance.model_copy(
            update={
                "execution_log": [
                    *instance.execution_log,
                    ExecutionLogEntry(
                        node_id=node_id,
                        node_type=node_type,
                        status=StepStatus.FAILED,
                        started_at=now,
                        completed_at=now,
                        input=dict(instance.context),
                        error=str(error),
                    ),
                ],
                "errors": [
                    *instance.errors,
                    InstanceError(
                        node_id=node_id,
                        message=str(error),
                        timestamp=now,
                        error_type="WorkflowError",
                    ),
                ],
            }
        )
        return self._mark_failed(instance, node_id, str(error))

    def _mark_failed(
        self, instance: WorkflowInstance, node_id: str, error: str
    ) -> tuple[WorkflowInstance, StepOutcome]:
        now = self._clock()
        instance = instance.model_copy(
            update={
                "status": InstanceStatus.FAILED,
                "completed_at": now,
                "updated_at": now,
            }
        )
        return instance, StepOutcome(kind="failed", node_id=node_id, error=error)

    def _suspend(
        self, instance: WorkflowInstance, node: WorkflowNode, outcome: Suspended
    ) -> tuple[WorkflowInstance, StepOutcome]:
        now = self._clock()
        instance = instance.model_copy(
            update={
                "status": InstanceStatus.PAUSED,
                "pause_reason": PauseReason.WAITING_FOR_INPUT,
                "current_node_id": node.id,
                "paused_at": now,
                "updated_at": now,
            }
        )
        logger.info(f"Instance {instance.id} waiting at {node.id}: {outcome.reason}")
        return instance, StepOutcome(kind="suspended", node_id=node.id, data=outcome.data)

    def _checked_target(
        self, definition: WorkflowDefinition, node: WorkflowNode, target: str
    ) -> str:
        if definition.get_node(target) is None:
            raise WorkflowError(f"Default target not found: {target}", node_id=node.id)
        return target

    def _append_log(
        self, instance: WorkflowInstance, entry: ExecutionLogEntry
    ) -> WorkflowInstance:
        return instance.model_copy(
            update={"execution_log": [*instance.execution_log, entry]}
        )

    def _record_failure(
        self,
        instance: WorkflowInstance,
        node: WorkflowNode,
        snapshot: dict[str, Any],
        started: datetime,
        message: str,
        attempt: int,
        error_type: str,
    ) -> WorkflowInstance:
        now = self._clock()
        return instance.model_copy(
            update={
                "execution_log": [
                    *instance.execution_log,
                    ExecutionLogEntry(
                        node_id=node.id,
                        node_type=node.type,
                        status=StepStatus.FAILED,
                        started_at=started,
                        completed_at=now,
                        attempt=attempt,
                        input=snapshot,
                        error=message,
                    ),
                ],
                "errors": [
                    *instance.errors,
                    InstanceError(
                        node_id=node.id,
                        message=message,
                        timestamp=now,
                        retry_count=attempt,
                        error_type=error_type,
                    ),
                ],
            }
        )
