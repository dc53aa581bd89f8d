"""Unit tests for the Dispatcher."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from models.definition import WorkflowDefinition
from models.outcome import HandlerResult
from models.state import (
    EntityType,
    InstanceStatus,
    PauseReason,
    StepStatus,
    WorkflowInstance,
)
from services.dispatcher import Dispatcher, ErrorHandling
from services.errors import ExternalServiceError, WorkflowError
from services.handler_registry import HandlerRegistry
from services.handlers.core import ConditionHandler, EndHandler, StartHandler

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_definition(nodes, edges) -> WorkflowDefinition:
    return WorkflowDefinition(
        id="def-1",
        version=1,
        name="test-flow",
        nodes=nodes,
        edges=edges,
        created_at=NOW,
        updated_at=NOW,
    )


def make_instance(current_node_id="start", **overrides) -> WorkflowInstance:
    fields = {
        "id": "inst-1",
        "definition_id": "def-1",
        "definition_version": 1,
        "entity_type": EntityType.SHIPMENT,
        "entity_id": "SH-1",
        "status": InstanceStatus.IN_PROGRESS,
        "current_node_id": current_node_id,
        "context": {"shipment": {"id": "SH-1", "weight": 1200}},
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return WorkflowInstance(**fields)


def linear_definition(task_config=None) -> WorkflowDefinition:
    return make_definition(
        [
            {"id": "start", "type": "START"},
            {"id": "task", "type": "CREATE_TASK", "config": task_config or {}},
            {"id": "end", "type": "END"},
        ],
        [
            {"source": "start", "target": "task"},
            {"source": "task", "target": "end"},
        ],
    )


@pytest.fixture
def task_handler():
    handler = MagicMock()
    handler.execute.return_value = HandlerResult.ok({"task_id": "T-1"})
    return handler


@pytest.fixture
def registry(task_handler):
    registry = HandlerRegistry()
    registry.register("START", StartHandler())
    registry.register("END", EndHandler())
    registry.register("CONDITION", ConditionHandler())
    registry.register("CREATE_TASK", task_handler)
    return registry


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def dispatcher(registry, sleep):
    return Dispatcher(registry, sleep=sleep, clock=lambda: NOW)


class TestDispatcherInit:
    def test_init_without_registry_raises(self):
        with pytest.raises(ValueError, match="registry is required"):
            Dispatcher(None)


class TestStep:
    """Tests for single steps along a linear graph."""

    def test_advances_and_stores_output(self, dispatcher):
        definition = linear_definition()
        instance, outcome = dispatcher.step(definition, make_instance("task"))

        assert outcome.kind == "advanced"
        assert outcome.next_node_id == "end"
        assert instance.current_node_id == "end"
        assert instance.context["task"] == {"task_id": "T-1"}
        assert instance.execution_log[-1].status == StepStatus.COMPLETED

    def test_end_completes_instance(self, dispatcher):
        instance, outcome = dispatcher.step(linear_definition(), make_instance("end"))

        assert outcome.kind == "completed"
        assert instance.status == InstanceStatus.COMPLETED
        assert instance.completed_at == NOW
        assert instance.context["end"] == {"outcome": "SUCCESS"}

    def test_handler_sees_context_snapshot(self, dispatcher, task_handler):
        original = make_instance("task")
        instance, _ = dispatcher.step(linear_definition(), original)

        _, instance_id, context = task_handler.execute.call_args.args
        assert instance_id == "inst-1"
        assert context == original.context
        assert "task" not in original.context

    def test_missing_node_fails(self, dispatcher):
        instance, outcome = dispatcher.step(linear_definition(), make_instance("ghost"))

        assert outcome.kind == "failed"
        assert instance.status == InstanceStatus.FAILED
        assert instance.errors[-1].error_type == "WorkflowError"

    def test_unknown_node_type_fails(self, dispatcher):
        definition = make_definition(
            [{"id": "start", "type": "TELEPORT"}], []
        )
        instance, outcome = dispatcher.step(definition, make_instance("start"))

        assert outcome.kind == "failed"
        assert "Unknown node type: TELEPORT" in outcome.error
        assert instance.errors[-1].error_type == "WorkflowError"

    def test_suspend_on_wait(self, dispatcher, task_handler):
        task_handler.execute.return_value = HandlerResult.wait(
            {"message": "Waiting for review"}
        )
        instance, outcome = dispatcher.step(linear_definition(), make_instance("task"))

        assert outcome.kind == "suspended"
        assert instance.status == InstanceStatus.PAUSED
        assert instance.pause_reason == PauseReason.WAITING_FOR_INPUT
        assert instance.current_node_id == "task"
        assert instance.execution_log[-1].status == StepStatus.WAITING

    def test_handler_result_type_checked(self, dispatcher, task_handler):
        task_handler.execute.return_value = {"task_id": "T-1"}
        instance, outcome = dispatcher.step(linear_definition(), make_instance("task"))

        assert outcome.kind == "failed"
        assert "returned dict" in outcome.error


class TestRetries:
    """Tests for the errorHandling policy."""

    def test_error_handling_from_config(self):
        policy = ErrorHandling.from_config(
            {"errorHandling": {"retries": 2, "retryDelay": 5, "fallbackValue": None}}
        )
        assert policy.retries == 2
        assert policy.retry_delay == 5.0
        assert policy.has_fallback is True

    def test_retries_until_success(self, dispatcher, task_handler, sleep):
        task_handler.execute.side_effect = [
            ExternalServiceError("crm down"),
            ExternalServiceError("crm down"),
            HandlerResult.ok({"task_id": "T-2"}),
        ]
        definition = linear_definition({"errorHandling": {"retries": 2, "retryDelay": 3}})

        instance, outcome = dispatcher.step(definition, make_instance("task"))

        assert outcome.kind == "advanced"
        assert task_handler.execute.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(3.0)
        assert [e.retry_count for e in instance.errors] == [0, 1]
        assert [e.status for e in instance.execution_log] == [
            StepStatus.FAILED,
            StepStatus.FAILED,
            StepStatus.COMPLETED,
        ]

    def test_retry_wait_capped(self, registry, task_handler, sleep):
        task_handler.execute.side_effect = ExternalServiceError("crm down")
        dispatcher = Dispatcher(registry, sleep=sleep, clock=lambda: NOW, max_retry_wait=5)
        definition = linear_definition({"errorHandling": {"retries": 4, "retryDelay": 3}})

        dispatcher.step(definition, make_instance("task"))

        assert task_handler.execute.call_count == 5
        assert [c.args[0] for c in sleep.call_args_list] == [3.0, 2.0]

    def test_max_retry_wait_non_negative(self, registry):
        with pytest.raises(ValueError, match="max_retry_wait must be non-negative"):
            Dispatcher(registry, max_retry_wait=-1)

    def test_exhausted_retries_fail(self, dispatcher, task_handler):
        task_handler.execute.side_effect = ExternalServiceError("crm down")
        definition = linear_definition({"errorHandling": {"retries": 1}})

        instance, outcome = dispatcher.step(definition, make_instance("task"))

        assert outcome.kind == "failed"
        assert outcome.error == "crm down"
        assert task_handler.execute.call_count == 2
        assert instance.status == InstanceStatus.FAILED
        assert instance.errors[-1].error_type == "ExternalServiceError"

    def test_failed_result_retried(self, dispatcher, task_handler):
        task_handler.execute.return_value = HandlerResult.fail("no assignee")
        definition = linear_definition({"errorHandling": {"retries": 1}})

        _, outcome = dispatcher.step(definition, make_instance("task"))

        assert outcome.kind == "failed"
        assert task_handler.execute.call_count == 2

    def test_fallback_value_used(self, dispatcher, task_handler):
        task_handler.execute.side_effect = ExternalServiceError("crm down")
        definition = linear_definition(
            {"errorHandling": {"retries": 1, "fallbackValue": {"task_id": None}}}
        )

        instance, outcome = dispatcher.step(definition, make_instance("task"))

        assert outcome.kind == "advanced"
        assert instance.context["task"] == {"task_id": None}
        assert instance.execution_log[-1].status == StepStatus.COMPLETED

    def test_workflow_error_not_retried(self, dispatcher, task_handler):
        task_handler.execute.side_effect = WorkflowError("schema is required", "task")
        definition = linear_definition(
            {"errorHandling": {"retries": 3, "fallbackValue": "x"}}
        )

        instance, outcome = dispatcher.step(definition, make_instance("task"))

        assert outcome.kind == "failed"
        assert task_handler.execute.call_count == 1
        assert instance.errors[-1].error_type == "WorkflowError"


class TestBranching:
    """Tests for successor resolution."""

    def condition_definition(self, branches, edges=(), default=None):
        config = {
            "conditions": [{"field": "shipment.weight", "operator": "greater_than", "value": 1000}],
            "branches": branches,
        }
        if default:
            config["default"] = default
        return make_definition(
            [
                {"id": "start", "type": "START"},
                {"id": "check", "type": "CONDITION", "config": config},
                {"id": "heavy", "type": "END"},
                {"id": "light", "type": "END"},
            ],
            [{"source": "start", "target": "check"}, *edges],
        )

    def test_branch_target(self, dispatcher):
        definition = self.condition_definition({"true": "heavy", "false": "light"})
        instance, outcome = dispatcher.step(definition, make_instance("check"))

        assert outcome.next_node_id == "heavy"
        assert instance.context["check"] == {"result": True}

    def test_labelled_edge_branch(self, dispatcher):
        definition = self.condition_definition(
            {},
            edges=[
                {"source": "check", "target": "heavy", "label": "true"},
                {"source": "check", "target": "light", "label": "false"},
            ],
        )
        context = {"shipment": {"weight": 10}}
        _, outcome = dispatcher.step(definition, make_instance("check", context=context))
        assert outcome.next_node_id == "light"

    def test_default_branch(self, dispatcher):
        definition = self.condition_definition({"true": "heavy"}, default="light")
        context = {"shipment": {"weight": 10}}
        _, outcome = dispatcher.step(definition, make_instance("check", context=context))
        assert outcome.next_node_id == "light"

    def test_unresolvable_branch_fails_instance(self, dispatcher):
        definition = self.condition_definition({"true": "heavy"})
        context = {"shipment": {"weight": 10}}

        instance, outcome = dispatcher.step(
            definition, make_instance("check", context=context)
        )

        assert outcome.kind == "failed"
        assert instance.status == InstanceStatus.FAILED
        error = instance.errors[-1]
        assert error.node_id == "check"
        assert error.error_type == "WorkflowError"
        assert "No branch 'false'" in error.message

    def test_edge_conditions(self, dispatcher):
        definition = make_definition(
            [
                {"id": "start", "type": "START"},
                {"id": "air", "type": "END"},
                {"id": "sea", "type": "END"},
            ],
            [
                {
                    "source": "start",
                    "target": "air",
                    "condition": {"field": "mode", "operator": "equals", "value": "AIR"},
                },
                {"source": "start", "target": "sea"},
            ],
        )
        _, air = dispatcher.step(definition, make_instance(context={"mode": "AIR"}))
        _, sea = dispatcher.step(definition, make_instance(context={"mode": "SEA"}))

        assert air.next_node_id == "air"
        assert sea.next_node_id == "sea"

    def test_no_edge_condition_holds(self, dispatcher):
        definition = make_definition(
            [{"id": "start", "type": "START"}, {"id": "air", "type": "END"}],
            [
                {
                    "source": "start",
                    "target": "air",
                    "condition": {"field": "mode", "operator": "equals", "value": "AIR"},
                }
            ],
        )
        instance, outcome = dispatcher.step(definition, make_instance(context={"mode": "SEA"}))

        assert outcome.kind == "failed"
        assert instance.errors[-1].node_id == "start"

    def test_reserved_edges_not_followed(self, dispatcher):
        definition = make_definition(
            [{"id": "start", "type": "START"}, {"id": "late", "type": "END"}],
            [{"source": "start", "target": "late", "label": "timeout"}],
        )
        instance, outcome = dispatcher.step(definition, make_instance())

        assert outcome.kind == "completed"
        assert instance.status == InstanceStatus.COMPLETED


class TestMergeOutput:
    def test_context_key(self, dispatcher):
        node = linear_definition({"contextKey": "crm_task"}).get_node("task")
        merged = dispatcher.merge_output({"a": 1}, node, {"task_id": "T"})
        assert merged == {"a": 1, "crm_task": {"task_id": "T"}}

    def test_save_to_context_false(self, dispatcher):
        node = linear_definition({"saveToContext": False}).get_node("task")
        assert dispatcher.merge_output({"a": 1}, node, {"task_id": "T"}) == {"a": 1}

    def test_none_output(self, dispatcher):
        node = linear_definition().get_node("task")
        assert dispatcher.merge_output({"a": 1}, node, None) == {"a": 1}


class TestTimeOut:
    """Tests for timing out a waiting node."""

    def waiting(self):
        return make_instance(
            "task",
            status=InstanceStatus.PAUSED,
            pause_reason=PauseReason.WAITING_FOR_INPUT,
            paused_at=NOW,
        )

    def test_follows_timeout_edge(self, dispatcher):
        definition = make_definition(
            [
                {"id": "task", "type": "CREATE_TASK"},
                {"id": "chase", "type": "END"},
                {"id": "end", "type": "END"},
            ],
            [
                {"source": "task", "target": "end"},
                {"source": "task", "target": "chase", "label": "timeout"},
            ],
        )
        node = definition.get_node("task")

        instance, outcome = dispatcher.time_out(definition, self.waiting(), node)

        assert outcome.kind == "advanced"
        assert instance.current_node_id == "chase"
        assert instance.status == InstanceStatus.IN_PROGRESS
        assert instance.pause_reason is None

    def test_skip(self, dispatcher):
        definition = linear_definition({"onTimeout": "SKIP"})
        node = definition.get_node("task")

        instance, outcome = dispatcher.time_out(definition, self.waiting(), node)

        assert outcome.kind == "advanced"
        assert instance.current_node_id == "end"
        assert instance.status == InstanceStatus.IN_PROGRESS
        assert instance.context["task"] == {"timed_out": True}
        assert instance.execution_log[-1].status == StepStatus.SKIPPED

    def test_fail_by_default(self, dispatcher):
        definition = linear_definition()
        node = definition.get_node("task")

        instance, outcome = dispatcher.time_out(definition, self.waiting(), node)

        assert outcome.kind == "failed"
        assert instance.status == InstanceStatus.FAILED
        assert instance.errors[-1].error_type == "Timeout"


class TestEscalate:
    """Tests for leaving an overdue node through its escalate edge."""

    def test_follows_escalate_edge(self, dispatcher):
        definition = make_definition(
            [
                {"id": "task", "type": "CREATE_TASK"},
                {"id": "ops", "type": "END"},
                {"id": "end", "type": "END"},
            ],
            [
                {"source": "task", "target": "end"},
                {"source": "task", "target": "ops", "label": "escalate"},
            ],
        )
        waiting = make_instance(
            "task",
            status=InstanceStatus.PAUSED,
            pause_reason=PauseReason.WAITING_FOR_INPUT,
            paused_at=NOW,
        )

        instance, outcome = dispatcher.escalate(definition, waiting, definition.get_node("task"))

        assert outcome.kind == "advanced"
        assert outcome.next_node_id == "ops"
        assert instance.status == InstanceStatus.IN_PROGRESS
        assert instance.execution_log[-1].output == {"escalated": True}
