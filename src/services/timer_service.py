"""Timer registration and the periodic sweep that fires due timers."""

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel, ConfigDict

from models.definition import (
    EscalationRule,
    SlaConfig,
    WorkflowDefinition,
    WorkflowNode,
)
from models.state import EntityBinding, InstanceStatus, PauseReason, WorkflowInstance
from models.timer import TimerEntry, TimerKind
from services.collaborators import MessagingGateway
from services.due_index import RedisDueIndex
from services.errors import EngineError, ExternalServiceError, NotFoundError

if TYPE_CHECKING:
    from services.instance_manager import InstanceManager

logger = logging.getLogger(__name__)

PRIORITY_MULTIPLIERS = {
    "CRITICAL": 0.25,
    "HIGH": 0.5,
    "MEDIUM": 1.0,
    "LOW": 1.5,
}

SLA_WARNING_PERCENT = 80
SLA_CRITICAL_PERCENT = 90


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SlaDeadline(BaseModel):
    """Deadline and alert points for one instance's resolution target."""

    model_config = ConfigDict(frozen=True)

    total_minutes: float
    deadline_at: datetime
    warning_at: datetime
    critical_at: datetime


def sla_deadline(
    start: datetime, sla_config: SlaConfig, priority: str | None = None
) -> SlaDeadline:
    """Resolution deadline scaled by priority, with warning and critical points."""
    multiplier = PRIORITY_MULTIPLIERS.get(str(priority or "MEDIUM").upper(), 1.0)
    total = sla_config.resolution_time_minutes * multiplier
    return SlaDeadline(
        total_minutes=total,
        deadline_at=start + timedelta(minutes=total),
        warning_at=start + timedelta(minutes=total * SLA_WARNING_PERCENT / 100),
        critical_at=start + timedelta(minutes=total * SLA_CRITICAL_PERCENT / 100),
    )


def applicable_rule(sla_config: SlaConfig, elapsed_minutes: float) -> EscalationRule | None:
    """The latest escalation rule already reached after elapsed_minutes."""
    reached = [
        rule for rule in sla_config.escalation_rules if rule.after_minutes <= elapsed_minutes
    ]
    if not reached:
        return None
    return max(reached, key=lambda rule: rule.after_minutes)


def _minutes(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes > 0 else None


class TimerScheduler:
    """Registers and clears due-index entries as instances move."""

    def __init__(
        self,
        due_index: RedisDueIndex,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if due_index is None:
            raise ValueError("due_index is required")
        self._due_index = due_index
        self._clock = clock

    def register_node(
        self,
        instance: WorkflowInstance,
        node: WorkflowNode,
        wait_data: Any = None,
    ) -> list[TimerEntry]:
        """Schedule the timers a suspended node declares. Returns what is stored."""
        now = self._clock()
        config = node.config
        entries = []

        def add(kind: TimerKind, due_at: datetime, **kwargs) -> None:
            entry = TimerEntry(
                instance_id=instance.id,
                node_id=node.id,
                kind=kind,
                due_at=due_at,
                **kwargs,
            )
            entries.append(self._due_index.schedule(entry))

        resume_at = wait_data.get("resume_at") if isinstance(wait_data, dict) else None
        if resume_at:
            add(TimerKind.RESUME, datetime.fromisoformat(resume_at))

        timeout = _minutes(config.get("timeoutMinutes"))
        if timeout:
            add(
                TimerKind.TIMEOUT,
                now + timedelta(minutes=timeout),
                payload={
                    "on_timeout": config.get("onTimeout", "FAIL"),
                    "escalate_to": config.get("escalateTo"),
                },
            )

        reminder = _minutes(config.get("reminderAfterMinutes"))
        if reminder is None:
            hours = _minutes(config.get("reminderAfterHours"))
            reminder = hours * 60 if hours else None
        if reminder:
            add(
                TimerKind.REMINDER,
                now + timedelta(minutes=reminder),
                interval_seconds=reminder * 60,
                payload={
                    "recipient": config.get("assignTo") or config.get("escalateTo"),
                    "label": node.label or node.id,
                },
            )

        days = _minutes(config.get("escalateAfterDays"))
        if days and config.get("escalateTo"):
            add(
                TimerKind.ESCALATE,
                now + timedelta(days=days),
                payload={"escalate_to": config.get("escalateTo")},
            )

        if entries:
            logger.info(
                f"Registered {len(entries)} timer(s) for {instance.id}/{node.id}"
            )
        return entries

    def register_sla(
        self, instance: WorkflowInstance, definition: WorkflowDefinition
    ) -> list[TimerEntry]:
        """Schedule SLA warning, critical, per-rule escalation and breach timers."""
        if definition.sla_config is None:
            return []

        start = instance.started_at or instance.created_at
        sla_config = definition.sla_config
        deadline = sla_deadline(start, sla_config, instance.context.get("priority"))
        payload = {
            "deadline_at": deadline.deadline_at.isoformat(),
            "total_minutes": deadline.total_minutes,
        }

        entries = []
        for kind, due_at, percent in (
            (TimerKind.SLA_WARNING, deadline.warning_at, SLA_WARNING_PERCENT),
            (TimerKind.SLA_CRITICAL, deadline.critical_at, SLA_CRITICAL_PERCENT),
        ):
            entry = TimerEntry(
                instance_id=instance.id,
                kind=kind,
                due_at=due_at,
                payload={**payload, "percent": percent},
            )
            entries.append(self._due_index.schedule(entry))

        for sequence, rule in enumerate(sla_config.escalation_rules):
            entry = TimerEntry(
                instance_id=instance.id,
                kind=TimerKind.SLA_ESCALATION,
                sequence=sequence,
                due_at=start + timedelta(minutes=rule.after_minutes),
                payload={
                    **payload,
                    "after_minutes": rule.after_minutes,
                    "escalate_to": rule.escalate_to,
                    "notify_via": rule.notify_via,
                },
            )
            entries.append(self._due_index.schedule(entry))

        breach_rule = applicable_rule(sla_config, deadline.total_minutes)
        entry = TimerEntry(
            instance_id=instance.id,
            kind=TimerKind.SLA_BREACH,
            due_at=deadline.deadline_at,
            payload={
                **payload,
                "percent": 100,
                "escalate_to": breach_rule.escalate_to if breach_rule else [],
                "notify_via": breach_rule.notify_via if breach_rule else [],
                "escalation_workflow_id": definition.escalation_workflow_id,
            },
        )
        entries.append(self._due_index.schedule(entry))

        logger.info(
            f"SLA for {instance.id}: {deadline.total_minutes:.0f} min, "
            f"due {deadline.deadline_at.isoformat()}"
        )
        return entries

    def clear_node(self, instance_id: str, node_id: str) -> int:
        return self._due_index.clear_node(instance_id, node_id)

    def clear_instance(self, instance_id: str) -> int:
        return self._due_index.clear_instance(instance_id)


class SweepSummary(BaseModel):
    """Counts from one sweep pass."""

    fired: int = 0
    dropped: int = 0
    skipped: int = 0
    failed: int = 0


class TimerSweeper:
    """Fires due timers.

    Each entry is claimed in Redis before it fires, so concurrent sweepers
    and repeated sweeps fire it at most once per interval.
    """

    def __init__(
        self,
        due_index: RedisDueIndex,
        instance_manager: "InstanceManager",
        messaging: MessagingGateway,
        clock: Callable[[], datetime] = _utc_now,
        batch_size: int = 100,
    ):
        if due_index is None:
            raise ValueError("due_index is required")
        if instance_manager is None:
            raise ValueError("instance_manager is required")
        if messaging is None:
            raise ValueError("messaging is required")
        self._due_index = due_index
        self._instances = instance_manager
        self._messaging = messaging
        self._clock = clock
        self._batch_size = batch_size

    def sweep(self, now: datetime | None = None) -> SweepSummary:
        """Fire every entry whose deadline has passed."""
        now = now or self._clock()
        summary = SweepSummary()

        for entry in self._due_index.due(now, self._batch_size):
            try:
                instance = self._instances.get(entry.instance_id)
            except NotFoundError:
                instance = None

            if instance is None or self._is_stale(entry, instance):
                self._due_index.remove(entry)
                summary.dropped += 1
                continue

            # Node still running or operator-paused: keep the deadline for a later sweep.
            if entry.node_id is not None and (
                instance.status == InstanceStatus.IN_PROGRESS
                or instance.pause_reason == PauseReason.OPERATOR
            ):
                summary.skipped += 1
                continue

            claimed = self._due_index.claim(entry.id, now)
            if claimed is None:
                summary.skipped += 1
                continue

            try:
                self._fire(claimed, instance)
                summary.fired += 1
            except EngineError as e:
                logger.warning(f"Timer {entry.id} failed, will retry: {e}")
                self._due_index.restore(entry)
                summary.failed += 1

        if summary.fired or summary.dropped or summary.failed:
            logger.info(
                f"Sweep: fired={summary.fired} dropped={summary.dropped} "
                f"skipped={summary.skipped} failed={summary.failed}"
            )
        return summary

    def _is_stale(self, entry: TimerEntry, instance: WorkflowInstance) -> bool:
        if instance.status.is_terminal:
            return True
        if entry.node_id is None:
            return False
        return instance.current_node_id != entry.node_id

    def _fire(self, entry: TimerEntry, instance: WorkflowInstance) -> None:
        logger.info(f"Firing {entry.kind.value} timer for {entry.instance_id}")
        base = {
            "workflow_instance_id": instance.id,
            "node_id": entry.node_id,
            "entity_type": instance.entity_type.value,
            "entity_id": instance.entity_id,
        }

        if entry.kind == TimerKind.RESUME:
            self._instances.resume(instance.id, {})

        elif entry.kind == TimerKind.REMINDER:
            self._messaging.send_message(
                "notification",
                {
                    **base,
                    "to": entry.payload.get("recipient"),
                    "message": f"Reminder: {entry.payload.get('label')} is still waiting",
                    "reminder_count": entry.fire_count,
                },
            )

        elif entry.kind == TimerKind.TIMEOUT:
            if entry.payload.get("on_timeout") == "ESCALATE":
                self._messaging.escalate(
                    {
                        **base,
                        "escalate_to": entry.payload.get("escalate_to") or "manager",
                        "reason": f"Node {entry.node_id} timed out",
                    }
                )
                self._instances.handle_escalation(instance.id, entry.node_id)
            else:
                self._instances.handle_timeout(instance.id, entry.node_id)

        elif entry.kind == TimerKind.ESCALATE:
            self._messaging.escalate(
                {
                    **base,
                    "escalate_to": entry.payload.get("escalate_to"),
                    "reason": f"Node {entry.node_id} overdue",
                }
            )
            self._instances.handle_escalation(instance.id, entry.node_id)

        elif entry.kind in (TimerKind.SLA_WARNING, TimerKind.SLA_CRITICAL):
            self._messaging.send_message(
                "notification",
                {
                    **base,
                    "message": (
                        f"SLA {entry.payload.get('percent')}% elapsed, "
                        f"due {entry.payload.get('deadline_at')}"
                    ),
                    "severity": "critical"
                    if entry.kind == TimerKind.SLA_CRITICAL
                    else "warning",
                },
            )

        elif entry.kind == TimerKind.SLA_ESCALATION:
            reason = f"SLA escalation after {entry.payload.get('after_minutes')} min"
            if entry.payload.get("notify_via"):
                self._notify_channels(entry, base, reason)
            else:
                self._messaging.escalate(
                    {**base, "escalate_to": entry.payload.get("escalate_to"), "reason": reason}
                )

        elif entry.kind == TimerKind.SLA_BREACH:
            reason = f"SLA breached at {entry.payload.get('deadline_at')}"
            self._messaging.escalate(
                {
                    **base,
                    "escalate_to": entry.payload.get("escalate_to") or ["manager"],
                    "reason": reason,
                }
            )
            self._notify_channels(entry, base, reason)
            if entry.payload.get("escalation_workflow_id"):
                self._start_escalation_workflow(entry, instance)

    def _notify_channels(
        self, entry: TimerEntry, base: dict[str, Any], reason: str
    ) -> None:
        """Send on every channel the escalation rule names. A failed channel is logged."""
        for channel in entry.payload.get("notify_via") or []:
            try:
                self._messaging.send_message(
                    channel,
                    {**base, "to": entry.payload.get("escalate_to"), "message": reason},
                )
            except ExternalServiceError as e:
                logger.error(
                    f"Failed to notify {channel} for {entry.instance_id}: {e}"
                )

    def _start_escalation_workflow(
        self, entry: TimerEntry, instance: WorkflowInstance
    ) -> None:
        workflow_id = entry.payload["escalation_workflow_id"]
        try:
            started = self._instances.start(
                workflow_id,
                EntityBinding(entity_type=instance.entity_type, entity_id=instance.entity_id),
                {
                    "original_instance_id": instance.id,
                    "breached_at": entry.due_at.isoformat(),
                    "deadline_at": entry.payload.get("deadline_at"),
                },
            )
        except EngineError as e:
            logger.error(
                f"Failed to start escalation workflow {workflow_id} for {instance.id}: {e}"
            )
            return
        logger.info(f"Started escalation workflow {started.id} for {instance.id}")
