"""Timer entries tracked by the due-index."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel


class TimerKind(str, Enum):
    """What happens when a timer comes due."""

    RESUME = "resume"
    REMINDER = "reminder"
    TIMEOUT = "timeout"
    ESCALATE = "escalate"
    SLA_WARNING = "sla_warning"
    SLA_CRITICAL = "sla_critical"
    SLA_ESCALATION = "sla_escalation"
    SLA_BREACH = "sla_breach"


class TimerEntry(BaseModel):
    """One (instance, node, kind) deadline in the due-index.

    ``sequence`` tells apart several entries of the same kind, such as one
    per SLA escalation rule.
    """

    instance_id: str
    node_id: str | None = None
    kind: TimerKind
    sequence: int | None = None
    due_at: datetime
    interval_seconds: float | None = None
    payload: dict[str, Any] = {}
    last_fired_at: datetime | None = None
    fire_count: int = 0

    @property
    def id(self) -> str:
        entry_id = f"{self.instance_id}:{self.node_id or '-'}:{self.kind.value}"
        if self.sequence is not None:
            entry_id = f"{entry_id}:{self.sequence}"
        return entry_id

    @property
    def repeats(self) -> bool:
        return bool(self.interval_seconds)

    def can_fire(self, now: datetime) -> bool:
        """True when due and not already fired within the current interval."""
        if now < self.due_at:
            return False
        if self.last_fired_at is None:
            return True
        if not self.repeats:
            return False
        return now - self.last_fired_at >= timedelta(seconds=self.interval_seconds)
