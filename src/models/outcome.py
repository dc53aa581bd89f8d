"""Handler results and the three-way outcome the dispatcher acts on."""

from typing import Any, Union

from pydantic import BaseModel, ConfigDict


class HandlerResult(BaseModel):
    """Raw result of one handler execution.

    ``next_node_id`` picks the successor directly. ``branch`` names an outgoing
    edge label to follow instead.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    error: str | None = None
    wait_for_input: bool = False
    next_node_id: str | None = None
    branch: str | None = None

    @classmethod
    def ok(
        cls,
        data: Any = None,
        next_node_id: str | None = None,
        branch: str | None = None,
    ) -> "HandlerResult":
        return cls(success=True, data=data, next_node_id=next_node_id, branch=branch)

    @classmethod
    def wait(cls, data: Any = None) -> "HandlerResult":
        return cls(success=True, data=data, wait_for_input=True)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "HandlerResult":
        return cls(success=False, error=error, data=data)

    def to_outcome(self) -> "Outcome":
        if not self.success:
            return Failed(error=self.error or "Handler failed without an error message")
        if self.wait_for_input:
            reason = None
            if isinstance(self.data, dict):
                reason = self.data.get("message")
            return Suspended(reason=reason or "waiting for input", data=self.data)
        return Completed(
            data=self.data, next_node_id=self.next_node_id, branch=self.branch
        )


class Completed(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: Any = None
    next_node_id: str | None = None
    branch: str | None = None


class Suspended(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str
    data: Any = None


class Failed(BaseModel):
    model_config = ConfigDict(frozen=True)

    error: str


Outcome = Union[Completed, Suspended, Failed]
