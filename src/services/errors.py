"""Error taxonomy shared by the workflow engine and the suggestion router."""


class EngineError(Exception):
    """Base class for engine errors."""

    pass


class ValidationError(EngineError):
    """Raised when input is malformed or a required field is missing."""

    pass


class NotFoundError(EngineError):
    """Raised when a definition, instance, suggestion or entry does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class ConflictError(EngineError):
    """Raised on an illegal state transition or a busy instance."""

    pass


class ExternalServiceError(EngineError):
    """Raised when a downstream collaborator call fails."""

    pass


class WorkflowError(EngineError):
    """Raised on a broken graph invariant. Always fatal for the instance."""

    def __init__(self, message: str, node_id: str | None = None):
        self.node_id = node_id
        super().__init__(message)
