"""Parser for workflow definition documents."""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from models.definition import WorkflowDefinitionInput
from services.errors import ValidationError
from services.graph_service import GraphService


class DefinitionParseError(ValidationError):
    """Raised when a definition document is malformed."""

    pass


class DefinitionParser:
    """Parses definition JSON into a validated WorkflowDefinitionInput."""

    def __init__(self, graph_service: GraphService | None = None):
        self._graph_service = graph_service or GraphService()

    def parse_file(self, path: str) -> WorkflowDefinitionInput:
        """Parse a definition from a JSON file."""
        if not path:
            raise ValueError("path is required")

        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Definition file not found: {path}")

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise DefinitionParseError(f"Invalid JSON: {e}")

        return self.parse_json(data)

    def parse_json(self, data: dict[str, Any]) -> WorkflowDefinitionInput:
        """Parse a definition from a JSON dict and check its graph."""
        if data is None:
            raise ValueError("data is required")

        try:
            definition = WorkflowDefinitionInput.model_validate(data)
        except PydanticValidationError as e:
            raise DefinitionParseError(f"Invalid definition structure: {e}")

        try:
            self._graph_service.validate(definition)
        except ValueError as e:
            raise DefinitionParseError(str(e))

        return definition
