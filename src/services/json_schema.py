"""JSON Schema helpers for form and data validation."""

from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from services.errors import ValidationError

# Form field types mapped to JSON Schema types and formats.
FIELD_TYPES: dict[str, dict[str, Any]] = {
    "text": {"type": "string"},
    "textarea": {"type": "string"},
    "email": {"type": "string", "format": "email"},
    "phone": {"type": "string"},
    "date": {"type": "string", "format": "date"},
    "select": {"type": "string"},
    "number": {"type": "number"},
    "checkbox": {"type": "boolean"},
}


def form_to_json_schema(form_schema: dict[str, Any]) -> dict[str, Any]:
    """Convert a form definition into a JSON Schema.

    A form is ``{"fields": [{"name", "type", "required", "validation"}]}``.
    Anything without a ``fields`` list is assumed to be a JSON Schema already.
    """
    if not form_schema:
        return {"type": "object"}
    if not isinstance(form_schema.get("fields"), list):
        return form_schema

    properties: dict[str, Any] = {}
    required: list[str] = []
    for field in form_schema["fields"]:
        name = field.get("name")
        if not name:
            raise ValidationError("form field without a name")

        prop = dict(FIELD_TYPES.get(field.get("type", "text"), {"type": "string"}))
        rules = field.get("validation") or {}
        if "min" in rules:
            prop["minimum"] = rules["min"]
        if "max" in rules:
            prop["maximum"] = rules["max"]
        if "minLength" in rules:
            prop["minLength"] = rules["minLength"]
        if "maxLength" in rules:
            prop["maxLength"] = rules["maxLength"]
        if "pattern" in rules:
            prop["pattern"] = rules["pattern"]
        if rules.get("options"):
            prop["enum"] = list(rules["options"])

        properties[name] = prop
        if field.get("required"):
            required.append(name)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def check_schema(schema: dict[str, Any]) -> None:
    """Raise ValidationError if schema is not a valid JSON Schema."""
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as e:
        raise ValidationError(f"Invalid JSON Schema: {e.message}") from e


def validation_errors(schema: dict[str, Any], data: Any) -> list[str]:
    """Messages for every violation of schema by data, in document order."""
    check_schema(schema)
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error.path)
        messages.append(f"{location}: {error.message}" if location else error.message)
    return messages
