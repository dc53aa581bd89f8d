"""Resolution of {{dotted.path}} placeholders against an instance context.

A placeholder whose path cannot be resolved is left in the output verbatim.
Callers that need the data to be present must check for leftover
placeholders themselves; ``find_unresolved`` lists them.
"""

import json
import re
from typing import Any

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def resolve_path(context: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts and lists.

    Numeric segments index into lists. Returns MISSING when any step of the
    path does not exist.
    """
    if not path:
        return MISSING

    current = context
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def stringify(value: Any) -> str:
    """Render a context value for substitution into a template string."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, bool)) or value is None:
        return json.dumps(value, default=str)
    return str(value)


def resolve_template(template: str, context: dict[str, Any]) -> str:
    """Replace every resolvable {{path}} token in template with its value."""
    if not isinstance(template, str) or "{{" not in template:
        return template

    def _replace(match: re.Match) -> str:
        value = resolve_path(context, match.group(1))
        if value is MISSING:
            return match.group(0)
        return stringify(value)

    return TEMPLATE_PATTERN.sub(_replace, template)


def resolve_value(value: Any, context: dict[str, Any]) -> Any:
    """Resolve templates inside a config value.

    A string that is exactly one placeholder resolves to the raw context value,
    keeping its type. Dicts and lists are resolved recursively.
    """
    if isinstance(value, str):
        match = TEMPLATE_PATTERN.fullmatch(value.strip())
        if match:
            resolved = resolve_path(context, match.group(1))
            return value if resolved is MISSING else resolved
        return resolve_template(value, context)
    if isinstance(value, dict):
        return {key: resolve_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, context) for item in value]
    return value


def find_unresolved(value: Any) -> list[str]:
    """Return the placeholder paths still present in a resolved value."""
    if isinstance(value, str):
        return TEMPLATE_PATTERN.findall(value)
    if isinstance(value, dict):
        found: list[str] = []
        for item in value.values():
            found.extend(find_unresolved(item))
        return found
    if isinstance(value, list):
        found = []
        for item in value:
            found.extend(find_unresolved(item))
        return found
    return []
