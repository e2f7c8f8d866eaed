"""Template variable validation and interpolation.

Templates use ``${name}`` placeholders. Interpolation never falls back to
an empty string: an unresolved placeholder raises MissingVariableError.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from app.core.exceptions import MissingRequiredVariableError, MissingVariableError, TypeMismatchError
from app.prompt_engine.types import VariableSpec

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")

# Declared type name → accepted Python types. Both JS `typeof` names and
# Python names are accepted since prompt definitions use either.
_TYPE_MAP: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "str": (str,),
    "number": (int, float),
    "int": (int,),
    "integer": (int,),
    "float": (int, float),
    "boolean": (bool,),
    "bool": (bool,),
    "object": (dict, list),
    "dict": (dict,),
    "array": (list,),
    "list": (list,),
}


def _type_name(value: Any) -> str:
    """JS-style name of a runtime value, for error messages."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (dict, list)):
        return "object"
    return type(value).__name__


def _matches(value: Any, expected: str) -> bool:
    accepted = _TYPE_MAP.get(expected.lower())
    if accepted is None:
        # Unknown declared type: only presence is checked
        return True
    if isinstance(value, bool) and bool not in accepted:
        return False
    return isinstance(value, accepted)


def _render(value: Any) -> str:
    # Booleans, null and containers render as JSON
    if value is None or isinstance(value, (bool, dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def interpolate(template: str, variables: dict[str, Any]) -> str:
    """Substitute every ``${name}`` from `variables`."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            raise MissingVariableError(key)
        return _render(variables[key])

    return _PLACEHOLDER.sub(_replace, template or "")


def validate_variables(
    variables: dict[str, Any] | None,
    spec: dict[str, VariableSpec] | None,
    kind: str,
) -> None:
    """Check `variables` against a declared spec.

    Required entries must be present, non-null and of the declared
    primitive type. An empty spec is a no-op.
    """
    variables = variables or {}
    if not spec:
        logger.debug("No %s prompt variables defined for validation", kind)
        return

    for name, var_spec in spec.items():
        if not var_spec.required:
            continue
        if name not in variables:
            raise MissingRequiredVariableError(name, kind)
        value = variables[name]
        if value is None:
            raise MissingRequiredVariableError(
                name,
                kind,
                message=f'Required {kind} variable "{name}" is defined but has no value (null).',
            )
        if not _matches(value, var_spec.type):
            raise TypeMismatchError(name, kind, var_spec.type, _type_name(value))


def apply_defaults(variables: dict[str, Any] | None, spec: dict[str, VariableSpec] | None) -> dict[str, Any]:
    """Copy of `variables` with declared defaults filled in for absent optional keys."""
    resolved = dict(variables or {})
    for name, var_spec in (spec or {}).items():
        if name not in resolved and var_spec.default is not None:
            resolved[name] = var_spec.default
    return resolved
