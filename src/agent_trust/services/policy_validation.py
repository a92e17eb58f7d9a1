from __future__ import annotations

from ..policies.base import (
    INVOCATION_ACTIONS,
    SUPPORTED_OPERATORS,
    TOOL_RESULT_TREATMENTS,
    TRUSTED_DATA_ACTIONS,
)
from ..policies.operators import is_valid_regex
from ..policies.paths import PathSyntaxError, has_wildcard, parse_path


class PolicyValidationError(ValueError):
    pass


def _normalize_single_line(text: str) -> str:
    return " ".join(text.strip().split())


def _validate_choice(field_name: str, value: str, choices: tuple[str, ...]) -> str:
    cleaned = (value or "").strip()
    if cleaned not in choices:
        raise PolicyValidationError(f"{field_name} must be one of: {', '.join(choices)}")
    return cleaned


def _validate_path(field_name: str, path: str, *, allow_wildcard: bool) -> str:
    cleaned = (path or "").strip()
    if not cleaned:
        raise PolicyValidationError(f"{field_name} is required")
    if len(cleaned) > 500:
        raise PolicyValidationError(f"{field_name} must be at most 500 characters")
    try:
        segments = parse_path(cleaned)
    except PathSyntaxError as error:
        raise PolicyValidationError(f"{field_name} is malformed: {error}") from error
    if not segments:
        raise PolicyValidationError(f"{field_name} is required")
    if not allow_wildcard and has_wildcard(cleaned):
        raise PolicyValidationError(f"{field_name} cannot contain [*] wildcards")
    return cleaned


def _validate_value(operator: str, value: str) -> str:
    if value is None:
        raise PolicyValidationError("Value is required")
    if not isinstance(value, str):
        raise PolicyValidationError("Value must be a string")
    if len(value) > 2000:
        raise PolicyValidationError("Value must be at most 2000 characters")
    if operator == "regex" and not is_valid_regex(value):
        raise PolicyValidationError(f"Value is not a valid regular expression: {value}")
    return value


def _validate_note(field_name: str, note: str | None) -> str | None:
    if note is None:
        return None
    cleaned = _normalize_single_line(note)
    if len(cleaned) > 500:
        raise PolicyValidationError(f"{field_name} must be at most 500 characters")
    return cleaned or None


def validate_invocation_policy(
    argument_path: str,
    operator: str,
    value: str,
    action: str,
    reason: str | None = None,
) -> dict:
    validated_operator = _validate_choice("Operator", operator, SUPPORTED_OPERATORS)
    return {
        "argument_path": _validate_path("Argument path", argument_path, allow_wildcard=False),
        "operator": validated_operator,
        "value": _validate_value(validated_operator, value),
        "action": _validate_choice("Action", action, INVOCATION_ACTIONS),
        "reason": _validate_note("Reason", reason),
    }


def validate_trusted_data_policy(
    attribute_path: str,
    operator: str,
    value: str,
    action: str,
    description: str | None = None,
) -> dict:
    validated_operator = _validate_choice("Operator", operator, SUPPORTED_OPERATORS)
    return {
        "attribute_path": _validate_path("Attribute path", attribute_path, allow_wildcard=True),
        "operator": validated_operator,
        "value": _validate_value(validated_operator, value),
        "action": _validate_choice("Action", action, TRUSTED_DATA_ACTIONS),
        "description": _validate_note("Description", description),
    }


def validate_tool_result_treatment(treatment: str) -> str:
    return _validate_choice("Tool result treatment", treatment, TOOL_RESULT_TREATMENTS)
