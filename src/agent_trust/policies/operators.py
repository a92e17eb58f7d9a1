from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any

from .base import SUPPORTED_OPERATORS

logger = logging.getLogger(__name__)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> tuple[re.Pattern[str] | None, str | None]:
    try:
        return re.compile(pattern), None
    except re.error as error:
        return None, str(error)


def _regex_matches(value: str, pattern: str) -> bool:
    compiled, error = _compile(pattern)
    if compiled is None:
        logger.warning("Invalid regex in policy %r treated as non-match: %s", pattern, error)
        return False
    return compiled.search(value) is not None


def evaluate_condition(value: Any, operator: str, literal: str) -> bool:
    # String operators never match non-string values; equal/notEqual compare without coercion.
    if operator == "equal":
        return value == literal
    if operator == "notEqual":
        return value != literal

    if operator not in SUPPORTED_OPERATORS:
        logger.warning("Unknown policy operator %r treated as non-match", operator)
        return False
    if not isinstance(value, str):
        return False

    if operator == "endsWith":
        return value.endswith(literal)
    if operator == "startsWith":
        return value.startswith(literal)
    if operator == "contains":
        return literal in value
    if operator == "notContains":
        return literal not in value
    return _regex_matches(value, literal)


def is_valid_regex(pattern: str) -> bool:
    try:
        re.compile(pattern)
    except re.error:
        return False
    return True


def operator_label(operator: str) -> str:
    spaced = re.sub(r"([A-Z])", r" \1", operator)
    return spaced[:1].upper() + spaced[1:]


def list_operators() -> list[dict[str, str]]:
    return [{"value": operator, "label": operator_label(operator)} for operator in SUPPORTED_OPERATORS]
