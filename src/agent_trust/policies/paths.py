"""Attribute path extraction over JSON-like tool arguments and outputs.

Paths use the familiar lodash ``get`` syntax::

    url
    headers.authorization
    emails[0].from
    items.0.name
    metadata["content-type"]
    emails[*].from

``[*]`` maps over a list and collects the remainder of the path from every
element. Absence is tracked with the ``MISSING`` sentinel so that ``None``,
``False``, ``0`` and ``""`` still count as present values.
A key equal to the whole path, such as ``"a.b"``, wins over path traversal.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Union

logger = logging.getLogger(__name__)


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class _Wildcard:
    __slots__ = ()

    def __repr__(self) -> str:
        return "[*]"


WILDCARD: Any = _Wildcard()

Segment = Union[str, int, _Wildcard]


class PathSyntaxError(ValueError):
    pass


def _parse_bracket(content: str, path: str) -> Segment:
    content = content.strip()
    if content == "*":
        return WILDCARD
    if content.isdigit():
        return int(content)
    if len(content) >= 2 and content[0] == content[-1] and content[0] in {'"', "'"}:
        return content[1:-1]
    if not content:
        raise PathSyntaxError(f"Empty brackets in path: {path}")
    return content


@lru_cache(maxsize=1024)
def parse_path(path: str) -> tuple[Segment, ...]:
    segments: list[Segment] = []
    buffer = ""
    index = 0
    while index < len(path):
        char = path[index]
        if char == ".":
            if buffer:
                segments.append(buffer)
                buffer = ""
            index += 1
        elif char == "[":
            if buffer:
                segments.append(buffer)
                buffer = ""
            closing = path.find("]", index)
            if closing == -1:
                raise PathSyntaxError(f"Unclosed bracket in path: {path}")
            segments.append(_parse_bracket(path[index + 1 : closing], path))
            index = closing + 1
        elif char == "]":
            raise PathSyntaxError(f"Unexpected ']' in path: {path}")
        else:
            buffer += char
            index += 1
    if buffer:
        segments.append(buffer)
    return tuple(segments)


def _step(current: Any, segment: Segment) -> Any:
    if isinstance(current, dict):
        key = str(segment)
        return current[key] if key in current else MISSING
    if isinstance(current, (list, tuple)):
        if isinstance(segment, int):
            position = segment
        elif isinstance(segment, str) and segment.isdigit():
            position = int(segment)
        else:
            return MISSING
        return current[position] if position < len(current) else MISSING
    return MISSING


def _collect(current: Any, segments: tuple[Segment, ...]) -> list[Any]:
    for position, segment in enumerate(segments):
        if segment is WILDCARD:
            if not isinstance(current, (list, tuple)):
                return []
            remainder = segments[position + 1 :]
            values: list[Any] = []
            for item in current:
                values.extend(_collect(item, remainder))
            return values
        current = _step(current, segment)
        if current is MISSING:
            return []
    return [current]


def _segments_or_none(path: str) -> tuple[Segment, ...] | None:
    try:
        segments = parse_path(path)
    except PathSyntaxError:
        logger.warning("Ignoring malformed attribute path %r", path)
        return None
    return segments or None


def resolve_path(data: Any, path: str) -> Any:
    """Return the single value at ``path`` or ``MISSING``. Wildcards are not expanded."""
    if isinstance(data, dict) and path in data:
        return data[path]
    segments = _segments_or_none(path)
    if segments is None:
        return MISSING
    current = data
    for segment in segments:
        if segment is WILDCARD:
            return MISSING
        current = _step(current, segment)
        if current is MISSING:
            return MISSING
    return current


def extract_values(data: Any, path: str) -> list[Any]:
    if isinstance(data, dict) and path in data:
        return [data[path]]
    segments = _segments_or_none(path)
    if segments is None:
        return []
    return _collect(data, segments)


def has_wildcard(path: str) -> bool:
    try:
        return WILDCARD in parse_path(path)
    except PathSyntaxError:
        return False
