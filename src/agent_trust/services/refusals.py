from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from jinja2 import Environment, StrictUndefined

REFUSAL_TEMPLATE = """
<tool-name>{{ tool_name }}</tool-name>
<tool-arguments>{{ arguments }}</tool-arguments>
<tool-reason>{{ reason }}</tool-reason>

I tried to invoke the {{ tool_name }} tool with the following arguments: {{ arguments }}.

However, I was denied by a tool invocation policy:

{{ reason }}
"""

CONTENT_TEMPLATE = """
I tried to invoke the {{ tool_name }} tool with the following arguments: {{ arguments }}.

However, I was denied by a tool invocation policy:

{{ reason }}
"""

BLOCKED_OUTPUT_TEMPLATE = "[Content blocked by trusted data policy: {{ reason }}]"


@dataclass(frozen=True)
class Refusal:
    refusal_message: str
    content_message: str
    tool_call_name: str
    reason: str


class RefusalRenderer:
    def __init__(self) -> None:
        self.env = Environment(undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)
        self._refusal = self.env.from_string(REFUSAL_TEMPLATE)
        self._content = self.env.from_string(CONTENT_TEMPLATE)
        self._blocked_output = self.env.from_string(BLOCKED_OUTPUT_TEMPLATE)

    def tool_call_refusal(self, tool_name: str, arguments: Any, reason: str) -> Refusal:
        context = {
            "tool_name": tool_name,
            "arguments": _format_arguments(arguments),
            "reason": reason,
        }
        return Refusal(
            refusal_message=self._refusal.render(**context).strip(),
            content_message=self._content.render(**context).strip(),
            tool_call_name=tool_name,
            reason=reason,
        )

    def blocked_output(self, reason: str) -> str:
        return self._blocked_output.render(reason=reason).strip()


def _format_arguments(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    try:
        return json.dumps(arguments, sort_keys=True, ensure_ascii=False)
    except TypeError:
        return str(arguments)
