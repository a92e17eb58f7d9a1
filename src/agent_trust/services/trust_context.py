from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..policies.base import ToolCall, ToolOutputEvent, TrustedDataResult
from ..repositories import PolicyRepository
from .refusals import Refusal, RefusalRenderer
from .tool_invocation import ToolInvocationPolicyEvaluator
from .trusted_data import TrustedDataPolicyEvaluator

logger = logging.getLogger(__name__)


class DualLlmSanitizer(Protocol):
    def sanitize(self, agent_id: str, event: ToolOutputEvent) -> str:
        ...


@dataclass(frozen=True)
class TrustContext:
    context_is_trusted: bool
    results: list[TrustedDataResult] = field(default_factory=list)
    tool_result_updates: dict[str, str] = field(default_factory=dict)
    pending_sanitization: list[str] = field(default_factory=list)


def parse_structured(content: Any) -> Any:
    if not isinstance(content, str):
        return content
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return content


def parse_arguments(arguments: Any) -> Any:
    if arguments is None:
        return {}
    if not isinstance(arguments, str):
        return arguments
    if not arguments.strip():
        return {}
    try:
        return json.loads(arguments)
    except json.JSONDecodeError:
        logger.warning("Tool call arguments are not valid JSON; evaluating them as empty")
        return {}


def _result_key(event: ToolOutputEvent, index: int) -> str:
    return event.tool_call_id or str(index)


def evaluate_context_trust(
    repository: PolicyRepository,
    agent_id: str,
    tool_results: Sequence[ToolOutputEvent],
    *,
    consider_context_untrusted: bool = False,
    sanitizer: DualLlmSanitizer | None = None,
    renderer: RefusalRenderer | None = None,
) -> TrustContext:
    if consider_context_untrusted:
        logger.debug("Agent %s treats every context as untrusted", agent_id)
        return TrustContext(context_is_trusted=False)

    if not tool_results:
        return TrustContext(context_is_trusted=True)

    renderer = renderer or RefusalRenderer()
    events = [
        ToolOutputEvent(
            tool_name=event.tool_name,
            output=parse_structured(event.output),
            tool_call_id=event.tool_call_id,
        )
        for event in tool_results
    ]
    results = TrustedDataPolicyEvaluator(repository).evaluate_bulk(agent_id, events)

    context_is_trusted = True
    updates: dict[str, str] = {}
    pending: list[str] = []
    for index, (event, result) in enumerate(zip(events, results)):
        key = _result_key(event, index)
        if result.is_blocked:
            updates[key] = renderer.blocked_output(result.reason)
        elif result.should_sanitize_with_dual_llm:
            if sanitizer is None:
                pending.append(key)
                context_is_trusted = False
            else:
                updates[key] = sanitizer.sanitize(agent_id, event)
        elif not result.is_trusted:
            context_is_trusted = False

    logger.info(
        "Evaluated %d tool results for agent %s: trusted=%s updates=%d pending_sanitization=%d",
        len(events),
        agent_id,
        context_is_trusted,
        len(updates),
        len(pending),
    )
    return TrustContext(
        context_is_trusted=context_is_trusted,
        results=results,
        tool_result_updates=updates,
        pending_sanitization=pending,
    )


def check_tool_calls(
    repository: PolicyRepository,
    agent_id: str,
    calls: Sequence[ToolCall],
    context_is_trusted: bool,
    renderer: RefusalRenderer | None = None,
) -> Refusal | None:
    if not calls:
        return None

    parsed_calls = [ToolCall(name=call.name, arguments=parse_arguments(call.arguments)) for call in calls]
    result = ToolInvocationPolicyEvaluator(repository).evaluate_batch(agent_id, parsed_calls, context_is_trusted)
    if result.is_allowed:
        return None

    refused_call = calls[result.tool_call_index]
    renderer = renderer or RefusalRenderer()
    return renderer.tool_call_refusal(refused_call.name, refused_call.arguments, result.reason)
