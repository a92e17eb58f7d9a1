"""Decides whether tool output may re-enter a conversation as trusted data.

Data is untrusted by default. Per event the precedence is:

1. built-in platform tools are trusted;
2. tools without an agent-tool assignment are untrusted;
3. tools without explicit policies use the assignment's ``tool_result_treatment``;
4. any ``block_always`` policy matching any extracted value blocks the data;
5. the first ``mark_as_trusted`` / ``sanitize_with_dual_llm`` policy whose path
   yields values that *all* match decides;
6. otherwise the ``tool_result_treatment`` default applies.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ..policies.base import (
    ToolOutputEvent,
    TrustedDataPolicy,
    TrustedDataPolicySnapshot,
    TrustedDataResult,
    is_builtin_tool,
)
from ..policies.operators import evaluate_condition
from ..policies.paths import extract_values
from ..repositories import PolicyRepository

logger = logging.getLogger(__name__)

BUILTIN_TOOL_REASON = "Built-in platform tool"
NO_MATCHING_POLICY_REASON = "Data does not match any trust policies - considered untrusted"

_DECIDING_ACTIONS = {"mark_as_trusted", "sanitize_with_dual_llm"}


def unwrap_output(output: Any) -> Any:
    if isinstance(output, dict) and output.get("value"):
        return output["value"]
    return output


def _describe(policy: TrustedDataPolicy) -> str:
    return policy.description or f"{policy.attribute_path} {policy.operator} {policy.value!r}"


def _any_value_matches(values: list[Any], policy: TrustedDataPolicy) -> bool:
    return any(evaluate_condition(value, policy.operator, policy.value) for value in values)


def _all_values_match(values: list[Any], policy: TrustedDataPolicy) -> bool:
    if not values:
        return False
    return all(evaluate_condition(value, policy.operator, policy.value) for value in values)


def treatment_verdict(tool_name: str, treatment: str | None) -> TrustedDataResult | None:
    if treatment == "trusted":
        return TrustedDataResult.trusted(f"Tool {tool_name} is configured as trusted")
    if treatment == "sanitize_with_dual_llm":
        return TrustedDataResult.sanitize(f"Tool {tool_name} is configured for dual LLM sanitization")
    return None


class TrustedDataPolicyEvaluator:
    def __init__(self, repository: PolicyRepository) -> None:
        self.repository = repository

    def evaluate(self, agent_id: str, tool_name: str, output: Any) -> TrustedDataResult:
        return self.evaluate_bulk(agent_id, [ToolOutputEvent(tool_name=tool_name, output=output)])[0]

    def evaluate_bulk(self, agent_id: str, events: Sequence[ToolOutputEvent]) -> list[TrustedDataResult]:
        tool_names = [event.tool_name for event in events if not is_builtin_tool(event.tool_name)]
        snapshot = (
            self.repository.load_trusted_data_policies(agent_id, tool_names)
            if tool_names
            else TrustedDataPolicySnapshot()
        )

        results = [self._evaluate_event(event, snapshot) for event in events]
        for event, result in zip(events, results):
            logger.debug(
                "Tool output %s for agent %s: trusted=%s blocked=%s sanitize=%s (%s)",
                event.tool_name,
                agent_id,
                result.is_trusted,
                result.is_blocked,
                result.should_sanitize_with_dual_llm,
                result.reason,
            )
        return results

    def _evaluate_event(self, event: ToolOutputEvent, snapshot: TrustedDataPolicySnapshot) -> TrustedDataResult:
        tool_name = event.tool_name
        if is_builtin_tool(tool_name):
            return TrustedDataResult.trusted(BUILTIN_TOOL_REASON)

        if not snapshot.is_registered(tool_name):
            return TrustedDataResult.untrusted(f"Tool {tool_name} is not registered for this agent")

        treatment = snapshot.treatment_for(tool_name)
        policies = snapshot.policies_for(tool_name)
        if not policies:
            return treatment_verdict(tool_name, treatment) or TrustedDataResult.untrusted(
                f"Tool {tool_name} is configured as untrusted"
            )

        data = unwrap_output(event.output)

        for policy in policies:
            if policy.action != "block_always" or not policy.attribute_path:
                continue
            if _any_value_matches(extract_values(data, policy.attribute_path), policy):
                return TrustedDataResult.blocked(f"Data blocked by policy: {_describe(policy)}")

        for policy in policies:
            if policy.action not in _DECIDING_ACTIONS or not policy.attribute_path:
                continue
            if not _all_values_match(extract_values(data, policy.attribute_path), policy):
                continue
            if policy.action == "mark_as_trusted":
                return TrustedDataResult.trusted(f"Data trusted by policy: {_describe(policy)}")
            return TrustedDataResult.sanitize(
                f"Data requires dual LLM sanitization by policy: {_describe(policy)}"
            )

        return treatment_verdict(tool_name, treatment) or TrustedDataResult.untrusted(NO_MATCHING_POLICY_REASON)


def evaluate_tool_outputs(
    repository: PolicyRepository,
    agent_id: str,
    events: Sequence[ToolOutputEvent],
) -> list[TrustedDataResult]:
    return TrustedDataPolicyEvaluator(repository).evaluate_bulk(agent_id, events)
