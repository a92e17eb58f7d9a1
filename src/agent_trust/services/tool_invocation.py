from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

from ..policies.base import (
    InvocationPolicySnapshot,
    ToolCall,
    ToolInvocationPolicy,
    ToolInvocationResult,
    is_builtin_tool,
)
from ..policies.operators import evaluate_condition
from ..policies.paths import MISSING, resolve_path
from ..repositories import PolicyRepository

logger = logging.getLogger(__name__)

UNTRUSTED_CONTEXT_REASON = "Tool invocation blocked: context contains untrusted data"


def missing_argument_reason(argument_path: str) -> str:
    return f"Missing required argument: {argument_path}"


def block_reason(policy: ToolInvocationPolicy) -> str:
    if policy.reason:
        return policy.reason
    return f"Policy violation: {policy.argument_path} {policy.operator} {policy.value!r}"


class ToolInvocationPolicyEvaluator:
    def __init__(self, repository: PolicyRepository) -> None:
        self.repository = repository

    def evaluate_batch(
        self,
        agent_id: str,
        calls: Sequence[ToolCall],
        context_is_trusted: bool,
    ) -> ToolInvocationResult:
        candidate_calls = [(index, call) for index, call in enumerate(calls) if not is_builtin_tool(call.name)]
        if not candidate_calls:
            return ToolInvocationResult.allowed()

        snapshot = self.repository.load_invocation_policies(agent_id, [call.name for _, call in candidate_calls])

        for index, call in candidate_calls:
            refusal = self._evaluate_call(call, snapshot, context_is_trusted)
            if refusal is not None:
                logger.info(
                    "Tool call %s refused for agent %s: %s",
                    call.name,
                    agent_id,
                    refusal.reason,
                )
                return replace(refusal, tool_call_index=index)

        return ToolInvocationResult.allowed()

    def _evaluate_call(
        self,
        call: ToolCall,
        snapshot: InvocationPolicySnapshot,
        context_is_trusted: bool,
    ) -> ToolInvocationResult | None:
        allow_untrusted_usage = snapshot.allows_untrusted_usage(call.name)
        has_explicit_allow = False

        for policy in snapshot.policies_for(call.name):
            argument_value = resolve_path(call.arguments, policy.argument_path)

            if argument_value is MISSING:
                if policy.action == "block_always" or allow_untrusted_usage:
                    continue
                return ToolInvocationResult.refused(missing_argument_reason(policy.argument_path), call.name)

            condition_met = evaluate_condition(argument_value, policy.operator, policy.value)
            if not condition_met:
                continue

            if policy.action == "allow_when_context_is_untrusted":
                has_explicit_allow = True
            elif policy.action == "block_always":
                return ToolInvocationResult.refused(block_reason(policy), call.name)
            else:
                logger.warning("Ignoring tool invocation policy %s with unknown action %r", policy.id, policy.action)

        if context_is_trusted or allow_untrusted_usage or has_explicit_allow:
            logger.debug(
                "Tool call %s allowed (trusted=%s, default_allow=%s, explicit_allow=%s)",
                call.name,
                context_is_trusted,
                allow_untrusted_usage,
                has_explicit_allow,
            )
            return None

        return ToolInvocationResult.refused(UNTRUSTED_CONTEXT_REASON, call.name)


def evaluate_tool_invocations(
    repository: PolicyRepository,
    agent_id: str,
    calls: Sequence[ToolCall],
    context_is_trusted: bool,
) -> ToolInvocationResult:
    return ToolInvocationPolicyEvaluator(repository).evaluate_batch(agent_id, calls, context_is_trusted)
