from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .. import __version__
from ..policies.base import InvocationAction, Operator, ToolCall, ToolOutputEvent, TrustedDataAction
from ..policies.operators import list_operators
from ..repositories import AgentRepository, PolicyRepository, SqlitePolicyRepository
from ..services.policy_validation import (
    PolicyValidationError,
    validate_invocation_policy,
    validate_trusted_data_policy,
)
from ..services.tool_invocation import ToolInvocationPolicyEvaluator
from ..services.trust_context import check_tool_calls, evaluate_context_trust, parse_arguments
from ..services.trusted_data import TrustedDataPolicyEvaluator

app = FastAPI(title="agent-trust Policy Preview", version=__version__)


def get_policy_repository() -> PolicyRepository:
    return SqlitePolicyRepository()


def get_agent_repository() -> AgentRepository:
    return AgentRepository()


class ToolCallPayload(BaseModel):
    name: str = Field(min_length=1)
    arguments: Any = Field(default_factory=dict)


class ToolOutputPayload(BaseModel):
    tool_name: str = Field(min_length=1)
    output: Any = None
    tool_call_id: str | None = None


class ToolInvocationPreviewPayload(BaseModel):
    calls: list[ToolCallPayload]
    context_is_trusted: bool = False


class ToolOutputPreviewPayload(BaseModel):
    events: list[ToolOutputPayload]


class ContextPreviewPayload(BaseModel):
    tool_results: list[ToolOutputPayload] = []
    calls: list[ToolCallPayload] = []
    consider_context_untrusted: bool = False


class InvocationPolicyPayload(BaseModel):
    argument_path: str
    operator: Operator
    value: str
    action: InvocationAction
    reason: str | None = None


class TrustedDataPolicyPayload(BaseModel):
    attribute_path: str
    operator: Operator
    value: str
    action: TrustedDataAction
    description: str | None = None


def _to_events(payloads: list[ToolOutputPayload]) -> list[ToolOutputEvent]:
    return [
        ToolOutputEvent(tool_name=item.tool_name, output=item.output, tool_call_id=item.tool_call_id)
        for item in payloads
    ]


def _to_calls(payloads: list[ToolCallPayload]) -> list[ToolCall]:
    return [ToolCall(name=item.name, arguments=item.arguments) for item in payloads]


@app.get("/health")
def health() -> dict:
    return {"ok": True, "service": "agent-trust"}


@app.get("/api/autonomy-policies/operators")
def operators() -> list[dict[str, str]]:
    return list_operators()


@app.post("/api/autonomy-policies/tool-invocation/validate")
def validate_tool_invocation_policy(payload: InvocationPolicyPayload) -> dict:
    try:
        validated = validate_invocation_policy(
            payload.argument_path,
            payload.operator,
            payload.value,
            payload.action,
            payload.reason,
        )
    except PolicyValidationError as error:
        raise HTTPException(status_code=422, detail=str(error)) from error
    return {"ok": True, "policy": validated}


@app.post("/api/autonomy-policies/trusted-data/validate")
def validate_trusted_data_policy_payload(payload: TrustedDataPolicyPayload) -> dict:
    try:
        validated = validate_trusted_data_policy(
            payload.attribute_path,
            payload.operator,
            payload.value,
            payload.action,
            payload.description,
        )
    except PolicyValidationError as error:
        raise HTTPException(status_code=422, detail=str(error)) from error
    return {"ok": True, "policy": validated}


@app.post("/api/agents/{agent_id}/preview/tool-invocations")
def preview_tool_invocations(
    agent_id: str,
    payload: ToolInvocationPreviewPayload,
    repository: PolicyRepository = Depends(get_policy_repository),
) -> dict:
    calls = [ToolCall(name=call.name, arguments=parse_arguments(call.arguments)) for call in _to_calls(payload.calls)]
    result = ToolInvocationPolicyEvaluator(repository).evaluate_batch(agent_id, calls, payload.context_is_trusted)
    return asdict(result)


@app.post("/api/agents/{agent_id}/preview/tool-outputs")
def preview_tool_outputs(
    agent_id: str,
    payload: ToolOutputPreviewPayload,
    repository: PolicyRepository = Depends(get_policy_repository),
) -> dict:
    results = TrustedDataPolicyEvaluator(repository).evaluate_bulk(agent_id, _to_events(payload.events))
    return {"results": [asdict(result) for result in results]}


@app.post("/api/agents/{agent_id}/preview/context")
def preview_context(
    agent_id: str,
    payload: ContextPreviewPayload,
    repository: PolicyRepository = Depends(get_policy_repository),
    agents: AgentRepository = Depends(get_agent_repository),
) -> dict:
    agent = agents.get(agent_id)
    stored_flag = bool(agent and agent["consider_context_untrusted"])
    context = evaluate_context_trust(
        repository,
        agent_id,
        _to_events(payload.tool_results),
        consider_context_untrusted=payload.consider_context_untrusted or stored_flag,
    )
    refusal = check_tool_calls(repository, agent_id, _to_calls(payload.calls), context.context_is_trusted)
    return {
        "context_is_trusted": context.context_is_trusted,
        "results": [asdict(result) for result in context.results],
        "tool_result_updates": context.tool_result_updates,
        "pending_sanitization": context.pending_sanitization,
        "refusal": asdict(refusal) if refusal else None,
    }
