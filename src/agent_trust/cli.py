from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path

import typer

from . import config
from .db import init_db
from .policies.base import ToolCall, ToolOutputEvent, split_tool_name
from .repositories import (
    AgentRepository,
    AgentToolRepository,
    SqlitePolicyRepository,
    ToolInvocationPolicyRepository,
    ToolRepository,
    TrustedDataPolicyRepository,
)
from .services.policy_validation import (
    PolicyValidationError,
    validate_invocation_policy,
    validate_tool_result_treatment,
    validate_trusted_data_policy,
)
from .services.tool_invocation import ToolInvocationPolicyEvaluator
from .services.trust_context import parse_arguments
from .services.trusted_data import TrustedDataPolicyEvaluator

app = typer.Typer(help="agent-trust policy engine CLI")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _read_json_list(path: Path) -> list[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        _fail(f"{path} is not valid JSON: {error}")
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        _fail(f"{path} must contain a JSON list of objects")
    return data


def _require_agent_tool(agent_id: str, tool: str) -> int:
    row = AgentToolRepository().get(agent_id, tool)
    if not row:
        _fail(f"Tool {tool} is not assigned to agent {agent_id}; run assign-tool first")
    return int(row["id"])


@app.command("init-db")
def init_db_command() -> None:
    init_db()
    typer.echo("Database initialized")


@app.command("create-agent")
def create_agent_command(
    name: str = typer.Option(...),
    consider_context_untrusted: bool = typer.Option(False),
) -> None:
    if AgentRepository().get_by_name(name):
        _fail(f"Agent {name} already exists")
    agent_id = AgentRepository().create(name, consider_context_untrusted=consider_context_untrusted)
    typer.echo(f"Agent created with id={agent_id}")


@app.command("list-agents")
def list_agents_command() -> None:
    typer.echo(json.dumps(AgentRepository().list_all(), indent=2, ensure_ascii=False))


@app.command("set-context-trust")
def set_context_trust_command(
    agent_id: str = typer.Option(...),
    untrusted: bool = typer.Option(
        False, "--untrusted/--trusted", help="Treat every request context of this agent as untrusted"
    ),
) -> None:
    if not AgentRepository().get(agent_id):
        _fail(f"Unknown agent: {agent_id}")
    AgentRepository().set_consider_context_untrusted(agent_id, untrusted)
    typer.echo(f"Agent {agent_id} consider_context_untrusted={untrusted}")


@app.command("register-tool")
def register_tool_command(
    name: str = typer.Option(...),
    description: str = typer.Option(""),
) -> None:
    tool_id = ToolRepository().get_or_create(name, description or None)
    typer.echo(f"Tool registered with id={tool_id}")


@app.command("list-tools")
def list_tools_command() -> None:
    tools = []
    for row in ToolRepository().list_all():
        server_name, short_name = split_tool_name(row["name"])
        tools.append({**row, "server_name": server_name, "short_name": short_name})
    typer.echo(json.dumps(tools, indent=2, ensure_ascii=False))


@app.command("assign-tool")
def assign_tool_command(
    agent_id: str = typer.Option(...),
    tool: str = typer.Option(...),
    allow_untrusted: bool = typer.Option(False, "--allow-untrusted/--no-allow-untrusted"),
    treatment: str = typer.Option("untrusted"),
) -> None:
    if not AgentRepository().get(agent_id):
        _fail(f"Unknown agent: {agent_id}")
    try:
        validated_treatment = validate_tool_result_treatment(treatment)
    except PolicyValidationError as error:
        _fail(str(error))
    agent_tool_id = AgentToolRepository().assign(
        agent_id,
        tool,
        allow_usage_when_untrusted_data_is_present=allow_untrusted,
        tool_result_treatment=validated_treatment,
    )
    typer.echo(f"Tool {tool} assigned to agent {agent_id} (agent_tool_id={agent_tool_id})")


@app.command("add-invocation-policy")
def add_invocation_policy_command(
    agent_id: str = typer.Option(...),
    tool: str = typer.Option(...),
    path: str = typer.Option(..., help="Argument path, e.g. url or headers.host"),
    operator: str = typer.Option(...),
    value: str = typer.Option(...),
    action: str = typer.Option(...),
    reason: str = typer.Option(""),
) -> None:
    try:
        validated = validate_invocation_policy(path, operator, value, action, reason or None)
    except PolicyValidationError as error:
        _fail(str(error))
    agent_tool_id = _require_agent_tool(agent_id, tool)
    policy_id = ToolInvocationPolicyRepository().create(agent_tool_id, **validated)
    typer.echo(f"Tool invocation policy created with id={policy_id}")


@app.command("add-trusted-data-policy")
def add_trusted_data_policy_command(
    agent_id: str = typer.Option(...),
    tool: str = typer.Option(...),
    path: str = typer.Option(..., help="Attribute path, e.g. emails[*].from"),
    operator: str = typer.Option(...),
    value: str = typer.Option(...),
    action: str = typer.Option(...),
    description: str = typer.Option(""),
) -> None:
    try:
        validated = validate_trusted_data_policy(path, operator, value, action, description or None)
    except PolicyValidationError as error:
        _fail(str(error))
    agent_tool_id = _require_agent_tool(agent_id, tool)
    policy_id = TrustedDataPolicyRepository().create(agent_tool_id, **validated)
    typer.echo(f"Trusted data policy created with id={policy_id}")


@app.command("list-policies")
def list_policies_command(agent_id: str = typer.Option(...)) -> None:
    payload = {
        "tools": AgentToolRepository().list_for_agent(agent_id),
        "tool_invocation_policies": ToolInvocationPolicyRepository().list_for_agent(agent_id),
        "trusted_data_policies": TrustedDataPolicyRepository().list_for_agent(agent_id),
    }
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@app.command("delete-policy")
def delete_policy_command(
    policy_id: int = typer.Option(...),
    kind: str = typer.Option(..., help="invocation or trusted-data"),
) -> None:
    if kind == "invocation":
        deleted = ToolInvocationPolicyRepository().delete(policy_id)
    elif kind == "trusted-data":
        deleted = TrustedDataPolicyRepository().delete(policy_id)
    else:
        _fail("Kind must be one of: invocation, trusted-data")
    if not deleted:
        _fail(f"Policy {policy_id} not found")
    typer.echo(f"Policy {policy_id} deleted")


@app.command("evaluate-calls")
def evaluate_calls_command(
    agent_id: str = typer.Option(...),
    calls_file: Path = typer.Option(..., exists=True, readable=True),
    trusted: bool = typer.Option(False, "--trusted/--untrusted"),
) -> None:
    calls = [
        ToolCall(name=str(item.get("name") or ""), arguments=parse_arguments(item.get("arguments")))
        for item in _read_json_list(calls_file)
    ]
    result = ToolInvocationPolicyEvaluator(SqlitePolicyRepository()).evaluate_batch(agent_id, calls, trusted)
    typer.echo(json.dumps(asdict(result), indent=2, ensure_ascii=False))
    if not result.is_allowed:
        raise typer.Exit(code=2)


@app.command("evaluate-outputs")
def evaluate_outputs_command(
    agent_id: str = typer.Option(...),
    events_file: Path = typer.Option(..., exists=True, readable=True),
) -> None:
    events = [
        ToolOutputEvent(
            tool_name=str(item.get("tool_name") or ""),
            output=item.get("output"),
            tool_call_id=item.get("tool_call_id"),
        )
        for item in _read_json_list(events_file)
    ]
    results = TrustedDataPolicyEvaluator(SqlitePolicyRepository()).evaluate_bulk(agent_id, events)
    typer.echo(json.dumps([asdict(result) for result in results], indent=2, ensure_ascii=False))


@app.command("serve")
def serve_command(
    host: str = typer.Option(config.settings.api_host),
    port: int = typer.Option(config.settings.api_port),
) -> None:
    import uvicorn

    from .web.app import app as web_app

    uvicorn.run(web_app, host=host, port=port)


if __name__ == "__main__":
    app()
