from __future__ import annotations

import json

from agent_trust.policies.base import ToolCall, ToolInvocationPolicy, ToolOutputEvent, TrustedDataPolicy
from agent_trust.services.trust_context import (
    check_tool_calls,
    evaluate_context_trust,
    parse_arguments,
)

from .conftest import AGENT_ID

INBOX = "mail__list_inbox"


class RecordingSanitizer:
    def __init__(self) -> None:
        self.calls: list[ToolOutputEvent] = []

    def sanitize(self, agent_id, event):
        self.calls.append(event)
        return "sanitized summary"


def _inbox_with_block_policy(repository, treatment="trusted"):
    repository.assign_tool(AGENT_ID, INBOX, tool_result_treatment=treatment)
    repository.add_trusted_data_policy(
        AGENT_ID,
        INBOX,
        TrustedDataPolicy("emails[*].body", "contains", "BEGIN INJECTION", "block_always", "Injection marker"),
    )


def test_empty_conversation_is_trusted(repository):
    context = evaluate_context_trust(repository, AGENT_ID, [])

    assert context.context_is_trusted is True
    assert repository.load_count == 0


def test_agent_flag_forces_untrusted_context_without_reading_policies(repository):
    repository.assign_tool(AGENT_ID, INBOX, tool_result_treatment="trusted")

    context = evaluate_context_trust(
        repository,
        AGENT_ID,
        [ToolOutputEvent(INBOX, {}, "call-1")],
        consider_context_untrusted=True,
    )

    assert context.context_is_trusted is False
    assert repository.load_count == 0


def test_untrusted_result_taints_context(repository):
    context = evaluate_context_trust(repository, AGENT_ID, [ToolOutputEvent("web__search", "results", "call-1")])

    assert context.context_is_trusted is False
    assert context.tool_result_updates == {}


def test_json_string_outputs_are_evaluated_as_structured_data(repository):
    _inbox_with_block_policy(repository)
    output = json.dumps({"emails": [{"body": "hello BEGIN INJECTION"}]})

    context = evaluate_context_trust(repository, AGENT_ID, [ToolOutputEvent(INBOX, output, "call-7")])

    assert context.results[0].is_blocked is True
    assert "call-7" in context.tool_result_updates
    assert "Injection marker" in context.tool_result_updates["call-7"]


def test_blocked_result_is_replaced_and_does_not_taint_context(repository):
    _inbox_with_block_policy(repository)
    events = [
        ToolOutputEvent(INBOX, {"emails": [{"body": "BEGIN INJECTION"}]}, "call-1"),
        ToolOutputEvent(INBOX, {"emails": [{"body": "lunch at noon"}]}, "call-2"),
    ]

    context = evaluate_context_trust(repository, AGENT_ID, events)

    assert context.context_is_trusted is True
    assert list(context.tool_result_updates) == ["call-1"]


def test_sanitize_without_sanitizer_leaves_context_untrusted(repository):
    repository.assign_tool(AGENT_ID, INBOX, tool_result_treatment="sanitize_with_dual_llm")

    context = evaluate_context_trust(repository, AGENT_ID, [ToolOutputEvent(INBOX, {}, "call-3")])

    assert context.context_is_trusted is False
    assert context.pending_sanitization == ["call-3"]


def test_sanitizer_output_replaces_result(repository):
    repository.assign_tool(AGENT_ID, INBOX, tool_result_treatment="sanitize_with_dual_llm")
    sanitizer = RecordingSanitizer()

    context = evaluate_context_trust(
        repository, AGENT_ID, [ToolOutputEvent(INBOX, {"x": 1}, "call-4")], sanitizer=sanitizer
    )

    assert context.context_is_trusted is True
    assert context.tool_result_updates == {"call-4": "sanitized summary"}
    assert sanitizer.calls[0].output == {"x": 1}


def test_results_without_call_ids_are_keyed_by_position(repository):
    _inbox_with_block_policy(repository)

    context = evaluate_context_trust(
        repository,
        AGENT_ID,
        [ToolOutputEvent("archestra__whoami", {}), ToolOutputEvent(INBOX, {"emails": [{"body": "BEGIN INJECTION"}]})],
    )

    assert list(context.tool_result_updates) == ["1"]


def test_parse_arguments_handles_wire_formats():
    assert parse_arguments('{"url": "https://a.com"}') == {"url": "https://a.com"}
    assert parse_arguments("") == {}
    assert parse_arguments(None) == {}
    assert parse_arguments("{not json") == {}
    assert parse_arguments({"already": "parsed"}) == {"already": "parsed"}


def test_check_tool_calls_returns_rendered_refusal(repository):
    repository.add_invocation_policy(
        AGENT_ID,
        "fs__read_file",
        ToolInvocationPolicy("path", "startsWith", "/etc/", "block_always", reason="No system files"),
    )
    arguments = '{"path": "/etc/passwd"}'

    refusal = check_tool_calls(repository, AGENT_ID, [ToolCall("fs__read_file", arguments)], True)

    assert refusal is not None
    assert refusal.tool_call_name == "fs__read_file"
    assert refusal.reason == "No system files"
    assert "fs__read_file" in refusal.content_message
    assert "denied" in refusal.content_message
    assert "tool invocation policy" in refusal.content_message
    assert "/etc/passwd" in refusal.refusal_message
    assert "<tool-reason>No system files</tool-reason>" in refusal.refusal_message


def test_check_tool_calls_returns_none_when_allowed(repository):
    repository.assign_tool(AGENT_ID, "web__search", allow_usage_when_untrusted_data_is_present=True)

    assert check_tool_calls(repository, AGENT_ID, [ToolCall("web__search", '{"q": "x"}')], False) is None
    assert check_tool_calls(repository, AGENT_ID, [], False) is None


def test_unparseable_arguments_fail_closed_on_allow_rules(repository):
    repository.add_invocation_policy(
        AGENT_ID,
        "web__fetch",
        ToolInvocationPolicy("url", "startsWith", "https://trusted.com", "allow_when_context_is_untrusted"),
    )

    refusal = check_tool_calls(repository, AGENT_ID, [ToolCall("web__fetch", "{broken")], False)

    assert refusal is not None
    assert refusal.reason == "Missing required argument: url"


def test_refusal_quotes_the_refused_call_when_names_repeat(repository):
    repository.add_invocation_policy(
        AGENT_ID,
        "fs__read_file",
        ToolInvocationPolicy("path", "startsWith", "/etc/", "block_always", reason="No system files"),
    )
    calls = [
        ToolCall("fs__read_file", {"path": "/home/ok"}),
        ToolCall("fs__read_file", {"path": "/etc/passwd"}),
    ]

    refusal = check_tool_calls(repository, AGENT_ID, calls, True)

    assert refusal is not None
    assert "/etc/passwd" in refusal.refusal_message
    assert "/home/ok" not in refusal.refusal_message
