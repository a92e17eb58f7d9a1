from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from .. import config

Operator = Literal["endsWith", "startsWith", "contains", "notContains", "equal", "notEqual", "regex"]
InvocationAction = Literal["block_always", "allow_when_context_is_untrusted"]
TrustedDataAction = Literal["mark_as_trusted", "block_always", "sanitize_with_dual_llm"]
ToolResultTreatment = Literal["trusted", "untrusted", "sanitize_with_dual_llm"]

SUPPORTED_OPERATORS: tuple[str, ...] = (
    "equal",
    "notEqual",
    "contains",
    "notContains",
    "startsWith",
    "endsWith",
    "regex",
)

INVOCATION_ACTIONS: tuple[str, ...] = ("block_always", "allow_when_context_is_untrusted")
TRUSTED_DATA_ACTIONS: tuple[str, ...] = ("mark_as_trusted", "block_always", "sanitize_with_dual_llm")
TOOL_RESULT_TREATMENTS: tuple[str, ...] = ("trusted", "untrusted", "sanitize_with_dual_llm")


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Any = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOutputEvent:
    tool_name: str
    output: Any
    tool_call_id: str | None = None


@dataclass(frozen=True)
class ToolInvocationPolicy:
    argument_path: str
    operator: str
    value: str
    action: str
    reason: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class TrustedDataPolicy:
    attribute_path: str
    operator: str
    value: str
    action: str
    description: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class AgentToolSecurityConfig:
    allow_usage_when_untrusted_data_is_present: bool = False
    tool_result_treatment: str = "untrusted"


@dataclass(frozen=True)
class ToolInvocationResult:
    is_allowed: bool
    reason: str
    tool_call_name: str | None = None
    tool_call_index: int | None = None

    @classmethod
    def allowed(cls) -> ToolInvocationResult:
        return cls(is_allowed=True, reason="")

    @classmethod
    def refused(cls, reason: str, tool_call_name: str, tool_call_index: int | None = None) -> ToolInvocationResult:
        return cls(is_allowed=False, reason=reason, tool_call_name=tool_call_name, tool_call_index=tool_call_index)


@dataclass(frozen=True)
class TrustedDataResult:
    """Verdict for one tool output. At most one of the three flags is set."""

    is_trusted: bool
    is_blocked: bool
    should_sanitize_with_dual_llm: bool
    reason: str

    @classmethod
    def trusted(cls, reason: str) -> TrustedDataResult:
        return cls(is_trusted=True, is_blocked=False, should_sanitize_with_dual_llm=False, reason=reason)

    @classmethod
    def untrusted(cls, reason: str) -> TrustedDataResult:
        return cls(is_trusted=False, is_blocked=False, should_sanitize_with_dual_llm=False, reason=reason)

    @classmethod
    def blocked(cls, reason: str) -> TrustedDataResult:
        return cls(is_trusted=False, is_blocked=True, should_sanitize_with_dual_llm=False, reason=reason)

    @classmethod
    def sanitize(cls, reason: str) -> TrustedDataResult:
        return cls(is_trusted=False, is_blocked=False, should_sanitize_with_dual_llm=True, reason=reason)


@dataclass(frozen=True)
class InvocationPolicySnapshot:
    policies_by_tool: dict[str, list[ToolInvocationPolicy]] = field(default_factory=dict)
    security_config_by_tool: dict[str, AgentToolSecurityConfig] = field(default_factory=dict)

    def policies_for(self, tool_name: str) -> list[ToolInvocationPolicy]:
        return self.policies_by_tool.get(tool_name, [])

    def allows_untrusted_usage(self, tool_name: str) -> bool:
        config_row = self.security_config_by_tool.get(tool_name)
        return bool(config_row and config_row.allow_usage_when_untrusted_data_is_present)


@dataclass(frozen=True)
class TrustedDataPolicySnapshot:
    policies_by_tool: dict[str, list[TrustedDataPolicy]] = field(default_factory=dict)
    treatment_by_tool: dict[str, str] = field(default_factory=dict)
    registered_tools: frozenset[str] = frozenset()

    def policies_for(self, tool_name: str) -> list[TrustedDataPolicy]:
        return self.policies_by_tool.get(tool_name, [])

    def is_registered(self, tool_name: str) -> bool:
        return tool_name in self.registered_tools

    def treatment_for(self, tool_name: str) -> str | None:
        return self.treatment_by_tool.get(tool_name)


def builtin_tool_prefix() -> str:
    return f"{config.settings.builtin_server_name}{config.settings.tool_name_separator}"


def is_builtin_tool(tool_name: str) -> bool:
    return tool_name.startswith(builtin_tool_prefix())


def split_tool_name(tool_name: str) -> tuple[str | None, str]:
    separator = config.settings.tool_name_separator
    server_name, found, short_name = tool_name.partition(separator)
    if not found or not server_name or not short_name:
        return None, tool_name
    return server_name, short_name
