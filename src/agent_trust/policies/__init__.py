from .base import (
    INVOCATION_ACTIONS,
    SUPPORTED_OPERATORS,
    TOOL_RESULT_TREATMENTS,
    TRUSTED_DATA_ACTIONS,
    AgentToolSecurityConfig,
    InvocationPolicySnapshot,
    ToolCall,
    ToolInvocationPolicy,
    ToolInvocationResult,
    ToolOutputEvent,
    TrustedDataPolicy,
    TrustedDataPolicySnapshot,
    TrustedDataResult,
    is_builtin_tool,
    split_tool_name,
)
from .operators import evaluate_condition, list_operators
from .paths import MISSING, PathSyntaxError, extract_values, parse_path, resolve_path

__all__ = [
    "INVOCATION_ACTIONS",
    "SUPPORTED_OPERATORS",
    "TOOL_RESULT_TREATMENTS",
    "TRUSTED_DATA_ACTIONS",
    "AgentToolSecurityConfig",
    "InvocationPolicySnapshot",
    "ToolCall",
    "ToolInvocationPolicy",
    "ToolInvocationResult",
    "ToolOutputEvent",
    "TrustedDataPolicy",
    "TrustedDataPolicySnapshot",
    "TrustedDataResult",
    "is_builtin_tool",
    "split_tool_name",
    "evaluate_condition",
    "list_operators",
    "MISSING",
    "PathSyntaxError",
    "extract_values",
    "parse_path",
    "resolve_path",
]
