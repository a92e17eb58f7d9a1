from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .db import get_connection
from .policies.base import (
    AgentToolSecurityConfig,
    InvocationPolicySnapshot,
    ToolInvocationPolicy,
    TrustedDataPolicy,
    TrustedDataPolicySnapshot,
)


class PolicyRepository(Protocol):
    def load_invocation_policies(self, agent_id: str, tool_names: Iterable[str]) -> InvocationPolicySnapshot:
        ...

    def load_trusted_data_policies(self, agent_id: str, tool_names: Iterable[str]) -> TrustedDataPolicySnapshot:
        ...


def _distinct(tool_names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(tool_names))


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class SqlitePolicyRepository:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path

    def load_invocation_policies(self, agent_id: str, tool_names: Iterable[str]) -> InvocationPolicySnapshot:
        names = _distinct(tool_names)
        if not names:
            return InvocationPolicySnapshot()

        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT t.name AS tool_name,
                       at.allow_usage_when_untrusted_data_is_present,
                       at.tool_result_treatment,
                       p.id AS policy_id, p.argument_path, p.operator, p.value, p.action, p.reason
                FROM agent_tools at
                JOIN tools t ON t.id = at.tool_id
                LEFT JOIN tool_invocation_policies p ON p.agent_tool_id = at.id
                WHERE at.agent_id = ? AND t.name IN ({_placeholders(len(names))})
                ORDER BY t.name ASC, p.id ASC
                """,
                (agent_id, *names),
            ).fetchall()

        policies_by_tool: dict[str, list[ToolInvocationPolicy]] = {}
        security_config_by_tool: dict[str, AgentToolSecurityConfig] = {}
        for row in rows:
            tool_name = row["tool_name"]
            security_config_by_tool.setdefault(
                tool_name,
                AgentToolSecurityConfig(
                    allow_usage_when_untrusted_data_is_present=bool(row["allow_usage_when_untrusted_data_is_present"]),
                    tool_result_treatment=row["tool_result_treatment"],
                ),
            )
            policies = policies_by_tool.setdefault(tool_name, [])
            if row["policy_id"] is None:
                continue
            policies.append(
                ToolInvocationPolicy(
                    id=row["policy_id"],
                    argument_path=row["argument_path"],
                    operator=row["operator"],
                    value=row["value"],
                    action=row["action"],
                    reason=row["reason"],
                )
            )
        return InvocationPolicySnapshot(policies_by_tool, security_config_by_tool)

    def load_trusted_data_policies(self, agent_id: str, tool_names: Iterable[str]) -> TrustedDataPolicySnapshot:
        names = _distinct(tool_names)
        if not names:
            return TrustedDataPolicySnapshot()

        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT t.name AS tool_name,
                       at.tool_result_treatment,
                       p.id AS policy_id, p.attribute_path, p.operator, p.value, p.action, p.description
                FROM agent_tools at
                JOIN tools t ON t.id = at.tool_id
                LEFT JOIN trusted_data_policies p ON p.agent_tool_id = at.id
                WHERE at.agent_id = ? AND t.name IN ({_placeholders(len(names))})
                ORDER BY t.name ASC, p.id ASC
                """,
                (agent_id, *names),
            ).fetchall()

        policies_by_tool: dict[str, list[TrustedDataPolicy]] = {}
        treatment_by_tool: dict[str, str] = {}
        for row in rows:
            tool_name = row["tool_name"]
            treatment_by_tool.setdefault(tool_name, row["tool_result_treatment"])
            policies = policies_by_tool.setdefault(tool_name, [])
            if row["policy_id"] is None:
                continue
            policies.append(
                TrustedDataPolicy(
                    id=row["policy_id"],
                    attribute_path=row["attribute_path"],
                    operator=row["operator"],
                    value=row["value"],
                    action=row["action"],
                    description=row["description"],
                )
            )
        return TrustedDataPolicySnapshot(
            policies_by_tool=policies_by_tool,
            treatment_by_tool=treatment_by_tool,
            registered_tools=frozenset(treatment_by_tool),
        )


@dataclass
class _InMemoryAssignment:
    security: AgentToolSecurityConfig
    invocation_policies: list[ToolInvocationPolicy] = field(default_factory=list)
    trusted_data_policies: list[TrustedDataPolicy] = field(default_factory=list)


class InMemoryPolicyRepository:
    def __init__(self) -> None:
        self._assignments: dict[tuple[str, str], _InMemoryAssignment] = {}
        self.invocation_loads = 0
        self.trusted_data_loads = 0

    @property
    def load_count(self) -> int:
        return self.invocation_loads + self.trusted_data_loads

    def assign_tool(
        self,
        agent_id: str,
        tool_name: str,
        *,
        allow_usage_when_untrusted_data_is_present: bool = False,
        tool_result_treatment: str = "untrusted",
    ) -> None:
        security = AgentToolSecurityConfig(
            allow_usage_when_untrusted_data_is_present=allow_usage_when_untrusted_data_is_present,
            tool_result_treatment=tool_result_treatment,
        )
        existing = self._assignments.get((agent_id, tool_name))
        if existing:
            existing.security = security
        else:
            self._assignments[(agent_id, tool_name)] = _InMemoryAssignment(security=security)

    def _assignment(self, agent_id: str, tool_name: str) -> _InMemoryAssignment:
        if (agent_id, tool_name) not in self._assignments:
            self.assign_tool(agent_id, tool_name)
        return self._assignments[(agent_id, tool_name)]

    def add_invocation_policy(self, agent_id: str, tool_name: str, policy: ToolInvocationPolicy) -> None:
        self._assignment(agent_id, tool_name).invocation_policies.append(policy)

    def add_trusted_data_policy(self, agent_id: str, tool_name: str, policy: TrustedDataPolicy) -> None:
        self._assignment(agent_id, tool_name).trusted_data_policies.append(policy)

    def load_invocation_policies(self, agent_id: str, tool_names: Iterable[str]) -> InvocationPolicySnapshot:
        self.invocation_loads += 1
        policies_by_tool: dict[str, list[ToolInvocationPolicy]] = {}
        security_config_by_tool: dict[str, AgentToolSecurityConfig] = {}
        for tool_name in _distinct(tool_names):
            assignment = self._assignments.get((agent_id, tool_name))
            if assignment is None:
                continue
            policies_by_tool[tool_name] = list(assignment.invocation_policies)
            security_config_by_tool[tool_name] = assignment.security
        return InvocationPolicySnapshot(policies_by_tool, security_config_by_tool)

    def load_trusted_data_policies(self, agent_id: str, tool_names: Iterable[str]) -> TrustedDataPolicySnapshot:
        self.trusted_data_loads += 1
        policies_by_tool: dict[str, list[TrustedDataPolicy]] = {}
        treatment_by_tool: dict[str, str] = {}
        for tool_name in _distinct(tool_names):
            assignment = self._assignments.get((agent_id, tool_name))
            if assignment is None:
                continue
            policies_by_tool[tool_name] = list(assignment.trusted_data_policies)
            treatment_by_tool[tool_name] = assignment.security.tool_result_treatment
        return TrustedDataPolicySnapshot(
            policies_by_tool=policies_by_tool,
            treatment_by_tool=treatment_by_tool,
            registered_tools=frozenset(treatment_by_tool),
        )


class AgentRepository:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path

    def create(self, name: str, consider_context_untrusted: bool = False) -> str:
        agent_id = str(uuid.uuid4())
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO agents (id, name, consider_context_untrusted)
                VALUES (?, ?, ?)
                """,
                (agent_id, name, int(consider_context_untrusted)),
            )
        return agent_id

    def get(self, agent_id: str) -> dict | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
        return dict(row) if row else None

    def get_by_name(self, name: str) -> dict | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM agents WHERE name = ?", (name,)).fetchone()
        return dict(row) if row else None

    def list_all(self) -> list[dict]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM agents ORDER BY created_at ASC, name ASC").fetchall()
        return [dict(row) for row in rows]

    def set_consider_context_untrusted(self, agent_id: str, value: bool) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                "UPDATE agents SET consider_context_untrusted = ? WHERE id = ?",
                (int(value), agent_id),
            )


class ToolRepository:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path

    def get_or_create(self, name: str, description: str | None = None) -> int:
        with get_connection(self.db_path) as conn:
            conn.execute(
                "INSERT OR IGNORE INTO tools (name, description) VALUES (?, ?)",
                (name, description),
            )
            row = conn.execute("SELECT id FROM tools WHERE name = ?", (name,)).fetchone()
        return int(row["id"])

    def list_all(self) -> list[dict]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM tools ORDER BY name ASC").fetchall()
        return [dict(row) for row in rows]


class AgentToolRepository:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path

    def assign(
        self,
        agent_id: str,
        tool_name: str,
        allow_usage_when_untrusted_data_is_present: bool = False,
        tool_result_treatment: str = "untrusted",
    ) -> int:
        tool_id = ToolRepository(self.db_path).get_or_create(tool_name)
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO agent_tools (agent_id, tool_id, allow_usage_when_untrusted_data_is_present, tool_result_treatment)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(agent_id, tool_id) DO UPDATE SET
                    allow_usage_when_untrusted_data_is_present = excluded.allow_usage_when_untrusted_data_is_present,
                    tool_result_treatment = excluded.tool_result_treatment
                """,
                (agent_id, tool_id, int(allow_usage_when_untrusted_data_is_present), tool_result_treatment),
            )
            row = conn.execute(
                "SELECT id FROM agent_tools WHERE agent_id = ? AND tool_id = ?",
                (agent_id, tool_id),
            ).fetchone()
        return int(row["id"])

    def get(self, agent_id: str, tool_name: str) -> dict | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT at.*, t.name AS tool_name
                FROM agent_tools at
                JOIN tools t ON t.id = at.tool_id
                WHERE at.agent_id = ? AND t.name = ?
                """,
                (agent_id, tool_name),
            ).fetchone()
        return dict(row) if row else None

    def list_for_agent(self, agent_id: str) -> list[dict]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT at.*, t.name AS tool_name
                FROM agent_tools at
                JOIN tools t ON t.id = at.tool_id
                WHERE at.agent_id = ?
                ORDER BY t.name ASC
                """,
                (agent_id,),
            ).fetchall()
        return [dict(row) for row in rows]


class ToolInvocationPolicyRepository:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path

    def create(
        self,
        agent_tool_id: int,
        argument_path: str,
        operator: str,
        value: str,
        action: str,
        reason: str | None = None,
    ) -> int:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO tool_invocation_policies (agent_tool_id, argument_path, operator, value, action, reason)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (agent_tool_id, argument_path, operator, value, action, reason),
            )
            return int(cursor.lastrowid)

    def list_for_agent(self, agent_id: str) -> list[dict]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT p.*, t.name AS tool_name
                FROM tool_invocation_policies p
                JOIN agent_tools at ON at.id = p.agent_tool_id
                JOIN tools t ON t.id = at.tool_id
                WHERE at.agent_id = ?
                ORDER BY t.name ASC, p.id ASC
                """,
                (agent_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def delete(self, policy_id: int) -> bool:
        with get_connection(self.db_path) as conn:
            result = conn.execute("DELETE FROM tool_invocation_policies WHERE id = ?", (policy_id,))
            return result.rowcount > 0


class TrustedDataPolicyRepository:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path

    def create(
        self,
        agent_tool_id: int,
        attribute_path: str,
        operator: str,
        value: str,
        action: str,
        description: str | None = None,
    ) -> int:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO trusted_data_policies (agent_tool_id, attribute_path, operator, value, action, description)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (agent_tool_id, attribute_path, operator, value, action, description),
            )
            return int(cursor.lastrowid)

    def list_for_agent(self, agent_id: str) -> list[dict]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT p.*, t.name AS tool_name
                FROM trusted_data_policies p
                JOIN agent_tools at ON at.id = p.agent_tool_id
                JOIN tools t ON t.id = at.tool_id
                WHERE at.agent_id = ?
                ORDER BY t.name ASC, p.id ASC
                """,
                (agent_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def delete(self, policy_id: int) -> bool:
        with get_connection(self.db_path) as conn:
            result = conn.execute("DELETE FROM trusted_data_policies WHERE id = ?", (policy_id,))
            return result.rowcount > 0
