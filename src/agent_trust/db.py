from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from . import config


@contextmanager
def get_connection(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    path = Path(db_path) if db_path is not None else config.settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db(db_path: Path | None = None) -> None:
    with get_connection(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS agents (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                consider_context_untrusted INTEGER NOT NULL DEFAULT 0,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS tools (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                description TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS agent_tools (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_id TEXT NOT NULL,
                tool_id INTEGER NOT NULL,
                allow_usage_when_untrusted_data_is_present INTEGER NOT NULL DEFAULT 0,
                tool_result_treatment TEXT NOT NULL DEFAULT 'untrusted',
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(agent_id, tool_id),
                FOREIGN KEY(agent_id) REFERENCES agents(id) ON DELETE CASCADE,
                FOREIGN KEY(tool_id) REFERENCES tools(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS tool_invocation_policies (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_tool_id INTEGER NOT NULL,
                argument_path TEXT NOT NULL,
                operator TEXT NOT NULL,
                value TEXT NOT NULL,
                action TEXT NOT NULL,
                reason TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(agent_tool_id) REFERENCES agent_tools(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS trusted_data_policies (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_tool_id INTEGER NOT NULL,
                attribute_path TEXT NOT NULL,
                operator TEXT NOT NULL,
                value TEXT NOT NULL,
                action TEXT NOT NULL,
                description TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(agent_tool_id) REFERENCES agent_tools(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_agent_tools_agent ON agent_tools(agent_id);
            CREATE INDEX IF NOT EXISTS idx_tool_invocation_policies_agent_tool
                ON tool_invocation_policies(agent_tool_id);
            CREATE INDEX IF NOT EXISTS idx_trusted_data_policies_agent_tool
                ON trusted_data_policies(agent_tool_id);
            """
        )
