from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path(os.getenv("AGENT_TRUST_DB_PATH", "data/agent_trust.db"))

    builtin_server_name: str = os.getenv("AGENT_TRUST_BUILTIN_SERVER_NAME", "archestra").strip().lower()
    tool_name_separator: str = os.getenv("AGENT_TRUST_TOOL_NAME_SEPARATOR", "__")

    log_level: str = os.getenv("AGENT_TRUST_LOG_LEVEL", "INFO").strip().upper()

    api_host: str = os.getenv("AGENT_TRUST_API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("AGENT_TRUST_API_PORT", "8000"))


settings = Settings()
