"""Shared fixtures: in-memory and SQLite policy repositories, API client, CLI runner."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from typer.testing import CliRunner

from agent_trust import config
from agent_trust.db import init_db
from agent_trust.repositories import InMemoryPolicyRepository
from agent_trust.web.app import app, get_policy_repository

AGENT_ID = "agent-1"


@pytest.fixture
def repository() -> InMemoryPolicyRepository:
    return InMemoryPolicyRepository()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "agent_trust.db"
    monkeypatch.setattr(config, "settings", config.Settings(db_path=path))
    init_db()
    return path


@pytest.fixture
def api_client(repository, db_path):
    app.dependency_overrides[get_policy_repository] = lambda: repository
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
