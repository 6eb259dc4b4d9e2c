from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import app as cockpit_app
from cockpit.autonomy import AutonomyRunner
from cockpit.chat_store import ChatStore
from cockpit.config import AdapterConfig, AppConfig
from cockpit.service import HeadlessService

PLAN_REPLY = json.dumps(
    {
        "summary": "Create a readme",
        "tasks": ["write the file", "check it"],
        "commands": ["echo hello > README.md", "cat README.md"],
    }
)


def echo_service(reply: str = PLAN_REPLY) -> HeadlessService:
    return HeadlessService(
        AppConfig(
            default_adapter="echo",
            adapters=[AdapterConfig(name="echo", type="echo", settings={"reply": reply})],
        )
    )


@pytest.fixture
def install_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "install"
    root.mkdir()
    monkeypatch.setenv("COCKPIT_INSTALL_ROOT", str(root))
    monkeypatch.setenv("COCKPIT_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("COCKPIT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("COCKPIT_MEMORY_DIR", str(tmp_path / "memory"))
    monkeypatch.setenv("COCKPIT_AUDIT_LOG", str(tmp_path / "data" / "audit.log"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return root


@pytest.fixture
def client(tmp_path: Path, install_dir: Path):
    state = cockpit_app.app.state
    saved = (state.runner, state.chats, state.service)
    state.runner = AutonomyRunner(str(install_dir), command_timeout=10.0, grace_sec=0.5)
    state.chats = ChatStore(tmp_path / "data", tmp_path / "memory")
    state.service = echo_service()
    try:
        yield TestClient(cockpit_app.app)
    finally:
        state.runner, state.chats, state.service = saved
