# app.py
# Cockpit: local coding cockpit server (FastAPI)
# Chat relay + chat threads + onboarding config + autonomy runner.
#
# Endpoints:
#   GET    /health
#   GET    /diagnostics
#   GET    /setup/status
#   POST   /setup/save
#   POST   /chat              (relay to the configured LLM adapter)
#   POST   /chats/create
#   GET    /chats/list
#   GET    /chats/thread
#   POST   /chats/message
#   POST   /memory/log
#
# Autonomy:
#   GET    /autonomy/run      (state snapshot)
#   POST   /autonomy/run      (goal -> plan -> optional execution)
#   DELETE /autonomy/run      (emergency stop)
#   POST   /autonomy/workspace
#   POST   /autonomy/commands (run an explicit command list)
#   GET    /audit/ledger
# Note: keep the endpoint list above in sync with any new routes.

from __future__ import annotations

import json
import logging
import os
import platform
import shutil
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from cockpit import __version__
from cockpit.autonomy import (
    AlreadyRunningError,
    AutonomyRunner,
    InvalidTargetError,
    OutsideWorkspaceError,
    summarize_results,
)
from cockpit.chat_store import ChatStore, data_dir
from cockpit.config import (
    adapters_config_path,
    install_root,
    load_config,
    merge_config,
    resolve_api_key,
    safe_config,
    save_config,
)
from cockpit.planner import PLAN_SYSTEM, build_plan_prompt, executable_commands, parse_plan
from cockpit.safety import is_path_inside, resolve_path
from cockpit.service import HeadlessService

APP_VERSION = __version__
AUDIT_LEDGER_LIMIT = int(os.environ.get("COCKPIT_AUDIT_LEDGER_LIMIT", "200"))

logging.basicConfig(
    level=os.environ.get("COCKPIT_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("cockpit.server")

# ----------------------------
# Models
# ----------------------------

class ChatIn(BaseModel):
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    model: Optional[str] = None
    adapter: Optional[str] = None

class ChatCreateIn(BaseModel):
    title: Optional[str] = None

class ChatMessageIn(BaseModel):
    id: str = ""
    role: Optional[str] = None
    content: str = ""

class MemoryLogIn(BaseModel):
    threadId: Optional[str] = None
    role: Optional[str] = None
    text: str = ""

class AutonomyRunIn(BaseModel):
    goal: str = ""
    execute: bool = False
    projectDir: Optional[str] = None
    allowOutsideStorage: bool = False
    adapter: Optional[str] = None

class WorkspaceIn(BaseModel):
    path: Optional[str] = None

class CommandsIn(BaseModel):
    commands: List[str]
    cwd: Optional[str] = None

# ----------------------------
# Composition root
# ----------------------------

# Local-only server; keep it off public interfaces.
app = FastAPI(title="Cockpit", version=APP_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One runner per process; routes reach it through request.app.state.
app.state.runner = AutonomyRunner(str(install_root()))
app.state.chats = ChatStore()
app.state.service = None

_svc_lock = threading.RLock()
_audit_lock = threading.RLock()

def _runner(request: Request) -> AutonomyRunner:
    return request.app.state.runner

def _chats(request: Request) -> ChatStore:
    return request.app.state.chats

def _get_service(request: Request) -> HeadlessService:
    with _svc_lock:
        svc = request.app.state.service
        if svc is None:
            svc = HeadlessService.from_path(adapters_config_path())
            request.app.state.service = svc
        return svc

# ----------------------------
# Helpers
# ----------------------------

def _now() -> float:
    return time.time()

def _audit_log_path() -> Path:
    return Path(os.environ.get("COCKPIT_AUDIT_LOG") or (data_dir() / "audit.log")).resolve()

def _audit_event(event: str, payload: Dict[str, Any]) -> None:
    record = {"ts": _now(), "event": event, **payload}
    path = _audit_log_path()
    with _audit_lock:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=True) + "\n")
        except OSError as exc:
            log.warning("Audit write failed (%s): %s", event, exc)

def _read_tail_jsonl(path: Path, limit: int) -> List[Dict[str, Any]]:
    if limit <= 0 or not path.exists():
        return []
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []
    out = []
    for line in lines[-limit:]:
        try:
            out.append(json.loads(line))
        except ValueError:
            continue
    return out

def _api_key_overrides(request: Request, fallback: Optional[str]) -> Dict[str, str]:
    key = (request.headers.get("x-openai-key") or "").strip() or fallback
    return {"api_key": key} if key else {}

def _run_or_raise(runner: AutonomyRunner, commands: List[str], cwd: Optional[str]) -> List[Dict[str, Any]]:
    try:
        results = runner.run_commands(commands, cwd)
    except AlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail="AlreadyRunning") from exc
    except OutsideWorkspaceError as exc:
        raise HTTPException(status_code=403, detail=f"OutsideWorkspace: {exc}") from exc
    except InvalidTargetError as exc:
        raise HTTPException(status_code=400, detail=f"InvalidTarget: {exc}") from exc
    ok, failed = summarize_results(results)
    _audit_event(
        "autonomy_run",
        {
            "cwd": cwd or str(runner.workspace_root),
            "submitted": len(commands),
            "attempted": len(results),
            "ok": ok,
            "failed": failed,
            "status": runner.status,
        },
    )
    return results

# ----------------------------
# Routes
# ----------------------------

@app.get("/health")
def health():
    cfg = load_config()
    return {
        "ok": True,
        "serverName": "Cockpit",
        "serverTime": _now(),
        "version": APP_VERSION,
        "mode": cfg.authMode,
        "endpoints": {
            "health": "/health",
            "diagnostics": "/diagnostics",
            "setup_status": "/setup/status",
            "setup_save": "/setup/save",
            "chat": "/chat",
            "chats_create": "/chats/create",
            "chats_list": "/chats/list",
            "chats_thread": "/chats/thread",
            "chats_message": "/chats/message",
            "memory_log": "/memory/log",
            "autonomy_run": "/autonomy/run",
            "autonomy_workspace": "/autonomy/workspace",
            "autonomy_commands": "/autonomy/commands",
            "audit_ledger": "/audit/ledger",
        },
        "meta": {
            "adaptersConfig": str(adapters_config_path()),
            "installRoot": str(install_root()),
        },
    }

@app.get("/diagnostics")
def diagnostics(request: Request):
    cfg = load_config()
    runner = _runner(request)
    state = runner.get_state()
    has_key = bool(resolve_api_key(cfg))

    blockers: List[Dict[str, Any]] = []
    if not has_key:
        blockers.append({
            "id": "auth_missing",
            "title": "No auth path configured",
            "detail": "Set an OpenAI API key in setup or OPENAI_API_KEY.",
        })
    if os.name != "nt" and not shutil.which("sh"):
        blockers.append({
            "id": "shell_missing",
            "title": "No POSIX shell on PATH",
            "detail": "Autonomy commands run through /bin/sh.",
        })
    warnings: List[Dict[str, Any]] = []
    if cfg.modes.allowCommandExecution:
        warnings.append({
            "id": "command_execution",
            "title": "Command execution enabled",
            "detail": "Plans may run shell commands inside the workspace root.",
        })

    return {
        "ok": not blockers,
        "version": APP_VERSION,
        "runtime": {
            "platform": platform.platform(),
            "python": sys.version.split()[0],
            "cwd": os.getcwd(),
            "installRoot": str(install_root()),
            "authMode": cfg.authMode,
            "hasApiKey": has_key,
        },
        "autonomy": {
            "status": state["status"],
            "workspaceRoot": state["workspaceRoot"],
            "currentCommand": state["currentCommand"],
        },
        "blockers": blockers,
        "warnings": warnings,
    }

@app.get("/setup/status")
def setup_status():
    return safe_config(load_config())

@app.post("/setup/save")
def setup_save(payload: Dict[str, Any] = Body(...)):
    try:
        merged = merge_config(load_config(), payload)
        save_config(merged)
    except (OSError, TypeError, ValueError) as exc:
        log.exception("Setup save failed")
        raise HTTPException(status_code=500, detail=f"SetupSaveFailed: {exc}") from exc
    return {"ok": True, "message": "Setup saved."}

@app.post("/chat")
def chat(inp: ChatIn, request: Request):
    messages = [m for m in inp.messages if isinstance(m, dict) and m.get("content")]
    if not messages:
        raise HTTPException(status_code=400, detail="Missing messages")

    cfg = load_config()
    try:
        svc = _get_service(request)
        adapter = svc.scoped_adapter(inp.adapter, _api_key_overrides(request, resolve_api_key(cfg)))
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"AdapterInitFailed: {exc}") from exc
    if not adapter.is_available():
        raise HTTPException(status_code=400, detail="No API key provided")

    try:
        text = adapter.chat(messages, model=inp.model or cfg.model)
    except Exception as exc:
        log.warning("Chat relay failed via %s: %s", adapter.name, exc)
        raise HTTPException(status_code=502, detail=f"ChatFailed: {exc}") from exc
    return {"ok": True, "text": text, "adapter": adapter.name}

@app.post("/chats/create")
def chats_create(request: Request, inp: Optional[ChatCreateIn] = None):
    thread = _chats(request).create_thread(inp.title if inp else None)
    return {"ok": True, "thread": thread}

@app.get("/chats/list")
def chats_list(request: Request):
    return {"ok": True, "threads": _chats(request).list_threads()}

@app.get("/chats/thread")
def chats_thread(request: Request, id: str = Query("")):
    if not id:
        raise HTTPException(status_code=400, detail="Missing id")
    thread = _chats(request).get_thread(id)
    if not thread:
        raise HTTPException(status_code=404, detail="Not found")
    return {"ok": True, "thread": thread}

@app.post("/chats/message")
def chats_message(inp: ChatMessageIn, request: Request):
    role = "assistant" if inp.role == "assistant" else "user"
    if not inp.id or not inp.content:
        raise HTTPException(status_code=400, detail="Missing id/content")
    thread = _chats(request).append_message(inp.id, role, inp.content)
    if not thread:
        raise HTTPException(status_code=404, detail="Thread not found")
    return {"ok": True}

@app.post("/memory/log")
def memory_log(inp: MemoryLogIn, request: Request):
    if not inp.text:
        raise HTTPException(status_code=400, detail="Missing text")
    role = "assistant" if inp.role == "assistant" else "user"
    _chats(request).log_memory_entry(inp.threadId or "general", role, inp.text)
    return {"ok": True}

# ----------------------------
# Autonomy
# ----------------------------

@app.get("/autonomy/run")
def autonomy_state(request: Request):
    return {"ok": True, "state": _runner(request).get_state()}

@app.delete("/autonomy/run")
def autonomy_stop(request: Request):
    _runner(request).request_stop()
    return {"ok": True, "message": "Autonomy stopped"}

@app.post("/autonomy/workspace")
def autonomy_workspace(inp: WorkspaceIn, request: Request):
    root = _runner(request).set_workspace_root(inp.path)
    return {"ok": True, "workspaceRoot": str(root)}

@app.post("/autonomy/commands")
def autonomy_commands(inp: CommandsIn, request: Request):
    runner = _runner(request)
    results = _run_or_raise(runner, inp.commands, inp.cwd)
    return {"ok": True, "executed": results, "state": runner.get_state()}

@app.post("/autonomy/run")
def autonomy_run(inp: AutonomyRunIn, request: Request):
    goal = inp.goal.strip()
    if not goal:
        raise HTTPException(status_code=400, detail="Goal is required.")

    runner = _runner(request)
    install = install_root()
    requested = resolve_path(inp.projectDir, base=install)
    if not is_path_inside(requested, install) and not inp.allowOutsideStorage:
        raise HTTPException(
            status_code=400,
            detail="Blocked: writes outside install directory are not allowed unless explicitly enabled.",
        )
    if inp.execute and runner.get_state()["active"]:
        raise HTTPException(status_code=409, detail="AlreadyRunning")

    runner.set_workspace_root(str(requested))

    cfg = load_config()
    try:
        adapter = _get_service(request).scoped_adapter(
            inp.adapter, _api_key_overrides(request, resolve_api_key(cfg))
        )
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"AdapterInitFailed: {exc}") from exc
    if not adapter.is_available():
        raise HTTPException(status_code=400, detail="No OpenAI API key configured.")

    prompt = build_plan_prompt(goal, str(requested), cfg.modes.autonomousRiskLevel)
    try:
        text = adapter.complete(prompt, system=PLAN_SYSTEM, model=cfg.planModel or cfg.model)
    except Exception as exc:
        log.warning("Plan generation failed via %s: %s", adapter.name, exc)
        raise HTTPException(status_code=502, detail=f"PlanFailed: {exc}") from exc
    plan = parse_plan(text)
    _audit_event("autonomy_plan", {"goal": goal, "projectDir": str(requested), "commands": len(plan["commands"])})

    executed: List[Dict[str, Any]] = []
    skipped_reason: Optional[str] = None
    if not inp.execute:
        skipped_reason = "execute not requested"
    elif not cfg.modes.allowCommandExecution:
        skipped_reason = "command execution disabled in setup"
    elif plan["commands"]:
        executed = _run_or_raise(runner, executable_commands(plan), str(requested))

    return {
        "ok": True,
        "summary": plan["summary"] or "Plan generated",
        "tasks": plan["tasks"],
        "commands": plan["commands"],
        "executed": executed,
        "executionSkipped": skipped_reason,
        "state": runner.get_state(),
    }

@app.get("/audit/ledger")
def audit_ledger(limit: int = Query(AUDIT_LEDGER_LIMIT, ge=1, le=1000)):
    return {"ok": True, "events": _read_tail_jsonl(_audit_log_path(), limit)}

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run the local Cockpit server.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=3030)
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")
    args = parser.parse_args()

    import uvicorn

    uvicorn.run("app:app", host=args.host, port=args.port, reload=args.reload)
