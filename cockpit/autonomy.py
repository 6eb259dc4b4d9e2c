"""Autonomy runner: single-flight, sequential shell command execution.

One runner owns one run at a time. Commands are confined to a workspace root,
filtered against a small denylist, executed with a hard timeout and retried
once on failure. ``request_stop`` may be called from any thread; it latches a
stop flag checked between commands and tears down the active child process.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from .process import PopenFactory, spawn_shell, terminate_process, truncate_output
from .safety import command_looks_unsafe, is_path_inside, resolve_path

log = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_STOPPED = "stopped"

ACTIVITY_LIMIT = 200
COMMAND_TIMEOUT_SEC = 120.0
KILL_GRACE_SEC = 1.5
OUTPUT_LIMIT = 5000
MAX_ATTEMPTS = 2
BLOCKED_OUTPUT = "Blocked unsafe command"


class AutonomyError(RuntimeError):
    """Base class for rejected runs. Nothing in the runner changes when raised."""


class AlreadyRunningError(AutonomyError):
    def __init__(self) -> None:
        super().__init__("Autonomy already running")


class OutsideWorkspaceError(AutonomyError):
    def __init__(self, target: Path, root: Path) -> None:
        super().__init__(f"Target directory is outside workspace root: {target} (root {root})")
        self.target = target
        self.root = root


class InvalidTargetError(AutonomyError):
    def __init__(self, target: Path, reason: OSError) -> None:
        super().__init__(f"Target directory cannot be used: {target} ({reason.strerror or reason})")
        self.target = target


@dataclass
class Activity:
    ts: str
    type: str
    text: str


@dataclass
class _Attempt:
    ok: bool
    output: str
    note: str = ""

    def render(self, limit: int) -> str:
        # The exit or timeout note survives truncation; the captured output gives way.
        if not self.note:
            return truncate_output(self.output, limit)
        body = truncate_output(self.output, max(limit - len(self.note) - 1, 0))
        return f"{body}\n{self.note}" if body else self.note


def _timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class AutonomyRunner:
    def __init__(
        self,
        workspace_root: Optional[str] = None,
        *,
        command_timeout: float = COMMAND_TIMEOUT_SEC,
        grace_sec: float = KILL_GRACE_SEC,
        output_limit: int = OUTPUT_LIMIT,
        activity_limit: int = ACTIVITY_LIMIT,
        popen: Optional[PopenFactory] = None,
    ) -> None:
        self.command_timeout = float(command_timeout)
        self.grace_sec = float(grace_sec)
        self.output_limit = int(output_limit)
        self._popen = popen
        self._lock = threading.RLock()
        self._status = STATUS_IDLE
        self._active = False
        self._stop_requested = False
        self._workspace_root = resolve_path(workspace_root)
        self._current_command: Optional[str] = None
        self._proc: Optional[subprocess.Popen] = None
        self._activities: Deque[Activity] = deque(maxlen=int(activity_limit))

    # ----------------------------
    # State
    # ----------------------------

    @property
    def workspace_root(self) -> Path:
        with self._lock:
            return self._workspace_root

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    def _push(self, kind: str, text: str) -> None:
        with self._lock:
            self._activities.appendleft(Activity(ts=_timestamp(), type=kind, text=text))
        if kind == "error":
            log.warning(text)
        else:
            log.info(text)

    def set_workspace_root(self, path: Optional[str]) -> Path:
        resolved = resolve_path(path)
        with self._lock:
            self._workspace_root = resolved
        self._push("info", f"Workspace root set to {resolved}")
        return resolved

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "status": self._status,
                "running": self._status == STATUS_RUNNING,
                "active": self._active,
                "stopRequested": self._stop_requested,
                "workspaceRoot": str(self._workspace_root),
                "currentCommand": self._current_command,
                "activities": [asdict(a) for a in self._activities],
            }

    # ----------------------------
    # Cancellation
    # ----------------------------

    def request_stop(self) -> None:
        with self._lock:
            self._stop_requested = True
            self._status = STATUS_STOPPED
            self._current_command = None
            proc = self._proc
        self._push("info", "Emergency stop requested")
        if proc is not None:
            self._teardown_async(proc)

    def _teardown_async(self, proc: subprocess.Popen) -> None:
        # The grace window must not hold up the caller (usually an HTTP thread).
        threading.Thread(
            target=terminate_process,
            args=(proc, self.grace_sec),
            name="cockpit-autonomy-stop",
            daemon=True,
        ).start()

    def _stop_latched(self) -> bool:
        with self._lock:
            return self._stop_requested

    # ----------------------------
    # Execution
    # ----------------------------

    def run_commands(self, commands: Sequence[str], cwd: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            if self._status == STATUS_RUNNING or self._active:
                raise AlreadyRunningError()
            root = self._workspace_root
            target = resolve_path(cwd, base=root) if cwd else root
            if not is_path_inside(target, root):
                raise OutsideWorkspaceError(target, root)
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise InvalidTargetError(target, exc) from exc
            self._active = True
            self._status = STATUS_RUNNING
            self._stop_requested = False
            self._current_command = None

        self._push("info", f"Starting autonomous run in {target}")
        results: List[Dict[str, Any]] = []
        try:
            for command in commands:
                if self._stop_latched():
                    self._push("info", "Stop requested; skipping remaining commands")
                    break
                results.append(self._run_one(str(command), target))
        finally:
            with self._lock:
                self._active = False
                self._current_command = None
                self._proc = None
                stopped = self._stop_requested
                if not stopped:
                    self._status = STATUS_IDLE
            if not stopped:
                self._push("info", "Autonomous run finished")
        return results

    def _run_one(self, command: str, target: Path) -> Dict[str, Any]:
        if command_looks_unsafe(command):
            self._push("error", f"Blocked unsafe command: {command}")
            return {"command": command, "output": BLOCKED_OUTPUT, "ok": False, "blocked": True}

        self._push("command", command)
        attempts: List[_Attempt] = []
        for attempt_no in range(1, MAX_ATTEMPTS + 1):
            attempt = self._execute(command, target)
            attempts.append(attempt)
            if attempt.ok:
                break
            self._push("error", f"Command failed (attempt {attempt_no}/{MAX_ATTEMPTS}): {command} :: {_first_line(attempt.render(self.output_limit))}")
            if self._stop_latched():
                break

        last = attempts[-1]
        if last.ok:
            if len(attempts) > 1:
                self._push("info", f"Recovered on retry: {command}")
            else:
                self._push("info", f"Command succeeded: {command}")
            return {"command": command, "output": last.output, "ok": True, "attempts": len(attempts)}

        return {"command": command, "output": _combine(attempts, self.output_limit), "ok": False, "attempts": len(attempts)}

    def _execute(self, command: str, target: Path) -> _Attempt:
        try:
            proc = spawn_shell(command, target, popen=self._popen)
        except (OSError, ValueError) as exc:
            # ValueError: arguments Popen refuses outright, e.g. an embedded NUL.
            return _Attempt(False, "", f"Spawn failed: {exc}")

        with self._lock:
            self._proc = proc
            self._current_command = command
            stop_raced = self._stop_requested
        if stop_raced:
            # request_stop ran between the loop check and the spawn.
            terminate_process(proc, self.grace_sec)

        timed_out = False
        try:
            try:
                out, _ = proc.communicate(timeout=self.command_timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                terminate_process(proc, self.grace_sec)
                out = _drain(proc, self.grace_sec)
        finally:
            with self._lock:
                self._proc = None
                self._current_command = None

        output = truncate_output(out, self.output_limit)
        if timed_out:
            return _Attempt(False, output, f"Command timed out after {self.command_timeout:g}s")
        code = proc.returncode
        if code == 0:
            return _Attempt(True, output)
        if self._stop_latched():
            note = "Command stopped"
        else:
            note = f"Command failed with exit code {code}"
        return _Attempt(False, output, note)


def _combine(attempts: Sequence[_Attempt], limit: int) -> str:
    if len(attempts) == 1:
        return attempts[0].render(limit)
    # Each attempt gets an equal share so the last one is never crowded out.
    share = max((limit - (len(attempts) - 1)) // len(attempts), 0)
    blocks = []
    for i, attempt in enumerate(attempts, start=1):
        header = f"[attempt {i}]\n"
        blocks.append(header + attempt.render(max(share - len(header), 0)))
    return "\n".join(blocks)


def _drain(proc: subprocess.Popen, timeout: float) -> str:
    try:
        out, _ = proc.communicate(timeout=timeout)
        return out or ""
    except subprocess.TimeoutExpired:
        # A grandchild is still holding the pipe open.
        return ""


def _first_line(text: str) -> str:
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()[:200]
    return ""


def summarize_results(results: Sequence[Dict[str, Any]]) -> Tuple[int, int]:
    ok = sum(1 for r in results if r.get("ok"))
    return ok, len(results) - ok
