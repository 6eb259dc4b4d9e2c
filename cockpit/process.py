"""Child process helpers shared by the timeout and stop paths."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Callable, Optional, Union

log = logging.getLogger(__name__)

PopenFactory = Callable[..., subprocess.Popen]


def popen_kwargs() -> dict:
    # A fresh group/session lets us signal the shell and everything it spawned.
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def spawn_shell(
    command: str,
    cwd: Union[str, Path],
    popen: Optional[PopenFactory] = None,
) -> subprocess.Popen:
    factory = popen or subprocess.Popen
    return factory(
        command,
        shell=True,
        cwd=str(cwd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
        **popen_kwargs(),
    )


def _signal_graceful(proc: subprocess.Popen) -> None:
    if os.name == "nt":
        try:
            proc.send_signal(signal.CTRL_BREAK_EVENT)
            return
        except (OSError, ValueError):
            pass
    else:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.terminate()
    except OSError:
        pass


def _signal_forced(proc: subprocess.Popen) -> None:
    if os.name != "nt":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except OSError:
        pass


def terminate_process(proc: subprocess.Popen, grace_sec: float) -> None:
    """Ask the process to exit, then force-kill it once ``grace_sec`` elapses."""
    if proc.poll() is not None:
        return
    _signal_graceful(proc)
    try:
        proc.wait(timeout=grace_sec)
        return
    except subprocess.TimeoutExpired:
        pass
    log.warning("pid %s ignored SIGTERM for %.1fs; killing", proc.pid, grace_sec)
    _signal_forced(proc)


def truncate_output(text: Optional[str], limit: int) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit]
