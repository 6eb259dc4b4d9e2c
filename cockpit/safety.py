from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Union

# Substring heuristics only. Shell expansion, aliases or encoded input walk
# straight past this list; the workspace root check is the real boundary.
UNSAFE_PATTERNS = (
    "format ",
    "diskpart",
    "shutdown",
    "reg delete",
    "del /f /s /q c:\\",
    "mkfs",
    "dd if=/dev/zero of=/dev/",
    ":(){ :|:& };:",
)

_WS_RE = re.compile(r"\s+")
# Recursive delete aimed at "/" itself (or "//", "/*"), not at absolute subpaths.
_RM_RE = re.compile(r"\brm\s+([^;&|]*)")
_ROOT_TARGET_RE = re.compile(r"/+\*?")

PathLike = Union[str, os.PathLike]


def resolve_path(path: PathLike | None, base: PathLike | None = None) -> Path:
    raw = str(path or "").strip()
    root = Path(base) if base else Path.cwd()
    if not raw:
        return root.resolve()
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    return candidate.resolve()


def is_path_inside(child: PathLike, parent: PathLike) -> bool:
    child_path = Path(child).resolve()
    parent_path = Path(parent).resolve()
    try:
        rel = os.path.relpath(child_path, parent_path)
    except ValueError:
        # Different drives on Windows.
        return False
    if rel == os.curdir:
        return True
    if os.path.isabs(rel):
        return False
    return rel != os.pardir and not rel.startswith(os.pardir + os.sep)


def _deletes_root(lowered: str) -> bool:
    for match in _RM_RE.finditer(lowered):
        args = [arg.strip("'\"") for arg in match.group(1).split()]
        recursive = any(
            arg == "--recursive" or (arg.startswith("-") and not arg.startswith("--") and "r" in arg)
            for arg in args
        )
        if recursive and any(_ROOT_TARGET_RE.fullmatch(arg) for arg in args):
            return True
    return False


def command_looks_unsafe(command: str) -> bool:
    lowered = _WS_RE.sub(" ", str(command or "").lower()).strip()
    if _deletes_root(lowered):
        return True
    return any(pattern in lowered for pattern in UNSAFE_PATTERNS)
