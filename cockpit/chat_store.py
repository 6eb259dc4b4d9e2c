from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

ROLES = ("user", "assistant")
NEW_CHAT_PREFIX = "New chat"
TITLE_MAX_CHARS = 48
MEMORY_LINE_MAX_CHARS = 1500


def data_dir() -> Path:
    return Path(os.environ.get("COCKPIT_DATA_DIR") or (Path.cwd() / "data")).resolve()


def memory_dir() -> Path:
    return Path(os.environ.get("COCKPIT_MEMORY_DIR") or (Path.cwd() / "memory")).resolve()


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class ChatStore:
    """File-backed chat threads (``chats.json``) plus a daily markdown memory log."""

    def __init__(self, data_path: Optional[Path] = None, memory_path: Optional[Path] = None) -> None:
        self.data_dir = Path(data_path) if data_path else data_dir()
        self.memory_dir = Path(memory_path) if memory_path else memory_dir()
        self.chat_path = self.data_dir / "chats.json"
        self._lock = threading.RLock()

    def _ensure(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        if not self.chat_path.exists():
            self._save({"threads": []})

    def _load(self) -> Dict[str, Any]:
        self._ensure()
        try:
            data = json.loads(self.chat_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("Chat store unreadable, starting empty: %s", exc)
            return {"threads": []}
        if not isinstance(data, dict) or not isinstance(data.get("threads"), list):
            return {"threads": []}
        return data

    def _save(self, store: Dict[str, Any]) -> None:
        tmp = self.chat_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(store, indent=2), encoding="utf-8")
        tmp.replace(self.chat_path)

    def list_threads(self) -> List[Dict[str, Any]]:
        with self._lock:
            threads = self._load()["threads"]
        items = [
            {
                "id": t.get("id"),
                "title": t.get("title"),
                "updatedAt": t.get("updatedAt") or "",
                "count": len(t.get("messages") or []),
            }
            for t in threads
        ]
        items.sort(key=lambda item: item["updatedAt"], reverse=True)
        return items

    def create_thread(self, title: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            store = self._load()
            now = _iso_now()
            thread = {
                "id": str(uuid.uuid4()),
                "title": (title or "").strip() or f"{NEW_CHAT_PREFIX} {len(store['threads']) + 1}",
                "createdAt": now,
                "updatedAt": now,
                "messages": [],
            }
            store["threads"].insert(0, thread)
            self._save(store)
        return thread

    def get_thread(self, thread_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for thread in self._load()["threads"]:
                if thread.get("id") == thread_id:
                    return thread
        return None

    def append_message(self, thread_id: str, role: str, content: str) -> Optional[Dict[str, Any]]:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        with self._lock:
            store = self._load()
            thread = next((t for t in store["threads"] if t.get("id") == thread_id), None)
            if thread is None:
                return None
            ts = _iso_now()
            thread.setdefault("messages", []).append({"role": role, "content": content, "ts": ts})
            thread["updatedAt"] = ts
            if role == "user" and str(thread.get("title", "")).startswith(NEW_CHAT_PREFIX):
                thread["title"] = content[:TITLE_MAX_CHARS] or thread["title"]
            self._save(store)
        return thread

    def log_memory_entry(self, thread_id: str, role: str, text: str) -> Path:
        with self._lock:
            self._ensure()
            day = time.strftime("%Y-%m-%d", time.gmtime())
            path = self.memory_dir / f"{day}.md"
            flat = text.replace("\r", " ").replace("\n", " ")[:MEMORY_LINE_MAX_CHARS]
            entry = f"\n### {_iso_now()} | {thread_id}\n- {role}: {flat}\n"
            with path.open("a", encoding="utf-8") as f:
                f.write(entry)
        return path
