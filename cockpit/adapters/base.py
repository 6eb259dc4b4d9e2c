from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

ChatMessage = Dict[str, str]


def split_messages(messages: List[ChatMessage]) -> Tuple[Optional[str], str]:
    """Fold a chat transcript into (system, prompt) for single-turn backends."""
    system_parts = []
    turns = []
    for msg in messages:
        role = str(msg.get("role") or "user")
        content = str(msg.get("content") or "")
        if not content:
            continue
        if role == "system":
            system_parts.append(content)
        elif role == "assistant":
            turns.append(f"Assistant: {content}")
        else:
            turns.append(f"User: {content}")
    system = "\n\n".join(system_parts) or None
    if len(turns) == 1 and turns[0].startswith("User: "):
        return system, turns[0][len("User: "):]
    return system, "\n\n".join(turns)


class BaseAdapter(ABC):
    """Adapter interface for local or remote LLM backends."""

    def __init__(self, name: str, settings: Optional[Dict] = None) -> None:
        self.name = name
        self.settings = settings or {}

    @property
    @abstractmethod
    def type(self) -> str:
        raise NotImplementedError

    def is_available(self) -> bool:
        return True

    def resource_hint(self) -> str:
        return "remote"

    @abstractmethod
    def complete(self, prompt: str, system: Optional[str] = None, model: Optional[str] = None) -> str:
        raise NotImplementedError

    def chat(self, messages: List[ChatMessage], model: Optional[str] = None) -> str:
        system, prompt = split_messages(messages)
        return self.complete(prompt, system=system, model=model)
