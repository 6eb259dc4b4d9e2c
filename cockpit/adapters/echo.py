from __future__ import annotations

from typing import Optional

from .base import BaseAdapter


class EchoAdapter(BaseAdapter):
    @property
    def type(self) -> str:
        return "echo"

    # Offline stand-in; "reply" in settings overrides the echoed prompt.
    def complete(self, prompt: str, system: Optional[str] = None, model: Optional[str] = None) -> str:
        reply = self.settings.get("reply")
        if reply is not None:
            return str(reply)
        prefix = str(self.settings.get("prefix", ""))
        if system:
            return f"{prefix}{system}\n{prompt}"
        return f"{prefix}{prompt}"

    def resource_hint(self) -> str:
        return "local"
