from __future__ import annotations

import json
import os
import ssl
import urllib.error
import urllib.request
from typing import Dict, List, Optional
from urllib.parse import urlparse

from .base import BaseAdapter, ChatMessage


class OpenAIAdapter(BaseAdapter):
    @property
    def type(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        if self._requires_api_key():
            return bool(self._api_key())
        return True

    def resource_hint(self) -> str:
        return "local" if self._is_local_base_url() else "remote"

    def complete(self, prompt: str, system: Optional[str] = None, model: Optional[str] = None) -> str:
        messages: List[ChatMessage] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return self.chat(messages, model=model)

    def chat(self, messages: List[ChatMessage], model: Optional[str] = None) -> str:
        payload = self._build_payload(messages, model)
        data = self._post_json("/chat/completions", payload)
        return self._extract_text(data)

    def _api_key(self) -> Optional[str]:
        return self.settings.get("api_key") or os.environ.get("OPENAI_API_KEY")

    def _base_url(self) -> str:
        return str(self.settings.get("base_url") or "https://api.openai.com/v1").rstrip("/")

    def _model(self) -> str:
        return str(self.settings.get("model") or "gpt-4o-mini")

    def _timeout(self) -> float:
        return float(self.settings.get("timeout") or 60)

    def _build_payload(self, messages: List[ChatMessage], model: Optional[str]) -> dict:
        cleaned = [
            {"role": str(m.get("role") or "user"), "content": str(m.get("content") or "")}
            for m in messages
            if m.get("content")
        ]
        payload = {"model": model or self._model(), "messages": cleaned}
        temperature = self.settings.get("temperature")
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    def _headers(self) -> Dict[str, str]:
        api_key = self._api_key()
        if self._requires_api_key() and not api_key:
            raise RuntimeError("OpenAI API key missing")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        extra = self.settings.get("headers") or {}
        if isinstance(extra, dict):
            headers.update({str(k): str(v) for k, v in extra.items() if v is not None})
        return headers

    def _post_json(self, path: str, payload: dict) -> dict:
        url = self._build_url(path)
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(url, data=data, headers=self._headers(), method="POST")
        try:
            with urllib.request.urlopen(req, context=ssl.create_default_context(), timeout=self._timeout()) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8") if exc.fp else str(exc)
            raise RuntimeError(f"OpenAI request failed: {exc.code} {detail}") from exc
        except urllib.error.URLError as exc:
            raise RuntimeError(f"OpenAI request failed: {exc.reason}") from exc

    def _requires_api_key(self) -> bool:
        # Local base URLs don't need a key unless explicitly required.
        setting = self.settings.get("require_api_key")
        if setting is not None:
            return bool(setting)
        return not self._is_local_base_url()

    def _is_local_base_url(self) -> bool:
        try:
            parsed = urlparse(self._base_url())
        except ValueError:
            return False
        host = (parsed.hostname or "").lower()
        return host in {"localhost", "0.0.0.0", "::1"} or host.startswith("127.")

    def _build_url(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self._base_url()}{path}"

    @staticmethod
    def _extract_text(data: dict) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        content = message.get("content")
        if isinstance(content, list):
            return "".join(
                item.get("text", "")
                for item in content
                if isinstance(item, dict) and item.get("type") == "text"
            )
        return str(content or "")
