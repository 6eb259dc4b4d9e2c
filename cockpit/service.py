from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from .adapters.base import BaseAdapter, ChatMessage
from .adapters.echo import EchoAdapter
from .adapters.openai import OpenAIAdapter
from .config import AdapterConfig, AppConfig, load_adapters_config, select_adapter


class AdapterRegistry:
    def __init__(self) -> None:
        self._factories = {
            "echo": EchoAdapter,
            "openai": OpenAIAdapter,
        }

    def create(self, cfg: AdapterConfig, settings_override: Optional[Dict] = None) -> BaseAdapter:
        adapter_cls = self._factories.get(cfg.type)
        if not adapter_cls:
            raise ValueError(f"Unknown adapter type: {cfg.type}")
        settings = settings_override if settings_override is not None else cfg.settings
        return adapter_cls(cfg.name, settings)


class HeadlessService:
    """Resolves configured adapters and relays completions and chats to them."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.registry = AdapterRegistry()
        # Cache adapters so we don't rebuild clients on every request.
        self.adapters: Dict[str, BaseAdapter] = {}
        self._secrets_by_adapter: Dict[str, Dict[str, str]] = {}
        self._secrets_by_type: Dict[str, Dict[str, str]] = {}

    @classmethod
    def from_path(cls, path: Optional[Path] = None) -> "HeadlessService":
        return cls(load_adapters_config(path))

    def resolve_adapter(self, name: Optional[str] = None) -> BaseAdapter:
        cfg = select_adapter(self.config, name)
        if not cfg:
            raise RuntimeError("No enabled adapters in config")
        adapter = self.adapters.get(cfg.name)
        if not adapter:
            adapter = self._build_adapter(cfg)
            self.adapters[cfg.name] = adapter
        return adapter

    def apply_secrets(
        self,
        by_adapter: Optional[Dict[str, Dict[str, str]]] = None,
        by_type: Optional[Dict[str, Dict[str, str]]] = None,
        replace: bool = False,
    ) -> None:
        if replace:
            self._secrets_by_adapter = {}
            self._secrets_by_type = {}

        for key, payload in (by_adapter or {}).items():
            if payload:
                self._secrets_by_adapter[key] = dict(payload)
            self.adapters.pop(key, None)
        for adapter_type, payload in (by_type or {}).items():
            if payload:
                self._secrets_by_type[adapter_type] = dict(payload)
            for cfg in self.config.adapters:
                if cfg.type == adapter_type:
                    self.adapters.pop(cfg.name, None)

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        adapter_name: Optional[str] = None,
        model: Optional[str] = None,
    ) -> str:
        adapter = self.resolve_adapter(adapter_name)
        return adapter.complete(prompt, system=system, model=model)

    def chat(
        self,
        messages: List[ChatMessage],
        adapter_name: Optional[str] = None,
        model: Optional[str] = None,
    ) -> str:
        adapter = self.resolve_adapter(adapter_name)
        return adapter.chat(messages, model=model)

    def scoped_adapter(self, name: Optional[str] = None, overrides: Optional[Dict[str, str]] = None) -> BaseAdapter:
        """Build an uncached adapter for one request (e.g. a caller-supplied key)."""
        if not overrides:
            return self.resolve_adapter(name)
        cfg = select_adapter(self.config, name)
        if not cfg:
            raise RuntimeError("No enabled adapters in config")
        adapter = self._build_adapter(cfg)
        adapter.settings.update(overrides)
        return adapter

    def _build_adapter(self, cfg: AdapterConfig) -> BaseAdapter:
        settings = dict(cfg.settings or {})
        type_secret = self._secrets_by_type.get(cfg.type)
        if type_secret:
            settings.update(type_secret)
        adapter_secret = self._secrets_by_adapter.get(cfg.name)
        if adapter_secret:
            settings.update(adapter_secret)
        return self.registry.create(cfg, settings_override=settings)
