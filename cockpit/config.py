from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

AUTH_MODES = ("dev-bypass", "openai-oauth")
RISK_LEVELS = ("low", "medium", "high")


# ----------------------------
# Paths
# ----------------------------

def install_root() -> Path:
    return Path(os.environ.get("COCKPIT_INSTALL_ROOT") or os.getcwd()).resolve()


def config_dir() -> Path:
    return Path(os.environ.get("COCKPIT_CONFIG_DIR") or (install_root() / "config")).resolve()


def onboarding_path() -> Path:
    return config_dir() / "onboarding.json"


def adapters_config_path() -> Path:
    override = os.environ.get("COCKPIT_ADAPTERS_CONFIG")
    if override:
        return Path(override).resolve()
    return config_dir() / "adapters.json"


def _write_atomic_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


# ----------------------------
# Onboarding config
# ----------------------------

@dataclass
class Modes:
    allowCommandExecution: bool = False
    autonomousRiskLevel: str = "low"


@dataclass
class OnboardingConfig:
    setupCompleted: bool = False
    authMode: str = "dev-bypass"
    openaiApiKey: str = ""
    model: str = "gpt-4o-mini"
    planModel: Optional[str] = None
    modes: Modes = field(default_factory=Modes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_modes(raw: Any) -> Modes:
    defaults = Modes()
    if not isinstance(raw, dict):
        return defaults
    risk = str(raw.get("autonomousRiskLevel") or defaults.autonomousRiskLevel)
    if risk not in RISK_LEVELS:
        risk = defaults.autonomousRiskLevel
    return Modes(
        allowCommandExecution=bool(raw.get("allowCommandExecution", defaults.allowCommandExecution)),
        autonomousRiskLevel=risk,
    )


def parse_onboarding(data: Dict[str, Any]) -> OnboardingConfig:
    defaults = OnboardingConfig()
    auth_mode = str(data.get("authMode") or defaults.authMode)
    if auth_mode not in AUTH_MODES:
        auth_mode = defaults.authMode
    plan_model = data.get("planModel")
    return OnboardingConfig(
        setupCompleted=bool(data.get("setupCompleted", defaults.setupCompleted)),
        authMode=auth_mode,
        openaiApiKey=str(data.get("openaiApiKey") or ""),
        model=str(data.get("model") or defaults.model),
        planModel=str(plan_model) if plan_model else None,
        modes=_parse_modes(data.get("modes")),
    )


def load_config(path: Optional[Path] = None) -> OnboardingConfig:
    path = path or onboarding_path()
    if not path.exists():
        return OnboardingConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("Ignoring unreadable config %s: %s", path, exc)
        return OnboardingConfig()
    if not isinstance(data, dict):
        return OnboardingConfig()
    return parse_onboarding(data)


def save_config(cfg: OnboardingConfig, path: Optional[Path] = None) -> Path:
    path = path or onboarding_path()
    _write_atomic_json(path, cfg.to_dict())
    return path


def merge_config(current: OnboardingConfig, patch: Dict[str, Any]) -> OnboardingConfig:
    """Setup-save semantics: shallow merge, nested modes merged, setup marked done."""
    merged = current.to_dict()
    for key, value in (patch or {}).items():
        if key == "modes" and isinstance(value, dict):
            merged["modes"] = {**merged.get("modes", {}), **value}
        else:
            merged[key] = value
    merged["setupCompleted"] = True
    return parse_onboarding(merged)


def resolve_api_key(cfg: OnboardingConfig) -> Optional[str]:
    return os.environ.get("OPENAI_API_KEY") or cfg.openaiApiKey or None


def safe_config(cfg: OnboardingConfig) -> Dict[str, Any]:
    # Never hand secrets back to the UI.
    return {
        "setupCompleted": cfg.setupCompleted,
        "authMode": cfg.authMode,
        "hasOpenAIApiKey": bool(resolve_api_key(cfg)),
        "model": cfg.model,
        "planModel": cfg.planModel or cfg.model,
        "modes": asdict(cfg.modes),
        "installRoot": str(install_root()),
    }


# ----------------------------
# Adapter registry config
# ----------------------------

@dataclass
class AdapterConfig:
    name: str
    type: str
    enabled: bool = True
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AppConfig:
    version: str = "1"
    default_adapter: Optional[str] = None
    adapters: List[AdapterConfig] = field(default_factory=list)


def _parse_adapter(raw: Dict[str, Any]) -> AdapterConfig:
    return AdapterConfig(
        name=str(raw.get("name", "")),
        type=str(raw.get("type", "")),
        enabled=bool(raw.get("enabled", True)),
        settings=dict(raw.get("settings", {})),
    )


def default_adapters_config() -> AppConfig:
    return AppConfig(
        default_adapter="openai",
        adapters=[
            AdapterConfig(name="openai", type="openai"),
            AdapterConfig(name="echo", type="echo", enabled=False),
        ],
    )


# Keep parsing straightforward so configs stay human-editable.
def load_adapters_config(path: Optional[Path] = None) -> AppConfig:
    path = Path(path) if path else adapters_config_path()
    if not path.exists():
        return default_adapters_config()
    data = json.loads(path.read_text(encoding="utf-8"))
    adapters = [_parse_adapter(a) for a in data.get("adapters", [])]
    return AppConfig(
        version=str(data.get("version", "1")),
        default_adapter=data.get("default_adapter"),
        adapters=adapters,
    )


def select_adapter(config: AppConfig, name: Optional[str]) -> Optional[AdapterConfig]:
    if name:
        for a in config.adapters:
            if a.name == name:
                return a
    if config.default_adapter:
        for a in config.adapters:
            if a.name == config.default_adapter:
                return a
    for a in config.adapters:
        if a.enabled:
            return a
    return None
