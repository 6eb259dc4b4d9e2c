from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

MAX_PLAN_COMMANDS = 8

PLAN_SYSTEM = (
    "You are an autonomous software operator. Return strict JSON: "
    "{\"summary\": string, \"tasks\": string[], \"commands\": string[]}. "
    "Keep commands safe and project-local. Commands run one at a time through "
    "the shell from the project directory."
)


def build_plan_prompt(goal: str, project_dir: str, risk_level: Optional[str] = None) -> str:
    lines = [
        f"Goal: {goal.strip()}",
        f"ProjectDir: {project_dir}",
        f"RiskLevel: {risk_level or 'low'}",
    ]
    return "\n".join(lines)


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    # Models sometimes wrap the JSON in prose or code fences; peel off the first object.
    text = (text or "").strip()
    if not text:
        return None
    if text.startswith("{") and text.endswith("}"):
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            return data
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        try:
            data = json.loads(text[start : end + 1])
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
    return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def parse_plan(text: str) -> Dict[str, Any]:
    data = extract_json(text)
    if data is None:
        return {"summary": (text or "").strip(), "tasks": [], "commands": []}
    summary = data.get("summary")
    return {
        "summary": str(summary).strip() if summary else "Plan generated",
        "tasks": _string_list(data.get("tasks")),
        "commands": _string_list(data.get("commands")),
    }


def executable_commands(plan: Dict[str, Any], limit: int = MAX_PLAN_COMMANDS) -> List[str]:
    return list(plan.get("commands") or [])[:limit]
