from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


MONTH_NAMES = (
    "Enero", "Febrero", "Marzo", "Abril", "Mayo", "Junio",
    "Julio", "Agosto", "Septiembre", "Octubre", "Noviembre", "Diciembre",
)


@dataclass(frozen=True)
class StepIssue:
    scope: str  # "global" or a zero-based month key
    index: int
    day: int
    previous_day: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "index": self.index,
            "day": self.day,
            "previous_day": self.previous_day,
        }


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def empty_config() -> dict[str, Any]:
    return {"global_default": {"steps": []}, "monthly_overrides": {}}


def normalize_config(raw: Any) -> dict[str, Any]:
    """Stored document to canonical shape. Missing parts become empty."""
    if not isinstance(raw, dict):
        return empty_config()
    global_default = raw.get("global_default")
    steps = global_default.get("steps") if isinstance(global_default, dict) else None
    overrides = raw.get("monthly_overrides")
    normalized_overrides: dict[str, dict[str, Any]] = {}
    if isinstance(overrides, dict):
        for key, rule in overrides.items():
            rule_steps = rule.get("steps") if isinstance(rule, dict) else None
            normalized_overrides[str(key)] = {"steps": list(rule_steps or [])}
    return {
        "global_default": {"steps": list(steps or [])},
        "monthly_overrides": normalized_overrides,
    }


def clean_steps(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Coerce numbers, drop negative or non-finite percentages, sort by trigger day."""
    cleaned = []
    for step in steps or []:
        percentage = _to_float(step.get("percentage"))
        if not math.isfinite(percentage) or percentage < 0:
            continue
        cleaned.append({"day": _to_int(step.get("day")), "percentage": percentage})
    return sorted(cleaned, key=lambda s: s["day"])


def clean_config(config: dict[str, Any]) -> dict[str, Any]:
    normalized = normalize_config(config)
    return {
        "global_default": {"steps": clean_steps(normalized["global_default"]["steps"])},
        "monthly_overrides": {
            key: {"steps": clean_steps(rule["steps"])}
            for key, rule in normalized["monthly_overrides"].items()
        },
    }


def step_issues(
    steps: list[dict[str, Any]], *, scope: str = "global", grace_day: int = 0
) -> list[StepIssue]:
    """Steps whose trigger day does not exceed the previous one (or the grace day)."""
    issues = []
    previous = grace_day
    for index, step in enumerate(steps or []):
        day = _to_int(step.get("day"))
        if day <= previous:
            issues.append(StepIssue(scope=scope, index=index, day=day, previous_day=previous))
        previous = day
    return issues


def validate_config(config: dict[str, Any], *, grace_day: int = 0) -> list[StepIssue]:
    """Flag ordering problems in the submitted order. Never raises."""
    normalized = normalize_config(config)
    issues = step_issues(normalized["global_default"]["steps"], grace_day=grace_day)
    for key in sorted(normalized["monthly_overrides"], key=_to_int):
        rule = normalized["monthly_overrides"][key]
        issues.extend(step_issues(rule["steps"], scope=key, grace_day=grace_day))
    return issues


def month_key(month: int) -> str:
    """Calendar month (1-12) to the zero-based key used in stored documents."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {month}")
    return str(month - 1)


def effective_rule(config: dict[str, Any], month: int) -> tuple[dict[str, Any], bool]:
    """Rule in force for a calendar month, and whether it is an override."""
    normalized = normalize_config(config)
    override = normalized["monthly_overrides"].get(month_key(month))
    if override is not None:
        return override, True
    return normalized["global_default"], False
