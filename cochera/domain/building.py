from __future__ import annotations

from typing import Any, Literal


LevelType = Literal["subsuelo", "planta_baja", "piso"]

LEVEL_BASEMENT: LevelType = "subsuelo"
LEVEL_GROUND: LevelType = "planta_baja"
LEVEL_FLOOR: LevelType = "piso"


def default_config(garage_id: str) -> dict[str, Any]:
    return {
        "garage_id": garage_id,
        "count_subsuelos": 0,
        "has_planta_baja": True,
        "count_pisos": 0,
    }


def default_display_name(level_type: LevelType, number: int) -> str:
    if level_type == LEVEL_FLOOR:
        return f"Piso {number}"
    if level_type == LEVEL_BASEMENT:
        return f"Subsuelo {number}"
    return "Planta Baja"


def _non_negative(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def regenerate_levels(
    config: dict[str, Any], existing: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Level stack for a desired structure, top floor first.

    Levels are matched to stored rows by signed sort_order (negative below
    ground, 0 ground, positive above). A match keeps its id, display name
    and capacity; a new level starts at capacity 0.
    """
    by_order = {}
    for row in existing or []:
        if row.get("sort_order") is not None:
            by_order[int(row["sort_order"])] = row
    garage_id = config.get("garage_id")

    def _level(level_type: LevelType, number: int, sort_order: int) -> dict[str, Any]:
        stored = by_order.get(sort_order) or {}
        return {
            "id": stored.get("id"),
            "garage_id": garage_id,
            "type": level_type,
            "level_number": number,
            "display_name": stored.get("display_name") or default_display_name(level_type, number),
            "sort_order": sort_order,
            "total_spots": _non_negative(stored.get("total_spots")),
        }

    levels = []
    for number in range(_non_negative(config.get("count_pisos")), 0, -1):
        levels.append(_level(LEVEL_FLOOR, number, number))
    if config.get("has_planta_baja"):
        levels.append(_level(LEVEL_GROUND, 0, 0))
    for number in range(1, _non_negative(config.get("count_subsuelos")) + 1):
        levels.append(_level(LEVEL_BASEMENT, number, -number))
    return levels


def apply_capacities(
    levels: list[dict[str, Any]], capacities: dict[int, int] | None
) -> list[dict[str, Any]]:
    """Per-level capacity edits keyed by sort_order; unknown keys are ignored."""
    if not capacities:
        return levels
    updated = []
    for level in levels:
        if level["sort_order"] in capacities:
            level = {**level, "total_spots": _non_negative(capacities[level["sort_order"]])}
        updated.append(level)
    return updated


def plan_level_changes(
    levels: list[dict[str, Any]], existing: list[dict[str, Any]]
) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[str]]:
    """Split a regenerated stack into (updates, inserts, ids to delete)."""
    updates = [level for level in levels if level.get("id")]
    inserts = [
        {k: v for k, v in level.items() if k != "id"}
        for level in levels
        if not level.get("id")
    ]
    kept = {str(level["id"]) for level in updates}
    deletes = [str(row["id"]) for row in existing or [] if row.get("id") and str(row["id"]) not in kept]
    return updates, inserts, deletes


def total_capacity(levels: list[dict[str, Any]]) -> int:
    return sum(_non_negative(level.get("total_spots")) for level in levels)
