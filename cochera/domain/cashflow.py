from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Iterable


MOVEMENTS_LIMIT = 100
ACTIVE_STAYS_LIMIT = 50

# Tariff filter labels to the movement type they produce.
TARIFF_MOVEMENT_TYPES: dict[str, str] = {
    "Hora": "CobroEstadia",
    "Abono": "CobroAbono",
    "Anticipado": "CobroAnticipado",
}


@dataclass(frozen=True)
class CashFlowFilters:
    operator_name: str | None = None
    payment_method: str | None = None
    tariff_type: str | None = None
    vehicle_type: str | None = None
    exact_date: date | None = None
    start_date: date | None = None
    end_date: date | None = None


def parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def employee_name(row: dict[str, Any]) -> str:
    parts = [str(row.get("first_name") or "").strip(), str(row.get("last_name") or "").strip()]
    name = " ".join(p for p in parts if p)
    return name or str(row.get("full_name") or row.get("username") or "")


def plate_vehicle_types(vehicles: Iterable[dict[str, Any]]) -> dict[str, str]:
    return {v["plate"]: v["type"] for v in vehicles if v.get("plate") and v.get("type")}


def inferred_vehicle_type(row: dict[str, Any], by_plate: dict[str, str]) -> str | None:
    """The registered vehicle's type wins over the one recorded on the row."""
    plate = row.get("plate")
    if plate and plate in by_plate:
        return by_plate[plate]
    return row.get("vehicle_type")


def _in_date_window(moment: Any, filters: CashFlowFilters) -> bool:
    if filters.exact_date is not None:
        return str(moment or "").startswith(filters.exact_date.isoformat())
    if filters.start_date is None and filters.end_date is None:
        return True
    parsed = parse_timestamp(moment)
    if parsed is None:
        return False
    if filters.start_date is not None:
        start = datetime.combine(filters.start_date, time.min, tzinfo=parsed.tzinfo)
        if parsed < start:
            return False
    if filters.end_date is not None:
        end = datetime.combine(filters.end_date, time.max, tzinfo=parsed.tzinfo)
        if parsed > end:
            return False
    return True


def filter_movements(
    movements: list[dict[str, Any]],
    filters: CashFlowFilters,
    by_plate: dict[str, str],
) -> list[dict[str, Any]]:
    result = []
    for move in movements:
        if filters.operator_name and filters.operator_name not in (
            move.get("operator"),
            move.get("operator_name"),
        ):
            continue
        if filters.payment_method and filters.payment_method.upper() not in str(
            move.get("payment_method") or ""
        ).upper():
            continue
        if filters.tariff_type in TARIFF_MOVEMENT_TYPES and (
            move.get("type") != TARIFF_MOVEMENT_TYPES[filters.tariff_type]
        ):
            continue
        if filters.vehicle_type and (
            str(inferred_vehicle_type(move, by_plate) or "").upper() != filters.vehicle_type.upper()
        ):
            continue
        if not _in_date_window(move.get("timestamp"), filters):
            continue
        result.append(move)
    return result


def filter_stays(
    stays: list[dict[str, Any]],
    filters: CashFlowFilters,
    by_plate: dict[str, str],
) -> list[dict[str, Any]]:
    result = []
    for stay in stays:
        if filters.vehicle_type and (
            str(inferred_vehicle_type(stay, by_plate) or "").upper() != filters.vehicle_type.upper()
        ):
            continue
        if not _in_date_window(stay.get("entry_time"), filters):
            continue
        result.append(stay)
    return result


def movements_total(movements: Iterable[dict[str, Any]]) -> float:
    total = 0.0
    for move in movements:
        try:
            total += float(move.get("amount") or 0)
        except (TypeError, ValueError):
            continue
    return total


def vehicle_type_options(vehicles: Iterable[dict[str, Any]]) -> list[str]:
    return sorted({str(v["type"]).upper() for v in vehicles if v.get("type")})
