"""Initial load of existing subscribers into a garage.

A migration writes the customer, the vehicle, the parking space and the
subscription in one go, optionally with a pending debt carried over from the
previous system. It never produces cash movements.
"""
from __future__ import annotations

import calendar
import math
from datetime import date, datetime
from typing import Any

from cochera.domain.pricing import normalize_name


KIND_MOBILE = "Movil"
KIND_FIXED = "Fija"
KIND_EXCLUSIVE = "Exclusiva"

SPACE_OCCUPIED = "Ocupada"
DEBT_PENDING = "PENDING"
DEFAULT_VEHICLE_TYPE = "Auto"
PRORATE_STEP = 100


class MigrationError(ValueError):
    pass


def resolve_kind(kind: str, exclusive: bool) -> str:
    """Exclusive is a variant of a fixed space only."""
    if kind == KIND_FIXED and exclusive:
        return KIND_EXCLUSIVE
    return kind


def check_required(
    *, kind: str, space_number: str | None, dni: str, name: str, plate: str, vehicle_type_id: str
) -> None:
    if not kind:
        raise MigrationError("Seleccione un tipo de cochera.")
    if kind != KIND_MOBILE and not (space_number or "").strip():
        raise MigrationError("Especifique el número de la cochera.")
    if not dni.strip() or not name.strip() or not plate.strip() or not vehicle_type_id:
        raise MigrationError("Complete los datos mínimos obligatorios (DNI, Nombre, Patente, Tipo V.).")


def clean_plate(raw: str) -> str:
    return raw.strip().upper()


def find_subscription_tariff(tariffs: list[dict[str, Any]], kind: str) -> dict[str, Any] | None:
    wanted = normalize_name(kind)
    return next((t for t in tariffs if wanted in normalize_name(t.get("name"))), None)


def base_price(prices: list[dict[str, Any]], tariff_id: str, vehicle_type_id: str) -> float:
    for row in prices:
        if row.get("tariff_id") == tariff_id and row.get("vehicle_type_id") == vehicle_type_id:
            try:
                return float(row.get("amount") or 0)
            except (TypeError, ValueError):
                return 0.0
    return 0.0


def remaining_days(today: date) -> int:
    """Days left in the month, today included."""
    return calendar.monthrange(today.year, today.month)[1] - today.day + 1


def prorated_price(monthly: float, today: date) -> float:
    """Share of the monthly price for the rest of the month, rounded down to hundreds."""
    if monthly <= 0:
        return 0.0
    days_in_month = calendar.monthrange(today.year, today.month)[1]
    exact = monthly * remaining_days(today) / days_in_month
    return float(math.floor(exact / PRORATE_STEP) * PRORATE_STEP)


def end_of_month(now: datetime) -> datetime:
    last = calendar.monthrange(now.year, now.month)[1]
    return now.replace(day=last, hour=23, minute=59, second=59, microsecond=0)


def space_number(kind: str, plate: str, number: str | None) -> str:
    if kind == KIND_MOBILE:
        return f"M-{plate}"
    return (number or "").strip()


def with_owner(payload: dict[str, Any], owner_id: str | None) -> dict[str, Any]:
    if owner_id:
        payload["owner_id"] = owner_id
    return payload
