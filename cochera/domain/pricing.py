from __future__ import annotations

import math
import unicodedata
from contextlib import contextmanager
from threading import Lock
from typing import Any, Iterator, Literal


PriceList = Literal["standard", "electronic"]
TariffTypeKey = Literal["hour", "stay", "subscription"]
VehicleIconKey = Literal["car", "bike", "truck", "bus"]

PRICE_LISTS: tuple[str, ...] = ("standard", "electronic")
PRICE_CONFLICT_COLUMNS = "garage_id,tariff_id,vehicle_type_id,price_list"

# API keys to the database tariff_type enum.
TARIFF_TYPE_TO_DB: dict[str, str] = {
    "hour": "hora",
    "stay": "turno",
    "subscription": "abono",
}
TARIFF_TYPE_FROM_DB: dict[str, str] = {v: k for k, v in TARIFF_TYPE_TO_DB.items()}

REQUIRED_SUBSCRIPTIONS: tuple[str, ...] = ("Movil", "Fija", "Exclusiva")
PROTECTED_SORT_BASE = 900
SUBSCRIPTION_DAYS = 30


class CellBusy(Exception):
    """A save for the same price cell is still outstanding."""


def normalize_name(value: str | None) -> str:
    """Accent- and case-insensitive comparison key."""
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def missing_subscription_tariffs(
    garage_id: str, existing_names: list[str]
) -> list[dict[str, Any]]:
    """Insert payloads for protected subscription tariffs the garage lacks."""
    present = {normalize_name(name) for name in existing_names}
    missing = [name for name in REQUIRED_SUBSCRIPTIONS if normalize_name(name) not in present]
    return [
        {
            "garage_id": garage_id,
            "name": name,
            "type": TARIFF_TYPE_TO_DB["subscription"],
            "is_protected": True,
            "sort_order": PROTECTED_SORT_BASE + idx,
            "days": SUBSCRIPTION_DAYS,
            "hours": 0,
            "minutes": 0,
            "tolerance": 0,
        }
        for idx, name in enumerate(missing)
    ]


def parse_amount(raw: Any) -> float:
    """Cell input to an amount. Empty input means zero; anything else must be a finite non-negative number."""
    if raw is None:
        return 0.0
    if isinstance(raw, str):
        raw = raw.strip().replace(",", ".")
        if raw == "":
            return 0.0
    try:
        amount = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid amount: {raw!r}") from exc
    if not math.isfinite(amount) or amount < 0:
        raise ValueError(f"Invalid amount: {raw!r}")
    return amount


def price_payload(
    garage_id: str, tariff_id: str, vehicle_type_id: str, price_list: str, amount: float
) -> dict[str, Any]:
    return {
        "garage_id": garage_id,
        "tariff_id": tariff_id,
        "vehicle_type_id": vehicle_type_id,
        "price_list": price_list,
        "amount": amount,
    }


def cell_key(garage_id: str, tariff_id: str, vehicle_type_id: str, price_list: str) -> str:
    return f"{garage_id}:{price_list}:{tariff_id}-{vehicle_type_id}"


class CellLocks:
    """In-flight flags for price cells, keyed by composite cell identity."""

    def __init__(self) -> None:
        self._busy: set[str] = set()
        self._lock = Lock()

    def is_busy(self, key: str) -> bool:
        with self._lock:
            return key in self._busy

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._lock:
            if key in self._busy:
                raise CellBusy(key)
            self._busy.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(key)


def tariff_to_api(row: dict[str, Any]) -> dict[str, Any]:
    return {**row, "type": TARIFF_TYPE_FROM_DB.get(row.get("type"), row.get("type"))}


def vehicle_has_prices(prices: list[dict[str, Any]], vehicle_type_id: str) -> bool:
    return any(
        p.get("vehicle_type_id") == vehicle_type_id and float(p.get("amount") or 0) > 0
        for p in prices
    )


def build_matrix(
    vehicles: list[dict[str, Any]],
    tariffs: list[dict[str, Any]],
    prices: list[dict[str, Any]],
    price_list: str,
) -> dict[str, Any]:
    """Tariff x vehicle grid for one price list, grouped by tariff type."""
    amounts = {
        (p.get("tariff_id"), p.get("vehicle_type_id")): p.get("amount")
        for p in prices
        if p.get("price_list") == price_list
    }
    sections = []
    for type_key, db_type in TARIFF_TYPE_TO_DB.items():
        rows = []
        for tariff in tariffs:
            if tariff.get("type") != db_type:
                continue
            rows.append({
                **tariff_to_api(tariff),
                "prices": {
                    str(v["id"]): amounts.get((tariff["id"], v["id"]))
                    for v in vehicles
                },
            })
        if rows:
            sections.append({"type": type_key, "tariffs": rows})
    return {"price_list": price_list, "vehicle_types": vehicles, "sections": sections}
