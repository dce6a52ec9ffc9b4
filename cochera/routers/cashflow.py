import logging
from datetime import date
from typing import Any
from fastapi import APIRouter, Depends, HTTPException
from cochera.auth import AuthContext, get_db, require_hub_section
from cochera.auth.dependencies import scope_guard
from cochera.auth.roles import SECTION_CASHFLOW
from cochera.auth.scope import fetch_accessible_garages
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
)
from cochera.domain.cashflow import (
    ACTIVE_STAYS_LIMIT,
    MOVEMENTS_LIMIT,
    TARIFF_MOVEMENT_TYPES,
    CashFlowFilters,
    employee_name,
    filter_movements,
    filter_stays,
    inferred_vehicle_type,
    movements_total,
    plate_vehicle_types,
    vehicle_type_options,
)
from cochera.models.cashflow import (
    CashFlowFiltersResponse,
    EmployeeNameResponse,
    MovementsResponse,
    StayResponse,
)
from cochera.observability import log_event

router = APIRouter(prefix="/api/cashflow", tags=["cashflow"])

require_cashflow = require_hub_section(SECTION_CASHFLOW)


def _raise_backend_http_error(operation: str, exc: BaseException) -> None:
    log_event(
        "backend_call_failed",
        level=logging.WARNING,
        operation=operation,
        error=exc.__class__.__name__,
    )
    raise HTTPException(
        status_code=backend_error_http_status(exc),
        detail=backend_error_detail(operation=operation, exc=exc),
    ) from exc


def _hub_garages(db: Any, auth: AuthContext, garage_id: str | None) -> list[dict]:
    """Accessible garages, narrowed to one when a garage filter is given."""
    garages = fetch_accessible_garages(db, auth)
    if garage_id is None:
        return garages
    return [scope_guard.enforce(auth, garage_id, garages)]


def _employees(db: Any, auth: AuthContext) -> list[dict]:
    owner_id = auth.organization_owner_id
    if not owner_id:
        return []
    result = db.table("employee_accounts").select(
        "id, first_name, last_name, username"
    ).eq("owner_id", owner_id).execute()
    rows = [{"id": str(row["id"]), "full_name": employee_name(row)} for row in result.data or []]
    return sorted(rows, key=lambda row: row["full_name"].lower())


def _vehicles(db: Any, garage_ids: list[str]) -> list[dict]:
    result = db.table("vehicles").select("plate, type, is_subscriber").in_("garage_id", garage_ids).execute()
    return list(result.data or [])


@router.get("/movements", response_model=MovementsResponse)
async def list_movements(
    garage_id: str | None = None,
    operator_id: str | None = None,
    payment_method: str | None = None,
    tariff_type: str | None = None,
    vehicle_type: str | None = None,
    exact_date: date | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    auth: AuthContext = Depends(require_cashflow),
    db=Depends(get_db),
):
    """Latest cash movements across the accessible garages, newest first."""
    garages = _hub_garages(db, auth, garage_id)
    if not garages:
        return MovementsResponse(total=0, movements=[])
    names = {str(g["id"]): g.get("name") or "Desconocido" for g in garages}
    garage_ids = list(names)

    try:
        movements = db.table("movements").select("*").in_(
            "garage_id", garage_ids
        ).order("timestamp", desc=True).limit(MOVEMENTS_LIMIT).execute().data or []
        stay_ids = list(dict.fromkeys(
            m["related_entity_id"] for m in movements if m.get("related_entity_id")
        ))
        related: dict[str, dict] = {}
        if stay_ids:
            rows = db.table("stays").select("*").in_("id", stay_ids).execute().data or []
            related = {str(row["id"]): row for row in rows}
        by_plate = plate_vehicle_types(_vehicles(db, garage_ids))
        operator_name = None
        if operator_id:
            operator_name = next(
                (e["full_name"] for e in _employees(db, auth) if e["id"] == operator_id),
                None,
            )
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("cashflow_movements", exc)

    filters = CashFlowFilters(
        operator_name=operator_name,
        payment_method=payment_method,
        tariff_type=tariff_type,
        vehicle_type=vehicle_type,
        exact_date=exact_date,
        start_date=start_date,
        end_date=end_date,
    )
    selected = filter_movements(movements, filters, by_plate)
    items = []
    for move in selected:
        stay = related.get(str(move.get("related_entity_id")))
        items.append({
            **move,
            "id": str(move["id"]),
            "garage_id": str(move["garage_id"]),
            "garage_name": names.get(str(move["garage_id"]), "Desconocido"),
            "amount": float(move.get("amount") or 0),
            "operator": move.get("operator") or move.get("operator_name"),
            "vehicle_type": inferred_vehicle_type(move, by_plate),
            "related_stay_id": move.get("related_entity_id"),
            "stay_entry_time": stay.get("entry_time") if stay else None,
            "stay_exit_time": stay.get("exit_time") if stay else None,
        })
    return MovementsResponse(total=movements_total(selected), movements=items)


@router.get("/stays", response_model=list[StayResponse])
async def list_active_stays(
    garage_id: str | None = None,
    vehicle_type: str | None = None,
    exact_date: date | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    auth: AuthContext = Depends(require_cashflow),
    db=Depends(get_db),
):
    """Vehicles currently parked, most recent entry first."""
    garages = _hub_garages(db, auth, garage_id)
    if not garages:
        return []
    names = {str(g["id"]): g.get("name") or "Desconocido" for g in garages}
    garage_ids = list(names)

    try:
        stays = db.table("stays").select("*").in_("garage_id", garage_ids).eq(
            "active", True
        ).order("entry_time", desc=True).limit(ACTIVE_STAYS_LIMIT).execute().data or []
        vehicles = _vehicles(db, garage_ids)
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("cashflow_stays", exc)

    by_plate = plate_vehicle_types(vehicles)
    subscribers = {v["plate"]: bool(v.get("is_subscriber")) for v in vehicles if v.get("plate")}
    filters = CashFlowFilters(
        vehicle_type=vehicle_type,
        exact_date=exact_date,
        start_date=start_date,
        end_date=end_date,
    )
    return [
        {
            "id": str(stay["id"]),
            "garage_id": str(stay["garage_id"]),
            "garage_name": names.get(str(stay["garage_id"]), "Desconocido"),
            "plate": stay["plate"],
            "entry_time": stay["entry_time"],
            "vehicle_type": inferred_vehicle_type(stay, by_plate),
            "is_subscriber": subscribers.get(stay["plate"], False),
        }
        for stay in filter_stays(stays, filters, by_plate)
    ]


@router.get("/employees", response_model=list[EmployeeNameResponse])
async def list_employee_names(
    auth: AuthContext = Depends(require_cashflow),
    db=Depends(get_db),
):
    """Staff names of the organization, used to filter movements by operator."""
    try:
        return _employees(db, auth)
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("cashflow_employees", exc)


@router.get("/filters", response_model=CashFlowFiltersResponse)
async def filter_options(
    auth: AuthContext = Depends(require_cashflow),
    db=Depends(get_db),
):
    garages = fetch_accessible_garages(db, auth)
    garage_ids = [str(g["id"]) for g in garages]
    try:
        employees = _employees(db, auth)
        vehicles = _vehicles(db, garage_ids) if garage_ids else []
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("cashflow_filters", exc)
    return CashFlowFiltersResponse(
        garages=[{"id": str(g["id"]), "name": g.get("name")} for g in garages],
        employees=employees,
        vehicle_types=vehicle_type_options(vehicles),
        tariff_types=list(TARIFF_MOVEMENT_TYPES),
    )
