import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status
from cochera.auth import GarageScope, get_db, require_section
from cochera.auth.roles import SECTION_PRICES
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
)
from cochera.domain.pricing import (
    PRICE_CONFLICT_COLUMNS,
    TARIFF_TYPE_TO_DB,
    CellBusy,
    CellLocks,
    build_matrix,
    cell_key,
    missing_subscription_tariffs,
    parse_amount,
    price_payload,
    tariff_to_api,
    vehicle_has_prices,
)
from cochera.models.pricing import (
    PriceListInput,
    PriceResponse,
    PriceUpsert,
    TariffCreate,
    TariffResponse,
    VehicleTypeCreate,
    VehicleTypeResponse,
)
from cochera.observability import incr_metric, log_event

router = APIRouter(prefix="/api/garages/{garage_id}/pricing", tags=["pricing"])

cell_locks = CellLocks()


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


def ensure_subscription_tariffs(db, garage_id: str) -> int:
    """Insert the protected subscription tariffs a garage lacks. Never raises."""
    try:
        result = db.table("tariffs").select("name").eq("garage_id", garage_id).eq(
            "type", TARIFF_TYPE_TO_DB["subscription"]
        ).execute()
        payload = missing_subscription_tariffs(
            garage_id, [row.get("name") for row in result.data or []]
        )
        if payload:
            db.table("tariffs").insert(payload).execute()
            log_event(
                "subscription_tariffs_seeded",
                garage_id=garage_id,
                names=[row["name"] for row in payload],
            )
        return len(payload)
    except BACKEND_ERRORS as exc:
        incr_metric("pricing.seed_failed")
        log_event(
            "subscription_tariffs_seed_failed",
            level=logging.WARNING,
            garage_id=garage_id,
            error=exc.__class__.__name__,
        )
        return 0


def _select_by_garage(db, table: str, garage_id: str, *, ordered: bool = True) -> list[dict]:
    query = db.table(table).select("*").eq("garage_id", garage_id)
    if ordered:
        query = query.order("sort_order")
    return list(query.execute().data or [])


def _row_in_garage(db, table: str, row_id: str, garage_id: str) -> dict | None:
    result = db.table(table).select("*").eq("id", row_id).eq("garage_id", garage_id).execute()
    if not result.data:
        return None
    return result.data[0]


@router.get("/matrix")
async def get_price_matrix(
    price_list: PriceListInput = Query(default="standard"),
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    """Tariff x vehicle price grid for one price list."""
    garage_id = scope.garage_id
    ensure_subscription_tariffs(db, garage_id)
    try:
        vehicles = _select_by_garage(db, "vehicle_types", garage_id)
        tariffs = _select_by_garage(db, "tariffs", garage_id)
        prices = _select_by_garage(db, "prices", garage_id, ordered=False)
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("pricing_load", exc)
    return build_matrix(vehicles, tariffs, prices, price_list)


@router.put("/prices", response_model=PriceResponse)
def upsert_price(
    data: PriceUpsert,
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    """Write one cell. Keyed by (garage, tariff, vehicle type, price list)."""
    garage_id = scope.garage_id
    try:
        amount = parse_amount(data.amount)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Importe inválido.",
        ) from exc

    key = cell_key(garage_id, data.tariff_id, data.vehicle_type_id, data.price_list)
    payload = price_payload(garage_id, data.tariff_id, data.vehicle_type_id, data.price_list, amount)
    try:
        with cell_locks.hold(key):
            if _row_in_garage(db, "tariffs", data.tariff_id, garage_id) is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tariff not found")
            if _row_in_garage(db, "vehicle_types", data.vehicle_type_id, garage_id) is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vehicle type not found")
            db.table("prices").upsert(payload, on_conflict=PRICE_CONFLICT_COLUMNS).execute()
    except CellBusy as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Price cell save already in progress",
        ) from exc
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("price_upsert", exc)

    return payload


@router.get("/vehicle-types", response_model=list[VehicleTypeResponse])
async def list_vehicle_types(
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    try:
        return _select_by_garage(db, "vehicle_types", scope.garage_id)
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("vehicle_types_list", exc)


@router.post("/vehicle-types", response_model=VehicleTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle_type(
    data: VehicleTypeCreate,
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    garage_id = scope.garage_id
    try:
        existing = _select_by_garage(db, "vehicle_types", garage_id)
        result = db.table("vehicle_types").insert({
            "garage_id": garage_id,
            "name": data.name.strip(),
            "icon_key": data.icon_key,
            "sort_order": len(existing) + 10,
        }).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("vehicle_type_create", exc)
    return result.data[0]


@router.delete("/vehicle-types/{vehicle_type_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vehicle_type(
    vehicle_type_id: str,
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    """Refused while any price for the vehicle type is non-zero."""
    garage_id = scope.garage_id
    try:
        if _row_in_garage(db, "vehicle_types", vehicle_type_id, garage_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vehicle type not found")
        prices = _select_by_garage(db, "prices", garage_id, ordered=False)
        if vehicle_has_prices(prices, vehicle_type_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="No se puede eliminar: existen precios activos para este vehículo.",
            )
        db.table("vehicle_types").delete().eq("id", vehicle_type_id).eq("garage_id", garage_id).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("vehicle_type_delete", exc)


@router.get("/tariffs", response_model=list[TariffResponse])
async def list_tariffs(
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    try:
        rows = _select_by_garage(db, "tariffs", scope.garage_id)
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("tariffs_list", exc)
    return [tariff_to_api(row) for row in rows]


@router.post("/tariffs", response_model=TariffResponse, status_code=status.HTTP_201_CREATED)
async def create_tariff(
    data: TariffCreate,
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    garage_id = scope.garage_id
    try:
        existing = _select_by_garage(db, "tariffs", garage_id)
        result = db.table("tariffs").insert({
            "garage_id": garage_id,
            "name": data.name.strip(),
            "type": TARIFF_TYPE_TO_DB[data.type],
            "sort_order": len(existing) + 10,
            "days": data.days,
            "hours": data.hours,
            "minutes": data.minutes,
            "tolerance": data.tolerance,
            "is_protected": False,
        }).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("tariff_create", exc)
    return tariff_to_api(result.data[0])


@router.delete("/tariffs/{tariff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tariff(
    tariff_id: str,
    scope: GarageScope = Depends(require_section(SECTION_PRICES)),
    db=Depends(get_db),
):
    garage_id = scope.garage_id
    try:
        tariff = _row_in_garage(db, "tariffs", tariff_id, garage_id)
        if tariff is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tariff not found")
        if tariff.get("is_protected"):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Esta tarifa es fundamental para el sistema y no puede eliminarse.",
            )
        db.table("tariffs").delete().eq("id", tariff_id).eq("garage_id", garage_id).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("tariff_delete", exc)
