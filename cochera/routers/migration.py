import logging
from datetime import datetime, timezone
from typing import Literal
from fastapi import APIRouter, Depends, HTTPException, status
from cochera.auth import GarageScope, get_db, require_section
from cochera.auth.roles import SECTION_SETTINGS
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
)
from cochera.domain.migration import (
    DEBT_PENDING,
    DEFAULT_VEHICLE_TYPE,
    KIND_MOBILE,
    SPACE_OCCUPIED,
    MigrationError,
    base_price,
    check_required,
    clean_plate,
    end_of_month,
    find_subscription_tariff,
    prorated_price,
    remaining_days,
    resolve_kind,
    space_number,
    with_owner,
)
from cochera.domain.pricing import TARIFF_TYPE_TO_DB
from cochera.models.migration import MigrationQuote, MigrationRequest, MigrationResponse
from cochera.observability import incr_metric, log_event

router = APIRouter(prefix="/api/garages/{garage_id}/migration", tags=["migration"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


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


def _first_match(db, table: str, garage_id: str, column: str, value: str) -> dict | None:
    result = db.table(table).select("id").eq("garage_id", garage_id).eq(column, value).limit(1).execute()
    rows = result.data or []
    return rows[0] if rows else None


def _write(db, table: str, existing: dict | None, payload: dict) -> str:
    """Update the matched row, or insert a new one. Returns its id."""
    if existing is not None:
        result = db.table(table).update(payload).eq("id", existing["id"]).execute()
    else:
        result = db.table(table).insert(payload).execute()
    return str(result.data[0]["id"])


def _quote(db, garage_id: str, kind: str, vehicle_type_id: str, now: datetime) -> MigrationQuote:
    tariffs = db.table("tariffs").select("*").eq("garage_id", garage_id).eq(
        "type", TARIFF_TYPE_TO_DB["subscription"]
    ).execute().data or []
    tariff = find_subscription_tariff(tariffs, kind)
    if tariff is None or not vehicle_type_id:
        return MigrationQuote(kind=kind, base_price=0, prorated_price=0, remaining_days=remaining_days(now.date()))
    prices = db.table("prices").select("*").eq("garage_id", garage_id).eq("price_list", "standard").execute().data or []
    monthly = base_price(prices, tariff["id"], vehicle_type_id)
    return MigrationQuote(
        kind=kind,
        tariff_id=str(tariff["id"]),
        base_price=monthly,
        prorated_price=prorated_price(monthly, now.date()),
        remaining_days=remaining_days(now.date()),
    )


@router.get("/quote", response_model=MigrationQuote)
async def quote_subscription(
    vehicle_type_id: str,
    kind: Literal["Movil", "Fija"] = "Movil",
    exclusive: bool = False,
    scope: GarageScope = Depends(require_section(SECTION_SETTINGS)),
    db=Depends(get_db),
):
    """Monthly price of the subscription and the share charged for the rest of this month."""
    try:
        return _quote(db, scope.garage_id, resolve_kind(kind, exclusive), vehicle_type_id, _now())
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("migration_quote", exc)


@router.post("", response_model=MigrationResponse, status_code=status.HTTP_201_CREATED)
async def migrate_subscriber(
    data: MigrationRequest,
    scope: GarageScope = Depends(require_section(SECTION_SETTINGS)),
    db=Depends(get_db),
):
    """Load an existing subscriber: customer, vehicle, space and subscription.

    Customers are matched by document number and vehicles by plate within the
    garage. Mobile spaces are always new; fixed and exclusive spaces are
    matched by number. No cash movement is recorded.
    """
    garage_id = scope.garage_id
    kind = resolve_kind(data.kind, data.exclusive)
    try:
        check_required(
            kind=kind,
            space_number=data.space_number,
            dni=data.dni,
            name=data.name,
            plate=data.plate,
            vehicle_type_id=data.vehicle_type_id,
        )
    except MigrationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    owner_id = scope.auth.organization_owner_id
    dni = data.dni.strip()
    plate = clean_plate(data.plate)
    now = _now()
    step = "migration_lookup"
    try:
        vehicle_type = db.table("vehicle_types").select("*").eq("id", data.vehicle_type_id).eq(
            "garage_id", garage_id
        ).execute().data
        if not vehicle_type:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vehicle type not found")
        quote = _quote(db, garage_id, kind, data.vehicle_type_id, now)

        step = "migration_customer"
        customer_id = _write(db, "customers", _first_match(db, "customers", garage_id, "dni", dni), with_owner({
            "garage_id": garage_id,
            "dni": dni,
            "name": data.name.strip(),
            "email": data.email,
            "phone": data.phone,
            "address": data.address,
            "localidad": data.locality,
        }, owner_id))

        step = "migration_vehicle"
        vehicle_id = _write(db, "vehicles", _first_match(db, "vehicles", garage_id, "plate", plate), with_owner({
            "garage_id": garage_id,
            "customer_id": customer_id,
            "plate": plate,
            "type": vehicle_type[0].get("name") or DEFAULT_VEHICLE_TYPE,
            "brand": data.brand,
            "model": data.model,
            "color": data.color,
            "year": data.year,
            "insurance": data.insurance,
            "is_subscriber": True,
        }, owner_id))

        step = "migration_space"
        number = space_number(kind, plate, data.space_number)
        existing_space = None
        if kind != KIND_MOBILE:
            existing_space = _first_match(db, "cocheras", garage_id, "numero", number)
        space_id = _write(db, "cocheras", existing_space, {
            "garage_id": garage_id,
            "cliente_id": customer_id,
            "tipo": kind,
            "numero": number,
            "vehiculos": [plate],
            "status": SPACE_OCCUPIED,
            "precio_base": quote.base_price,
        })

        step = "migration_subscription"
        subscription = db.table("subscriptions").insert(with_owner({
            "garage_id": garage_id,
            "customer_id": customer_id,
            "vehicle_id": vehicle_id,
            "type": kind,
            "price": quote.prorated_price,
            "start_date": now.isoformat(),
            "end_date": end_of_month(now).isoformat(),
            "active": True,
        }, owner_id)).execute()
        subscription_id = str(subscription.data[0]["id"])
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error(step, exc)

    debt_id = None
    if data.initial_debt > 0:
        try:
            debt = db.table("debts").insert({
                "garage_id": garage_id,
                "subscription_id": subscription_id,
                "customer_id": customer_id,
                "amount": data.initial_debt,
                "status": DEBT_PENDING,
                "due_date": now.isoformat(),
                "surcharge_applied": 0,
            }).execute()
            debt_id = str(debt.data[0]["id"])
        except BACKEND_ERRORS as exc:
            # The subscriber is already loaded; a missing opening debt is reported, not fatal.
            incr_metric("migration.debt_failed")
            log_event(
                "migration_debt_failed",
                level=logging.WARNING,
                garage_id=garage_id,
                subscription_id=subscription_id,
                error=exc.__class__.__name__,
            )

    incr_metric("migration.subscriber_loaded", kind=kind)
    log_event("subscriber_migrated", garage_id=garage_id, subscription_id=subscription_id, kind=kind)
    return MigrationResponse(
        customer_id=customer_id,
        vehicle_id=vehicle_id,
        space_id=space_id,
        subscription_id=subscription_id,
        debt_id=debt_id,
        kind=kind,
        base_price=quote.base_price,
        price=quote.prorated_price,
    )
