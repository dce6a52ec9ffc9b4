import logging
from fastapi import APIRouter, Depends, HTTPException, status
from cochera.auth import (
    AuthContext,
    GarageScope,
    get_db,
    require_garage_scope,
    require_owner,
    require_section,
    require_web_access,
)
from cochera.auth.roles import Role, SECTION_SETTINGS
from cochera.auth.routing import garage_dashboard_path
from cochera.auth.scope import ScopeRedirect, fetch_accessible_garages
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
)
from cochera.models.garages import GarageCreate, GarageResponse, GarageUpdate
from cochera.observability import log_event

router = APIRouter(prefix="/api/garages", tags=["garages"])


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


def _garage_columns(data: GarageCreate | GarageUpdate) -> dict:
    values = data.model_dump(exclude_unset=True)
    if "tax_id" in values:
        values["cuit"] = values.pop("tax_id")
    return values


@router.get("/", response_model=list[GarageResponse])
async def list_garages(auth: AuthContext = Depends(require_web_access), db=Depends(get_db)):
    """Tenant-selection hub: the garages this identity may enter."""
    if auth.is_shadow and auth.role is Role.ADMINISTRATIVE:
        allowed = auth.permissions.allowed_garages
        raise ScopeRedirect(
            garage_dashboard_path(allowed[0]) if allowed else None,
            detail="Hub not available for this role",
        )
    return fetch_accessible_garages(db, auth)


@router.post("/", response_model=GarageResponse, status_code=status.HTTP_201_CREATED)
async def create_garage(
    data: GarageCreate,
    auth: AuthContext = Depends(require_owner),
    db=Depends(get_db),
):
    """Create a garage plus its empty building and financial configuration rows."""
    payload = _garage_columns(data)
    payload["owner_id"] = auth.user_id
    try:
        result = db.table("garages").insert(payload).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("garage_create", exc)
    garage = result.data[0]

    for table in ("building_configs", "financial_configs"):
        try:
            db.table(table).insert({"garage_id": garage["id"]}).execute()
        except BACKEND_ERRORS as exc:
            log_event(
                "garage_config_seed_failed",
                level=logging.WARNING,
                garage_id=garage["id"],
                table=table,
                error=exc.__class__.__name__,
            )

    log_event("garage_created", garage_id=garage["id"], owner_id=auth.user_id)
    return garage


@router.get("/{garage_id}", response_model=GarageResponse)
async def get_garage(scope: GarageScope = Depends(require_garage_scope)):
    return scope.garage


@router.put("/{garage_id}", response_model=GarageResponse)
async def update_garage(
    garage_id: str,
    data: GarageUpdate,
    scope: GarageScope = Depends(require_section(SECTION_SETTINGS)),
    db=Depends(get_db),
):
    update_data = _garage_columns(data)
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    try:
        result = db.table("garages").update(update_data).eq("id", scope.garage_id).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("garage_update", exc)

    if not result.data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Garage not found")
    return result.data[0]
