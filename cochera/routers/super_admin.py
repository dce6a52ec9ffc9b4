import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status
from cochera.auth import AuthContext, get_db, require_super_admin
from cochera.config import settings
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
    diagnostic_detail,
)
from cochera.models.super_admin import FactoryResetRequest, FactoryResetResponse, OwnerSummary
from cochera.observability import incr_metric, log_event, metrics_snapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/super-admin", tags=["super-admin"])

FACTORY_RESET_PHRASE = "REINICIAR"


def is_master_identity(auth: AuthContext) -> bool:
    """Client-side courtesy check only; fn_system_factory_reset authorizes server-side."""
    if not settings.master_admin_id and not settings.master_admin_email:
        return True
    if settings.master_admin_id and auth.user_id == settings.master_admin_id:
        return True
    if settings.master_admin_email and auth.email:
        return auth.email.lower() == settings.master_admin_email.lower()
    return False


@router.get("/owners", response_model=list[OwnerSummary])
async def list_owners(
    search: str | None = Query(default=None),
    auth: AuthContext = Depends(require_super_admin),
    db=Depends(get_db),
):
    """Owner profiles with their garage counts, newest first."""
    try:
        result = db.table("profiles").select(
            "id, email, full_name, role, created_at, garages(count)"
        ).eq("role", "owner").order("created_at", desc=True).execute()
    except BACKEND_ERRORS as exc:
        raise HTTPException(
            status_code=backend_error_http_status(exc),
            detail=backend_error_detail(operation="owners_list", exc=exc),
        ) from exc

    owners = []
    needle = (search or "").strip().lower()
    for row in result.data or []:
        if needle and needle not in (row.get("full_name") or "").lower() and needle not in (
            row.get("email") or ""
        ).lower():
            continue
        counts = row.get("garages") or []
        owners.append(OwnerSummary(
            id=row["id"],
            email=row.get("email"),
            full_name=row.get("full_name"),
            garage_count=counts[0].get("count", 0) if counts else 0,
        ))
    return owners


@router.get("/metrics")
async def get_metrics(auth: AuthContext = Depends(require_super_admin)):
    return {"counters": metrics_snapshot()}


@router.post("/factory-reset", response_model=FactoryResetResponse)
async def factory_reset(
    data: FactoryResetRequest,
    auth: AuthContext = Depends(require_super_admin),
    db=Depends(get_db),
):
    """Wipe all operational data. Errors are returned raw for diagnosis."""
    if data.confirm != FACTORY_RESET_PHRASE:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Escribe {FACTORY_RESET_PHRASE} para confirmar.",
        )

    incr_metric("factory_reset.attempt")
    log_event("factory_reset_requested", level=logging.WARNING, user_id=auth.user_id)
    if not is_master_identity(auth):
        incr_metric("factory_reset.denied", stage="courtesy")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Acceso Denegado por Seguridad",
                "code": "AUTH_VIOLATION",
                "details": f"El usuario actual ({auth.email or 'Anon'}) no coincide con el ID Maestro del sistema.",
                "hint": "Inicia sesión con la cuenta SuperAdmin principal.",
            },
        )

    try:
        result = db.rpc("fn_system_factory_reset", {}).execute()
    except BACKEND_ERRORS as exc:
        incr_metric("factory_reset.failed")
        logger.exception("Factory reset RPC failed")
        raise HTTPException(
            status_code=backend_error_http_status(exc),
            detail=diagnostic_detail(exc),
        ) from exc

    incr_metric("factory_reset.completed")
    log_event("factory_reset_completed", level=logging.WARNING, user_id=auth.user_id)
    return FactoryResetResponse(ok=True, result=result.data)
