import logging
from fastapi import APIRouter, Depends, HTTPException, status
from cochera.auth import AuthContext, get_db, get_registry, require_staff_manager
from cochera.auth.registry import SessionRegistry
from cochera.auth.roles import PermissionDocument, Role, normalize_role
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
)
from cochera.domain.staff import (
    StaffValidationError,
    build_permission_document,
    ensure_can_create,
    hash_password,
    public_row,
    sort_roster,
    validate_credentials,
)
from cochera.models.staff import (
    PermissionsUpdate,
    PermissionsUpdateResponse,
    StaffCreate,
    StaffResponse,
)
from cochera.observability import log_event

router = APIRouter(prefix="/api/staff", tags=["staff"])


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


def _owner_id(auth: AuthContext) -> str:
    owner_id = auth.organization_owner_id
    if not owner_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No organization for this identity")
    return owner_id


def _creator_role(auth: AuthContext) -> Role:
    return Role.MANAGER if auth.is_shadow else Role.OWNER


def _load_employee(db, employee_id: str, owner_id: str) -> dict:
    try:
        result = db.table("employee_accounts").select("*").eq("id", employee_id).eq(
            "owner_id", owner_id
        ).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("staff_load", exc)
    if not result.data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return result.data[0]


def _guard_manager_target(auth: AuthContext, employee: dict) -> None:
    """Managers may not act on manager accounts, their own included."""
    if _creator_role(auth) is Role.MANAGER and normalize_role(employee.get("role")) is Role.MANAGER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Privilegios insuficientes sobre Gerentes.",
        )


@router.get("/", response_model=list[StaffResponse])
async def list_staff(auth: AuthContext = Depends(require_staff_manager), db=Depends(get_db)):
    """Organization roster, owner-side roles first."""
    owner_id = _owner_id(auth)
    try:
        rows = db.rpc("get_staff_by_owner", {"p_owner_id": owner_id}).execute().data
    except BACKEND_ERRORS as exc:
        log_event(
            "staff_rpc_fallback",
            level=logging.WARNING,
            owner_id=owner_id,
            error=exc.__class__.__name__,
        )
        try:
            rows = db.table("employee_accounts").select("*").eq("owner_id", owner_id).execute().data
        except BACKEND_ERRORS as fallback_exc:
            _raise_backend_http_error("staff_list", fallback_exc)
    return [public_row(row) for row in sort_roster(rows or [])]


@router.post("/", response_model=StaffResponse, status_code=status.HTTP_201_CREATED)
async def create_staff(
    data: StaffCreate,
    auth: AuthContext = Depends(require_staff_manager),
    db=Depends(get_db),
):
    owner_id = _owner_id(auth)
    try:
        username = validate_credentials(data.username, data.password)
        role = ensure_can_create(_creator_role(auth), data.role)
    except StaffValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    try:
        result = db.table("employee_accounts").insert({
            "owner_id": owner_id,
            "first_name": data.first_name.strip(),
            "last_name": data.last_name.strip(),
            "username": username,
            "password_hash": hash_password(data.password),
            "role": role.value,
            "permissions": PermissionDocument().to_raw(),
        }).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("staff_create", exc)

    employee = result.data[0]
    log_event("staff_created", owner_id=owner_id, employee_id=employee["id"], role=role.value)
    return public_row(employee)


@router.delete("/{employee_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_staff(
    employee_id: str,
    auth: AuthContext = Depends(require_staff_manager),
    db=Depends(get_db),
):
    owner_id = _owner_id(auth)
    employee = _load_employee(db, employee_id, owner_id)
    _guard_manager_target(auth, employee)
    try:
        db.table("employee_accounts").delete().eq("id", employee_id).eq("owner_id", owner_id).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("staff_delete", exc)
    log_event("staff_deleted", owner_id=owner_id, employee_id=employee_id)


@router.put("/{employee_id}/permissions", response_model=PermissionsUpdateResponse)
async def update_permissions(
    employee_id: str,
    data: PermissionsUpdate,
    auth: AuthContext = Depends(require_staff_manager),
    db=Depends(get_db),
    registry: SessionRegistry = Depends(get_registry),
):
    """Replace an employee's document and push it to their live sessions."""
    owner_id = _owner_id(auth)
    employee = _load_employee(db, employee_id, owner_id)
    _guard_manager_target(auth, employee)
    try:
        document = build_permission_document(employee.get("role"), data.allowed_garages, data.sections)
    except (StaffValidationError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    try:
        if document.allowed_garages:
            owned = db.table("garages").select("id").eq("owner_id", owner_id).execute().data or []
            unknown = set(document.allowed_garages) - {str(g["id"]) for g in owned}
            if unknown:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="Cochera no perteneciente a la organización.",
                )
        db.table("employee_accounts").update({"permissions": document.to_raw()}).eq(
            "id", employee_id
        ).eq("owner_id", owner_id).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("staff_permissions_update", exc)

    pushed = registry.push_permissions(employee_id, document)
    log_event("staff_permissions_updated", employee_id=employee_id, live_sessions=pushed)
    return PermissionsUpdateResponse(
        id=employee_id,
        permissions=document.to_raw(),
        live_sessions_updated=pushed,
    )
