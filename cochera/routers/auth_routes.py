import logging
from fastapi import APIRouter, Depends, HTTPException, status
from cochera.auth import get_optional_tab, get_registry, get_tab
from cochera.auth.backend import InvalidCredentials
from cochera.auth.registry import SessionRegistry, TabSession
from cochera.domain.backend_errors import BACKEND_ERRORS, is_transient, translate_error
from cochera.models.auth import (
    LoginRequest,
    LoginResponse,
    PermissionsResponse,
    ProfileResponse,
    SessionResponse,
    SignupRequest,
    SignupResponse,
)
from cochera.observability import incr_metric, log_event

router = APIRouter(prefix="/api/auth", tags=["auth"])


def session_response(tab: TabSession) -> SessionResponse:
    snapshot = tab.store.snapshot()
    profile = None
    if snapshot.profile is not None:
        profile = ProfileResponse(
            id=snapshot.profile.id,
            email=snapshot.profile.email,
            full_name=snapshot.profile.full_name,
            role=snapshot.profile.role.value,
            source=snapshot.profile.source.value,
        )
    permissions = None
    owner_id = None
    if snapshot.shadow is not None:
        permissions = PermissionsResponse(**snapshot.shadow.permissions.to_raw())
        owner_id = snapshot.shadow.owner_id
    return SessionResponse(
        tab_id=tab.id,
        kind=snapshot.kind,
        loading=snapshot.loading,
        initialized=snapshot.initialized,
        profile_settled=snapshot.profile_settled,
        reset_available=snapshot.reset_available,
        profile=profile,
        owner_id=owner_id,
        permissions=permissions,
    )


def _raise_auth_http_error(operation: str, exc: BaseException) -> None:
    incr_metric("auth.failure", operation=operation)
    log_event(
        "auth_failed",
        level=logging.WARNING,
        operation=operation,
        error=exc.__class__.__name__,
    )
    if isinstance(exc, BACKEND_ERRORS) and is_transient(exc):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=translate_error(exc),
        ) from exc
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=translate_error(exc, fallback="Credenciales incorrectas."),
    ) from exc


async def _tab_for_login(tab: TabSession | None, registry: SessionRegistry) -> tuple[TabSession, bool]:
    """Return the tab to sign into and whether it was opened for this request."""
    if tab is None:
        return await registry.open(), True
    if tab.store.snapshot().authenticated:
        await tab.store.sign_out()
    return tab, False


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    tab: TabSession | None = Depends(get_optional_tab),
    registry: SessionRegistry = Depends(get_registry),
):
    """Email identifiers sign in against the auth service; anything else is a staff username."""
    tab, fresh = await _tab_for_login(tab, registry)
    try:
        await tab.store.login(data.identifier, data.password)
    except (InvalidCredentials, *BACKEND_ERRORS) as exc:
        if fresh:
            registry.discard(tab.id)
        _raise_auth_http_error("login", exc)
    except ValueError as exc:
        if fresh:
            registry.discard(tab.id)
        log_event("shadow_record_invalid", level=logging.ERROR, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Error interno en RPC de login.",
        ) from exc

    return LoginResponse(session_token=registry.issue_token(tab), session=session_response(tab))


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    data: SignupRequest,
    tab: TabSession | None = Depends(get_optional_tab),
    registry: SessionRegistry = Depends(get_registry),
):
    """Register an organization owner."""
    tab, fresh = await _tab_for_login(tab, registry)
    try:
        signed_in = await tab.store.sign_up(data.email, data.password, data.full_name.strip())
    except (InvalidCredentials, *BACKEND_ERRORS) as exc:
        if fresh:
            registry.discard(tab.id)
        incr_metric("auth.failure", operation="signup")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=translate_error(exc),
        ) from exc

    return SignupResponse(
        session_token=registry.issue_token(tab),
        session=session_response(tab),
        confirmation_required=not signed_in,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    tab: TabSession = Depends(get_tab),
    registry: SessionRegistry = Depends(get_registry),
):
    """Sign out and drop the tab; its token stops resolving."""
    await registry.close(tab.id)


@router.post("/reload", response_model=SessionResponse)
async def reload(
    tab: TabSession = Depends(get_tab),
    registry: SessionRegistry = Depends(get_registry),
):
    """Rebuild the tab session from its ephemeral storage."""
    tab = await registry.reload(tab.id)
    return session_response(tab)


@router.post("/hard-reset", response_model=SessionResponse)
async def hard_reset(
    tab: TabSession = Depends(get_tab),
    registry: SessionRegistry = Depends(get_registry),
):
    """Escape hatch for a stuck session: drop all local state and start over."""
    tab = await registry.hard_reset(tab.id)
    return session_response(tab)


@router.get("/me", response_model=SessionResponse)
async def get_me(tab: TabSession = Depends(get_tab)):
    return session_response(tab)
