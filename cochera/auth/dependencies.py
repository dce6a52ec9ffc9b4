from dataclasses import dataclass
from typing import Any
from fastapi import Depends, Header, HTTPException, Request, status
from cochera.auth.context import AuthContext
from cochera.auth.jwt import decode_tab_token
from cochera.auth.registry import SessionRegistry, TabSession
from cochera.auth.roles import STAFF_MANAGE, Role, SECTION_ACCESS, is_web_role
from cochera.auth.routing import HUB_PATH, RESTRICTED_PATH, garage_dashboard_path
from cochera.auth.scope import ScopeGuard, ScopeRedirect, fetch_accessible_garages


scope_guard = ScopeGuard()


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


async def get_optional_tab(
    authorization: str | None = Header(None),
    registry: SessionRegistry = Depends(get_registry),
) -> TabSession | None:
    """Tab addressed by the bearer token, or None when absent or unknown."""
    token = _extract_bearer_token(authorization)
    if not token:
        return None
    payload = decode_tab_token(token)
    if not payload:
        return None
    return registry.get(payload["sub"])


async def get_tab(
    authorization: str | None = Header(None),
    registry: SessionRegistry = Depends(get_registry),
) -> TabSession:
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )
    payload = decode_tab_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )
    tab = registry.get(payload["sub"])
    if tab is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session not found",
        )
    return tab


async def get_current_auth(tab: TabSession = Depends(get_tab)) -> AuthContext:
    """Identity of the tab. Refuses while the session is still resolving."""
    snapshot = tab.store.snapshot()
    if snapshot.loading:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session is still loading",
        )
    if not snapshot.authenticated or snapshot.profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
        )
    return AuthContext.from_snapshot(tab.id, snapshot)


def get_db(tab: TabSession = Depends(get_tab)) -> Any:
    """Backend client bound to the tab's identity."""
    return tab.backend.client


async def require_web_access(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    if not is_web_role(auth.role):
        raise ScopeRedirect(RESTRICTED_PATH, detail="Role has no web access")
    return auth


async def require_super_admin(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    if not auth.is_super_admin:
        redirect_to = HUB_PATH if is_web_role(auth.role) else RESTRICTED_PATH
        raise ScopeRedirect(redirect_to, detail="Super admin role required")
    return auth


async def require_owner(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    if auth.is_shadow or auth.role is not Role.OWNER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Owner role required",
        )
    return auth


async def require_staff_manager(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    """Owners, and shadow managers granted the access section."""
    if not auth.is_shadow and STAFF_MANAGE in auth.capabilities:
        return auth
    if auth.is_shadow and auth.role is Role.MANAGER and auth.can_view(SECTION_ACCESS):
        return auth
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Staff management not permitted",
    )


@dataclass
class GarageScope:
    auth: AuthContext
    garage: dict

    @property
    def garage_id(self) -> str:
        return str(self.garage["id"])


async def require_garage_scope(
    garage_id: str,
    auth: AuthContext = Depends(require_web_access),
    db: Any = Depends(get_db),
) -> GarageScope:
    """Tenant scope check; runs before any query keyed by the requested garage."""
    garages = fetch_accessible_garages(db, auth)
    garage = scope_guard.enforce(auth, garage_id, garages)
    return GarageScope(auth=auth, garage=garage)


def require_section(section: str):
    async def _require(scope: GarageScope = Depends(require_garage_scope)) -> GarageScope:
        if not scope.auth.can_view(section):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Section not permitted: {section}",
            )
        return scope

    return _require


def require_hub_section(section: str):
    """Cross-garage views. Roles confined to a single garage are sent back to it."""
    async def _require(auth: AuthContext = Depends(require_web_access)) -> AuthContext:
        if auth.is_shadow and auth.role is Role.ADMINISTRATIVE:
            allowed = auth.permissions.allowed_garages
            raise ScopeRedirect(
                garage_dashboard_path(allowed[0]) if allowed else None,
                detail="Hub not available for this role",
            )
        if not auth.can_view(section):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Section not permitted: {section}",
            )
        return auth

    return _require
