from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from cochera.auth.context import AuthContext
from cochera.auth.roles import GARAGES_ALL, GARAGES_ASSIGNED, GARAGES_OWNED, Role, is_web_role
from cochera.auth.routing import HUB_PATH, RESTRICTED_PATH, garage_dashboard_path
from cochera.observability import incr_metric, log_event


class ScopeRedirect(Exception):
    """Requested tenant is outside the identity's accessible set."""

    def __init__(self, redirect_to: str | None, detail: str = "Garage not accessible") -> None:
        super().__init__(detail)
        self.redirect_to = redirect_to
        self.detail = detail


@dataclass(frozen=True)
class ScopeDecision:
    allowed: bool
    redirect_to: str | None = None


def fetch_accessible_garages(db: Any, auth: AuthContext) -> list[dict[str, Any]]:
    """Garages this identity may enter. Any failure yields an empty list."""
    try:
        if GARAGES_ALL in auth.capabilities and not auth.is_shadow:
            result = db.table("garages").select("*").order("name").execute()
        elif GARAGES_OWNED in auth.capabilities and not auth.is_shadow:
            result = db.table("garages").select("*").eq(
                "owner_id", auth.user_id
            ).order("name").execute()
        elif GARAGES_ASSIGNED in auth.capabilities and auth.is_shadow:
            allowed = list(auth.permissions.allowed_garages)
            if not allowed:
                return []
            query = db.table("garages").select("*").in_("id", allowed)
            if auth.owner_id:
                query = query.eq("owner_id", auth.owner_id)
            result = query.execute()
        else:
            return []
    except Exception as exc:
        incr_metric("scope.fetch_failed")
        log_event(
            "accessible_garages_fetch_failed",
            level=logging.WARNING,
            user_id=auth.user_id,
            error=exc.__class__.__name__,
        )
        return []
    return list(result.data or [])


class ScopeGuard:
    """Decides whether a tenant id may be entered, and where to go if not."""

    def check(self, auth: AuthContext, garage_id: str, accessible_ids: set[str]) -> ScopeDecision:
        if not is_web_role(auth.role):
            return ScopeDecision(False, RESTRICTED_PATH)
        if garage_id in accessible_ids:
            return ScopeDecision(True)
        if auth.is_shadow and auth.role is Role.ADMINISTRATIVE:
            granted = [g for g in auth.permissions.allowed_garages if g in accessible_ids]
            if granted and granted[0] != garage_id:
                return ScopeDecision(False, garage_dashboard_path(granted[0]))
            return ScopeDecision(False, None)
        return ScopeDecision(False, HUB_PATH)

    def enforce(
        self, auth: AuthContext, garage_id: str, garages: list[dict[str, Any]]
    ) -> dict[str, Any]:
        """Return the garage row, or raise ScopeRedirect before anything is loaded for it."""
        by_id = {str(g.get("id")): g for g in garages}
        decision = self.check(auth, garage_id, set(by_id))
        if decision.allowed:
            return by_id[garage_id]
        incr_metric("scope.denied", role=auth.role.value)
        log_event(
            "scope_guard_denied",
            level=logging.WARNING,
            user_id=auth.user_id,
            role=auth.role.value,
            garage_id=garage_id,
            redirect_to=decision.redirect_to,
        )
        raise ScopeRedirect(decision.redirect_to)
