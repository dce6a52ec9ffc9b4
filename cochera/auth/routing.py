from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from cochera.auth.roles import Role, is_web_role
from cochera.auth.store import SessionSnapshot
from cochera.observability import incr_metric, log_event


GLOBAL_ADMIN_PATH = "/admin/global"
HUB_PATH = "/setup/onboarding"
RESTRICTED_PATH = "/restricted"

REASON_AWAITING_PROFILE = "awaiting_profile"
REASON_NO_ASSIGNED_GARAGE = "no_assigned_garage"


def garage_dashboard_path(garage_id: str) -> str:
    return f"/{garage_id}/dashboard"


class RouteState(str, Enum):
    UNRESOLVED = "unresolved"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED_UNROUTED = "authenticated_unrouted"
    AUTHENTICATED_ROUTED = "authenticated_routed"


@dataclass(frozen=True)
class LandingDecision:
    state: RouteState
    redirect_to: str | None = None
    reason: str | None = None

    @property
    def fired(self) -> bool:
        return self.state is RouteState.AUTHENTICATED_ROUTED and (
            self.redirect_to is not None or self.reason is not None
        )


def canonical_destination(snapshot: SessionSnapshot) -> tuple[str | None, str | None]:
    """Role-determined landing path for a settled identity, plus a reason when there is none."""
    role = snapshot.role
    if role is None:
        return None, REASON_AWAITING_PROFILE
    if snapshot.shadow is None and role is Role.SUPERADMIN:
        return GLOBAL_ADMIN_PATH, None
    if not is_web_role(role):
        return RESTRICTED_PATH, None
    if snapshot.shadow is not None and role is Role.ADMINISTRATIVE:
        allowed = snapshot.shadow.permissions.allowed_garages
        if not allowed:
            return None, REASON_NO_ASSIGNED_GARAGE
        return garage_dashboard_path(allowed[0]), None
    # Everyone else confirms the tenant on the hub first, deep links included.
    return HUB_PATH, None


class LandingDispatcher:
    """One-time canonical redirect per authenticated session."""

    def __init__(self) -> None:
        self._routed_for: str | None = None

    @property
    def routed(self) -> bool:
        return self._routed_for is not None

    def observe(self, snapshot: SessionSnapshot) -> None:
        """Store listener: a settled unauthenticated state re-arms the redirect."""
        if not snapshot.loading and not snapshot.authenticated:
            self._routed_for = None

    def evaluate(self, snapshot: SessionSnapshot) -> LandingDecision:
        self.observe(snapshot)
        if snapshot.loading or not snapshot.initialized:
            return LandingDecision(RouteState.UNRESOLVED)
        if not snapshot.authenticated:
            return LandingDecision(RouteState.UNAUTHENTICATED)

        key = snapshot.identity_key
        if self._routed_for == key:
            return LandingDecision(RouteState.AUTHENTICATED_ROUTED)
        if not snapshot.profile_settled:
            return LandingDecision(
                RouteState.AUTHENTICATED_UNROUTED, reason=REASON_AWAITING_PROFILE
            )

        destination, reason = canonical_destination(snapshot)
        self._routed_for = key
        incr_metric("landing.redirect", destination=destination or reason)
        if destination is None:
            log_event(
                "landing_without_destination",
                level=logging.ERROR,
                identity=key,
                reason=reason,
            )
        else:
            log_event("landing_redirect", identity=key, redirect_to=destination)
        return LandingDecision(
            RouteState.AUTHENTICATED_ROUTED, redirect_to=destination, reason=reason
        )
