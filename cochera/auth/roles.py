from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final


class Role(str, Enum):
    SUPERADMIN = "superadmin"
    OWNER = "owner"
    MANAGER = "manager"
    ADMINISTRATIVE = "administrative"
    OPERATOR = "operador"
    AUDITOR = "auditor"


LEGACY_ROLE_ALIASES: Final[dict[str, str]] = {
    "operator": Role.OPERATOR.value,
    "administrativo": Role.ADMINISTRATIVE.value,
    "gerente": Role.MANAGER.value,
}

# Garage dashboard sections.
SECTION_DASHBOARD: Final[str] = "dashboard"
SECTION_PRICES: Final[str] = "precios"
SECTION_FINANCE: Final[str] = "finanzas"
SECTION_SETTINGS: Final[str] = "ajustes"

# Hub (tenant selection) sections.
SECTION_GARAGES: Final[str] = "garages"
SECTION_CASHFLOW: Final[str] = "cashflow"
SECTION_ACCESS: Final[str] = "access"

GARAGE_SECTIONS: Final[tuple[str, ...]] = (
    SECTION_DASHBOARD,
    SECTION_PRICES,
    SECTION_FINANCE,
    SECTION_SETTINGS,
)
HUB_SECTIONS: Final[tuple[str, ...]] = (SECTION_CASHFLOW, SECTION_GARAGES, SECTION_ACCESS)

# Sections an owner may grant through a permission document.
GRANTABLE_SECTIONS: Final[dict[Role, frozenset[str]]] = {
    Role.MANAGER: frozenset({SECTION_CASHFLOW, SECTION_ACCESS}),
    Role.ADMINISTRATIVE: frozenset({SECTION_PRICES, SECTION_FINANCE, SECTION_SETTINGS}),
}

MANAGER_BASE_SECTIONS: Final[frozenset[str]] = frozenset(GARAGE_SECTIONS) | {SECTION_GARAGES}

# Capability keys.
GLOBAL_ADMIN: Final[str] = "global.admin"
GARAGES_CREATE: Final[str] = "garages.create"
GARAGES_ALL: Final[str] = "garages.all"
GARAGES_OWNED: Final[str] = "garages.owned"
GARAGES_ASSIGNED: Final[str] = "garages.assigned"
STAFF_MANAGE: Final[str] = "staff.manage"
HUB_ACCESS: Final[str] = "hub.access"
WEB_ACCESS: Final[str] = "web.access"

ROLE_CAPABILITIES: Final[dict[Role, frozenset[str]]] = {
    Role.SUPERADMIN: frozenset({GLOBAL_ADMIN, GARAGES_ALL, HUB_ACCESS, WEB_ACCESS}),
    Role.OWNER: frozenset({GARAGES_CREATE, GARAGES_OWNED, STAFF_MANAGE, HUB_ACCESS, WEB_ACCESS}),
    Role.MANAGER: frozenset({GARAGES_ASSIGNED, HUB_ACCESS, WEB_ACCESS}),
    Role.ADMINISTRATIVE: frozenset({GARAGES_ASSIGNED, WEB_ACCESS}),
    Role.OPERATOR: frozenset(),
    Role.AUDITOR: frozenset(),
}

# Roster ordering; lower weight first.
ROLE_WEIGHTS: Final[dict[Role, int]] = {
    Role.OWNER: 0,
    Role.MANAGER: 1,
    Role.ADMINISTRATIVE: 2,
    Role.OPERATOR: 3,
    Role.AUDITOR: 4,
}

STAFF_ROLES: Final[frozenset[Role]] = frozenset(
    {Role.MANAGER, Role.ADMINISTRATIVE, Role.OPERATOR, Role.AUDITOR}
)

CREATABLE_ROLES: Final[dict[Role, frozenset[Role]]] = {
    Role.OWNER: STAFF_ROLES,
    Role.MANAGER: STAFF_ROLES - {Role.MANAGER},
}


def normalize_role(role: str | Role | None) -> Role:
    if isinstance(role, Role):
        return role
    raw = (role or "").strip().lower()
    normalized = LEGACY_ROLE_ALIASES.get(raw, raw)
    try:
        return Role(normalized)
    except ValueError as exc:
        raise ValueError(f"Unsupported role: {role}") from exc


def capabilities_for_role(role: str | Role) -> frozenset[str]:
    return ROLE_CAPABILITIES[normalize_role(role)]


def role_has_capability(role: str | Role, capability: str) -> bool:
    return capability in capabilities_for_role(role)


def is_web_role(role: str | Role) -> bool:
    return role_has_capability(role, WEB_ACCESS)


@dataclass(frozen=True)
class PermissionDocument:
    """Per-account grant of tenants and UI sections for delegated roles."""

    allowed_garages: tuple[str, ...] = ()
    sections: tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> "PermissionDocument":
        if not isinstance(raw, dict):
            return cls()
        garages = raw.get("allowed_garages") or []
        sections = raw.get("sections") or []
        if not isinstance(garages, (list, tuple)):
            garages = []
        if not isinstance(sections, (list, tuple)):
            sections = []
        return cls(
            allowed_garages=tuple(dict.fromkeys(str(g) for g in garages if g)),
            sections=tuple(dict.fromkeys(str(s) for s in sections if s)),
        )

    def to_raw(self) -> dict[str, list[str]]:
        return {"allowed_garages": list(self.allowed_garages), "sections": list(self.sections)}


@dataclass(frozen=True)
class SectionGrant:
    role: Role
    is_shadow: bool
    document: PermissionDocument = field(default_factory=PermissionDocument)


def can_view_section(grant: SectionGrant, section: str) -> bool:
    if grant.role in (Role.OWNER, Role.SUPERADMIN) and not grant.is_shadow:
        return True
    if not grant.is_shadow:
        return False
    if grant.role is Role.MANAGER:
        if section in MANAGER_BASE_SECTIONS:
            return True
        return section in GRANTABLE_SECTIONS[Role.MANAGER] and section in grant.document.sections
    if grant.role is Role.ADMINISTRATIVE:
        # Dashboard is always granted so the menu is never empty.
        if section == SECTION_DASHBOARD:
            return True
        return section in GRANTABLE_SECTIONS[Role.ADMINISTRATIVE] and section in grant.document.sections
    return False


def visible_sections(grant: SectionGrant, candidates: tuple[str, ...]) -> list[str]:
    return [section for section in candidates if can_view_section(grant, section)]
