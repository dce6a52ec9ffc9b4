from __future__ import annotations

import re
from typing import Any

import bcrypt

from cochera.auth.roles import (
    CREATABLE_ROLES,
    GRANTABLE_SECTIONS,
    ROLE_WEIGHTS,
    PermissionDocument,
    Role,
    normalize_role,
)


MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 4

_WHITESPACE = re.compile(r"\s+")


class StaffValidationError(ValueError):
    pass


def normalize_username(raw: str) -> str:
    return _WHITESPACE.sub("", raw or "").lower()


def validate_credentials(username: str, password: str) -> str:
    """Return the normalized username or raise StaffValidationError."""
    normalized = normalize_username(username)
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise StaffValidationError(f"Contraseña muy corta (min {MIN_PASSWORD_LENGTH}).")
    if len(normalized) < MIN_USERNAME_LENGTH:
        raise StaffValidationError(f"Usuario muy corto (min {MIN_USERNAME_LENGTH}).")
    return normalized


def ensure_can_create(creator: Role, target: str | Role) -> Role:
    role = normalize_role(target)
    if role not in CREATABLE_ROLES.get(creator, frozenset()):
        if creator is Role.MANAGER and role is Role.MANAGER:
            raise StaffValidationError("Privilegios insuficientes para crear Gerentes.")
        raise StaffValidationError("Rol no permitido para este usuario.")
    return role


def hash_password(password: str) -> str:
    # $2a$ so the database trigger recognises the value as already hashed.
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(prefix=b"2a")).decode("utf-8")


def build_permission_document(
    role: str | Role, allowed_garages: list[str], sections: list[str]
) -> PermissionDocument:
    """Shape a submitted document to what the role can hold."""
    role = normalize_role(role)
    grantable = GRANTABLE_SECTIONS.get(role)
    if grantable is None:
        if allowed_garages or sections:
            raise StaffValidationError("Este rol no admite permisos web.")
        return PermissionDocument()
    garages = list(dict.fromkeys(g for g in allowed_garages if g))
    if role is Role.ADMINISTRATIVE and len(garages) > 1:
        raise StaffValidationError("Un administrativo solo puede tener una cochera asignada.")
    rejected = [s for s in sections if s not in grantable]
    if rejected:
        raise StaffValidationError(f"Secciones no válidas para el rol: {', '.join(rejected)}")
    return PermissionDocument(
        allowed_garages=tuple(garages),
        sections=tuple(dict.fromkeys(sections)),
    )


def _weight(row: dict[str, Any]) -> int:
    try:
        return ROLE_WEIGHTS.get(normalize_role(row.get("role")), 99)
    except ValueError:
        return 99


def sort_roster(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(rows or [], key=_weight)


def public_row(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k != "password_hash"}
