from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from cochera.auth.roles import PermissionDocument, Role, normalize_role


DEFAULT_FULL_NAME = "Usuario"
DEFAULT_ROLE = Role.OWNER


class ProfileSource(str, Enum):
    METADATA = "metadata"  # token claims carried a role
    DEFAULT = "default"  # no role claim, role is assumed
    DATABASE = "database"
    SHADOW = "shadow"


@dataclass(frozen=True)
class StandardIdentity:
    token: str
    user_id: str
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_token(self, token: str) -> "StandardIdentity":
        return replace(self, token=token)


@dataclass(frozen=True)
class ShadowIdentity:
    id: str
    full_name: str
    role: Role
    owner_id: str | None = None
    garage_id: str | None = None
    username: str | None = None
    permissions: PermissionDocument = field(default_factory=PermissionDocument)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ShadowIdentity":
        if not isinstance(record, dict) or not record.get("id"):
            raise ValueError("Shadow session record requires an id")
        return cls(
            id=str(record["id"]),
            full_name=str(record.get("full_name") or DEFAULT_FULL_NAME),
            role=normalize_role(record.get("role")),
            owner_id=record.get("owner_id"),
            garage_id=record.get("garage_id"),
            username=record.get("username"),
            permissions=PermissionDocument.from_raw(record.get("permissions")),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "role": self.role.value,
            "owner_id": self.owner_id,
            "garage_id": self.garage_id,
            "username": self.username,
            "permissions": self.permissions.to_raw(),
        }

    def dumps(self) -> str:
        return json.dumps(self.to_record(), sort_keys=True)

    @classmethod
    def loads(cls, blob: str) -> "ShadowIdentity":
        return cls.from_record(json.loads(blob))


@dataclass(frozen=True)
class Profile:
    id: str
    email: str | None
    full_name: str
    role: Role
    source: ProfileSource = ProfileSource.DATABASE

    @property
    def is_provisional(self) -> bool:
        return self.source in (ProfileSource.METADATA, ProfileSource.DEFAULT)


def provisional_profile(identity: StandardIdentity) -> Profile:
    """Profile synthesized from token claims; the only fallback factory."""
    meta = identity.metadata or {}
    full_name = meta.get("full_name") or DEFAULT_FULL_NAME
    raw_role = meta.get("role")
    role = DEFAULT_ROLE
    source = ProfileSource.DEFAULT
    if raw_role:
        try:
            role = normalize_role(raw_role)
            source = ProfileSource.METADATA
        except ValueError:
            pass
    return Profile(
        id=identity.user_id,
        email=identity.email,
        full_name=str(full_name),
        role=role,
        source=source,
    )


def profile_from_row(row: dict[str, Any], identity: StandardIdentity) -> Profile:
    fallback = provisional_profile(identity)
    try:
        role = normalize_role(row.get("role")) if row.get("role") else fallback.role
    except ValueError:
        role = fallback.role
    return Profile(
        id=str(row.get("id") or identity.user_id),
        email=row.get("email") or identity.email,
        full_name=str(row.get("full_name") or fallback.full_name),
        role=role,
        source=ProfileSource.DATABASE,
    )


def shadow_profile(identity: ShadowIdentity) -> Profile:
    return Profile(
        id=identity.id,
        email=None,
        full_name=identity.full_name,
        role=identity.role,
        source=ProfileSource.SHADOW,
    )
