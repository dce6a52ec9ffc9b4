from dataclasses import dataclass, field
from cochera.auth.roles import (
    PermissionDocument,
    Role,
    SectionGrant,
    can_view_section,
    capabilities_for_role,
    normalize_role,
)
from cochera.auth.store import SessionSnapshot


@dataclass
class AuthContext:
    """Identity context for requests made through a tab session."""
    tab_id: str
    user_id: str
    role: Role
    is_shadow: bool = False
    email: str | None = None
    full_name: str | None = None
    owner_id: str | None = None
    permissions: PermissionDocument = field(default_factory=PermissionDocument)
    capabilities: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.role = normalize_role(self.role)
        if self.capabilities:
            self.capabilities = tuple(sorted(set(self.capabilities)))
            return
        self.capabilities = tuple(sorted(capabilities_for_role(self.role)))

    @classmethod
    def from_snapshot(cls, tab_id: str, snapshot: SessionSnapshot) -> "AuthContext":
        if snapshot.shadow is not None:
            shadow = snapshot.shadow
            return cls(
                tab_id=tab_id,
                user_id=shadow.id,
                role=shadow.role,
                is_shadow=True,
                full_name=shadow.full_name,
                owner_id=shadow.owner_id,
                permissions=shadow.permissions,
            )
        profile = snapshot.profile
        return cls(
            tab_id=tab_id,
            user_id=snapshot.standard.user_id,
            role=profile.role,
            email=profile.email,
            full_name=profile.full_name,
        )

    @property
    def grant(self) -> SectionGrant:
        return SectionGrant(role=self.role, is_shadow=self.is_shadow, document=self.permissions)

    @property
    def organization_owner_id(self) -> str | None:
        """Owner whose organization this identity acts for."""
        if not self.is_shadow and self.role is Role.OWNER:
            return self.user_id
        return self.owner_id

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPERADMIN and not self.is_shadow

    def can_view(self, section: str) -> bool:
        return can_view_section(self.grant, section)
