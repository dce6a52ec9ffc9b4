import pytest

from cochera.auth.context import AuthContext
from cochera.auth.roles import (
    GARAGE_SECTIONS,
    HUB_SECTIONS,
    PermissionDocument,
    Role,
    SectionGrant,
    can_view_section,
    is_web_role,
    normalize_role,
    visible_sections,
)


def test_normalize_role_accepts_legacy_aliases():
    assert normalize_role("operator") is Role.OPERATOR
    assert normalize_role(" Administrativo ") is Role.ADMINISTRATIVE
    assert normalize_role("gerente") is Role.MANAGER
    assert normalize_role(Role.OWNER) is Role.OWNER


def test_normalize_role_rejects_unknown():
    with pytest.raises(ValueError):
        normalize_role("janitor")


def test_desk_roles_have_no_web_access():
    assert not is_web_role(Role.OPERATOR)
    assert not is_web_role(Role.AUDITOR)
    assert is_web_role(Role.ADMINISTRATIVE)


def test_owner_and_superadmin_see_every_section():
    for role in (Role.OWNER, Role.SUPERADMIN):
        grant = SectionGrant(role=role, is_shadow=False)
        assert visible_sections(grant, GARAGE_SECTIONS) == list(GARAGE_SECTIONS)
        assert visible_sections(grant, HUB_SECTIONS) == list(HUB_SECTIONS)


def test_manager_sees_base_sections_and_granted_hub_sections():
    grant = SectionGrant(
        role=Role.MANAGER,
        is_shadow=True,
        document=PermissionDocument(sections=("access",)),
    )

    assert visible_sections(grant, GARAGE_SECTIONS) == list(GARAGE_SECTIONS)
    assert visible_sections(grant, HUB_SECTIONS) == ["garages", "access"]


def test_administrative_sees_dashboard_plus_granted_sections():
    grant = SectionGrant(
        role=Role.ADMINISTRATIVE,
        is_shadow=True,
        document=PermissionDocument(allowed_garages=("g1",), sections=("precios",)),
    )

    assert can_view_section(grant, "dashboard")
    assert can_view_section(grant, "precios")
    assert not can_view_section(grant, "finanzas")
    assert not can_view_section(grant, "ajustes")
    assert visible_sections(grant, HUB_SECTIONS) == []


def test_administrative_with_empty_document_still_has_dashboard():
    grant = SectionGrant(role=Role.ADMINISTRATIVE, is_shadow=True)

    assert visible_sections(grant, GARAGE_SECTIONS) == ["dashboard"]


def test_administrative_cannot_use_hub_sections_even_if_listed():
    grant = SectionGrant(
        role=Role.ADMINISTRATIVE,
        is_shadow=True,
        document=PermissionDocument(sections=("cashflow", "precios")),
    )

    assert not can_view_section(grant, "cashflow")


def test_non_shadow_delegated_role_sees_nothing():
    grant = SectionGrant(role=Role.MANAGER, is_shadow=False)

    assert visible_sections(grant, GARAGE_SECTIONS) == []


def test_permission_document_tolerates_garbage():
    assert PermissionDocument.from_raw(None) == PermissionDocument()
    assert PermissionDocument.from_raw({"allowed_garages": "g1", "sections": 3}) == PermissionDocument()

    doc = PermissionDocument.from_raw({"allowed_garages": ["g1", "g1", None], "sections": ["precios"]})

    assert doc.allowed_garages == ("g1",)
    assert doc.to_raw() == {"allowed_garages": ["g1"], "sections": ["precios"]}


def test_auth_context_capabilities_and_owner():
    owner = AuthContext(tab_id="t", user_id="o1", role="owner")
    manager = AuthContext(tab_id="t", user_id="m1", role="gerente", is_shadow=True, owner_id="o1")

    assert "staff.manage" in owner.capabilities
    assert owner.organization_owner_id == "o1"
    assert manager.role is Role.MANAGER
    assert manager.organization_owner_id == "o1"
    assert "staff.manage" not in manager.capabilities


def test_shadow_superadmin_is_not_super_admin():
    assert AuthContext(tab_id="t", user_id="sa", role="superadmin").is_super_admin
    assert not AuthContext(tab_id="t", user_id="sa", role="superadmin", is_shadow=True).is_super_admin
