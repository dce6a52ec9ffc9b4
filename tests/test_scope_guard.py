import pytest

from cochera.auth.context import AuthContext
from cochera.auth.roles import PermissionDocument
from cochera.auth.scope import ScopeDecision, ScopeGuard, ScopeRedirect, fetch_accessible_garages
from tests.fakes import FakeSupabase, api_error


def _tables():
    return {
        "garages": [
            {"id": "g1", "owner_id": "o1", "name": "Centro"},
            {"id": "g2", "owner_id": "o1", "name": "Norte"},
            {"id": "g3", "owner_id": "o2", "name": "Ajena"},
        ]
    }


def _ana(**overrides) -> AuthContext:
    values = dict(
        tab_id="tab-1",
        user_id="e1",
        role="administrative",
        is_shadow=True,
        owner_id="o1",
        permissions=PermissionDocument(allowed_garages=("g1",), sections=("precios",)),
    )
    values.update(overrides)
    return AuthContext(**values)


def test_owner_sees_only_owned_garages():
    db = FakeSupabase(_tables())
    auth = AuthContext(tab_id="t", user_id="o1", role="owner")

    garages = fetch_accessible_garages(db, auth)

    assert [g["id"] for g in garages] == ["g1", "g2"]


def test_super_admin_sees_every_garage():
    db = FakeSupabase(_tables())
    auth = AuthContext(tab_id="t", user_id="sa", role="superadmin")

    assert len(fetch_accessible_garages(db, auth)) == 3


def test_shadow_manager_sees_allow_list_within_its_organization():
    db = FakeSupabase(_tables())
    auth = AuthContext(
        tab_id="t",
        user_id="m1",
        role="manager",
        is_shadow=True,
        owner_id="o1",
        permissions=PermissionDocument(allowed_garages=("g2", "g3")),
    )

    assert [g["id"] for g in fetch_accessible_garages(db, auth)] == ["g2"]


def test_operator_sees_nothing_without_querying():
    db = FakeSupabase(_tables())
    auth = AuthContext(tab_id="t", user_id="op", role="operador", is_shadow=True, owner_id="o1")

    assert fetch_accessible_garages(db, auth) == []
    assert db.calls == []


def test_fetch_failure_denies():
    db = FakeSupabase(_tables())
    db.failures[("garages", "select")] = api_error("PGRST000", "could not connect")
    auth = AuthContext(tab_id="t", user_id="o1", role="owner")

    assert fetch_accessible_garages(db, auth) == []


def test_shadow_administrative_is_sent_back_to_its_garage():
    db = FakeSupabase(_tables())
    auth = _ana()
    garages = fetch_accessible_garages(db, auth)

    with pytest.raises(ScopeRedirect) as exc_info:
        ScopeGuard().enforce(auth, "g2", garages)

    assert exc_info.value.redirect_to == "/g1/dashboard"
    # Nothing was ever filtered on the foreign garage.
    assert "g2" not in db.queried_values()


def test_shadow_administrative_enters_its_garage():
    db = FakeSupabase(_tables())
    auth = _ana()

    garage = ScopeGuard().enforce(auth, "g1", fetch_accessible_garages(db, auth))

    assert garage["name"] == "Centro"


def test_owner_outside_scope_goes_to_hub():
    db = FakeSupabase(_tables())
    auth = AuthContext(tab_id="t", user_id="o1", role="owner")

    with pytest.raises(ScopeRedirect) as exc_info:
        ScopeGuard().enforce(auth, "g3", fetch_accessible_garages(db, auth))

    assert exc_info.value.redirect_to == "/setup/onboarding"


def test_non_web_roles_go_to_restricted():
    auth = AuthContext(tab_id="t", user_id="au", role="auditor", is_shadow=True)

    decision = ScopeGuard().check(auth, "g1", {"g1"})

    assert decision.allowed is False
    assert decision.redirect_to == "/restricted"


def test_administrative_whose_garage_vanished_gets_no_redirect_target():
    auth = _ana(permissions=PermissionDocument(allowed_garages=("gone",)))

    decision = ScopeGuard().check(auth, "g2", set())

    assert decision == ScopeDecision(False, None)
