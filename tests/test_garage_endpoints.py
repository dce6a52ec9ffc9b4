from fastapi.testclient import TestClient

from cochera.auth.context import AuthContext
from cochera.auth.dependencies import get_current_auth, get_db
from cochera.auth.roles import PermissionDocument
from cochera.main import app
from tests.fakes import FakeSupabase, api_error


OWNER = AuthContext(tab_id="tab-o", user_id="o1", role="owner", email="owner@example.com")
ANA = AuthContext(
    tab_id="tab-a",
    user_id="e1",
    role="administrative",
    is_shadow=True,
    owner_id="o1",
    permissions=PermissionDocument(allowed_garages=("g1",), sections=("precios",)),
)


def _set_auth(auth: AuthContext):
    async def _override():
        return auth
    app.dependency_overrides[get_current_auth] = _override


def _set_db(db: FakeSupabase):
    app.dependency_overrides[get_db] = lambda: db


def _clear():
    app.dependency_overrides.clear()


def _base_tables():
    return {
        "garages": [
            {"id": "g1", "owner_id": "o1", "name": "Centro", "address": "Calle 1", "cuit": "20-1"},
            {"id": "g2", "owner_id": "o1", "name": "Norte", "address": None, "cuit": None},
            {"id": "g3", "owner_id": "o2", "name": "Ajena", "address": None, "cuit": None},
        ],
        "building_configs": [
            {"garage_id": "g1", "count_subsuelos": 0, "has_planta_baja": False, "count_pisos": 2},
        ],
        "building_levels": [
            {"id": "lvl-1", "garage_id": "g1", "type": "piso", "level_number": 1,
             "display_name": "Piso 1", "sort_order": 1, "total_spots": 10},
            {"id": "lvl-2", "garage_id": "g1", "type": "piso", "level_number": 2,
             "display_name": "Piso 2", "sort_order": 2, "total_spots": 12},
        ],
        "financial_configs": [
            {"garage_id": "g1", "surcharge_config": {
                "global_default": {"steps": [{"day": 10, "percentage": 5}, {"day": 20, "percentage": 10}]},
                "monthly_overrides": {"5": {"steps": [{"day": 5, "percentage": 8}]}},
            }},
        ],
    }


def test_owner_creates_garage_with_empty_configs():
    db = FakeSupabase(_base_tables())
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.post("/api/garages/", json={"name": "Sur", "address": "Av 3", "tax_id": "30-9"})
    _clear()

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Sur"
    assert body["tax_id"] == "30-9"
    assert body["owner_id"] == "o1"
    stored = next(g for g in db.tables["garages"] if g["id"] == body["id"])
    assert stored["cuit"] == "30-9"
    assert any(row["garage_id"] == body["id"] for row in db.tables["building_configs"])
    assert any(row["garage_id"] == body["id"] for row in db.tables["financial_configs"])


def test_config_seed_failure_does_not_fail_creation():
    db = FakeSupabase(_base_tables())
    db.failures[("financial_configs", "insert")] = api_error("42501", "permission denied")
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.post("/api/garages/", json={"name": "Sur"})
    _clear()

    assert response.status_code == 201


def test_shadow_identities_cannot_create_garages():
    _set_auth(ANA)
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    response = client.post("/api/garages/", json={"name": "Sur"})
    _clear()

    assert response.status_code == 403


def test_desk_roles_are_sent_to_restricted():
    _set_auth(AuthContext(tab_id="t", user_id="op", role="operador", is_shadow=True, owner_id="o1"))
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    response = client.get("/api/garages/")
    _clear()

    assert response.status_code == 403
    assert response.json()["redirect_to"] == "/restricted"


def test_owner_is_sent_to_hub_for_foreign_garage():
    _set_auth(OWNER)
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    response = client.get("/api/garages/g3")
    _clear()

    assert response.status_code == 403
    assert response.json() == {"detail": "Garage not accessible", "redirect_to": "/setup/onboarding"}


def test_owner_updates_garage():
    db = FakeSupabase(_base_tables())
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.put("/api/garages/g2", json={"address": "Ruta 8", "tax_id": "27-5"})
    empty = client.put("/api/garages/g2", json={})
    _clear()

    assert response.status_code == 200
    assert response.json()["address"] == "Ruta 8"
    assert response.json()["tax_id"] == "27-5"
    assert empty.status_code == 400


def test_settings_section_is_required_to_update_garage():
    _set_auth(ANA)
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    response = client.put("/api/garages/g1", json={"name": "Otro"})
    _clear()

    assert response.status_code == 403
    assert response.json()["detail"] == "Section not permitted: ajustes"


def test_building_get_reports_levels_and_capacity():
    _set_auth(OWNER)
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    response = client.get("/api/garages/g1/building")
    _clear()

    assert response.status_code == 200
    body = response.json()
    assert body["config"]["count_pisos"] == 2
    assert [level["sort_order"] for level in body["levels"]] == [2, 1]
    assert body["total_capacity"] == 22


def test_building_save_adds_floor_and_preserves_existing_ones():
    db = FakeSupabase(_base_tables())
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.put(
        "/api/garages/g1/building",
        json={"count_subsuelos": 0, "has_planta_baja": False, "count_pisos": 3},
    )
    _clear()

    assert response.status_code == 200
    levels = {level["sort_order"]: level for level in response.json()["levels"]}
    assert levels[1]["id"] == "lvl-1" and levels[1]["total_spots"] == 10
    assert levels[2]["id"] == "lvl-2" and levels[2]["total_spots"] == 12
    assert levels[3]["id"] and levels[3]["total_spots"] == 0
    assert len(db.tables["building_levels"]) == 3
    assert db.tables["building_configs"][0]["count_pisos"] == 3


def test_building_save_removes_levels_no_longer_present():
    db = FakeSupabase(_base_tables())
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.put(
        "/api/garages/g1/building",
        json={"count_subsuelos": 1, "has_planta_baja": True, "count_pisos": 1, "capacities": {"-1": 30}},
    )
    _clear()

    assert response.status_code == 200
    stored = {row["sort_order"]: row for row in db.tables["building_levels"]}
    assert set(stored) == {1, 0, -1}
    assert stored[1]["id"] == "lvl-1"
    assert stored[-1]["total_spots"] == 30
    assert response.json()["total_capacity"] == 40


def test_building_preview_writes_nothing():
    db = FakeSupabase(_base_tables())
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.post(
        "/api/garages/g1/building/preview",
        json={"has_planta_baja": False, "count_pisos": 3, "capacities": {"3": 8}},
    )
    _clear()

    assert response.status_code == 200
    assert response.json()["total_capacity"] == 30
    assert all(op == "select" for _table, op, _filters in db.calls)


def test_surcharges_effective_rule_by_month():
    _set_auth(OWNER)
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    june = client.get("/api/garages/g1/surcharges/effective", params={"month": 6})
    july = client.get("/api/garages/g1/surcharges/effective", params={"month": 7})
    bad = client.get("/api/garages/g1/surcharges/effective", params={"month": 13})
    _clear()

    assert june.json() == {
        "month": 6,
        "month_name": "Junio",
        "overridden": True,
        "rule": {"steps": [{"day": 5, "percentage": 8.0}]},
    }
    assert july.json()["overridden"] is False
    assert [s["day"] for s in july.json()["rule"]["steps"]] == [10, 20]
    assert bad.status_code == 422


def test_surcharges_save_sorts_and_reports_issues():
    db = FakeSupabase(_base_tables())
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.put(
        "/api/garages/g1/surcharges",
        json={
            "global_default": {"steps": [{"day": 20, "percentage": 10}, {"day": 10, "percentage": 5},
                                         {"day": 30, "percentage": -2}]},
            "monthly_overrides": {},
        },
    )
    _clear()

    assert response.status_code == 200
    body = response.json()
    assert body["issues"] == [{"scope": "global", "index": 1, "day": 10, "previous_day": 20}]
    assert [s["day"] for s in body["config"]["global_default"]["steps"]] == [10, 20]
    stored = db.tables["financial_configs"][0]["surcharge_config"]
    assert stored["monthly_overrides"] == {}
    assert len(db.tables["financial_configs"]) == 1


def test_surcharges_validate_and_reject_bad_month_keys():
    _set_auth(OWNER)
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    valid = client.post(
        "/api/garages/g1/surcharges/validate",
        json={"global_default": {"steps": [{"day": 3, "percentage": 1}]}},
    )
    bad_key = client.post(
        "/api/garages/g1/surcharges/validate",
        json={"monthly_overrides": {"12": {"steps": []}}},
    )
    _clear()

    assert valid.json() == {"valid": True, "issues": []}
    assert bad_key.status_code == 422


def test_surcharges_reject_non_finite_percentages():
    db = FakeSupabase(_base_tables())
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    nan_literal = client.put(
        "/api/garages/g1/surcharges",
        content='{"global_default": {"steps": [{"day": 10, "percentage": NaN}]}}',
        headers={"Content-Type": "application/json"},
    )
    inf_string = client.put(
        "/api/garages/g1/surcharges",
        json={"global_default": {"steps": [{"day": 10, "percentage": "inf"}]}},
    )
    _clear()

    assert nan_literal.status_code == 422
    assert inf_string.status_code == 422
    assert not any(op in ("update", "insert", "upsert") for table, op, _f in db.calls if table == "financial_configs")


def test_finance_section_required_for_surcharges():
    _set_auth(ANA)
    _set_db(FakeSupabase(_base_tables()))

    client = TestClient(app)
    response = client.get("/api/garages/g1/surcharges")
    _clear()

    assert response.status_code == 403


def test_backend_failure_is_reported_without_raw_text():
    db = FakeSupabase(_base_tables())
    db.failures[("financial_configs", "select")] = api_error("XX000", "secret internals")
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.get("/api/garages/g1/surcharges")
    _clear()

    assert response.status_code == 502
    assert response.json()["detail"]["operation"] == "surcharges_load"
    assert "secret internals" not in response.text
