from fastapi.testclient import TestClient

from cochera.auth.context import AuthContext
from cochera.auth.dependencies import get_current_auth, get_db
from cochera.auth.roles import PermissionDocument
from cochera.main import app
from tests.fakes import FakeSupabase, api_error


OWNER = AuthContext(tab_id="tab-o", user_id="o1", role="owner")
MANAGER = AuthContext(
    tab_id="tab-m",
    user_id="m1",
    role="manager",
    is_shadow=True,
    owner_id="o1",
    permissions=PermissionDocument(allowed_garages=("g1",), sections=("cashflow",)),
)


def _set_auth(auth: AuthContext):
    async def _override():
        return auth
    app.dependency_overrides[get_current_auth] = _override


def _set_db(db: FakeSupabase):
    app.dependency_overrides[get_db] = lambda: db


def _clear():
    app.dependency_overrides.clear()


def _db() -> FakeSupabase:
    return FakeSupabase({
        "garages": [
            {"id": "g1", "owner_id": "o1", "name": "Centro"},
            {"id": "g2", "owner_id": "o1", "name": "Norte"},
            {"id": "g3", "owner_id": "o2", "name": "Ajena"},
        ],
        "movements": [
            {"id": "m1", "garage_id": "g1", "type": "CobroEstadia", "amount": 1000, "payment_method": "EFECTIVO",
             "timestamp": "2026-05-02T10:00:00+00:00", "operator": "Oscar Perez", "plate": "AB123CD",
             "related_entity_id": "s-old"},
            {"id": "m2", "garage_id": "g2", "type": "CobroAbono", "amount": 5000, "payment_method": "MERCADOPAGO",
             "timestamp": "2026-05-03T12:00:00+00:00", "operator_name": "Ana"},
            {"id": "m3", "garage_id": "g3", "type": "CobroEstadia", "amount": 9999, "payment_method": "EFECTIVO",
             "timestamp": "2026-05-04T12:00:00+00:00"},
            {"id": "m4", "garage_id": "g1", "type": "CobroAnticipado", "amount": 300, "payment_method": "efectivo",
             "timestamp": "2026-04-30T23:00:00+00:00", "plate": "ZZ999"},
        ],
        "stays": [
            {"id": "s-old", "garage_id": "g1", "plate": "AB123CD", "vehicle_type": "Auto", "active": False,
             "entry_time": "2026-05-02T08:00:00+00:00", "exit_time": "2026-05-02T10:00:00+00:00"},
            {"id": "s1", "garage_id": "g1", "plate": "AB123CD", "vehicle_type": "Moto", "active": True,
             "entry_time": "2026-05-03T09:00:00+00:00"},
            {"id": "s2", "garage_id": "g2", "plate": "XY", "vehicle_type": "Moto", "active": True,
             "entry_time": "2026-05-03T11:00:00+00:00"},
            {"id": "s3", "garage_id": "g3", "plate": "QQ", "vehicle_type": "Auto", "active": True,
             "entry_time": "2026-05-03T12:00:00+00:00"},
        ],
        "vehicles": [
            {"id": "v1", "garage_id": "g1", "plate": "AB123CD", "type": "Auto", "is_subscriber": True},
        ],
        "employee_accounts": [
            {"id": "e1", "owner_id": "o1", "first_name": "Oscar", "last_name": "Perez", "username": "oscar"},
            {"id": "e2", "owner_id": "o1", "first_name": "Ana", "last_name": "", "username": "ana"},
            {"id": "e3", "owner_id": "o2", "first_name": "Otro", "last_name": "", "username": "otro"},
        ],
    })


def _ids(response) -> list[str]:
    return [row["id"] for row in response.json()["movements"]]


def test_movements_span_accessible_garages_newest_first():
    _set_auth(OWNER)
    _set_db(_db())

    client = TestClient(app)
    response = client.get("/api/cashflow/movements")
    _clear()

    assert response.status_code == 200
    body = response.json()
    assert _ids(response) == ["m2", "m1", "m4"]
    assert body["total"] == 6300
    first_stay = body["movements"][1]
    assert first_stay["garage_name"] == "Centro"
    assert first_stay["vehicle_type"] == "Auto"
    assert first_stay["stay_entry_time"] == "2026-05-02T08:00:00+00:00"
    assert body["movements"][0]["operator"] == "Ana"


def test_garage_filter_narrows_and_foreign_garage_redirects():
    db = _db()
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    own = client.get("/api/cashflow/movements", params={"garage_id": "g1"})
    foreign = client.get("/api/cashflow/movements", params={"garage_id": "g3"})
    _clear()

    assert _ids(own) == ["m1", "m4"]
    assert foreign.status_code == 403
    assert foreign.json()["redirect_to"] == "/setup/onboarding"
    assert not any(table == "movements" and ("in", "garage_id", ("g3",)) in filters
                   for table, _op, filters in db.calls)


def test_movement_filters():
    _set_auth(OWNER)
    _set_db(_db())

    client = TestClient(app)
    by_operator = client.get("/api/cashflow/movements", params={"operator_id": "e1"})
    by_method = client.get("/api/cashflow/movements", params={"payment_method": "efectivo"})
    by_tariff = client.get("/api/cashflow/movements", params={"tariff_type": "Abono"})
    by_range = client.get("/api/cashflow/movements", params={"start_date": "2026-05-01"})
    by_day = client.get("/api/cashflow/movements", params={"exact_date": "2026-04-30"})
    _clear()

    assert _ids(by_operator) == ["m1"]
    assert _ids(by_method) == ["m1", "m4"]
    assert _ids(by_tariff) == ["m2"]
    assert _ids(by_range) == ["m2", "m1"]
    assert _ids(by_day) == ["m4"]
    assert by_method.json()["total"] == 1300


def test_active_stays_use_registered_vehicle_data():
    _set_auth(OWNER)
    _set_db(_db())

    client = TestClient(app)
    response = client.get("/api/cashflow/stays")
    _clear()

    assert response.status_code == 200
    body = response.json()
    assert [row["id"] for row in body] == ["s2", "s1"]
    assert body[1]["vehicle_type"] == "Auto"
    assert body[1]["is_subscriber"] is True
    assert body[0]["garage_name"] == "Norte"


def test_manager_sees_only_assigned_garages():
    _set_auth(MANAGER)
    _set_db(_db())

    client = TestClient(app)
    movements = client.get("/api/cashflow/movements")
    employees = client.get("/api/cashflow/employees")
    _clear()

    assert _ids(movements) == ["m1", "m4"]
    assert employees.json() == [{"id": "e2", "full_name": "Ana"}, {"id": "e1", "full_name": "Oscar Perez"}]


def test_cashflow_requires_the_hub_section():
    client = TestClient(app)

    _set_db(_db())
    _set_auth(AuthContext(
        tab_id="t", user_id="m2", role="manager", is_shadow=True, owner_id="o1",
        permissions=PermissionDocument(allowed_garages=("g1",), sections=("access",)),
    ))
    no_grant = client.get("/api/cashflow/movements")
    _set_auth(AuthContext(
        tab_id="t", user_id="e-adm", role="administrative", is_shadow=True, owner_id="o1",
        permissions=PermissionDocument(allowed_garages=("g1",), sections=("finanzas",)),
    ))
    administrative = client.get("/api/cashflow/movements")
    _set_auth(AuthContext(tab_id="t", user_id="op", role="operador", is_shadow=True, owner_id="o1"))
    operator = client.get("/api/cashflow/stays")
    _clear()

    assert no_grant.status_code == 403
    assert administrative.status_code == 403
    assert administrative.json()["redirect_to"] == "/g1/dashboard"
    assert operator.json()["redirect_to"] == "/restricted"


def test_filter_options():
    _set_auth(OWNER)
    _set_db(_db())

    client = TestClient(app)
    response = client.get("/api/cashflow/filters")
    _clear()

    body = response.json()
    assert [g["id"] for g in body["garages"]] == ["g1", "g2"]
    assert body["vehicle_types"] == ["AUTO"]
    assert body["tariff_types"] == ["Hora", "Abono", "Anticipado"]


def test_movement_load_failure_is_structured():
    db = _db()
    db.failures[("movements", "select")] = api_error("XX000", "relation secret")
    _set_auth(OWNER)
    _set_db(db)

    client = TestClient(app)
    response = client.get("/api/cashflow/movements")
    _clear()

    assert response.status_code == 502
    assert response.json()["detail"]["operation"] == "cashflow_movements"
    assert "secret" not in response.text
