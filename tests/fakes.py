import asyncio
import json
from datetime import datetime, timezone

from postgrest.exceptions import APIError

from cochera.auth.backend import InvalidCredentials
from cochera.auth.identity import StandardIdentity
from cochera.auth.storage import MemoryStorage


SESSION_KEY = "sb-fake-auth-token"


def api_error(code: str, message: str = "backend error", **extra) -> APIError:
    return APIError({"message": message, "code": code, "details": extra.get("details"), "hint": extra.get("hint")})


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, table_name: str, db: "FakeSupabase"):
        self.table_name = table_name
        self.db = db
        self.operation = "select"
        self.filters = []
        self.payload = None
        self.on_conflict = None
        self.order_by = []
        self.limit_count = None

    def select(self, _fields: str = "*", **_kwargs):
        self.operation = "select"
        return self

    def insert(self, payload):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict):
        self.operation = "update"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict: str = "id"):
        self.operation = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def eq(self, key: str, value):
        self.filters.append(("eq", key, value))
        return self

    def in_(self, key: str, values):
        self.filters.append(("in", key, tuple(values)))
        return self

    def order(self, key: str, desc: bool = False):
        self.order_by.append((key, desc))
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    def _matches(self, row: dict) -> bool:
        for kind, key, value in self.filters:
            if kind == "eq" and row.get(key) != value:
                return False
            if kind == "in" and row.get(key) not in value:
                return False
        return True

    def _new_row(self, table: list, payload: dict) -> dict:
        row = dict(payload)
        self.db.sequence += 1
        row.setdefault("id", f"{self.table_name}-{self.db.sequence}")
        row.setdefault("created_at", _ts())
        table.append(row)
        return dict(row)

    def execute(self):
        self.db.calls.append((self.table_name, self.operation, tuple(self.filters)))
        failure = self.db.failures.get((self.table_name, self.operation))
        if failure is not None:
            raise failure
        table = self.db.tables.setdefault(self.table_name, [])

        if self.operation == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([self._new_row(table, p or {}) for p in payloads])

        if self.operation == "upsert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = [k.strip() for k in self.on_conflict.split(",")]
            written = []
            for payload in payloads:
                existing = next(
                    (row for row in table if all(row.get(k) == payload.get(k) for k in keys)),
                    None,
                )
                if existing is None:
                    written.append(self._new_row(table, payload))
                else:
                    existing.update(payload)
                    written.append(dict(existing))
            return FakeResponse(written)

        if self.operation == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(self.payload or {})
                    updated.append(dict(row))
            return FakeResponse(updated)

        if self.operation == "delete":
            removed = [row for row in table if self._matches(row)]
            self.db.tables[self.table_name] = [row for row in table if not self._matches(row)]
            return FakeResponse(removed)

        rows = [dict(row) for row in table if self._matches(row)]
        for key, desc in reversed(self.order_by):
            rows.sort(key=lambda r: (r.get(key) is None, r.get(key)), reverse=desc)
        if self.limit_count is not None:
            rows = rows[: self.limit_count]
        return FakeResponse(rows)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        self.db.calls.append(("rpc", self.name, tuple(sorted(self.params.items()))))
        failure = self.db.failures.get(("rpc", self.name))
        if failure is not None:
            raise failure
        handler = self.db.rpcs.get(self.name)
        if handler is None:
            raise api_error("PGRST202", f"Could not find the function public.{self.name}")
        return FakeResponse(handler(self.params))


class FakeSupabase:
    def __init__(self, tables: dict | None = None):
        self.tables = tables if tables is not None else {}
        self.rpcs = {}
        self.failures = {}
        self.calls = []
        self.sequence = 0

    def table(self, table_name: str):
        return FakeQuery(table_name, self)

    def rpc(self, name: str, params: dict | None = None):
        return FakeRpc(self, name, params or {})

    def queried_values(self) -> set:
        """Every value any recorded query filtered on."""
        values = set()
        for _table, _op, filters in self.calls:
            for entry in filters:
                value = entry[-1]
                if isinstance(value, tuple):
                    values.update(value)
                else:
                    values.add(value)
        return values


class FakeAuthServer:
    """Hosted auth + database shared by every tab backend built from it."""

    def __init__(self, tables: dict | None = None):
        self.db = FakeSupabase(tables)
        self.users = {}
        self.profiles = {}
        self.employees = {}
        self.profile_errors = []
        self.profile_gate: asyncio.Event | None = None
        self.session_gate: asyncio.Event | None = None
        self.session_error: Exception | None = None
        self.upsert_error: Exception | None = None
        self.sign_out_release: asyncio.Event | None = None
        self.confirm_email = False
        self.sign_out_calls = 0
        self.profile_fetches = 0
        self.backends = []

    def add_user(self, email: str, password: str, user_id: str, metadata: dict | None = None) -> None:
        self.users[email] = {"id": user_id, "password": password, "metadata": metadata or {}}

    def add_employee(self, username: str, password: str, record: dict) -> None:
        self.employees[username] = (password, record)

    def factory(self, token_storage: MemoryStorage) -> "FakeBackend":
        backend = FakeBackend(self, token_storage)
        self.backends.append(backend)
        return backend


class FakeBackend:
    def __init__(self, server: FakeAuthServer | None = None, token_storage: MemoryStorage | None = None):
        self.server = server or FakeAuthServer()
        self.token_storage = token_storage if token_storage is not None else MemoryStorage()
        self.client = self.server.db
        self.listeners = []
        self.token_cleared = 0

    def _identity(self, user: dict, email: str) -> StandardIdentity:
        return StandardIdentity(
            token=f"token-{user['id']}",
            user_id=user["id"],
            email=email,
            metadata=dict(user["metadata"]),
        )

    def _persist(self, identity: StandardIdentity) -> None:
        self.token_storage.set_item(SESSION_KEY, json.dumps({
            "token": identity.token,
            "user_id": identity.user_id,
            "email": identity.email,
            "metadata": identity.metadata,
        }))

    async def get_session(self):
        if self.server.session_gate is not None:
            await self.server.session_gate.wait()
        if self.server.session_error is not None:
            raise self.server.session_error
        blob = self.token_storage.get_item(SESSION_KEY)
        if not blob:
            return None
        data = json.loads(blob)
        return StandardIdentity(
            token=data["token"],
            user_id=data["user_id"],
            email=data["email"],
            metadata=data["metadata"],
        )

    async def sign_in(self, email: str, password: str) -> StandardIdentity:
        user = self.server.users.get(email)
        if user is None or user["password"] != password:
            raise InvalidCredentials()
        identity = self._identity(user, email)
        self._persist(identity)
        return identity

    async def sign_up(self, email: str, password: str, full_name: str):
        user_id = f"user-{len(self.server.users) + 1}"
        self.server.add_user(email, password, user_id, {"full_name": full_name})
        if self.server.confirm_email:
            return user_id, None
        identity = self._identity(self.server.users[email], email)
        self._persist(identity)
        return user_id, identity

    async def sign_out(self) -> None:
        self.server.sign_out_calls += 1
        if self.server.sign_out_release is not None:
            await self.server.sign_out_release.wait()

    async def login_employee(self, username: str, password: str):
        entry = self.server.employees.get(username)
        if entry is None or entry[0] != password:
            return None
        return dict(entry[1])

    async def fetch_profile_row(self, user_id: str):
        if self.server.profile_gate is not None:
            await self.server.profile_gate.wait()
        self.server.profile_fetches += 1
        if self.server.profile_errors:
            raise self.server.profile_errors.pop(0)
        return self.server.profiles.get(user_id)

    async def upsert_profile(self, row: dict) -> None:
        if self.server.upsert_error is not None:
            raise self.server.upsert_error
        self.server.profiles[row["id"]] = dict(row)

    def subscribe(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    def emit(self, event: str, identity: StandardIdentity | None) -> None:
        for listener in list(self.listeners):
            listener(event, identity)

    def clear_token_storage(self) -> None:
        self.token_cleared += 1
        self.token_storage.clear()


async def settle(rounds: int = 10) -> None:
    """Let spawned profile resolutions run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
