from __future__ import annotations

import asyncio
from typing import Any, Callable

from supabase import Client, create_client
from supabase.lib.client_options import ClientOptions

from cochera.auth.backend import AuthListener, InvalidCredentials
from cochera.auth.identity import StandardIdentity
from cochera.auth.storage import MemoryStorage
from cochera.config import settings


def identity_from_session(session: Any) -> StandardIdentity | None:
    if session is None:
        return None
    user = getattr(session, "user", None)
    token = getattr(session, "access_token", None)
    if user is None or not token:
        return None
    return StandardIdentity(
        token=token,
        user_id=str(user.id),
        email=getattr(user, "email", None),
        metadata=dict(getattr(user, "user_metadata", None) or {}),
    )


def create_tab_client(token_storage: MemoryStorage) -> Client:
    """Anon-key client whose GoTrue session lives in the tab's token storage."""
    return create_client(
        settings.supabase_url,
        settings.supabase_anon_key,
        options=ClientOptions(
            storage=token_storage,
            auto_refresh_token=True,
            persist_session=True,
        ),
    )


class SupabaseTabBackend:
    """Supabase implementation of the tab backend.

    The client is synchronous; every call runs in a worker thread so the
    event loop stays free while a request is outstanding.
    """

    def __init__(self, client: Client, token_storage: MemoryStorage) -> None:
        self.client = client
        self.token_storage = token_storage

    async def get_session(self) -> StandardIdentity | None:
        session = await asyncio.to_thread(self.client.auth.get_session)
        return identity_from_session(session)

    async def sign_in(self, email: str, password: str) -> StandardIdentity:
        response = await asyncio.to_thread(
            self.client.auth.sign_in_with_password,
            {"email": email, "password": password},
        )
        identity = identity_from_session(response.session)
        if identity is None:
            raise InvalidCredentials()
        return identity

    async def sign_up(
        self, email: str, password: str, full_name: str
    ) -> tuple[str, StandardIdentity | None]:
        response = await asyncio.to_thread(
            self.client.auth.sign_up,
            {
                "email": email,
                "password": password,
                "options": {"data": {"full_name": full_name}},
            },
        )
        if response.user is None:
            raise InvalidCredentials("No se pudo crear el usuario.")
        return str(response.user.id), identity_from_session(response.session)

    async def sign_out(self) -> None:
        await asyncio.to_thread(self.client.auth.sign_out)

    async def login_employee(self, username: str, password: str) -> dict[str, Any] | None:
        result = await asyncio.to_thread(
            lambda: self.client.rpc(
                "login_employee",
                {"p_username": username, "p_password": password},
            ).execute()
        )
        data = result.data
        if isinstance(data, list):
            data = data[0] if data else None
        return data or None

    async def fetch_profile_row(self, user_id: str) -> dict[str, Any] | None:
        result = await asyncio.to_thread(
            lambda: self.client.table("profiles").select(
                "id, email, full_name, role"
            ).eq("id", user_id).limit(1).execute()
        )
        if not result.data:
            return None
        return result.data[0]

    async def upsert_profile(self, row: dict[str, Any]) -> None:
        await asyncio.to_thread(
            lambda: self.client.table("profiles").upsert(row, on_conflict="id").execute()
        )

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        loop = asyncio.get_running_loop()

        # GoTrue notifies on whatever thread made the call; hop back to the loop.
        def _callback(event: Any, session: Any) -> None:
            loop.call_soon_threadsafe(listener, str(event), identity_from_session(session))

        subscription = self.client.auth.on_auth_state_change(_callback)
        return subscription.unsubscribe

    def clear_token_storage(self) -> None:
        self.token_storage.clear()


def supabase_backend_factory(token_storage: MemoryStorage) -> SupabaseTabBackend:
    return SupabaseTabBackend(create_tab_client(token_storage), token_storage)
