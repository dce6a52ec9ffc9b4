from __future__ import annotations

from typing import Any, Callable, Protocol

from cochera.auth.identity import StandardIdentity


SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

AuthListener = Callable[[str, StandardIdentity | None], None]


class InvalidCredentials(Exception):
    """Raised when the backend accepted the call but rejected the credentials."""

    def __init__(self, message: str = "Invalid login credentials") -> None:
        super().__init__(message)
        self.message = message


class TabBackend(Protocol):
    """Everything a tab session needs from the hosted backend."""

    client: Any

    async def get_session(self) -> StandardIdentity | None: ...

    async def sign_in(self, email: str, password: str) -> StandardIdentity: ...

    async def sign_up(
        self, email: str, password: str, full_name: str
    ) -> tuple[str, StandardIdentity | None]: ...

    async def sign_out(self) -> None: ...

    async def login_employee(self, username: str, password: str) -> dict[str, Any] | None: ...

    async def fetch_profile_row(self, user_id: str) -> dict[str, Any] | None: ...

    async def upsert_profile(self, row: dict[str, Any]) -> None: ...

    def subscribe(self, listener: AuthListener) -> Callable[[], None]: ...

    def clear_token_storage(self) -> None: ...
