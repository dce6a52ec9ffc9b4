from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable

from cochera.auth.backend import (
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    InvalidCredentials,
    TabBackend,
)
from cochera.auth.identity import (
    Profile,
    ShadowIdentity,
    StandardIdentity,
    provisional_profile,
    shadow_profile,
)
from cochera.auth.profiles import ProfileResolver
from cochera.auth.roles import PermissionDocument, Role
from cochera.auth.storage import EphemeralStorage
from cochera.observability import incr_metric, log_event


IDENTITY_NONE = "none"
IDENTITY_STANDARD = "standard"
IDENTITY_SHADOW = "shadow"

SnapshotListener = Callable[["SessionSnapshot"], None]


@dataclass(frozen=True)
class SessionSnapshot:
    standard: StandardIdentity | None = None
    shadow: ShadowIdentity | None = None
    profile: Profile | None = None
    loading: bool = True
    initialized: bool = False
    profile_settled: bool = False
    reset_available: bool = False

    @property
    def kind(self) -> str:
        if self.shadow is not None:
            return IDENTITY_SHADOW
        if self.standard is not None:
            return IDENTITY_STANDARD
        return IDENTITY_NONE

    @property
    def authenticated(self) -> bool:
        return self.kind != IDENTITY_NONE

    @property
    def identity_key(self) -> str | None:
        if self.shadow is not None:
            return f"shadow:{self.shadow.id}"
        if self.standard is not None:
            return f"standard:{self.standard.user_id}"
        return None

    @property
    def role(self) -> Role | None:
        return self.profile.role if self.profile else None

    @property
    def permissions(self) -> PermissionDocument:
        if self.shadow is not None:
            return self.shadow.permissions
        return PermissionDocument()


class LoadingWatchdog:
    """Flags a stuck loading state once the deadline passes. Cancels nothing."""

    def __init__(self, timeout: float, on_expire: Callable[[], None]) -> None:
        self._timeout = timeout
        self._on_expire = on_expire
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._timeout, self._fire)

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._on_expire()


class SessionStore:
    """Holds at most one of: no identity, a standard identity, a shadow identity.

    Lifecycle is create -> initialize -> [active] -> dispose. All mutation
    happens on the event loop; backend auth events are marshalled onto it by
    the backend adapter.
    """

    def __init__(
        self,
        backend: TabBackend,
        storage: EphemeralStorage,
        *,
        resolver: ProfileResolver,
        shadow_key: str = "garage_shadow_user",
        signout_timeout: float = 3.0,
        watchdog_seconds: float = 7.0,
    ) -> None:
        self.backend = backend
        self.storage = storage
        self.resolver = resolver
        self.shadow_key = shadow_key
        self.signout_timeout = signout_timeout

        self._standard: StandardIdentity | None = None
        self._shadow: ShadowIdentity | None = None
        self._profile: Profile | None = None
        self._loading = False
        self._initialized = False
        self._profile_settled = False
        self._reset_available = False
        self._disposed = False

        # Bumped on every identity change; stale profile results are dropped.
        self._generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        self._detached: set[asyncio.Task[Any]] = set()
        self._listeners: list[SnapshotListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._watchdog = LoadingWatchdog(watchdog_seconds, self._on_watchdog_expired)

    # -- observation -------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            standard=self._standard,
            shadow=self._shadow,
            profile=self._profile,
            loading=self._loading,
            initialized=self._initialized,
            profile_settled=self._profile_settled,
            reset_available=self._reset_available,
        )

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)

    @property
    def disposed(self) -> bool:
        return self._disposed

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self) -> SessionSnapshot:
        if self._unsubscribe is None:
            self._unsubscribe = self.backend.subscribe(self._on_auth_event)
        self._set_loading(True)
        outcome = IDENTITY_NONE
        try:
            identity = await self.backend.get_session()
            if identity is not None:
                self._accept_standard(identity, retry=False)
                outcome = IDENTITY_STANDARD
            elif self._restore_shadow():
                outcome = IDENTITY_SHADOW
        except Exception as exc:
            outcome = "failed"
            log_event(
                "session_initialize_failed",
                level=logging.ERROR,
                error=exc.__class__.__name__,
            )
            self._clear_identity()
        finally:
            self._initialized = True
            self._set_loading(False)
        incr_metric("session.initialize", outcome=outcome)
        log_event("session_initialized", outcome=outcome)
        return self.snapshot()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._watchdog.disarm()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()

    # -- sign in / sign out ------------------------------------------------

    async def login(self, identifier: str, password: str) -> SessionSnapshot:
        identifier = identifier.strip()
        if "@" in identifier:
            await self.sign_in(identifier, password)
        else:
            record = await self.backend.login_employee(identifier.lower(), password)
            if not record:
                raise InvalidCredentials("Usuario o contraseña incorrectos.")
            self.establish_shadow(record)
        return self.snapshot()

    async def sign_in(self, email: str, password: str) -> StandardIdentity:
        self._set_loading(True)
        try:
            identity = await self.backend.sign_in(email, password)
            self._accept_standard(identity, retry=True)
            return identity
        finally:
            self._set_loading(False)

    async def sign_up(self, email: str, password: str, full_name: str) -> bool:
        """Register an owner. Returns True when a session was opened right away."""
        user_id, identity = await self.backend.sign_up(email, password, full_name)
        try:
            await self.backend.upsert_profile(
                {"id": user_id, "email": email, "full_name": full_name, "role": Role.OWNER.value}
            )
        except Exception as exc:
            # The row is also provisioned server-side; the provisional profile covers the gap.
            log_event(
                "signup_profile_upsert_failed",
                level=logging.WARNING,
                user_id=user_id,
                error=exc.__class__.__name__,
            )
        if identity is None:
            return False
        self._accept_standard(identity, retry=True)
        return True

    def establish_shadow(self, record: dict[str, Any]) -> ShadowIdentity:
        # Parse first so a bad record leaves the current state untouched.
        identity = ShadowIdentity.from_record(record)
        self._generation += 1
        self._standard = None
        self.backend.clear_token_storage()
        self.storage.set_item(self.shadow_key, identity.dumps())
        self._shadow = identity
        self._profile = shadow_profile(identity)
        self._profile_settled = True
        incr_metric("session.shadow.established", role=identity.role.value)
        log_event("shadow_session_established", employee_id=identity.id, role=identity.role.value)
        self._notify()
        return identity

    async def sign_out(self) -> None:
        self._set_loading(True)
        self._generation += 1
        try:
            self.storage.remove_item(self.shadow_key)
            task = self._spawn(self.backend.sign_out(), detached=True)
            done, _ = await asyncio.wait({task}, timeout=self.signout_timeout)
            if not done:
                incr_metric("session.signout.timeout")
                log_event(
                    "signout_timeout",
                    level=logging.WARNING,
                    timeout_seconds=self.signout_timeout,
                )
        finally:
            self.backend.clear_token_storage()
            self._clear_identity()
            self._set_loading(False)

    def abandon(self) -> None:
        """Drop all identity state locally and fire the backend sign-out without waiting."""
        self.storage.remove_item(self.shadow_key)
        self._spawn(self.backend.sign_out(), detached=True)
        self.backend.clear_token_storage()
        self._clear_identity()

    def update_shadow_permissions(self, employee_id: str, document: PermissionDocument) -> bool:
        if self._shadow is None or self._shadow.id != employee_id:
            return False
        self._shadow = replace(self._shadow, permissions=document)
        self.storage.set_item(self.shadow_key, self._shadow.dumps())
        self._notify()
        return True

    # -- backend events ----------------------------------------------------

    def _on_auth_event(self, event: str, identity: StandardIdentity | None) -> None:
        if self._disposed:
            return
        if event == SIGNED_OUT:
            if self._shadow is None:
                self._clear_identity()
            return
        if identity is None:
            return
        if event == TOKEN_REFRESHED:
            if self._standard is not None and self._standard.user_id == identity.user_id:
                self._standard = self._standard.with_token(identity.token)
            return
        if event == SIGNED_IN:
            cold = not self._initialized
            if cold:
                self._set_loading(True)
            self._accept_standard(identity, retry=True)
            if cold:
                self._set_loading(False)
            return
        # USER_UPDATED and the like only refresh the token of the current user.
        if self._standard is not None and self._standard.user_id == identity.user_id:
            self._standard = self._standard.with_token(identity.token)

    # -- internals ---------------------------------------------------------

    def _accept_standard(self, identity: StandardIdentity, *, retry: bool) -> None:
        if self._standard is not None and self._standard.user_id == identity.user_id:
            # Same user signing in again (refocus, duplicate event): token only.
            self._standard = self._standard.with_token(identity.token)
            return
        self._generation += 1
        generation = self._generation
        self._shadow = None
        self.storage.remove_item(self.shadow_key)
        self._standard = identity
        self._profile = provisional_profile(identity)
        self._profile_settled = False
        self._notify()
        self._spawn(self._resolve_profile(identity, generation, retry))

    async def _resolve_profile(
        self, identity: StandardIdentity, generation: int, retry: bool
    ) -> None:
        profile = await self.resolver.resolve(identity, retry=retry)
        if self._disposed or generation != self._generation:
            log_event("profile_result_discarded", user_id=identity.user_id)
            return
        self._profile = profile
        self._profile_settled = True
        self._notify()

    def _restore_shadow(self) -> bool:
        blob = self.storage.get_item(self.shadow_key)
        if not blob:
            return False
        try:
            identity = ShadowIdentity.loads(blob)
        except (ValueError, TypeError):
            log_event("shadow_session_discarded", level=logging.WARNING, reason="corrupt")
            self.storage.remove_item(self.shadow_key)
            return False
        self._standard = None
        self._shadow = identity
        self._profile = shadow_profile(identity)
        self._profile_settled = True
        self._notify()
        return True

    def _clear_identity(self) -> None:
        self._generation += 1
        self._standard = None
        self._shadow = None
        self._profile = None
        self._profile_settled = False
        self._notify()

    def _set_loading(self, loading: bool) -> None:
        if self._disposed:
            return
        self._loading = loading
        if loading:
            self._watchdog.arm()
        else:
            self._watchdog.disarm()
            self._reset_available = False
        self._notify()

    def _on_watchdog_expired(self) -> None:
        if not self._loading or self._disposed:
            return
        self._reset_available = True
        incr_metric("session.watchdog.expired")
        log_event("loading_watchdog_expired", level=logging.WARNING)
        self._notify()

    def _spawn(self, coro: Any, *, detached: bool = False) -> asyncio.Task[Any]:
        # Detached tasks (backend sign-out) outlive the store and are never cancelled.
        task = asyncio.ensure_future(coro)
        (self._detached if detached else self._tasks).add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        self._detached.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_event(
                "session_background_task_failed",
                level=logging.WARNING,
                error=exc.__class__.__name__,
            )
