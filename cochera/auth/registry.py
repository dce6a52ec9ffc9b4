from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from cochera.auth.backend import TabBackend
from cochera.auth.jwt import create_tab_token
from cochera.auth.profiles import ProfileResolver, Sleep
from cochera.auth.roles import PermissionDocument
from cochera.auth.routing import LandingDispatcher
from cochera.auth.storage import MemoryStorage
from cochera.auth.store import SessionStore
from cochera.config import Settings, settings as default_settings
from cochera.observability import incr_metric, log_event


BackendFactory = Callable[[MemoryStorage], TabBackend]
Clock = Callable[[], float]


@dataclass
class TabSession:
    id: str
    storage: MemoryStorage
    token_storage: MemoryStorage
    backend: TabBackend
    store: SessionStore
    dispatcher: LandingDispatcher
    last_seen: float = 0.0
    token_expires_at: float | None = field(default=None)


class SessionRegistry:
    """Live tab sessions keyed by tab id.

    Tabs nobody can address any more (token expired) or that sat idle past
    the configured timeout are evicted by ``sweep``.
    """

    def __init__(
        self,
        backend_factory: BackendFactory,
        *,
        config: Settings | None = None,
        sleep: Sleep | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._backend_factory = backend_factory
        self._config = config or default_settings
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._tabs: dict[str, TabSession] = {}

    def __len__(self) -> int:
        return len(self._tabs)

    def get(self, tab_id: str) -> TabSession | None:
        tab = self._tabs.get(tab_id)
        if tab is not None:
            tab.last_seen = self._clock()
        return tab

    async def open(self) -> TabSession:
        await self.sweep()
        tab = await self._build(uuid.uuid4().hex, MemoryStorage(), MemoryStorage())
        incr_metric("tabs.opened")
        return tab

    def issue_token(self, tab: TabSession) -> str:
        tab.token_expires_at = self._clock() + self._config.session_token_expiration_minutes * 60
        return create_tab_token(tab.id)

    async def reload(self, tab_id: str) -> TabSession:
        old = self._require(tab_id)
        old.store.dispose()
        # Same storages and the same client: shadow sessions rehydrate, standard
        # ones recover from the token store, and only one client refreshes it.
        tab = await self._build(tab_id, old.storage, old.token_storage, backend=old.backend)
        tab.token_expires_at = old.token_expires_at
        return tab

    async def hard_reset(self, tab_id: str) -> TabSession:
        old = self._require(tab_id)
        old.store.abandon()
        old.storage.clear()
        old.token_storage.clear()
        old.store.dispose()
        incr_metric("tabs.hard_reset")
        log_event("tab_hard_reset", level=logging.WARNING, tab_id=tab_id)
        tab = await self._build(tab_id, MemoryStorage(), MemoryStorage())
        tab.token_expires_at = old.token_expires_at
        return tab

    async def close(self, tab_id: str) -> None:
        """Sign the tab out and forget it."""
        tab = self._tabs.pop(tab_id, None)
        if tab is None:
            return
        try:
            await tab.store.sign_out()
        finally:
            tab.store.dispose()
        incr_metric("tabs.closed")

    def discard(self, tab_id: str) -> None:
        """Forget a tab that never held an identity. No backend call is made."""
        tab = self._tabs.pop(tab_id, None)
        if tab is None:
            return
        tab.store.dispose()
        tab.storage.clear()
        tab.token_storage.clear()
        incr_metric("tabs.discarded")

    async def sweep(self) -> int:
        now = self._clock()
        idle_limit = self._config.tab_idle_timeout_minutes * 60
        stale = [
            tab for tab in self._tabs.values()
            if now - tab.last_seen > idle_limit
            or (tab.token_expires_at is not None and now >= tab.token_expires_at)
        ]
        for tab in stale:
            self._tabs.pop(tab.id, None)
            tab.store.abandon()
            tab.store.dispose()
        if stale:
            incr_metric("tabs.evicted", value=len(stale))
            log_event("tabs_evicted", count=len(stale), remaining=len(self._tabs))
        return len(stale)

    async def run_sweeper(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as exc:
                log_event("tab_sweep_failed", level=logging.ERROR, error=exc.__class__.__name__)

    async def dispose_all(self) -> None:
        for tab in list(self._tabs.values()):
            tab.store.dispose()
        self._tabs.clear()

    def push_permissions(self, employee_id: str, document: PermissionDocument) -> int:
        """Refresh the permission document of every live tab signed in as this employee."""
        updated = 0
        for tab in self._tabs.values():
            if tab.store.update_shadow_permissions(employee_id, document):
                updated += 1
        if updated:
            log_event("permissions_pushed", employee_id=employee_id, tabs=updated)
        return updated

    def _require(self, tab_id: str) -> TabSession:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise KeyError(tab_id)
        return tab

    async def _build(
        self,
        tab_id: str,
        storage: MemoryStorage,
        token_storage: MemoryStorage,
        *,
        backend: TabBackend | None = None,
    ) -> TabSession:
        if backend is None:
            backend = self._backend_factory(token_storage)
        resolver = ProfileResolver(
            backend,
            retry_delays=self._config.profile_retry_delays_seconds,
            sleep=self._sleep,
        )
        store = SessionStore(
            backend,
            storage,
            resolver=resolver,
            shadow_key=self._config.shadow_storage_key,
            signout_timeout=self._config.signout_timeout_seconds,
            watchdog_seconds=self._config.loading_watchdog_seconds,
        )
        dispatcher = LandingDispatcher()
        store.add_listener(dispatcher.observe)
        tab = TabSession(
            id=tab_id,
            storage=storage,
            token_storage=token_storage,
            backend=backend,
            store=store,
            dispatcher=dispatcher,
            last_seen=self._clock(),
        )
        self._tabs[tab_id] = tab
        await store.initialize()
        return tab
