from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from cochera.auth.backend import TabBackend
from cochera.auth.identity import Profile, StandardIdentity, profile_from_row, provisional_profile
from cochera.domain.backend_errors import error_code, is_not_found, is_transient
from cochera.observability import incr_metric, log_event


Sleep = Callable[[float], Awaitable[None]]


class ProfileResolver:
    """Fetch the authoritative profile row for a standard identity.

    Never raises: a missing row or a failed fetch resolves to the provisional
    profile so the caller is not blocked.
    """

    def __init__(
        self,
        backend: TabBackend,
        *,
        retry_delays: Sequence[float] = (1.0, 2.0),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep

    async def resolve(self, identity: StandardIdentity, *, retry: bool = False) -> Profile:
        fallback = provisional_profile(identity)
        delays = list(self._retry_delays) if retry else []
        attempt = 0
        while True:
            attempt += 1
            try:
                row = await self._backend.fetch_profile_row(identity.user_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if is_not_found(exc):
                    row = None
                elif delays and is_transient(exc):
                    delay = delays.pop(0)
                    incr_metric("profile.fetch.retry")
                    log_event(
                        "profile_fetch_retry",
                        level=logging.WARNING,
                        user_id=identity.user_id,
                        attempt=attempt,
                        delay_seconds=delay,
                        code=error_code(exc),
                    )
                    await self._sleep(delay)
                    continue
                else:
                    incr_metric("profile.fetch.fallback", reason="error")
                    log_event(
                        "profile_fetch_failed",
                        level=logging.WARNING,
                        user_id=identity.user_id,
                        attempt=attempt,
                        code=error_code(exc),
                        error=exc.__class__.__name__,
                    )
                    return fallback

            if row is None:
                incr_metric("profile.fetch.fallback", reason="not_found")
                log_event("profile_row_missing", user_id=identity.user_id)
                return fallback
            return profile_from_row(row, identity)
