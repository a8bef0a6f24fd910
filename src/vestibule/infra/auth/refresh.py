"""Per-process de-duplication of refresh grants.

When a session's ID token expires, every concurrent request from that
browser fails verification at once. Without coordination each one would
spend the same refresh token, and with rotating refresh tokens all but
the first would be rejected by the provider. The coalescer lets those
requests share one in-flight refresh and, for a few seconds, its
successful outcome.

Entries are keyed by a SHA-256 of the refresh token and nonce, never the
token itself. Failed refreshes are evicted as soon as they complete so the
next request makes its own attempt. A TTL of zero disables sharing.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from functools import partial
from typing import TYPE_CHECKING

from cachetools import TTLCache

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from vestibule.infra.auth.session import EstablishedSession

logger = logging.getLogger(__name__)

_DEFAULT_MAXSIZE = 10_000


def _session_key(refresh_token: str, nonce: str) -> str:
    material = f"{refresh_token}\x00{nonce}".encode()
    return hashlib.sha256(material).hexdigest()


class RefreshCoalescer:
    """Shares one refresh per session between concurrent requests.

    Args:
        ttl: Seconds an outcome stays shareable; 0 disables sharing.
        maxsize: Upper bound on tracked sessions.
    """

    def __init__(self, ttl: float = 5.0, maxsize: int = _DEFAULT_MAXSIZE) -> None:
        self._cache: TTLCache[str, asyncio.Future[EstablishedSession]] | None = (
            TTLCache(maxsize=maxsize, ttl=ttl) if ttl > 0 else None
        )

    async def run(
        self,
        refresh_token: str,
        nonce: str,
        refresh: Callable[[], Awaitable[EstablishedSession]],
    ) -> EstablishedSession:
        """Run ``refresh`` once per session, or join the one in flight.

        A caller that is cancelled does not cancel the shared refresh.

        Args:
            refresh_token: Refresh token from the session cookies.
            nonce: Nonce cookie value.
            refresh: Performs the refresh grant and builds the session.

        Returns:
            The refreshed session.

        Raises:
            Whatever ``refresh`` raises.
        """
        if self._cache is None:
            return await refresh()

        key = _session_key(refresh_token, nonce)
        shared = self._cache.get(key)
        if shared is None:
            shared = asyncio.ensure_future(refresh())
            self._cache[key] = shared
            shared.add_done_callback(partial(self._evict_failed, key))
        else:
            logger.debug("oidc_refresh_coalesced")
        return await asyncio.shield(shared)

    def _evict_failed(self, key: str, future: asyncio.Future[EstablishedSession]) -> None:
        if self._cache is None:
            return
        if future.cancelled() or future.exception() is not None:
            if self._cache.get(key) is future:
                del self._cache[key]

    def __len__(self) -> int:
        return len(self._cache) if self._cache is not None else 0
