"""Per-instance bearer token cache with expiry buffer and single-flight refresh."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from gitee_pr.clients.base import UpstreamClient
from gitee_pr.core.constants import TOKEN_REFRESH_BUFFER_SECONDS
from gitee_pr.core.types import Instance

_token_log = logging.getLogger("gitee_pr.mcp_gateway.token_cache")


@dataclass
class TokenCacheEntry:
    token: str
    expires_at: float

    def is_usable(self, now: float, buffer_seconds: float) -> bool:
        return now + buffer_seconds < self.expires_at


class TokenCache:
    """Caches OAuth bearer tokens per instance key.

    Concurrent callers that miss the cache for the same key share a single
    in-flight exchange and receive its token or its failure.
    """

    def __init__(
        self,
        client: UpstreamClient,
        buffer_seconds: float = TOKEN_REFRESH_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.buffer_seconds = buffer_seconds
        self._clock = clock
        self._entries: dict[str, TokenCacheEntry] = {}
        self._inflight: dict[str, asyncio.Task[str]] = {}

    async def get_token(self, instance: Instance) -> str:
        key = instance.key
        entry = self._entries.get(key)
        if entry is not None and entry.is_usable(self._clock(), self.buffer_seconds):
            return entry.token

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(instance))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        return await asyncio.shield(task)

    def expires_at(self, key: str) -> float | None:
        entry = self._entries.get(key)
        return entry.expires_at if entry is not None else None

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def _refresh(self, instance: Instance) -> str:
        started = self._clock()
        _token_log.info("token_refresh repo=%s", instance.key, extra={"repo": instance.key})
        grant = await asyncio.to_thread(self.client.fetch_token, instance.credentials)
        self._entries[instance.key] = TokenCacheEntry(
            token=grant.access_token,
            expires_at=started + grant.expires_in,
        )
        return grant.access_token

    def _forget(self, key: str, done: asyncio.Task[str]) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]
        if not done.cancelled() and done.exception() is not None:
            _token_log.warning(
                "token_refresh_failed repo=%s error=%s",
                key,
                done.exception(),
                extra={"repo": key},
            )
