"""In-process cache of pending requests and where they were announced."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List

import structlog

from .context import Context
from .errors import CacheClosed
from .models import Request

DEFAULT_TTL = 60 * 60
TICK_INTERVAL = 1.0


@dataclass(frozen=True)
class MessageLocator:
    """Identifies a posted message on the chat provider."""

    channel_id: str
    message_id: str


@dataclass(frozen=True)
class CacheEntry:
    request: Request
    messages: List[MessageLocator] = field(default_factory=list)
    expires_at: int = 0


class RequestCache:
    """Expiring map from request id to the request and its posted messages.

    Time advances in ticks. When *ctx* is given a daemon thread ticks once
    per *tick_interval* seconds; without it the owner drives :meth:`tick`
    directly. Once the owning context ends the cache is tainted: entries are
    dropped and every call raises :class:`CacheClosed`.
    """

    def __init__(
        self,
        ctx: Context | None = None,
        *,
        ttl: int = DEFAULT_TTL,
        tick_interval: float = TICK_INTERVAL,
        logger: Any | None = None,
    ) -> None:
        if ttl <= 0:
            raise ValueError("Cache TTL must be greater than zero ticks.")

        self._ttl = ttl
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._index = 0
        self._next = 0
        self._error: CacheClosed | None = None
        self._log = logger or structlog.get_logger().bind(component="request_cache")

        if ctx is not None:
            ctx.add_done_callback(lambda done: self.taint())
            self._thread = threading.Thread(
                target=self._run,
                args=(ctx, tick_interval),
                name="request-cache",
                daemon=True,
            )
            self._thread.start()

    def _run(self, ctx: Context, tick_interval: float) -> None:
        while not ctx.wait(tick_interval):
            self.tick()

    def _check(self) -> None:
        if self._error is not None:
            raise CacheClosed(self._error.message)

    def put(self, entry: CacheEntry) -> CacheEntry:
        with self._lock:
            self._check()
            stored = replace(entry, expires_at=self._index + self._ttl)
            if self._next == 0 or self._next > stored.expires_at:
                self._next = stored.expires_at
            self._entries[stored.request.id] = stored
            return stored

    def get(self, request_id: str) -> CacheEntry | None:
        with self._lock:
            self._check()
            return self._entries.get(request_id)

    def pop(self, request_id: str) -> CacheEntry | None:
        """Remove and return the entry, or None when it is not cached."""

        with self._lock:
            self._check()
            return self._entries.pop(request_id, None)

    def drop(self, request_id: str) -> None:
        with self._lock:
            self._check()
            self._entries.pop(request_id, None)

    def __len__(self) -> int:
        with self._lock:
            self._check()
            return len(self._entries)

    @property
    def current_tick(self) -> int:
        with self._lock:
            return self._index

    def tick(self) -> int:
        """Advance the clock by one tick and evict expired entries.

        Entries are only scanned once the clock reaches the nearest known
        expiry. Return the number of remaining entries.
        """

        with self._lock:
            if self._error is not None:
                return 0
            self._index += 1
            if self._next == 0 or self._index <= self._next:
                return len(self._entries)

            nearest = 0
            for request_id, entry in list(self._entries.items()):
                if entry.expires_at < self._index:
                    self._log.debug("cache_entry_expired", request_id=request_id)
                    del self._entries[request_id]
                elif nearest == 0 or entry.expires_at < nearest:
                    nearest = entry.expires_at
            self._next = nearest
            return len(self._entries)

    def taint(self, error: CacheClosed | None = None) -> None:
        with self._lock:
            self._entries = {}
            if self._error is None:
                self._error = error or CacheClosed("request cache is closed")
