"""Compare-and-swap access to the plugin data attached to a request."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, TypeVar

import structlog

from access_plugins.authority import AccessRequestAuthority
from access_plugins.backoff import Linear
from access_plugins.context import Context
from access_plugins.errors import CompareFailed, NotFound
from access_plugins.models import KIND_ACCESS_REQUEST, PluginDataMap

T = TypeVar("T")

DEFAULT_CAS_ATTEMPTS = 3
DEFAULT_CAS_STEP = 0.2


class PluginDataClient:
    """Read and write one plugin's string map on access requests.

    The client is schema-agnostic; :meth:`modify` takes an encoder/decoder
    pair when callers work with richer structures.
    """

    def __init__(
        self,
        authority: AccessRequestAuthority,
        plugin_name: str,
        *,
        kind: str = KIND_ACCESS_REQUEST,
        cas_attempts: int = DEFAULT_CAS_ATTEMPTS,
        cas_step: float = DEFAULT_CAS_STEP,
        logger: Any | None = None,
    ) -> None:
        if not plugin_name:
            raise ValueError("A plugin name is required to scope plugin data.")
        self._authority = authority
        self.plugin_name = plugin_name
        self.kind = kind
        self._cas_attempts = cas_attempts
        self._cas_step = cas_step
        self._log = logger or structlog.get_logger().bind(component="plugin_data", plugin=plugin_name)

    def get(self, ctx: Context, request_id: str) -> PluginDataMap:
        """Return the stored map, or an empty map when nothing was stored yet."""

        try:
            data = self._authority.get_plugin_data(ctx, self.kind, request_id, self.plugin_name)
        except NotFound:
            return {}
        return dict(data or {})

    def set(
        self,
        ctx: Context,
        request_id: str,
        values: Mapping[str, str],
        expect: Mapping[str, str] | None = None,
    ) -> None:
        """Write *values* if the stored map still matches *expect*.

        Raises :class:`CompareFailed` when another writer got there first.
        """

        self._authority.update_plugin_data(
            ctx,
            self.kind,
            request_id,
            self.plugin_name,
            dict(values),
            dict(expect) if expect is not None else None,
        )

    def modify(
        self,
        ctx: Context,
        request_id: str,
        fn: Callable[[Optional[T]], Optional[T]],
        *,
        decode: Callable[[Mapping[str, str]], T],
        encode: Callable[[T], PluginDataMap],
    ) -> bool:
        """Read-modify-write the plugin data with compare-and-swap retries.

        *fn* receives the decoded current value (None when nothing is stored)
        and returns the new value, or None to leave the data untouched. It
        may run several times, so it must not have side effects. The write
        expects every key it sets to still hold the raw value that was read.
        Return True when a write happened.
        """

        backoff = Linear(self._cas_step, self._cas_attempts)
        while True:
            current_map = self.get(ctx, request_id)
            current = decode(current_map) if current_map else None
            updated = fn(current)
            if updated is None:
                return False

            new_map = encode(updated)
            expect = {key: current_map.get(key, "") for key in new_map}
            try:
                self.set(ctx, request_id, new_map, expect)
                return True
            except CompareFailed:
                self._log.debug("plugin_data_compare_failed", request_id=request_id, attempt=backoff.attempt)
                if not backoff.retry(ctx):
                    raise
