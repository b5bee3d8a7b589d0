"""Unbuffered hand-off channel between a producer thread and its consumer."""

from __future__ import annotations

import threading
from typing import Generic, Iterator, TypeVar

from .context import Context

T = TypeVar("T")

_EMPTY = object()


class ChannelClosed(Exception):
    """Raised by :meth:`Channel.receive` once the channel is closed and drained."""


class Channel(Generic[T]):
    """A single-slot rendezvous channel.

    ``send`` returns only after a receiver has taken the item, so a slow
    consumer stalls the producer instead of items piling up or being dropped.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._item: object = _EMPTY
        self._taken = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def send(self, item: T, ctx: Context) -> bool:
        """Hand *item* to a receiver.

        Return False when *ctx* ends or the channel is closed before a
        receiver accepted the item.
        """

        def wake(_ctx: Context) -> None:
            with self._cond:
                self._cond.notify_all()

        ctx.add_done_callback(wake)
        try:
            with self._cond:
                while self._item is not _EMPTY:
                    if self._closed or ctx.done():
                        return False
                    self._cond.wait()
                if self._closed or ctx.done():
                    return False

                self._item = item
                ticket = self._taken
                self._cond.notify_all()

                while self._taken == ticket:
                    if self._closed or ctx.done():
                        if self._taken == ticket:
                            self._item = _EMPTY
                            self._cond.notify_all()
                            return False
                        break
                    self._cond.wait()
                return True
        finally:
            ctx.remove_done_callback(wake)

    def receive(self, timeout: float | None = None) -> T:
        """Take the next item, waiting up to *timeout* seconds.

        Raises :class:`ChannelClosed` when the channel is closed and
        :class:`TimeoutError` when nothing arrived in time.
        """

        with self._cond:
            if not self._cond.wait_for(lambda: self._item is not _EMPTY or self._closed, timeout):
                raise TimeoutError("no item received")
            if self._item is _EMPTY:
                raise ChannelClosed("channel closed")
            item = self._item
            self._item = _EMPTY
            self._taken += 1
            self._cond.notify_all()
            return item  # type: ignore[return-value]

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                yield self.receive()
            except ChannelClosed:
                return
