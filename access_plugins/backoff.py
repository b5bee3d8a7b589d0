"""Backoff strategies used between reconnects and compare-and-swap retries."""

from __future__ import annotations

import random
from typing import Callable

from .context import Context


class Decorr:
    """Decorrelated jitter backoff bounded by *cap* seconds.

    Each delay is drawn from ``[base, 3 * previous]`` and clamped to *cap*.
    """

    def __init__(
        self,
        base: float = 0.2,
        cap: float = 2.0,
        *,
        rand: Callable[[float, float], float] | None = None,
    ) -> None:
        if base <= 0 or cap < base:
            raise ValueError("backoff requires 0 < base <= cap")
        self.base = base
        self.cap = cap
        self._rand = rand or random.uniform
        self._sleep = base

    def next_delay(self) -> float:
        self._sleep = min(self.cap, self._rand(self.base, self._sleep * 3))
        return self._sleep

    def reset(self) -> None:
        self._sleep = self.base

    def do(self, ctx: Context) -> None:
        """Wait for the next delay, raising the context error if it ends first."""

        if ctx.wait(self.next_delay()):
            ctx.raise_if_done()


class Linear:
    """Wait ``attempt * step`` seconds between a bounded number of attempts."""

    def __init__(self, step: float = 0.2, attempts: int = 3) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.step = step
        self.attempts = attempts
        self._attempt = 1

    @property
    def attempt(self) -> int:
        return self._attempt

    def retry(self, ctx: Context) -> bool:
        """Wait before the next attempt. Return False once attempts are used up."""

        if self._attempt >= self.attempts:
            return False
        delay = self._attempt * self.step
        self._attempt += 1
        if ctx.wait(delay):
            ctx.raise_if_done()
        return True
