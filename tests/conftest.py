"""Shared fakes for the watcher and job tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import queue
import sys
import threading
import time
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover
    sys.path.insert(0, str(ROOT))

from access_plugins.authority.local import LocalAuthority  # noqa: E402
from access_plugins.context import Context  # noqa: E402
from access_plugins.models import (  # noqa: E402
    KIND_ACCESS_REQUEST,
    EventType,
    RawEvent,
    Request,
    ResourceHeader,
)


def init_event() -> RawEvent:
    return RawEvent(op=EventType.INIT.value)


def put_event(request_id: str, **fields) -> RawEvent:
    return RawEvent(op=EventType.PUT.value, resource=Request(id=request_id, **fields))


def delete_event(request_id: str) -> RawEvent:
    return RawEvent(op=EventType.DELETE.value, resource=ResourceHeader(kind=KIND_ACCESS_REQUEST, name=request_id))


@dataclass
class Script:
    """What a single watch attempt does.

    ``open_error`` is raised while the stream is read. Otherwise *events* are
    yielded, then *error* is raised, or the stream ends when *hold* is False,
    or it stays open until the watch context ends.
    """

    events: List[RawEvent] = field(default_factory=list)
    error: BaseException | None = None
    hold: bool = True
    open_error: BaseException | None = None


class _End:
    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error


class ScriptedStream:
    def __init__(self, ctx: Context, script: Script) -> None:
        self._queue: "queue.Queue[RawEvent | _End]" = queue.Queue()
        self.yielded = 0
        self.closed = False
        if script.open_error is not None:
            self._queue.put(_End(script.open_error))
        else:
            for event in script.events:
                self._queue.put(event)
            if script.error is not None:
                self._queue.put(_End(script.error))
            elif not script.hold:
                self._queue.put(_End())
        ctx.add_done_callback(lambda _ctx: self._queue.put(_End()))

    def push(self, event: RawEvent) -> None:
        self._queue.put(event)

    def __iter__(self):
        while True:
            item = self._queue.get()
            if isinstance(item, _End):
                if item.error is not None:
                    raise item.error
                return
            self.yielded += 1
            yield item

    def close(self) -> None:
        self.closed = True


class ScriptedAuthority:
    """Authority fake whose watch streams follow a list of scripts.

    Once the scripts run out, further watch attempts stay open without
    ever sending INIT.
    """

    def __init__(self, *scripts: Script) -> None:
        self._scripts = list(scripts)
        self._cond = threading.Condition()
        self.streams: List[ScriptedStream] = []

    @property
    def watch_calls(self) -> int:
        with self._cond:
            return len(self.streams)

    def watch_events(self, ctx: Context, watch_filter) -> ScriptedStream:
        with self._cond:
            script = self._scripts.pop(0) if self._scripts else Script()
            stream = ScriptedStream(ctx, script)
            self.streams.append(stream)
            self._cond.notify_all()
            return stream

    def wait_for_watch_calls(self, count: int, timeout: float = 2.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.streams) >= count, timeout)


def eventually(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def ctx():
    context = Context.background().with_cancel()
    yield context
    context.cancel()


@pytest.fixture
def authority(tmp_path):
    return LocalAuthority(f"sqlite:///{tmp_path / 'authority.db'}", cluster_name="test-cluster")
