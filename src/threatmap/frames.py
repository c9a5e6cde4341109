"""Per-frame callback scheduling used by animations and smooth transitions.

The engine never owns a thread. Anything that moves over time asks the host
for a callback on its next frame, the same way a browser page would use an
animation-frame request. Hosts supply a `FrameScheduler`; headless renders and
tests use `ManualFrameScheduler` and advance time explicitly.
"""

from __future__ import annotations

import itertools
from typing import Callable, Protocol


FrameCallback = Callable[[float], None]


class FrameScheduler(Protocol):
    def now(self) -> float:
        """Current host time in milliseconds."""

    def request(self, callback: FrameCallback) -> int:
        """Run `callback(now_ms)` once on the next frame and return a handle."""

    def cancel(self, handle: int) -> None:
        """Drop a pending callback; unknown handles are ignored."""


class ManualFrameScheduler:
    """Deterministic scheduler driven by `advance`."""

    def __init__(self, *, frame_interval_ms: float = 16.0, start_ms: float = 0.0) -> None:
        if frame_interval_ms <= 0:
            raise ValueError("frame_interval_ms must be > 0")
        self.frame_interval_ms = float(frame_interval_ms)
        self._now = float(start_ms)
        self._ids = itertools.count(1)
        self._pending: dict[int, FrameCallback] = {}

    def now(self) -> float:
        return self._now

    def request(self, callback: FrameCallback) -> int:
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel(self, handle: int) -> None:
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def tick(self) -> int:
        """Run one frame at the current time; returns callbacks executed."""
        batch = self._pending
        self._pending = {}
        for callback in batch.values():
            callback(self._now)
        return len(batch)

    def advance(self, ms: float) -> None:
        """Move time forward in frame-sized steps, running callbacks each step."""
        remaining = float(ms)
        while remaining > 0:
            step = min(self.frame_interval_ms, remaining)
            self._now += step
            remaining -= step
            self.tick()
