"""Looping pulse indicators over high-risk countries."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping

from .frames import FrameScheduler
from .models import PulseMarker
from .view import ease_cubic_in_out


_LOGGER = logging.getLogger("threatmap.pulse")


class PulseAnimator:
    """Keeps one restartable animation per animated country.

    Each loop grows the radius from `base_radius` to `max_radius` while the
    opacity drops from `base_opacity` to zero, then starts over at once. Time
    comes from the host frame scheduler; while any country is animated a single
    frame callback is kept pending, and it is dropped as soon as none is.
    """

    def __init__(
        self,
        scheduler: FrameScheduler | None,
        *,
        duration_ms: float = 2000.0,
        base_radius: float = 5.0,
        max_radius: float = 20.0,
        base_opacity: float = 0.8,
        on_frame: Callable[[], None] | None = None,
    ) -> None:
        if duration_ms <= 0:
            raise ValueError("duration_ms must be > 0")
        self._scheduler = scheduler
        self.duration_ms = float(duration_ms)
        self.base_radius = float(base_radius)
        self.max_radius = float(max_radius)
        self.base_opacity = float(base_opacity)
        self._on_frame = on_frame
        self._started_at: dict[str, float] = {}
        self._handle: int | None = None

    @property
    def active_names(self) -> frozenset[str]:
        return frozenset(self._started_at)

    @property
    def running(self) -> bool:
        return self._handle is not None

    def sync(self, names: Iterable[str]) -> None:
        """Animate exactly `names`; newcomers start at phase 0, leavers are dropped."""
        wanted = set(names)
        now = self._now()
        dropped = [name for name in self._started_at if name not in wanted]
        for name in dropped:
            del self._started_at[name]
        for name in sorted(wanted):
            self._started_at.setdefault(name, now)
        if dropped:
            _LOGGER.debug("Stopped pulses for %s", ", ".join(sorted(dropped)))
        if self._started_at:
            self._ensure_scheduled()
        else:
            self._cancel()

    def restart(self) -> None:
        now = self._now()
        for name in self._started_at:
            self._started_at[name] = now
        if self._started_at:
            self._ensure_scheduled()

    def stop(self) -> None:
        self._cancel()
        self._started_at.clear()

    def phase(self, name: str, now: float | None = None) -> float | None:
        started = self._started_at.get(name)
        if started is None:
            return None
        current = self._now() if now is None else now
        elapsed = max(current - started, 0.0)
        return (elapsed % self.duration_ms) / self.duration_ms

    def markers(
        self,
        positions: Mapping[str, tuple[float, float]],
        now: float | None = None,
    ) -> tuple[PulseMarker, ...]:
        """Marker state for animated countries that have an on-screen position."""
        current = self._now() if now is None else now
        out: list[PulseMarker] = []
        for name in sorted(self._started_at):
            position = positions.get(name)
            if position is None:
                continue
            phase = self.phase(name, current) or 0.0
            eased = ease_cubic_in_out(phase)
            out.append(
                PulseMarker(
                    name=name,
                    x=position[0],
                    y=position[1],
                    radius=self.base_radius + (self.max_radius - self.base_radius) * eased,
                    opacity=self.base_opacity * (1.0 - eased),
                    phase=phase,
                )
            )
        return tuple(out)

    def _frame(self, now: float) -> None:
        self._handle = None
        if not self._started_at:
            return
        if self._on_frame is not None:
            self._on_frame()
        self._ensure_scheduled()

    def _ensure_scheduled(self) -> None:
        if self._scheduler is None or self._handle is not None:
            return
        self._handle = self._scheduler.request(self._frame)

    def _cancel(self) -> None:
        if self._handle is not None and self._scheduler is not None:
            self._scheduler.cancel(self._handle)
        self._handle = None

    def _now(self) -> float:
        return self._scheduler.now() if self._scheduler is not None else 0.0
