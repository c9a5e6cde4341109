"""Zoom, pan and globe rotation state.

`ViewTransformController` is the only writer of the `ViewTransform`. Commands
replace the transform in one step, so a render pass never observes a
half-applied command.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from .frames import FrameScheduler
from .models import ProjectionKind, Rotation, ViewTransform


_LOGGER = logging.getLogger("threatmap.view")

MAX_ZOOM = 8.0
GLOBE_MIN_ZOOM = 0.8
FLAT_MIN_ZOOM = 0.5
FIT_SCALE = 0.9
ROTATION_SENSITIVITY = 0.5

ViewListener = Callable[[ViewTransform], None]


def zoom_bounds(kind: ProjectionKind) -> tuple[float, float]:
    return (GLOBE_MIN_ZOOM if kind.is_globe else FLAT_MIN_ZOOM, MAX_ZOOM)


def ease_cubic_in_out(t: float) -> float:
    t *= 2.0
    if t <= 1.0:
        return t * t * t / 2.0
    t -= 2.0
    return (t * t * t + 2.0) / 2.0


class GestureMode(str, Enum):
    PAN = "pan"
    ROTATE = "rotate"


@dataclass(frozen=True, slots=True)
class GestureState:
    """Baseline of one drag interaction, from pointer-down to pointer-up."""

    mode: GestureMode
    start_x: float
    start_y: float
    baseline: ViewTransform
    moved: bool = False


@dataclass(slots=True)
class _Transition:
    start: ViewTransform
    target: ViewTransform
    started_at: float
    duration_ms: float
    handle: int | None = None


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def _interpolate(start: ViewTransform, target: ViewTransform, t: float) -> ViewTransform:
    return ViewTransform(
        scale=_lerp(start.scale, target.scale, t),
        translate_x=_lerp(start.translate_x, target.translate_x, t),
        translate_y=_lerp(start.translate_y, target.translate_y, t),
        rotation=(
            _lerp(start.rotation[0], target.rotation[0], t),
            _lerp(start.rotation[1], target.rotation[1], t),
            _lerp(start.rotation[2], target.rotation[2], t),
        ),
    )


class ViewTransformController:
    """Turns zoom/pan/rotate commands into new `ViewTransform` values."""

    def __init__(
        self,
        projection: ProjectionKind = ProjectionKind.NATURAL_EARTH,
        *,
        scheduler: FrameScheduler | None = None,
        on_change: ViewListener | None = None,
        on_settle: ViewListener | None = None,
    ) -> None:
        self._projection = projection
        self._transform = ViewTransform.identity()
        self._scheduler = scheduler
        self._on_change = on_change
        self._on_settle = on_settle
        self._transition: _Transition | None = None

    @property
    def transform(self) -> ViewTransform:
        return self._transform

    @property
    def projection(self) -> ProjectionKind:
        return self._projection

    @property
    def min_zoom(self) -> float:
        return zoom_bounds(self._projection)[0]

    @property
    def max_zoom(self) -> float:
        return zoom_bounds(self._projection)[1]

    @property
    def is_animating(self) -> bool:
        return self._transition is not None

    def clamp_scale(self, scale: float) -> float:
        if not math.isfinite(scale):
            return self.max_zoom if scale > 0 else self.min_zoom
        return min(max(scale, self.min_zoom), self.max_zoom)

    # Immediate commands.

    def zoom_by(self, factor: float, anchor: tuple[float, float] | None = None) -> ViewTransform:
        return self.zoom_to(self._transform.scale * factor, anchor)

    def zoom_to(self, scale: float, anchor: tuple[float, float] | None = None) -> ViewTransform:
        self.cancel_transition()
        self._commit(self._zoomed(self._transform, scale, anchor), settle=True)
        return self._transform

    def pan_by(self, dx: float, dy: float) -> ViewTransform:
        self.cancel_transition()
        current = self._transform
        self._commit(
            replace(current, translate_x=current.translate_x + dx, translate_y=current.translate_y + dy),
            settle=True,
        )
        return self._transform

    def reset_to_identity(self) -> ViewTransform:
        self.cancel_transition()
        self._commit(self.identity_target(), settle=True)
        return self._transform

    def fit_to_viewport(self) -> ViewTransform:
        self.cancel_transition()
        self._commit(self.fit_target(), settle=True)
        return self._transform

    def rotate_by(self, d_lambda: float, d_phi: float) -> ViewTransform:
        if not self._projection.is_globe:
            return self._transform
        self.cancel_transition()
        self._commit(self._rotated(self._transform, d_lambda, d_phi), settle=True)
        return self._transform

    def set_projection(self, projection: ProjectionKind) -> ViewTransform:
        """Switch projection; pan/zoom and any rotation carry over, scale is re-clamped."""
        if projection is self._projection:
            return self._transform
        self.cancel_transition()
        self._projection = projection
        current = self._transform
        clamped = self.clamp_scale(current.scale)
        if clamped != current.scale:
            _LOGGER.debug("Scale %.3f re-clamped to %.3f for %s", current.scale, clamped, projection.value)
        self._commit(replace(current, scale=clamped), settle=True)
        return self._transform

    def identity_target(self) -> ViewTransform:
        return ViewTransform.identity()

    def fit_target(self) -> ViewTransform:
        # Fixed "whole world" scale; rotation is left where the user put it.
        return ViewTransform(scale=self.clamp_scale(FIT_SCALE), rotation=self._transform.rotation)

    # Smooth commands.

    def smooth_zoom_by(
        self,
        factor: float,
        duration_ms: float,
        anchor: tuple[float, float] | None = None,
    ) -> None:
        base = self._transition.target if self._transition else self._transform
        self.animate_to(self._zoomed(base, base.scale * factor, anchor), duration_ms)

    def smooth_reset(self, duration_ms: float) -> None:
        self.animate_to(self.identity_target(), duration_ms)

    def smooth_fit(self, duration_ms: float) -> None:
        self.animate_to(self.fit_target(), duration_ms)

    def animate_to(self, target: ViewTransform, duration_ms: float) -> None:
        """Interpolate towards `target`; lands exactly on it when finished."""
        self.cancel_transition()
        target = replace(target, scale=self.clamp_scale(target.scale))
        if self._scheduler is None or duration_ms <= 0:
            self._commit(target, settle=True)
            return
        transition = _Transition(
            start=self._transform,
            target=target,
            started_at=self._scheduler.now(),
            duration_ms=float(duration_ms),
        )
        self._transition = transition
        transition.handle = self._scheduler.request(self._on_frame)

    def cancel_transition(self) -> None:
        transition = self._transition
        if transition is None:
            return
        self._transition = None
        if transition.handle is not None and self._scheduler is not None:
            self._scheduler.cancel(transition.handle)

    def _on_frame(self, now: float) -> None:
        transition = self._transition
        if transition is None:
            return
        elapsed = now - transition.started_at
        t = 1.0 if transition.duration_ms <= 0 else min(max(elapsed / transition.duration_ms, 0.0), 1.0)
        if t >= 1.0:
            self._transition = None
            self._commit(transition.target, settle=True)
            return
        self._commit(_interpolate(transition.start, transition.target, ease_cubic_in_out(t)), settle=False)
        if self._scheduler is not None:
            transition.handle = self._scheduler.request(self._on_frame)

    # Drag gestures.

    def drag_start(self, x: float, y: float) -> GestureState:
        self.cancel_transition()
        mode = GestureMode.ROTATE if self._projection.is_globe else GestureMode.PAN
        return GestureState(mode=mode, start_x=x, start_y=y, baseline=self._transform)

    def drag_move(self, state: GestureState, x: float, y: float) -> GestureState:
        dx = x - state.start_x
        dy = y - state.start_y
        base = state.baseline
        if state.mode is GestureMode.ROTATE:
            if not self._projection.is_globe:
                return state
            # Screen y grows downward; dragging up tilts the globe towards the viewer.
            updated = self._rotated(base, dx, -dy)
        else:
            updated = replace(base, translate_x=base.translate_x + dx, translate_y=base.translate_y + dy)
        self._commit(updated, settle=False)
        return replace(state, moved=state.moved or dx != 0 or dy != 0)

    def drag_end(self, state: GestureState) -> None:
        if state.moved and self._on_settle is not None:
            self._on_settle(self._transform)

    # Internals.

    def _zoomed(
        self,
        base: ViewTransform,
        scale: float,
        anchor: tuple[float, float] | None,
    ) -> ViewTransform:
        new_scale = self.clamp_scale(scale)
        if anchor is None or base.scale == 0:
            return replace(base, scale=new_scale)
        ratio = new_scale / base.scale
        ax, ay = anchor
        return replace(
            base,
            scale=new_scale,
            translate_x=ax - (ax - base.translate_x) * ratio,
            translate_y=ay - (ay - base.translate_y) * ratio,
        )

    @staticmethod
    def _rotated(base: ViewTransform, d_lambda: float, d_phi: float) -> ViewTransform:
        lam, phi, gamma = base.rotation
        rotation: Rotation = (
            lam + d_lambda * ROTATION_SENSITIVITY,
            phi + d_phi * ROTATION_SENSITIVITY,
            gamma,
        )
        return replace(base, rotation=rotation)

    def _commit(self, transform: ViewTransform, *, settle: bool) -> None:
        self._transform = transform
        if self._on_change is not None:
            self._on_change(transform)
        if settle and self._on_settle is not None:
            self._on_settle(transform)
