"""Composition root wiring projection, view, renderer, interaction and pulses."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping

from .config import MapConfig, ThemePalette
from .controls import ControlButton, ControlOverlay
from .frames import FrameScheduler
from .geometry_io import GeometryLoadError
from .interaction import InteractionLayer
from .models import (
    ProjectionKind,
    PulseMarker,
    RiskDataset,
    RiskLevel,
    RiskRecord,
    Selection,
    Theme,
    TooltipPayload,
    ViewTransform,
    WorldGeometry,
    freeze_dataset,
)
from .projection import InvalidViewportError, ProjectionFactory, ProjectionHandle
from .pulse import PulseAnimator
from .renderer import GeometryRenderer, ProjectedCountry, Scene
from .view import GestureState, ViewTransformController


_LOGGER = logging.getLogger("threatmap.engine")

# Pointer travel (px) below which a press/release pair counts as a click.
CLICK_TOLERANCE_PX = 3.0
# Wheel notch -> zoom factor exponent, matching a browser wheel delta of 100px.
WHEEL_ZOOM_EXPONENT = 0.2

FULLSCREEN_CHROME_PX = 100
WINDOWED_CHROME_PX = 250
WINDOWED_MIN_HEIGHT = 700
WINDOWED_MAX_HEIGHT = 900


class EngineState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    AWAITING_VIEWPORT = "awaiting_viewport"
    UNAVAILABLE = "unavailable"


@dataclass(slots=True)
class MapEventHandlers:
    on_country_select: Callable[[str, RiskRecord], None] | None = None
    on_hover_change: Callable[[str | None, RiskRecord | None, tuple[float, float]], None] | None = None
    on_viewport_change: Callable[[ViewTransform], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    on_redraw: Callable[[], None] | None = None


@dataclass(frozen=True, slots=True)
class Frame:
    """Everything a host needs to draw one pass of the map."""

    scene: Scene
    pulses: tuple[PulseMarker, ...]
    tooltip: TooltipPayload | None
    controls: tuple[ControlButton, ...]
    selection: Selection | None
    palette: ThemePalette


GeometrySource = Callable[[], WorldGeometry]


def viewport_for_window(container_width: float, window_height: float, *, fullscreen: bool) -> tuple[float, float]:
    """Map size for a host window; fullscreen only changes the height budget."""
    if fullscreen:
        height = window_height - FULLSCREEN_CHROME_PX
    else:
        height = min(WINDOWED_MAX_HEIGHT, max(WINDOWED_MIN_HEIGHT, window_height - WINDOWED_CHROME_PX))
    return (float(container_width), float(height))


class MapEngine:
    """Interactive threat map: owns view state, selection and pulse markers.

    Hosts feed inputs (geometry, risk data, projection, theme, viewport and
    pointer events) and read `render()` frames plus the events in
    `MapEventHandlers`. Nothing outside the engine writes its state.
    """

    def __init__(
        self,
        config: MapConfig | None = None,
        *,
        scheduler: FrameScheduler | None = None,
        handlers: MapEventHandlers | None = None,
        factory: ProjectionFactory | None = None,
    ) -> None:
        self.config = config or MapConfig.default()
        self.handlers = handlers or MapEventHandlers()
        self._scheduler = scheduler
        self._factory = factory or ProjectionFactory()
        anim = self.config.animation

        self._state = EngineState.IDLE
        self._world: WorldGeometry | None = None
        self._risk_data: RiskDataset = freeze_dataset(None)
        self._theme = self.config.map.theme
        self._width = float(self.config.viewport.width)
        self._height = float(self.config.viewport.height)
        self._fullscreen = False
        self._handle: ProjectionHandle | None = None
        self._viewport_warned = False
        self._gesture: GestureState | None = None
        self._gesture_pointer: tuple[float, float] | None = None

        self.renderer = GeometryRenderer(self.config.style)
        self.view = ViewTransformController(
            self.config.map.projection,
            scheduler=scheduler,
            on_change=self._on_view_change,
            on_settle=self._on_view_settle,
        )
        self.interaction = InteractionLayer(
            scheduler=scheduler,
            fade_in_ms=anim.tooltip_fade_in_ms,
            fade_out_ms=anim.tooltip_fade_out_ms,
            on_hover=self._on_hover,
            on_select=self._on_select,
            on_change=self._request_redraw,
        )
        self.pulses = PulseAnimator(
            scheduler,
            duration_ms=anim.pulse_duration_ms,
            base_radius=anim.pulse_base_radius,
            max_radius=anim.pulse_max_radius,
            base_opacity=anim.pulse_base_opacity,
            on_frame=self._request_redraw,
        )
        self.controls = ControlOverlay(
            self.view,
            zoom_transition_ms=anim.zoom_transition_ms,
            reset_transition_ms=anim.reset_transition_ms,
            on_projection_change=self._on_projection_change,
        )

    # Read-only state.

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def world(self) -> WorldGeometry | None:
        return self._world

    @property
    def risk_data(self) -> RiskDataset:
        return self._risk_data

    @property
    def projection(self) -> ProjectionKind:
        return self.controls.projection

    @property
    def theme(self) -> Theme:
        return self._theme

    @property
    def viewport(self) -> tuple[float, float]:
        return (self._width, self._height)

    @property
    def fullscreen(self) -> bool:
        return self._fullscreen

    @property
    def transform(self) -> ViewTransform:
        return self.view.transform

    @property
    def selection(self) -> Selection | None:
        return self.interaction.selection

    @property
    def projection_handle(self) -> ProjectionHandle | None:
        return self._handle

    # Lifecycle.

    def mount(self, source: GeometrySource | WorldGeometry) -> EngineState:
        """Load world geometry once; a failure leaves the engine unavailable."""
        if self._state is not EngineState.IDLE:
            raise RuntimeError(f"Engine already mounted (state={self._state.value})")
        self._state = EngineState.LOADING
        try:
            world = source if isinstance(source, WorldGeometry) else source()
            if len(world) == 0:
                raise GeometryLoadError("World geometry contains no countries")
        except Exception as exc:
            error = exc if isinstance(exc, GeometryLoadError) else GeometryLoadError(str(exc))
            if error is not exc:
                error.__cause__ = exc
            self._state = EngineState.UNAVAILABLE
            _LOGGER.error("World geometry unavailable: %s", error)
            if self.handlers.on_error is not None:
                self.handlers.on_error(error)
            return self._state

        self._world = world
        _LOGGER.info("Loaded world geometry with %d countries", len(world))
        self._rebuild_projection()
        self._sync_pulses()
        self._request_redraw()
        return self._state

    def unmount(self) -> None:
        self.pulses.stop()
        self.view.cancel_transition()
        self.interaction.detach()
        self._gesture = None
        self._gesture_pointer = None
        self._world = None
        self._handle = None
        self._state = EngineState.IDLE

    # Host inputs.

    def set_risk_data(self, records: Mapping[str, RiskRecord] | None) -> None:
        self._risk_data = freeze_dataset(records)
        self.interaction.refresh_records(self._risk_data)
        self._sync_pulses()
        self._request_redraw()

    def set_projection(self, kind: ProjectionKind | str) -> None:
        self.controls.select_projection(kind)

    def cycle_projection(self, step: int = 1) -> ProjectionKind:
        return self.controls.cycle_projection(step)

    def set_theme(self, theme: Theme | str) -> None:
        self._theme = Theme(theme)
        self._request_redraw()

    def set_fullscreen(self, fullscreen: bool) -> None:
        self._fullscreen = bool(fullscreen)

    def resize(self, width: float, height: float) -> None:
        self._width = float(width)
        self._height = float(height)
        if self._world is not None and self._state is not EngineState.UNAVAILABLE:
            self._rebuild_projection()
            self._request_redraw()

    def clear_selection(self) -> None:
        self.interaction.clear_selection()
        self._request_redraw()

    # Pointer input (screen pixels, y down).

    def pointer_down(self, x: float, y: float) -> None:
        if self._state is not EngineState.READY:
            return
        button = self.controls.button_at(x, y, self._width)
        if button is not None:
            self.controls.press(button.action, self._width, self._height)
            return
        self._gesture = self.view.drag_start(x, y)
        self._gesture_pointer = (x, y)

    def pointer_move(self, x: float, y: float) -> None:
        if self._state is not EngineState.READY:
            return
        if self._gesture is not None:
            self._gesture = self.view.drag_move(self._gesture, x, y)
            return
        self._refresh_shapes()
        self.interaction.pointer_move(x, y, self.view.transform, self._risk_data)

    def pointer_up(self, x: float, y: float) -> None:
        gesture = self._gesture
        start = self._gesture_pointer
        self._gesture = None
        self._gesture_pointer = None
        if gesture is None or start is None or self._state is not EngineState.READY:
            return
        self.view.drag_end(gesture)
        if math.hypot(x - start[0], y - start[1]) <= CLICK_TOLERANCE_PX:
            self._refresh_shapes()
            self.interaction.click(x, y, self.view.transform, self._risk_data)

    def pointer_cancel(self) -> None:
        """End a drag without treating the release as a click."""
        gesture = self._gesture
        self._gesture = None
        self._gesture_pointer = None
        if gesture is not None and self._state is EngineState.READY:
            self.view.drag_end(gesture)

    def pointer_leave(self) -> None:
        self.interaction.pointer_leave()

    def double_click(self, x: float, y: float) -> None:
        if self._state is not EngineState.READY:
            return
        if self.controls.button_at(x, y, self._width) is not None:
            return
        self.view.smooth_reset(self.config.animation.reset_transition_ms)

    def wheel(self, x: float, y: float, steps: float) -> None:
        if self._state is not EngineState.READY or steps == 0:
            return
        self.view.zoom_by(2.0 ** (WHEEL_ZOOM_EXPONENT * steps), anchor=(x, y))

    # Rendering.

    def render(self) -> Frame | None:
        """Build the frame for the current inputs; None until the map can be drawn."""
        if self._state is not EngineState.READY or self._world is None or self._handle is None:
            return None
        transform = self.view.transform
        projected = self._refresh_shapes()
        scene = self.renderer.render(
            world=self._world,
            risk_data=self._risk_data,
            projection=self._handle,
            transform=transform,
            theme=self._theme,
            width=self._width,
            height=self._height,
            hovered=self.interaction.hovered,
        )
        active = self.pulses.active_names
        positions = {
            item.name: transform.apply(*item.centroid) for item in projected if item.name in active
        }
        return Frame(
            scene=scene,
            pulses=self.pulses.markers(positions),
            tooltip=self.interaction.tooltip(),
            controls=self.controls.buttons(self._width),
            selection=self.interaction.selection,
            palette=self.config.style.palette(self._theme),
        )

    # Internals.

    def _refresh_shapes(self) -> tuple[ProjectedCountry, ...]:
        if self._world is None or self._handle is None:
            return ()
        self._handle.set_rotation(self.view.transform.rotation)
        projected = self.renderer.project_world(self._world, self._handle)
        self.interaction.update_shapes(projected)
        return projected

    def _rebuild_projection(self) -> None:
        try:
            self._handle = self._factory.build(self.projection, self._width, self._height)
        except InvalidViewportError as exc:
            self._handle = None
            self._state = EngineState.AWAITING_VIEWPORT
            if not self._viewport_warned:
                _LOGGER.warning("Map not drawn until the viewport has a usable size: %s", exc)
                self._viewport_warned = True
            return
        self._viewport_warned = False
        self._state = EngineState.READY

    def _sync_pulses(self) -> None:
        if self._world is None:
            self.pulses.sync(())
            return
        world = self._world
        self.pulses.sync(
            name
            for name, record in self._risk_data.items()
            if record.risk_level is RiskLevel.HIGH and name in world
        )

    def _on_projection_change(self, kind: ProjectionKind) -> None:
        if self._world is not None and self._state is not EngineState.UNAVAILABLE:
            self._rebuild_projection()
        self._request_redraw()

    def _on_view_change(self, transform: ViewTransform) -> None:
        self._request_redraw()

    def _on_view_settle(self, transform: ViewTransform) -> None:
        if self.handlers.on_viewport_change is not None:
            self.handlers.on_viewport_change(transform)

    def _on_hover(self, name: str | None, record: RiskRecord | None, pointer: tuple[float, float]) -> None:
        if self.handlers.on_hover_change is not None:
            self.handlers.on_hover_change(name, record, pointer)

    def _on_select(self, selection: Selection) -> None:
        if self.handlers.on_country_select is not None:
            self.handlers.on_country_select(selection.name, selection.record)

    def _request_redraw(self) -> None:
        if self.handlers.on_redraw is not None:
            self.handlers.on_redraw()
