"""Matplotlib host for the map engine: PNG export and an interactive window."""

from __future__ import annotations

import itertools
import logging
import time
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Sequence

from .config import StyleConfig
from .engine import Frame, MapEngine
from .frames import FrameCallback
from .models import ProjectionKind
from .risk_data import DataSource


_LOGGER = logging.getLogger("threatmap.mpl_host")

_TOOLTIP_FONT_SIZE = 9
_CONTROL_FONT_SIZE = 12
# Keys that step through the projection list.
PROJECTION_KEYS = {"p": 1, "P": -1, "shift+p": -1}


class MatplotlibFrameScheduler:
    """Frame callbacks on a matplotlib GUI timer; idle while nothing is pending."""

    def __init__(self, canvas: Any, *, interval_ms: int = 16) -> None:
        self._timer = canvas.new_timer(interval=interval_ms)
        self._timer.add_callback(self._tick)
        self._running = False
        self._ids = itertools.count(1)
        self._pending: dict[int, FrameCallback] = {}

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def request(self, callback: FrameCallback) -> int:
        handle = next(self._ids)
        self._pending[handle] = callback
        if not self._running:
            self._running = True
            self._timer.start()
        return handle

    def cancel(self, handle: int) -> None:
        self._pending.pop(handle, None)

    def _tick(self) -> None:
        batch = self._pending
        self._pending = {}
        now = self.now()
        for callback in batch.values():
            callback(now)
        if not self._pending and self._running:
            self._running = False
            self._timer.stop()


class FramePainter:
    """Draws engine frames onto one matplotlib Axes, reusing artists between frames."""

    def __init__(self, ax: Any, style: StyleConfig) -> None:
        self.ax = ax
        self.style = style
        self._shape_patches: dict[int, tuple[Any, Any]] = {}
        self._pulse_artists: list[Any] = []
        self._overlay_artists: list[Any] = []

    def paint(self, frame: Frame) -> None:
        _, transforms = _require_matplotlib()
        patches = _require_patches()
        ax = self.ax
        scene = frame.scene

        ax.set_xlim(0, scene.width)
        ax.set_ylim(scene.height, 0)
        _apply_background(fig=ax.figure, ax=ax, background=scene.background)

        t = scene.transform
        group = transforms.Affine2D().scale(t.scale).translate(t.translate_x, t.translate_y) + ax.transData

        live: set[int] = set()
        for zorder, shape in enumerate(scene.shapes, start=1):
            key = id(shape.geometry)
            live.add(key)
            entry = self._shape_patches.get(key)
            if entry is None:
                patch = patches.PathPatch(_geometry_path(shape.geometry), joinstyle="round")
                ax.add_patch(patch)
                entry = (shape.geometry, patch)
                self._shape_patches[key] = entry
            patch = entry[1]
            patch.set_facecolor(shape.fill)
            patch.set_edgecolor(shape.stroke)
            patch.set_linewidth(shape.stroke_width)
            patch.set_transform(group)
            # Hovered outline drawn over its neighbours.
            patch.set_zorder(len(scene.shapes) + 1 if shape.highlighted else zorder)
        for key in [k for k in self._shape_patches if k not in live]:
            self._shape_patches.pop(key)[1].remove()

        for artist in self._pulse_artists:
            artist.remove()
        self._pulse_artists = []
        top = len(scene.shapes) + 2
        for marker in frame.pulses:
            circle = patches.Circle(
                (marker.x, marker.y),
                marker.radius,
                fill=False,
                edgecolor=self.style.pulse_stroke,
                linewidth=self.style.pulse_stroke_width,
                alpha=marker.opacity,
                zorder=top,
            )
            ax.add_patch(circle)
            self._pulse_artists.append(circle)

        for artist in self._overlay_artists:
            artist.remove()
        self._overlay_artists = []
        palette = frame.palette
        for button in frame.controls:
            rect = patches.Rectangle(
                (button.x, button.y),
                button.size,
                button.size,
                facecolor=palette.control_fill,
                edgecolor=palette.control_stroke,
                linewidth=1.0,
                zorder=top + 1,
            )
            ax.add_patch(rect)
            label = ax.text(
                button.x + button.size / 2.0,
                button.y + button.size / 2.0,
                button.label,
                ha="center",
                va="center",
                color=palette.control_text,
                fontsize=_CONTROL_FONT_SIZE,
                zorder=top + 2,
            )
            self._overlay_artists.extend((rect, label))

        if frame.tooltip is not None and frame.tooltip.opacity > 0:
            tip = frame.tooltip
            text = ax.text(
                tip.x,
                tip.y,
                "\n".join(tip.lines),
                ha="left",
                va="top",
                fontsize=_TOOLTIP_FONT_SIZE,
                color=palette.tooltip_text,
                alpha=min(tip.opacity / 0.9, 1.0),
                zorder=top + 3,
                bbox={
                    "boxstyle": "round,pad=0.6",
                    "facecolor": palette.tooltip_background,
                    "edgecolor": "#cccccc",
                    "alpha": tip.opacity,
                },
            )
            self._overlay_artists.append(text)


def render_png(engine: MapEngine, output_path: Path, *, dpi: int = 100) -> Path:
    """Render the engine's current frame to a PNG file."""
    frame = engine.render()
    if frame is None:
        raise RuntimeError(f"Map cannot be rendered in state '{engine.state.value}'")
    plt, _ = _require_matplotlib()
    width, height = engine.viewport
    fig = plt.figure(figsize=(width / dpi, height / dpi), dpi=dpi)
    try:
        ax = _map_axes(fig)
        FramePainter(ax, engine.config.style).paint(frame)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, format="png", facecolor=fig.get_facecolor())
        _LOGGER.info("Wrote %s (%dx%d px, %s)", output_path, int(width), int(height), engine.projection.value)
        return output_path
    finally:
        plt.close(fig)


class InteractiveMapWindow:
    """A figure window that forwards pointer input to the engine and repaints it."""

    def __init__(
        self,
        engine_factory: Callable[..., MapEngine],
        *,
        width: float,
        height: float,
        dpi: int = 100,
        frame_interval_ms: int = 16,
        data_source: DataSource | None = None,
        refresh_interval_s: float | None = None,
    ) -> None:
        plt, _ = _require_matplotlib(interactive=True)
        self._plt = plt
        self.fig = plt.figure(figsize=(width / dpi, height / dpi), dpi=dpi)
        if self.fig.canvas.manager is not None:
            self.fig.canvas.manager.set_window_title("Threat map")
        self.ax = _map_axes(self.fig)
        self.scheduler = MatplotlibFrameScheduler(self.fig.canvas, interval_ms=frame_interval_ms)
        self.engine = engine_factory(scheduler=self.scheduler)
        self.painter = FramePainter(self.ax, self.engine.config.style)
        self.engine.handlers.on_redraw = self.redraw
        self._radio = self._add_projection_selector()
        self._data_source = data_source
        self._refresh_timer: Any = None
        if data_source is not None and refresh_interval_s:
            self._refresh_timer = self.fig.canvas.new_timer(interval=int(refresh_interval_s * 1000))
            self._refresh_timer.add_callback(self._poll_data_source)
            self._refresh_timer.start()
        self._connect()

    def show(self) -> None:
        self.redraw()
        self._plt.show()
        self.engine.unmount()

    def redraw(self) -> None:
        frame = self.engine.render()
        if frame is None:
            return
        self.painter.paint(frame)
        self.fig.canvas.draw_idle()

    def _connect(self) -> None:
        canvas = self.fig.canvas
        canvas.mpl_connect("button_press_event", self._on_press)
        canvas.mpl_connect("button_release_event", self._on_release)
        canvas.mpl_connect("motion_notify_event", self._on_motion)
        canvas.mpl_connect("scroll_event", self._on_scroll)
        canvas.mpl_connect("axes_leave_event", self._on_leave)
        canvas.mpl_connect("resize_event", self._on_resize)
        canvas.mpl_connect("close_event", self._on_close)
        canvas.mpl_connect("key_press_event", self._on_key)

    def _map_event(self, event: Any) -> bool:
        return event.inaxes is self.ax and event.xdata is not None and event.ydata is not None

    def _on_press(self, event: Any) -> None:
        if not self._map_event(event) or event.button != 1:
            return
        if event.dblclick:
            self.engine.double_click(event.xdata, event.ydata)
            return
        self.engine.pointer_down(event.xdata, event.ydata)

    def _on_release(self, event: Any) -> None:
        if event.button != 1:
            return
        if event.xdata is None or event.ydata is None:
            # Released outside the map: end the drag without a click.
            self.engine.pointer_cancel()
            return
        self.engine.pointer_up(event.xdata, event.ydata)

    def _on_motion(self, event: Any) -> None:
        if not self._map_event(event):
            return
        self.engine.pointer_move(event.xdata, event.ydata)

    def _on_scroll(self, event: Any) -> None:
        if not self._map_event(event):
            return
        self.engine.wheel(event.xdata, event.ydata, float(event.step))

    def _on_leave(self, event: Any) -> None:
        self.engine.pointer_leave()

    def _on_key(self, event: Any) -> None:
        step = PROJECTION_KEYS.get(event.key)
        if step is None:
            return
        kind = self.engine.cycle_projection(step)
        self._radio.set_active(list(ProjectionKind).index(kind))

    def _on_resize(self, event: Any) -> None:
        _LOGGER.debug("Canvas resized to %sx%s", event.width, event.height)
        self.engine.resize(float(event.width), float(event.height))

    def _on_close(self, event: Any) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.stop()
        self.engine.unmount()

    def _poll_data_source(self) -> None:
        if self._data_source is None:
            return
        dataset = self._data_source.fetch()
        _LOGGER.debug("Refreshed risk data (%d records)", len(dataset))
        self.engine.set_risk_data(dataset)

    def _add_projection_selector(self) -> Any:
        widgets = _require_widgets()
        kinds: Sequence[ProjectionKind] = tuple(ProjectionKind)
        radio_ax = self.fig.add_axes((0.01, 0.70, 0.16, 0.28))
        palette = self.engine.config.style.palette(self.engine.theme)
        radio_ax.set_facecolor(palette.control_fill)
        radio = widgets.RadioButtons(
            radio_ax,
            [kind.value for kind in kinds],
            active=kinds.index(self.engine.projection),
        )
        for label in radio.labels:
            label.set_color(palette.control_text)
            label.set_fontsize(8)
        radio.on_clicked(self.engine.set_projection)
        return radio


def _map_axes(fig: Any) -> Any:
    ax = fig.add_axes((0.0, 0.0, 1.0, 1.0))
    ax.set_axis_off()
    ax.set_autoscale_on(False)
    return ax


def _geometry_path(geometry: Any) -> Any:
    """One compound path for all rings so holes render as holes."""
    mpath = _require_path()
    vertices: list[tuple[float, float]] = []
    codes: list[int] = []
    for ring in _iter_linear_rings(geometry):
        if len(ring) < 3:
            continue
        vertices.extend(ring)
        codes.append(mpath.Path.MOVETO)
        codes.extend([mpath.Path.LINETO] * (len(ring) - 2))
        codes.append(mpath.Path.CLOSEPOLY)
    if not vertices:
        return mpath.Path([(0.0, 0.0)], [mpath.Path.MOVETO])
    return mpath.Path(vertices, codes)


def _iter_linear_rings(geometry: Any) -> Sequence[Sequence[tuple[float, float]]]:
    geom_type = getattr(geometry, "geom_type", "")
    if geom_type == "Polygon":
        exterior = [(float(x), float(y)) for x, y in geometry.exterior.coords]
        rings: list[Sequence[tuple[float, float]]] = [exterior]
        for interior in geometry.interiors:
            rings.append([(float(x), float(y)) for x, y in interior.coords])
        return rings

    if geom_type in {"MultiPolygon", "GeometryCollection"}:
        rings = []
        for part in geometry.geoms:
            rings.extend(_iter_linear_rings(part))
        return rings

    return []


def _apply_background(*, fig: Any | None, ax: Any, background: str) -> None:
    if fig is not None:
        fig.patch.set_facecolor(background)
    ax.set_facecolor(background)


def _require_matplotlib(*, interactive: bool = False) -> tuple[Any, Any]:
    try:
        import matplotlib

        if not interactive:
            matplotlib.use("Agg", force=False)
        import matplotlib.pyplot as plt
        import matplotlib.transforms as transforms
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return (plt, transforms)


@lru_cache(maxsize=1)
def _require_patches() -> Any:
    try:
        import matplotlib.patches as patches
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return patches


@lru_cache(maxsize=1)
def _require_path() -> Any:
    try:
        import matplotlib.path as mpath
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return mpath


@lru_cache(maxsize=1)
def _require_widgets() -> Any:
    try:
        import matplotlib.widgets as widgets
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for the interactive map") from exc
    return widgets
