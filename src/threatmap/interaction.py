"""Pointer hit-testing, hover tooltips and click selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from shapely.geometry import Point
from shapely.strtree import STRtree

from .frames import FrameScheduler
from .models import RiskDataset, RiskRecord, Selection, TooltipPayload, ViewTransform
from .renderer import ProjectedCountry


_LOGGER = logging.getLogger("threatmap.interaction")

TOOLTIP_OFFSET = (10.0, -28.0)
TOOLTIP_OPACITY = 0.9

HoverListener = Callable[[str | None, RiskRecord | None, tuple[float, float]], None]
SelectListener = Callable[[Selection], None]


@dataclass(slots=True)
class _TooltipState:
    name: str
    record: RiskRecord | None
    x: float
    y: float
    fade_from: float
    fade_to: float
    fade_started_at: float
    fade_ms: float


class InteractionLayer:
    """Resolves pointer positions to countries and tracks hover/selection."""

    def __init__(
        self,
        *,
        scheduler: FrameScheduler | None = None,
        fade_in_ms: float = 200.0,
        fade_out_ms: float = 500.0,
        on_hover: HoverListener | None = None,
        on_select: SelectListener | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._fade_in_ms = fade_in_ms
        self._fade_out_ms = fade_out_ms
        self._on_hover = on_hover
        self._on_select = on_select
        self._on_change = on_change
        self._countries: tuple[ProjectedCountry, ...] = ()
        self._tree: STRtree | None = None
        self._hovered: str | None = None
        self._selection: Selection | None = None
        self._tooltip: _TooltipState | None = None
        self._fade_handle: int | None = None
        self._last_pointer: tuple[float, float] = (0.0, 0.0)

    @property
    def hovered(self) -> str | None:
        return self._hovered

    @property
    def selection(self) -> Selection | None:
        return self._selection

    def update_shapes(self, countries: Sequence[ProjectedCountry]) -> None:
        """Index the shapes of the latest render pass (pre-transform coordinates)."""
        countries = tuple(countries)
        if countries is self._countries:
            return
        self._countries = countries
        self._tree = STRtree([item.geometry for item in countries]) if countries else None
        if self._hovered is not None and all(item.name != self._hovered for item in countries):
            self._hovered = None
            self._begin_fade_out()

    def hit_test(self, x: float, y: float, transform: ViewTransform) -> str | None:
        """Name of the topmost country strictly containing the screen point."""
        if self._tree is None:
            return None
        px, py = transform.invert(x, y)
        hits = self._tree.query(Point(px, py), predicate="within")
        if len(hits) == 0:
            return None
        return self._countries[int(max(hits))].name

    def pointer_move(
        self,
        x: float,
        y: float,
        transform: ViewTransform,
        risk_data: RiskDataset,
    ) -> str | None:
        name = self.hit_test(x, y, transform)
        previous = self._hovered
        self._last_pointer = (x, y)
        self._hovered = name
        if name is None:
            if previous is not None:
                self._begin_fade_out()
                self._emit_hover(None, None, (x, y))
                self._changed()
            return None

        record = risk_data.get(name)
        tip_x, tip_y = x + TOOLTIP_OFFSET[0], y + TOOLTIP_OFFSET[1]
        if previous != name or self._tooltip is None:
            start_opacity = self._tooltip_opacity() if self._tooltip is not None else 0.0
            self._tooltip = _TooltipState(
                name=name,
                record=record,
                x=tip_x,
                y=tip_y,
                fade_from=start_opacity,
                fade_to=TOOLTIP_OPACITY,
                fade_started_at=self._now(),
                fade_ms=self._fade_in_ms if self._scheduler is not None else 0.0,
            )
            self._schedule_fade()
        else:
            self._tooltip.x, self._tooltip.y = tip_x, tip_y
            self._tooltip.record = record
        self._emit_hover(name, record, (x, y))
        self._changed()
        return name

    def pointer_leave(self) -> None:
        if self._hovered is None:
            return
        self._hovered = None
        self._begin_fade_out()
        self._emit_hover(None, None, self._last_pointer)
        self._changed()

    def click(
        self,
        x: float,
        y: float,
        transform: ViewTransform,
        risk_data: RiskDataset,
    ) -> Selection | None:
        name = self.hit_test(x, y, transform)
        if name is None:
            return None
        record = risk_data.get(name)
        selection = Selection(
            name=name,
            record=record if record is not None else RiskRecord.no_data(),
            has_data=record is not None,
        )
        self._selection = selection
        _LOGGER.debug("Selected %s (data=%s)", name, selection.has_data)
        if self._on_select is not None:
            self._on_select(selection)
        self._changed()
        return selection

    def clear_selection(self) -> None:
        self._selection = None

    def refresh_records(self, risk_data: RiskDataset) -> None:
        """Point the visible tooltip at the current dataset after a data change."""
        if self._tooltip is not None:
            self._tooltip.record = risk_data.get(self._tooltip.name)

    def tooltip(self) -> TooltipPayload | None:
        state = self._tooltip
        if state is None:
            return None
        opacity = self._tooltip_opacity()
        if opacity <= 0.0 and state.fade_to <= 0.0:
            return None
        return TooltipPayload(name=state.name, record=state.record, x=state.x, y=state.y, opacity=opacity)

    def detach(self) -> None:
        if self._fade_handle is not None and self._scheduler is not None:
            self._scheduler.cancel(self._fade_handle)
        self._fade_handle = None
        self._tooltip = None
        self._hovered = None

    def _tooltip_opacity(self) -> float:
        state = self._tooltip
        if state is None:
            return 0.0
        if state.fade_ms <= 0:
            return state.fade_to
        t = min(max((self._now() - state.fade_started_at) / state.fade_ms, 0.0), 1.0)
        return state.fade_from + (state.fade_to - state.fade_from) * t

    def _begin_fade_out(self) -> None:
        state = self._tooltip
        if state is None:
            return
        if self._scheduler is None:
            self._tooltip = None
            return
        state.fade_from = self._tooltip_opacity()
        state.fade_to = 0.0
        state.fade_started_at = self._now()
        state.fade_ms = self._fade_out_ms
        self._schedule_fade()

    def _schedule_fade(self) -> None:
        if self._scheduler is None or self._fade_handle is not None:
            return
        self._fade_handle = self._scheduler.request(self._on_fade_frame)

    def _on_fade_frame(self, now: float) -> None:
        self._fade_handle = None
        state = self._tooltip
        if state is None:
            return
        done = state.fade_ms <= 0 or now - state.fade_started_at >= state.fade_ms
        if done and state.fade_to <= 0.0:
            self._tooltip = None
        self._changed()
        if not done:
            self._schedule_fade()

    def _now(self) -> float:
        return self._scheduler.now() if self._scheduler is not None else 0.0

    def _emit_hover(self, name: str | None, record: RiskRecord | None, pointer: tuple[float, float]) -> None:
        if self._on_hover is not None:
            self._on_hover(name, record, pointer)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
