"""On-map zoom buttons and the projection switch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .models import ProjectionKind
from .view import ViewTransformController


_LOGGER = logging.getLogger("threatmap.controls")

ZOOM_IN_FACTOR = 1.3
ZOOM_OUT_FACTOR = 0.7
BUTTON_SIZE = 30.0
BUTTON_RIGHT_INSET = 60.0
BUTTON_TOP = 20.0
BUTTON_PITCH = 35.0


class ControlAction(str, Enum):
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    RESET = "reset"
    FIT = "fit"


@dataclass(frozen=True, slots=True)
class ControlButton:
    action: ControlAction
    label: str
    title: str
    x: float
    y: float
    size: float = BUTTON_SIZE

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.x + self.size and self.y <= py <= self.y + self.size


_BUTTONS: tuple[tuple[ControlAction, str, str], ...] = (
    (ControlAction.ZOOM_IN, "+", "Zoom In"),
    (ControlAction.ZOOM_OUT, "-", "Zoom Out"),
    (ControlAction.RESET, "⟲", "Reset Zoom"),
    (ControlAction.FIT, "⊡", "Fit to Window"),
)


def layout_buttons(width: float) -> tuple[ControlButton, ...]:
    """Buttons stacked down the top-right corner of the map."""
    return tuple(
        ControlButton(
            action=action,
            label=label,
            title=title,
            x=width - BUTTON_RIGHT_INSET,
            y=BUTTON_TOP + idx * BUTTON_PITCH,
        )
        for idx, (action, label, title) in enumerate(_BUTTONS)
    )


class ControlOverlay:
    """Turns button presses and projection picks into engine commands."""

    def __init__(
        self,
        view: ViewTransformController,
        *,
        zoom_transition_ms: float = 250.0,
        reset_transition_ms: float = 750.0,
        on_projection_change: Callable[[ProjectionKind], None] | None = None,
    ) -> None:
        self.view = view
        self.zoom_transition_ms = zoom_transition_ms
        self.reset_transition_ms = reset_transition_ms
        self._on_projection_change = on_projection_change
        self._projection = view.projection

    @property
    def projection(self) -> ProjectionKind:
        return self._projection

    def buttons(self, width: float) -> tuple[ControlButton, ...]:
        return layout_buttons(width)

    def button_at(self, x: float, y: float, width: float) -> ControlButton | None:
        for button in layout_buttons(width):
            if button.contains(x, y):
                return button
        return None

    def press(self, action: ControlAction, width: float, height: float) -> None:
        _LOGGER.debug("Control pressed: %s", action.value)
        center = (width / 2.0, height / 2.0)
        if action is ControlAction.ZOOM_IN:
            self.view.smooth_zoom_by(ZOOM_IN_FACTOR, self.zoom_transition_ms, anchor=center)
        elif action is ControlAction.ZOOM_OUT:
            self.view.smooth_zoom_by(ZOOM_OUT_FACTOR, self.zoom_transition_ms, anchor=center)
        elif action is ControlAction.RESET:
            self.view.smooth_reset(self.reset_transition_ms)
        elif action is ControlAction.FIT:
            self.view.smooth_fit(self.reset_transition_ms)

    def select_projection(self, kind: ProjectionKind | str) -> ProjectionKind:
        """Switch projection. Pan/zoom carry over; nothing is reset."""
        kind = ProjectionKind.parse(kind)
        if kind is self._projection:
            return kind
        _LOGGER.info("Projection switched: %s -> %s", self._projection.value, kind.value)
        self._projection = kind
        self.view.set_projection(kind)
        if self._on_projection_change is not None:
            self._on_projection_change(kind)
        return kind

    def cycle_projection(self, step: int = 1) -> ProjectionKind:
        kinds = list(ProjectionKind)
        idx = kinds.index(self._projection)
        return self.select_projection(kinds[(idx + step) % len(kinds)])
