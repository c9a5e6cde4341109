"""Scene construction: one styled, projected shape per country.

Each render pass produces a fresh `Scene` from immutable inputs. Hosts draw
the scene; nothing here touches a live drawing surface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .config import StyleConfig
from .models import ProjectionKind, RiskDataset, RiskLevel, Rotation, Theme, ViewTransform, WorldGeometry
from .projection import ProjectionHandle


_LOGGER = logging.getLogger("threatmap.renderer")


@dataclass(frozen=True, slots=True)
class ProjectedCountry:
    name: str
    geometry: Any
    centroid: tuple[float, float]


@dataclass(frozen=True, slots=True)
class SceneShape:
    geometry_id: str
    geometry: Any
    fill: str
    stroke: str
    stroke_width: float
    risk_level: RiskLevel | None
    highlighted: bool = False

    @property
    def has_data(self) -> bool:
        return self.risk_level is not None


@dataclass(frozen=True, slots=True)
class Scene:
    """Retained description of one render pass.

    Shape geometries are in projected screen space before the view transform;
    hosts apply `transform` on top, like a group transform on a vector canvas.
    """

    width: float
    height: float
    projection: ProjectionKind
    theme: Theme
    background: str
    transform: ViewTransform
    shapes: tuple[SceneShape, ...]

    def shape(self, geometry_id: str) -> SceneShape | None:
        for shape in self.shapes:
            if shape.geometry_id == geometry_id:
                return shape
        return None


@dataclass(frozen=True, slots=True)
class _ProjectionKey:
    kind: ProjectionKind
    k: float
    offset: tuple[float, float]
    rotation: Rotation


class GeometryRenderer:
    """Projects world geometry and styles it from the risk dataset."""

    def __init__(self, style: StyleConfig) -> None:
        self.style = style
        self._cached_world: WorldGeometry | None = None
        self._cached_key: _ProjectionKey | None = None
        self._cached_projected: tuple[ProjectedCountry, ...] = ()

    def project_world(self, world: WorldGeometry, projection: ProjectionHandle) -> tuple[ProjectedCountry, ...]:
        """Projected countries in draw order; cached while the projection is unchanged."""
        key = _ProjectionKey(
            kind=projection.kind,
            k=projection.k,
            offset=projection.offset,
            rotation=projection.rotation,
        )
        if self._cached_world is world and self._cached_key == key:
            return self._cached_projected

        projected: list[ProjectedCountry] = []
        for country in world:
            geometry = projection.project_geometry(country.geometry)
            if geometry is None or geometry.is_empty:
                continue
            centroid = geometry.centroid
            projected.append(
                ProjectedCountry(
                    name=country.name,
                    geometry=geometry,
                    centroid=(float(centroid.x), float(centroid.y)),
                )
            )
        _LOGGER.debug(
            "Projected %d/%d countries with %s", len(projected), len(world), projection.kind.value
        )
        self._cached_world = world
        self._cached_key = key
        self._cached_projected = tuple(projected)
        return self._cached_projected

    def fill_for(self, name: str, risk_data: RiskDataset, theme: Theme) -> str:
        record = risk_data.get(name)
        if record is None:
            return self.style.palette(theme).unknown_fill
        if record.risk_level is RiskLevel.HIGH:
            return self.style.high_fill
        if record.risk_level is RiskLevel.MEDIUM:
            return self.style.medium_fill
        return self.style.low_fill

    def render(
        self,
        *,
        world: WorldGeometry,
        risk_data: RiskDataset,
        projection: ProjectionHandle,
        transform: ViewTransform,
        theme: Theme,
        width: float,
        height: float,
        hovered: str | None = None,
    ) -> Scene:
        palette = self.style.palette(theme)
        shapes: list[SceneShape] = []
        for item in self.project_world(world, projection):
            record = risk_data.get(item.name)
            is_hovered = item.name == hovered
            shapes.append(
                SceneShape(
                    geometry_id=item.name,
                    geometry=item.geometry,
                    fill=self.fill_for(item.name, risk_data, theme),
                    stroke=self.style.highlight_stroke if is_hovered else palette.stroke,
                    stroke_width=(
                        self.style.highlight_stroke_width if is_hovered else self.style.stroke_width
                    ),
                    risk_level=None if record is None else record.risk_level,
                    highlighted=is_hovered,
                )
            )
        return Scene(
            width=width,
            height=height,
            projection=projection.kind,
            theme=theme,
            background=palette.background,
            transform=transform,
            shapes=tuple(shapes),
        )
