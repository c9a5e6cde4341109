"""Cartographic projections mapping lon/lat degrees onto the drawing surface.

Projection math is delegated to PROJ (through pyproj) on a unit sphere; this
module adds the screen-space scale/translate, the globe rotation and the
horizon clipping the orthographic view needs.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import numpy as np
import shapely
from shapely.geometry import MultiPolygon, Polygon, box

from .models import ProjectionKind, Rotation


_LOGGER = logging.getLogger("threatmap.projection")

MERCATOR_MAX_LAT = 85.0511287798066
ORTHOGRAPHIC_CLIP_ANGLE = 90.0
# Maximum edge length (degrees) after horizon clipping so the cut follows the limb.
_CLIP_SEGMENT_DEG = 2.0
_ROUND_TRIP_TOLERANCE_PX = 0.5


class InvalidViewportError(ValueError):
    """Raised when the drawing surface has no usable area."""


@dataclass(frozen=True, slots=True)
class _ProjectionSpec:
    proj: str
    scale_multiplier: float


_SPECS: dict[ProjectionKind, _ProjectionSpec] = {
    ProjectionKind.NATURAL_EARTH: _ProjectionSpec("+proj=natearth +R=1", 0.08),
    ProjectionKind.MERCATOR: _ProjectionSpec("+proj=merc +R=1", 0.08),
    ProjectionKind.EQUIRECTANGULAR: _ProjectionSpec("+proj=eqc +R=1", 0.11),
    ProjectionKind.ROBINSON: _ProjectionSpec("+proj=robin +R=1", 0.11),
    ProjectionKind.WINKEL3: _ProjectionSpec("+proj=wintri +R=1", 0.11),
    ProjectionKind.ECKERT4: _ProjectionSpec("+proj=eck4 +R=1", 0.11),
    ProjectionKind.ORTHOGRAPHIC: _ProjectionSpec("+proj=ortho +R=1 +lat_0=0 +lon_0=0", 0.4),
}


def scale_multiplier(kind: ProjectionKind) -> float:
    return _SPECS[kind].scale_multiplier


class ProjectionFactory:
    """Builds a ready-to-use projection for a kind and viewport size."""

    def build(self, kind: ProjectionKind | str, viewport_width: float, viewport_height: float) -> ProjectionHandle:
        kind = ProjectionKind.parse(kind)
        if viewport_width <= 0 or viewport_height <= 0:
            raise InvalidViewportError(
                f"Viewport must have positive size, got {viewport_width}x{viewport_height}"
            )
        spec = _SPECS[kind]
        handle = ProjectionHandle(kind, _require_transformer(kind))
        handle.scale(min(viewport_width, viewport_height) * spec.scale_multiplier)
        handle.translate((viewport_width / 2.0, viewport_height / 2.0))
        _LOGGER.debug(
            "Built %s projection for %sx%s (scale=%.3f)",
            kind.value,
            viewport_width,
            viewport_height,
            handle.k,
        )
        return handle


class ProjectionHandle:
    """A configured projection: lon/lat degrees <-> screen pixels (y down)."""

    def __init__(self, kind: ProjectionKind, transformer: Any) -> None:
        self.kind = kind
        self._transformer = transformer
        self._k = 1.0
        self._tx = 0.0
        self._ty = 0.0
        self._rotation: Rotation = (0.0, 0.0, 0.0)

    @property
    def k(self) -> float:
        return self._k

    @property
    def offset(self) -> tuple[float, float]:
        return (self._tx, self._ty)

    @property
    def rotation(self) -> Rotation:
        return self._rotation

    @property
    def clip_angle(self) -> float | None:
        return ORTHOGRAPHIC_CLIP_ANGLE if self.kind.is_globe else None

    def scale(self, k: float) -> ProjectionHandle:
        if k <= 0 or not math.isfinite(k):
            raise ValueError(f"Projection scale must be positive, got {k}")
        self._k = float(k)
        return self

    def translate(self, xy: tuple[float, float]) -> ProjectionHandle:
        self._tx, self._ty = float(xy[0]), float(xy[1])
        return self

    def set_rotation(self, rotation: Rotation) -> ProjectionHandle:
        if not self.kind.is_globe:
            return self
        lam, phi, gamma = (float(v) for v in rotation)
        self._rotation = (lam, phi, gamma)
        return self

    def project(self, lon_lat: tuple[float, float]) -> tuple[float, float] | None:
        """Project one point; None when it is clipped (far side of the globe)."""
        lon = np.array([float(lon_lat[0])])
        lat = np.array([float(lon_lat[1])])
        if self.kind.is_globe:
            lon, lat = rotate(lon, lat, self._rotation)
            if not _visible(lon, lat)[0]:
                return None
        x, y = self._forward(lon, lat)
        if not (math.isfinite(x[0]) and math.isfinite(y[0])):
            return None
        return (float(x[0]), float(y[0]))

    def invert(self, xy: tuple[float, float]) -> tuple[float, float] | None:
        """Screen point back to lon/lat; None outside the drawn map."""
        px = np.array([(float(xy[0]) - self._tx) / self._k])
        py = np.array([(self._ty - float(xy[1])) / self._k])
        if self.kind.is_globe and float(px[0] ** 2 + py[0] ** 2) > 1.0 + 1e-12:
            return None
        lon, lat = self._transformer.transform(px, py, direction="INVERSE")
        lon = np.asarray(lon, dtype=float)
        lat = np.asarray(lat, dtype=float)
        if not (np.isfinite(lon[0]) and np.isfinite(lat[0])):
            return None
        if abs(lon[0]) > 180.0 + 1e-9 or abs(lat[0]) > 90.0 + 1e-9:
            return None
        if self.kind.is_globe:
            lon, lat = rotate_inverse(lon, lat, self._rotation)
        result = (float(lon[0]), float(lat[0]))
        back = self.project(result)
        if back is None or math.hypot(back[0] - xy[0], back[1] - xy[1]) > _ROUND_TRIP_TOLERANCE_PX:
            return None
        return result

    def project_geometry(self, geometry: Any) -> Any | None:
        """Project a lon/lat (multi)polygon to screen space.

        Returns None when nothing of the geometry is visible.
        """
        if geometry is None or geometry.is_empty:
            return None
        if self.kind.is_globe:
            geometry = _rotate_and_clip(geometry, self._rotation)
            if geometry is None:
                return None
        projected = shapely.transform(geometry, self._forward_coords)
        if projected.is_empty:
            return None
        if not projected.is_valid:
            projected = shapely.make_valid(projected)
            projected = _polygonal_part(projected)
        return projected

    def _forward_coords(self, coords: np.ndarray) -> np.ndarray:
        x, y = self._forward(coords[:, 0], coords[:, 1])
        return np.column_stack((x, y))

    def _forward(self, lon: np.ndarray, lat: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        if self.kind is ProjectionKind.MERCATOR:
            lat = np.clip(lat, -MERCATOR_MAX_LAT, MERCATOR_MAX_LAT)
        px, py = self._transformer.transform(lon, lat)
        px = np.asarray(px, dtype=float)
        py = np.asarray(py, dtype=float)
        return (px * self._k + self._tx, self._ty - py * self._k)


def rotate(lon: np.ndarray, lat: np.ndarray, rotation: Rotation) -> tuple[np.ndarray, np.ndarray]:
    """Spherical rotation by (lambda, phi, gamma) degrees, degrees in and out."""
    d_lambda, d_phi, d_gamma = (math.radians(v) for v in rotation)
    lam = np.radians(lon) + d_lambda
    lam = np.where(lam > math.pi, lam - 2 * math.pi, lam)
    lam = np.where(lam < -math.pi, lam + 2 * math.pi, lam)
    phi = np.radians(lat)
    if d_phi == 0.0 and d_gamma == 0.0:
        return (np.degrees(lam), np.degrees(phi))

    cos_dp, sin_dp = math.cos(d_phi), math.sin(d_phi)
    cos_dg, sin_dg = math.cos(d_gamma), math.sin(d_gamma)
    cos_phi = np.cos(phi)
    x = np.cos(lam) * cos_phi
    y = np.sin(lam) * cos_phi
    z = np.sin(phi)
    k = z * cos_dp + x * sin_dp
    out_lam = np.arctan2(y * cos_dg - k * sin_dg, x * cos_dp - z * sin_dp)
    out_phi = np.arcsin(np.clip(k * cos_dg + y * sin_dg, -1.0, 1.0))
    return (np.degrees(out_lam), np.degrees(out_phi))


def rotate_inverse(lon: np.ndarray, lat: np.ndarray, rotation: Rotation) -> tuple[np.ndarray, np.ndarray]:
    d_lambda, d_phi, d_gamma = (math.radians(v) for v in rotation)
    lam = np.radians(lon)
    phi = np.radians(lat)
    if d_phi != 0.0 or d_gamma != 0.0:
        cos_dp, sin_dp = math.cos(d_phi), math.sin(d_phi)
        cos_dg, sin_dg = math.cos(d_gamma), math.sin(d_gamma)
        cos_phi = np.cos(phi)
        x = np.cos(lam) * cos_phi
        y = np.sin(lam) * cos_phi
        z = np.sin(phi)
        k = z * cos_dg - y * sin_dg
        lam = np.arctan2(y * cos_dg + z * sin_dg, x * cos_dp + k * sin_dp)
        phi = np.arcsin(np.clip(k * cos_dp - x * sin_dp, -1.0, 1.0))
    lam = lam - d_lambda
    lam = np.where(lam > math.pi, lam - 2 * math.pi, lam)
    lam = np.where(lam < -math.pi, lam + 2 * math.pi, lam)
    return (np.degrees(lam), np.degrees(phi))


def _visible(lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
    # After rotation the view centre is (0, 0); the front hemisphere is |lon| <= 90.
    return np.abs(lon) <= ORTHOGRAPHIC_CLIP_ANGLE + 1e-9


def _rotate_and_clip(geometry: Any, rotation: Rotation) -> Any | None:
    parts: list[Any] = []
    for polygon in _explode_polygons(geometry):
        rotated = _rotate_polygon(polygon, rotation)
        if rotated is None:
            continue
        min_x, _, max_x, _ = rotated.bounds
        for shift in (-720.0, -360.0, 0.0, 360.0, 720.0):
            window = box(-ORTHOGRAPHIC_CLIP_ANGLE + shift, -90.0, ORTHOGRAPHIC_CLIP_ANGLE + shift, 90.0)
            if max_x < window.bounds[0] or min_x > window.bounds[2]:
                continue
            clipped = _polygonal_part(rotated.intersection(window))
            if clipped is None or clipped.is_empty:
                continue
            if shift:
                clipped = shapely.transform(clipped, lambda c, s=shift: c - np.array([s, 0.0]))
            parts.extend(_explode_polygons(clipped))
    if not parts:
        return None
    merged = parts[0] if len(parts) == 1 else MultiPolygon(parts)
    return shapely.segmentize(merged, _CLIP_SEGMENT_DEG)


def _rotate_polygon(polygon: Any, rotation: Rotation) -> Any | None:
    shell = _rotate_ring(np.asarray(polygon.exterior.coords), rotation)
    if shell is None:
        return None
    shell_mid = float(np.mean(shell[:, 0]))
    holes: list[np.ndarray] = []
    for interior in polygon.interiors:
        ring = _rotate_ring(np.asarray(interior.coords), rotation)
        if ring is None:
            continue
        # Keep holes on the same 360-degree sheet as their shell.
        offset = round((shell_mid - float(np.mean(ring[:, 0]))) / 360.0) * 360.0
        ring[:, 0] += offset
        holes.append(ring)
    rotated = Polygon(shell, holes)
    if not rotated.is_valid:
        rotated = _polygonal_part(shapely.make_valid(rotated))
    return rotated


def _rotate_ring(coords: np.ndarray, rotation: Rotation) -> np.ndarray | None:
    if len(coords) < 4:
        return None
    lon, lat = rotate(coords[:, 0], coords[:, 1], rotation)
    lon = np.degrees(np.unwrap(np.radians(lon)))
    winding = lon[-1] - lon[0]
    if abs(winding) > 180.0:
        # The ring circles a pole of the rotated frame: close it along that pole.
        pole = 90.0 if float(np.mean(lat)) >= 0 else -90.0
        lon = np.concatenate([lon, [lon[-1], lon[0], lon[0]]])
        lat = np.concatenate([lat, [pole, pole, lat[0]]])
    return np.column_stack((lon, lat))


def _explode_polygons(geometry: Any) -> list[Any]:
    if geometry is None or geometry.is_empty:
        return []
    geom_type = geometry.geom_type
    if geom_type == "Polygon":
        return [geometry]
    if geom_type in {"MultiPolygon", "GeometryCollection"}:
        out: list[Any] = []
        for part in geometry.geoms:
            out.extend(_explode_polygons(part))
        return out
    return []


def _polygonal_part(geometry: Any) -> Any | None:
    polygons = _explode_polygons(geometry)
    if not polygons:
        return None
    return polygons[0] if len(polygons) == 1 else MultiPolygon(polygons)


@lru_cache(maxsize=None)
def _require_transformer(kind: ProjectionKind) -> Any:
    try:
        from pyproj import Transformer
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pyproj is required for map projections") from exc
    pipeline = (
        "+proj=pipeline "
        "+step +proj=unitconvert +xy_in=deg +xy_out=rad "
        f"+step {_SPECS[kind].proj}"
    )
    return Transformer.from_pipeline(pipeline)
