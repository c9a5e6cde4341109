"""World geometry loading: GeoJSON, TopoJSON and Natural Earth admin-0 files."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import requests
import shapely
from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, shape

from .config import DEFAULT_NAME_PROPERTIES, SourceConfig
from .models import Country, WorldGeometry


_LOGGER = logging.getLogger("threatmap.geometry_io")

_JSON_SUFFIXES = {".json", ".geojson", ".topojson"}
_RETRYABLE_HTTP_STATUS = {429, 500, 502, 503, 504}


class GeometryLoadError(RuntimeError):
    """World geometry could not be fetched or parsed."""


def _first_existing_property(properties: Mapping[str, Any], candidates: Sequence[str]) -> str | None:
    existing = {str(key).lower(): key for key in properties}
    for candidate in candidates:
        match = existing.get(candidate.lower())
        if match is not None:
            value = properties.get(match)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def load_world_geometry(
    source: str | Path,
    *,
    name_properties: Sequence[str] = DEFAULT_NAME_PROPERTIES,
    topology_object: str | None = "countries",
    fetcher: GeometryFetcher | None = None,
) -> WorldGeometry:
    """Load world geometry from a URL or a local file.

    URLs and `.json/.geojson/.topojson` files are parsed as GeoJSON or TopoJSON;
    anything else is read as a Natural Earth admin-0 dataset through GeoPandas.
    """
    source_str = str(source)
    try:
        if "://" in source_str:
            payload = (fetcher or GeometryFetcher()).fetch_json(source_str)
            return world_from_document(payload, name_properties=name_properties, topology_object=topology_object)

        path = Path(source_str)
        if not path.exists():
            raise GeometryLoadError(f"World geometry file not found: {path}")
        if path.suffix.lower() in _JSON_SUFFIXES:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
            return world_from_document(payload, name_properties=name_properties, topology_object=topology_object)
        return NaturalEarthRepository(path).load_world(name_properties=name_properties)
    except GeometryLoadError:
        raise
    except (OSError, ValueError, KeyError, TypeError, IndexError, ShapelyError, requests.RequestException) as exc:
        raise GeometryLoadError(f"Failed loading world geometry from {source_str}: {exc}") from exc


def load_world_from_config(cfg: SourceConfig) -> WorldGeometry:
    fetcher = GeometryFetcher(
        timeout_s=cfg.request_timeout_s,
        max_retries=cfg.max_retries,
        retry_backoff_s=cfg.retry_backoff_s,
    )
    return load_world_geometry(
        cfg.world_geometry,
        name_properties=cfg.name_properties,
        topology_object=cfg.topology_object,
        fetcher=fetcher,
    )


def world_from_document(
    payload: Any,
    *,
    name_properties: Sequence[str] = DEFAULT_NAME_PROPERTIES,
    topology_object: str | None = "countries",
) -> WorldGeometry:
    """Build world geometry from a parsed GeoJSON or TopoJSON document."""
    if not isinstance(payload, Mapping):
        raise GeometryLoadError("World geometry document must be a JSON object")
    doc_type = payload.get("type")
    if doc_type == "Topology":
        features = decode_topojson(payload, topology_object)
    elif doc_type == "FeatureCollection":
        features = payload.get("features") or []
    elif doc_type == "Feature":
        features = [payload]
    else:
        raise GeometryLoadError(f"Unsupported world geometry document type: {doc_type!r}")
    return world_from_features(features, name_properties=name_properties)


def world_from_features(
    features: Iterable[Mapping[str, Any]],
    *,
    name_properties: Sequence[str] = DEFAULT_NAME_PROPERTIES,
) -> WorldGeometry:
    countries: list[Country] = []
    seen: set[str] = set()
    skipped_unnamed = 0
    for index, feature in enumerate(features):
        if not isinstance(feature, Mapping):
            raise GeometryLoadError(f"Feature {index} is not an object: {feature!r}")
        properties = feature.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise GeometryLoadError(f"Feature {index} has non-object properties")
        name = _first_existing_property(properties, name_properties)
        geometry_raw = feature.get("geometry")
        if name is None:
            skipped_unnamed += 1
            continue
        if not geometry_raw:
            continue
        geometry = _polygonal(shape(geometry_raw))
        if geometry is None:
            continue
        if name in seen:
            _LOGGER.warning("Duplicate country name '%s' in world geometry; keeping the first", name)
            continue
        seen.add(name)
        countries.append(Country(name=name, geometry=geometry))
    if skipped_unnamed:
        _LOGGER.warning("Skipped %d features without a name property", skipped_unnamed)
    if not countries:
        raise GeometryLoadError("World geometry contains no named polygon features")
    return WorldGeometry.from_countries(countries)


def decode_topojson(topology: Mapping[str, Any], object_name: str | None = None) -> list[dict[str, Any]]:
    """Convert one TopoJSON object into GeoJSON-like features."""
    objects = topology.get("objects")
    if not isinstance(objects, Mapping) or not objects:
        raise GeometryLoadError("TopoJSON document has no objects")
    if object_name is None or object_name not in objects:
        if object_name is not None:
            _LOGGER.warning("TopoJSON object '%s' missing; using '%s'", object_name, next(iter(objects)))
        object_name = next(iter(objects))
    arcs = _decode_arcs(topology.get("arcs") or [], topology.get("transform"))

    def ring(indices: Sequence[int]) -> list[list[float]]:
        points: list[list[float]] = []
        for index in indices:
            arc = arcs[index] if index >= 0 else arcs[~index][::-1]
            points.extend(arc[1:] if points else arc)
        if points and points[0] != points[-1]:
            points.append(points[0])
        return points

    def convert(obj: Mapping[str, Any]) -> list[dict[str, Any]]:
        geom_type = obj.get("type")
        if geom_type == "GeometryCollection":
            out: list[dict[str, Any]] = []
            for child in obj.get("geometries") or []:
                out.extend(convert(child))
            return out
        if geom_type == "Polygon":
            geometry = {"type": "Polygon", "coordinates": [ring(r) for r in obj.get("arcs") or []]}
        elif geom_type == "MultiPolygon":
            geometry = {
                "type": "MultiPolygon",
                "coordinates": [[ring(r) for r in polygon] for polygon in obj.get("arcs") or []],
            }
        else:
            geometry = None
        return [
            {
                "type": "Feature",
                "id": obj.get("id"),
                "properties": dict(obj.get("properties") or {}),
                "geometry": geometry,
            }
        ]

    return convert(objects[object_name])


def _decode_arcs(raw_arcs: Sequence[Sequence[Sequence[float]]], transform: Any) -> list[list[list[float]]]:
    if not transform:
        return [[[float(p[0]), float(p[1])] for p in arc] for arc in raw_arcs]
    sx, sy = (float(v) for v in transform["scale"])
    tx, ty = (float(v) for v in transform["translate"])
    decoded: list[list[list[float]]] = []
    for arc in raw_arcs:
        x = y = 0
        points: list[list[float]] = []
        for position in arc:
            # Quantized arcs store deltas from the previous position.
            x += position[0]
            y += position[1]
            points.append([x * sx + tx, y * sy + ty])
        decoded.append(points)
    return decoded


def _polygonal(geometry: Any) -> Any | None:
    if geometry is None or geometry.is_empty:
        return None
    if not geometry.is_valid:
        geometry = shapely.make_valid(geometry)
    polygons: list[Any] = []
    stack = [geometry]
    while stack:
        current = stack.pop()
        if current.geom_type == "Polygon":
            if not current.is_empty:
                polygons.append(current)
        elif current.geom_type in {"MultiPolygon", "GeometryCollection"}:
            stack.extend(reversed(list(current.geoms)))
    if not polygons:
        return None
    return polygons[0] if len(polygons) == 1 else MultiPolygon(polygons)


class GeometryFetcher:
    """HTTP fetch of a geometry document with bounded retries."""

    def __init__(
        self,
        *,
        timeout_s: float = 20.0,
        max_retries: int = 3,
        retry_backoff_s: float = 1.0,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self._max_retries = max(int(max_retries), 0)
        self._retry_backoff_s = max(float(retry_backoff_s), 0.01)
        self._session = session or requests.Session()

    def fetch_json(self, url: str) -> Any:
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                response = self._session.get(url, timeout=self.timeout_s)
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt >= self._max_retries:
                    raise GeometryLoadError(f"Could not reach {url}: {exc}") from exc
                delay_s = self._retry_backoff_s * (2**attempt)
                _LOGGER.warning(
                    "Request to %s failed (%s); retrying in %.1fs (%d/%d)",
                    url,
                    exc,
                    delay_s,
                    attempt + 1,
                    self._max_retries,
                )
                time.sleep(delay_s)
                continue
            if response.status_code not in _RETRYABLE_HTTP_STATUS or attempt >= self._max_retries:
                response.raise_for_status()
                return response.json()
            delay_s = self._retry_backoff_s * (2**attempt)
            _LOGGER.warning(
                "Retryable response %s for %s; retrying in %.1fs (%d/%d)",
                response.status_code,
                url,
                delay_s,
                attempt + 1,
                self._max_retries,
            )
            response.close()
            time.sleep(delay_s)
        raise RuntimeError("Unreachable retry loop in geometry fetcher")


class NaturalEarthRepository:
    """Natural Earth admin-0 polygons read through GeoPandas."""

    def __init__(self, admin0_path: Path) -> None:
        self.admin0_path = admin0_path

    def load_admin0(self) -> Any:
        gpd = self._require_geopandas()
        try:
            frame = gpd.read_file(self.admin0_path)
            if frame.crs is not None and frame.crs.to_epsg() != 4326:
                frame = frame.to_crs(epsg=4326)
        except Exception as exc:
            # pyogrio and fiona raise their own RuntimeError subclasses for unreadable files.
            raise GeometryLoadError(f"Could not read admin0 data {self.admin0_path}: {exc}") from exc
        return frame

    def detect_name_column(self, admin0_df: Any, name_properties: Sequence[str]) -> str:
        name_col = _select_best_name_column(admin0_df, name_properties)
        if name_col is None:
            cols = ", ".join(str(c) for c in admin0_df.columns)
            raise GeometryLoadError(
                "Could not detect country name column in admin0 data. "
                f"Available columns: {cols}"
            )
        return name_col

    def load_world(self, *, name_properties: Sequence[str] = DEFAULT_NAME_PROPERTIES) -> WorldGeometry:
        frame = self.load_admin0()
        name_col = self.detect_name_column(frame, name_properties)
        _LOGGER.info("Using '%s' as the country name column of %s", name_col, self.admin0_path)
        features = (
            {"properties": {"name": row[name_col]}, "geometry": row.geometry.__geo_interface__}
            for _, row in frame.iterrows()
            if row.geometry is not None
        )
        return world_from_features(features, name_properties=("name",))

    @staticmethod
    def _require_geopandas() -> Any:
        try:
            import geopandas as gpd
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError("geopandas is required for Natural Earth data loading") from exc
        return gpd


def _select_best_name_column(dataframe: Any, preferred_columns: Sequence[str]) -> str | None:
    """Pick the preferred column whose values look most like unique display names."""
    by_lower = {str(col).lower(): str(col) for col in dataframe.columns}
    best_col: str | None = None
    best_score: tuple[int, int] | None = None
    for candidate in preferred_columns:
        col = by_lower.get(candidate.lower())
        if col is None:
            continue
        values = [str(v).strip() for v in dataframe[col].tolist() if isinstance(v, str) and v.strip()]
        score = (len(set(values)), -preferred_columns.index(candidate))
        if best_score is None or score > best_score:
            best_col = col
            best_score = score
    if best_score is None or best_score[0] == 0:
        return None
    return best_col
