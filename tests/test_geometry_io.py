import json

import pytest
import requests
from shapely.geometry import box, mapping

from threatmap.config import SourceConfig
from threatmap.geometry_io import (
    GeometryFetcher,
    GeometryLoadError,
    _decode_arcs,
    decode_topojson,
    load_world_from_config,
    load_world_geometry,
    world_from_document,
)


def _topology():
    # Left and Right share arc 0; Right walks it backwards (~0 == -1).
    return {
        "type": "Topology",
        "arcs": [
            [[0, 0], [0, 10]],
            [[0, 10], [-10, 10], [-10, 0], [0, 0]],
            [[0, 0], [10, 0], [10, 10], [0, 10]],
        ],
        "objects": {
            "countries": {
                "type": "GeometryCollection",
                "geometries": [
                    {"type": "Polygon", "arcs": [[0, 1]], "properties": {"name": "Left"}},
                    {"type": "Polygon", "arcs": [[-1, 2]], "properties": {"name": "Right"}},
                    {"type": "MultiPolygon", "arcs": [[[0, 1]], [[-1, 2]]], "properties": {"name": "Both"}},
                    {"type": "Point", "coordinates": [0, 0], "properties": {"name": "Dot"}},
                ],
            }
        },
    }


def _feature(name, geometry, key="name"):
    return {"type": "Feature", "properties": {key: name}, "geometry": mapping(geometry)}


def test_decode_topojson_stitches_shared_arcs():
    features = decode_topojson(_topology(), "countries")
    left, right = features[0]["geometry"], features[1]["geometry"]
    assert left["coordinates"][0] == [[0, 0], [0, 10], [-10, 10], [-10, 0], [0, 0]]
    assert right["coordinates"][0] == [[0, 10], [0, 0], [10, 0], [10, 10], [0, 10]]
    assert features[2]["geometry"]["type"] == "MultiPolygon"
    assert features[3]["geometry"] is None


def test_decode_quantized_arcs():
    arcs = _decode_arcs([[[20, 0], [0, 20], [-4, -2]]], {"scale": [0.5, 0.5], "translate": [-10.0, 0.0]})
    assert arcs == [[[0.0, 0.0], [0.0, 10.0], [-2.0, 9.0]]]


def test_world_from_topology():
    world = world_from_document(_topology())
    assert world.names == ("Left", "Right", "Both")
    assert world.get("Left").geometry.area == pytest.approx(100.0)
    assert world.get("Both").geometry.area == pytest.approx(200.0)
    assert "Dot" not in world


def test_missing_topology_object_falls_back_to_first():
    world = world_from_document(_topology(), topology_object="land")
    assert len(world) == 3


def test_feature_collection_skips_unnamed_and_keeps_first_duplicate():
    doc = {
        "type": "FeatureCollection",
        "features": [
            _feature("A", box(0, 0, 1, 1)),
            _feature("A", box(5, 5, 9, 9)),
            {"type": "Feature", "properties": {}, "geometry": mapping(box(2, 2, 3, 3))},
            _feature("B", box(1, 0, 2, 1), key="ADMIN"),
        ],
    }
    world = world_from_document(doc)
    assert world.names == ("A", "B")
    assert world.get("A").geometry.area == pytest.approx(1.0)


def test_invalid_polygon_is_repaired():
    bowtie = {"type": "Polygon", "coordinates": [[[0, 0], [2, 2], [2, 0], [0, 2], [0, 0]]]}
    world = world_from_document({"type": "Feature", "properties": {"name": "Knot"}, "geometry": bowtie})
    assert world.get("Knot").geometry.is_valid


def test_unsupported_document_type():
    with pytest.raises(GeometryLoadError):
        world_from_document({"type": "GeometryCollection", "geometries": []})
    with pytest.raises(GeometryLoadError):
        world_from_document({"type": "FeatureCollection", "features": []})


def test_load_world_geometry_from_file(tmp_path):
    path = tmp_path / "world.topojson"
    path.write_text(json.dumps(_topology()), encoding="utf-8")
    world = load_world_geometry(path)
    assert len(world) == 3


def test_load_world_from_config_resolves_local_file(tmp_path):
    path = tmp_path / "world.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": [_feature("A", box(0, 0, 1, 1))]}))
    world = load_world_from_config(SourceConfig(world_geometry=str(path)))
    assert world.names == ("A",)


def test_load_errors_are_geometry_load_errors(tmp_path):
    with pytest.raises(GeometryLoadError):
        load_world_geometry(tmp_path / "missing.geojson")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(GeometryLoadError):
        load_world_geometry(broken)


class _Response:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self._payload

    def close(self):
        pass


class _Session:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def get(self, url, timeout):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("threatmap.geometry_io.time.sleep", lambda seconds: None)


def test_fetcher_retries_transient_status(no_sleep):
    session = _Session([_Response(503), _Response(200, _topology())])
    fetcher = GeometryFetcher(max_retries=2, session=session)
    world = load_world_geometry("https://example.invalid/world.json", fetcher=fetcher)
    assert session.calls == 2
    assert len(world) == 3


def test_fetcher_gives_up_after_retries(no_sleep):
    session = _Session([requests.ConnectionError("down")] * 3)
    fetcher = GeometryFetcher(max_retries=2, session=session)
    with pytest.raises(GeometryLoadError):
        fetcher.fetch_json("https://example.invalid/world.json")
    assert session.calls == 3


def test_fetcher_does_not_retry_client_errors(no_sleep):
    session = _Session([_Response(404)])
    fetcher = GeometryFetcher(max_retries=3, session=session)
    with pytest.raises(GeometryLoadError):
        load_world_geometry("https://example.invalid/world.json", fetcher=fetcher)
    assert session.calls == 1


def test_natural_earth_file_through_geopandas(tmp_path):
    gpd = pytest.importorskip("geopandas")
    frame = gpd.GeoDataFrame(
        {"ADMIN": ["Square", "Other"], "geometry": [box(0, 0, 10, 10), box(20, 0, 30, 10)]},
        crs="EPSG:4326",
    )
    path = tmp_path / "admin0.gpkg"
    frame.to_file(path, driver="GPKG")
    world = load_world_geometry(path)
    assert set(world.names) == {"Square", "Other"}


def test_corrupt_shapefile_is_a_geometry_load_error(tmp_path):
    pytest.importorskip("geopandas")
    path = tmp_path / "world.shp"
    path.write_bytes(b"not a shapefile")
    with pytest.raises(GeometryLoadError):
        load_world_geometry(path)


@pytest.mark.parametrize(
    "features",
    [
        ["oops"],
        [{"type": "Feature", "properties": ["name", "A"], "geometry": mapping(box(0, 0, 1, 1))}],
    ],
)
def test_malformed_features_are_geometry_load_errors(tmp_path, features):
    path = tmp_path / "world.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": features}), encoding="utf-8")
    with pytest.raises(GeometryLoadError, match="Feature 0"):
        load_world_geometry(path)
