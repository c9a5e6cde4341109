import json

import pytest
import yaml
from shapely.geometry import box, mapping

from threatmap.frames import ManualFrameScheduler
from threatmap.models import Country, RiskLevel, RiskRecord, WorldGeometry


def _record(level: str, threats: int = 10, **extra) -> RiskRecord:
    return RiskRecord(threat_count=threats, incident_count=1, risk_level=RiskLevel(level), **extra)


@pytest.fixture
def make_record():
    return _record


@pytest.fixture
def world() -> WorldGeometry:
    # Alpha and Beta share the lon=0 meridian as a border.
    return WorldGeometry.from_countries(
        [
            Country("Alpha", box(-20.0, -10.0, 0.0, 10.0)),
            Country("Beta", box(0.0, -10.0, 20.0, 10.0)),
            Country("Gamma", box(60.0, 30.0, 80.0, 50.0)),
            Country("Delta", box(-120.0, -40.0, -100.0, -20.0)),
        ]
    )


@pytest.fixture
def risk_data() -> dict[str, RiskRecord]:
    # Atlantis has no geometry.
    return {
        "Alpha": _record("high", 40),
        "Beta": _record("medium", 12),
        "Gamma": _record("high", 30),
        "Atlantis": _record("high", 99),
    }


@pytest.fixture
def scheduler() -> ManualFrameScheduler:
    return ManualFrameScheduler()


@pytest.fixture
def config_file(tmp_path, world, risk_data):
    """A config.yaml next to a GeoJSON world and a YAML dataset."""
    features = [
        {"type": "Feature", "properties": {"name": c.name}, "geometry": mapping(c.geometry)} for c in world
    ]
    (tmp_path / "world.geojson").write_text(
        json.dumps({"type": "FeatureCollection", "features": features}), encoding="utf-8"
    )
    (tmp_path / "risk.yaml").write_text(
        yaml.safe_dump({name: rec.to_dict() for name, rec in risk_data.items()}), encoding="utf-8"
    )
    path = tmp_path / "config.yaml"
    path.write_text(
        "source:\n"
        "  world_geometry: world.geojson\n"
        "  risk_dataset: risk.yaml\n"
        "viewport:\n"
        "  width: 400\n"
        "  height: 200\n"
        "map:\n"
        "  projection: equirectangular\n",
        encoding="utf-8",
    )
    return path
