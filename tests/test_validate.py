import pytest

from threatmap.config import load_config
from threatmap.models import freeze_dataset
from threatmap.validate import ValidationReport, Validator, format_report_lines


def test_validator_reports_join_gaps(config_file):
    report = Validator(load_config(config_file)).run()
    assert report.ok
    assert report.unmatched_records == ["Atlantis"]
    assert report.countries_without_data == ["Delta"]
    assert any("Atlantis" in warning for warning in report.warnings)
    assert any("never pulse" in warning for warning in report.warnings)
    lines = list(format_report_lines(report))
    assert lines[-1] == "[OK] Validation completed with no errors."


def test_strict_validation_fails_on_unmatched_records(config_file):
    report = Validator(load_config(config_file)).run(strict=True)
    assert not report.ok
    assert any(line.startswith("[ERROR]") for line in format_report_lines(report))


def test_missing_world_is_an_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("source:\n  world_geometry: nowhere.geojson\n", encoding="utf-8")
    report = Validator(load_config(path)).run()
    assert not report.ok
    assert any("No risk dataset configured" in warning for warning in report.warnings)


def test_check_join_with_complete_dataset(world, make_record):
    report = ValidationReport()
    dataset = freeze_dataset({name: make_record("low") for name in world.names})
    Validator.check_join(report, world, dataset)
    assert report.unmatched_records == []
    assert report.countries_without_data == []
    assert report.warnings == []
    assert report.to_dict()["ok"] is True


def test_unreadable_shapefile_is_reported(tmp_path):
    pytest.importorskip("geopandas")
    (tmp_path / "world.shp").write_bytes(b"not a shapefile")
    path = tmp_path / "config.yaml"
    path.write_text("source:\n  world_geometry: world.shp\n", encoding="utf-8")
    report = Validator(load_config(path)).run()
    assert not report.ok
    assert any(line.startswith("[ERROR]") for line in format_report_lines(report))
