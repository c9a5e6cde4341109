from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_project_metadata_points_at_shipped_files():
    tomllib = pytest.importorskip("tomllib")
    project = tomllib.loads((REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8"))["project"]
    assert project["scripts"]["threatmap"] == "threatmap.cli:main"
    readme = project.get("readme")
    if readme is not None:
        assert (REPO_ROOT / readme).is_file()
