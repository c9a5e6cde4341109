import pytest
from shapely.geometry import box

from threatmap.models import ProjectionKind
from threatmap.projection import InvalidViewportError, ProjectionFactory, scale_multiplier

WIDTH, HEIGHT = 800.0, 400.0

FLAT_KINDS = [kind for kind in ProjectionKind if not kind.is_globe]
FLAT_POINTS = [(0.0, 0.0), (45.0, 30.0), (-120.0, -45.0), (135.0, 55.0)]


@pytest.mark.parametrize("kind", list(ProjectionKind))
def test_build_centres_and_scales_to_viewport(kind):
    handle = ProjectionFactory().build(kind, WIDTH, HEIGHT)
    assert handle.kind is kind
    assert handle.offset == (WIDTH / 2.0, HEIGHT / 2.0)
    assert handle.k == pytest.approx(min(WIDTH, HEIGHT) * scale_multiplier(kind))
    assert handle.project((0.0, 0.0)) == pytest.approx((WIDTH / 2.0, HEIGHT / 2.0))


def test_build_accepts_selector_names():
    assert ProjectionFactory().build("natural", WIDTH, HEIGHT).kind is ProjectionKind.NATURAL_EARTH
    assert ProjectionFactory().build("winkel3", WIDTH, HEIGHT).kind is ProjectionKind.WINKEL3


@pytest.mark.parametrize("size", [(0.0, 400.0), (800.0, 0.0), (-5.0, 10.0)])
def test_build_rejects_empty_viewport(size):
    with pytest.raises(InvalidViewportError):
        ProjectionFactory().build(ProjectionKind.MERCATOR, *size)


def test_invalid_viewport_is_a_value_error():
    assert issubclass(InvalidViewportError, ValueError)


@pytest.mark.parametrize("kind", FLAT_KINDS)
@pytest.mark.parametrize("point", FLAT_POINTS)
def test_flat_projection_round_trip(kind, point):
    handle = ProjectionFactory().build(kind, WIDTH, HEIGHT)
    xy = handle.project(point)
    assert xy is not None
    back = handle.invert(xy)
    assert back is not None
    assert back == pytest.approx(point, abs=1e-3)


@pytest.mark.parametrize("kind", list(ProjectionKind))
def test_invert_off_map_is_none(kind):
    handle = ProjectionFactory().build(kind, WIDTH, HEIGHT)
    assert handle.invert((0.0, 0.0)) is None


def test_mercator_clamps_polar_latitudes():
    handle = ProjectionFactory().build(ProjectionKind.MERCATOR, WIDTH, HEIGHT)
    assert handle.project((0.0, 89.9)) == pytest.approx(handle.project((0.0, 85.0511287798066)))


def test_y_axis_points_down():
    handle = ProjectionFactory().build(ProjectionKind.EQUIRECTANGULAR, WIDTH, HEIGHT)
    north = handle.project((0.0, 45.0))
    east = handle.project((45.0, 0.0))
    assert north[1] < HEIGHT / 2.0
    assert east[0] > WIDTH / 2.0


def test_orthographic_round_trip_front_hemisphere():
    handle = ProjectionFactory().build(ProjectionKind.ORTHOGRAPHIC, WIDTH, HEIGHT)
    for point in [(0.0, 0.0), (30.0, 45.0), (-60.0, -30.0), (80.0, 5.0)]:
        back = handle.invert(handle.project(point))
        assert back == pytest.approx(point, abs=1e-6)


def test_orthographic_far_side_is_clipped():
    handle = ProjectionFactory().build(ProjectionKind.ORTHOGRAPHIC, WIDTH, HEIGHT)
    assert handle.clip_angle == 90.0
    assert handle.project((180.0, 0.0)) is None
    assert handle.project((-135.0, 10.0)) is None


def test_orthographic_rotation_brings_point_to_centre():
    handle = ProjectionFactory().build(ProjectionKind.ORTHOGRAPHIC, WIDTH, HEIGHT)
    handle.set_rotation((-30.0, 0.0, 0.0))
    assert handle.project((30.0, 0.0)) == pytest.approx((WIDTH / 2.0, HEIGHT / 2.0))
    assert handle.invert((WIDTH / 2.0, HEIGHT / 2.0)) == pytest.approx((30.0, 0.0), abs=1e-6)


def test_orthographic_round_trip_with_tilt():
    handle = ProjectionFactory().build(ProjectionKind.ORTHOGRAPHIC, WIDTH, HEIGHT)
    handle.set_rotation((20.0, -30.0, 0.0))
    point = (-10.0, 40.0)
    xy = handle.project(point)
    assert xy is not None
    assert handle.invert(xy) == pytest.approx(point, abs=1e-6)


def test_rotation_is_ignored_by_flat_projections():
    handle = ProjectionFactory().build(ProjectionKind.ROBINSON, WIDTH, HEIGHT)
    before = handle.project((10.0, 10.0))
    handle.set_rotation((45.0, 10.0, 0.0))
    assert handle.rotation == (0.0, 0.0, 0.0)
    assert handle.project((10.0, 10.0)) == pytest.approx(before)


def test_project_geometry_clips_at_horizon():
    handle = ProjectionFactory().build(ProjectionKind.ORTHOGRAPHIC, WIDTH, HEIGHT)
    straddling = handle.project_geometry(box(80.0, -10.0, 100.0, 10.0))
    assert straddling is not None
    assert straddling.bounds[2] <= WIDTH / 2.0 + handle.k + 1e-6
    assert handle.project_geometry(box(150.0, -10.0, 170.0, 10.0)) is None


def test_project_geometry_flat_keeps_area_positive():
    handle = ProjectionFactory().build(ProjectionKind.EQUIRECTANGULAR, WIDTH, HEIGHT)
    projected = handle.project_geometry(box(-20.0, -10.0, 0.0, 10.0))
    assert projected.geom_type == "Polygon"
    assert projected.area > 0
    minx, miny, maxx, maxy = projected.bounds
    assert maxx == pytest.approx(WIDTH / 2.0)
    assert miny < HEIGHT / 2.0 < maxy
