import pytest

from threatmap.frames import ManualFrameScheduler
from threatmap.models import ProjectionKind, ViewTransform
from threatmap.view import (
    FLAT_MIN_ZOOM,
    GLOBE_MIN_ZOOM,
    MAX_ZOOM,
    GestureMode,
    ViewTransformController,
    ease_cubic_in_out,
)


def test_zoom_is_always_clamped():
    view = ViewTransformController(ProjectionKind.NATURAL_EARTH)
    for factor in [10.0, 0.01, 3.0, 0.2, 100.0, 1e-9, float("inf")]:
        view.zoom_by(factor)
        assert FLAT_MIN_ZOOM <= view.transform.scale <= MAX_ZOOM


def test_globe_has_higher_minimum_zoom():
    view = ViewTransformController(ProjectionKind.ORTHOGRAPHIC)
    assert view.zoom_to(0.1).scale == GLOBE_MIN_ZOOM


def test_projection_switch_reclamps_scale_and_keeps_pan():
    view = ViewTransformController(ProjectionKind.MERCATOR)
    view.zoom_to(0.5)
    view.pan_by(30.0, -12.0)
    view.set_projection(ProjectionKind.ORTHOGRAPHIC)
    assert view.transform.scale == GLOBE_MIN_ZOOM
    assert (view.transform.translate_x, view.transform.translate_y) == (30.0, -12.0)
    assert view.transform.rotation == (0.0, 0.0, 0.0)


def test_zoom_about_anchor_keeps_anchor_fixed():
    view = ViewTransformController(ProjectionKind.EQUIRECTANGULAR)
    view.pan_by(15.0, 5.0)
    before = view.transform.invert(100.0, 50.0)
    view.zoom_to(2.5, anchor=(100.0, 50.0))
    assert view.transform.invert(100.0, 50.0) == pytest.approx(before)


def test_drag_pans_relative_to_gesture_baseline():
    view = ViewTransformController(ProjectionKind.NATURAL_EARTH)
    gesture = view.drag_start(10.0, 10.0)
    assert gesture.mode is GestureMode.PAN
    gesture = view.drag_move(gesture, 20.0, 30.0)
    gesture = view.drag_move(gesture, 15.0, 10.0)
    assert (view.transform.translate_x, view.transform.translate_y) == (5.0, 0.0)
    assert gesture.moved


def test_drag_rotates_globe():
    settled = []
    view = ViewTransformController(ProjectionKind.ORTHOGRAPHIC, on_settle=settled.append)
    gesture = view.drag_start(0.0, 0.0)
    assert gesture.mode is GestureMode.ROTATE
    gesture = view.drag_move(gesture, 40.0, 20.0)
    assert view.transform.rotation == (20.0, -10.0, 0.0)
    assert view.transform.scale == 1.0
    assert settled == []
    view.drag_end(gesture)
    assert settled == [view.transform]


def test_drag_without_movement_does_not_settle():
    settled = []
    view = ViewTransformController(ProjectionKind.ORTHOGRAPHIC, on_settle=settled.append)
    gesture = view.drag_start(5.0, 5.0)
    view.drag_end(gesture)
    assert settled == []


def test_rotate_is_noop_on_flat_projection():
    view = ViewTransformController(ProjectionKind.ROBINSON)
    assert view.rotate_by(30.0, 10.0) == ViewTransform.identity()


def test_smooth_reset_lands_on_identity():
    scheduler = ManualFrameScheduler()
    changes = []
    settled = []
    view = ViewTransformController(
        ProjectionKind.ORTHOGRAPHIC,
        scheduler=scheduler,
        on_change=changes.append,
        on_settle=settled.append,
    )
    view.zoom_to(4.0, anchor=(200.0, 100.0))
    view.rotate_by(60.0, -20.0)
    changes.clear()
    settled.clear()

    view.smooth_reset(750.0)
    assert view.is_animating
    scheduler.advance(400.0)
    assert 1.0 < view.transform.scale < 4.0
    assert settled == []

    scheduler.advance(400.0)
    assert not view.is_animating
    assert view.transform == ViewTransform.identity()
    assert settled == [ViewTransform.identity()]
    assert len(changes) > 2


def test_new_command_cancels_running_transition():
    scheduler = ManualFrameScheduler()
    view = ViewTransformController(ProjectionKind.NATURAL_EARTH, scheduler=scheduler)
    view.smooth_zoom_by(4.0, 250.0)
    scheduler.advance(100.0)
    view.pan_by(10.0, 0.0)
    assert not view.is_animating
    assert scheduler.pending == 0
    scale = view.transform.scale
    scheduler.advance(500.0)
    assert view.transform.scale == scale


def test_animate_without_scheduler_is_immediate():
    view = ViewTransformController(ProjectionKind.NATURAL_EARTH)
    view.smooth_zoom_by(2.0, 250.0)
    assert view.transform.scale == 2.0
    assert not view.is_animating


def test_fit_keeps_rotation():
    view = ViewTransformController(ProjectionKind.ORTHOGRAPHIC)
    view.rotate_by(20.0, 0.0)
    view.zoom_to(3.0)
    fitted = view.fit_to_viewport()
    assert fitted.scale == 0.9
    assert fitted.rotation == (10.0, 0.0, 0.0)


def test_cubic_easing_endpoints():
    assert ease_cubic_in_out(0.0) == 0.0
    assert ease_cubic_in_out(0.5) == 0.5
    assert ease_cubic_in_out(1.0) == 1.0
    assert ease_cubic_in_out(0.25) < 0.25
