import pytest

from threatmap.frames import ManualFrameScheduler
from threatmap.pulse import PulseAnimator


def test_sync_tracks_exactly_the_given_names():
    scheduler = ManualFrameScheduler()
    pulses = PulseAnimator(scheduler)
    pulses.sync(["X", "Z"])
    assert pulses.active_names == {"X", "Z"}
    assert pulses.running

    pulses.sync(["Z"])
    assert pulses.active_names == {"Z"}


def test_empty_set_cancels_frame_callback():
    scheduler = ManualFrameScheduler()
    pulses = PulseAnimator(scheduler)
    pulses.sync(["X"])
    assert scheduler.pending == 1
    pulses.sync([])
    assert not pulses.running
    assert scheduler.pending == 0


def test_single_frame_callback_while_running():
    scheduler = ManualFrameScheduler()
    frames = []
    pulses = PulseAnimator(scheduler, on_frame=lambda: frames.append(scheduler.now()))
    pulses.sync(["A", "B", "C"])
    pulses.sync(["A", "B", "C", "D"])
    assert scheduler.pending == 1
    scheduler.advance(160.0)
    assert len(frames) == 10
    assert scheduler.pending == 1


def test_newcomer_starts_at_phase_zero_and_others_keep_phase():
    scheduler = ManualFrameScheduler()
    pulses = PulseAnimator(scheduler, duration_ms=2000.0)
    pulses.sync(["X"])
    scheduler.advance(500.0)
    pulses.sync(["X", "Y"])
    assert pulses.phase("X") == pytest.approx(0.25)
    assert pulses.phase("Y") == 0.0
    assert pulses.phase("missing") is None


def test_phase_loops():
    scheduler = ManualFrameScheduler()
    pulses = PulseAnimator(scheduler, duration_ms=2000.0)
    pulses.sync(["X"])
    scheduler.advance(2500.0)
    assert pulses.phase("X") == pytest.approx(0.25)


def test_markers_grow_and_fade():
    scheduler = ManualFrameScheduler()
    pulses = PulseAnimator(scheduler, base_radius=5.0, max_radius=20.0, base_opacity=0.8)
    pulses.sync(["X", "Y"])
    start = pulses.markers({"X": (10.0, 20.0), "Y": (30.0, 40.0)})
    assert [m.name for m in start] == ["X", "Y"]
    assert start[0].radius == 5.0
    assert start[0].opacity == pytest.approx(0.8)
    assert (start[0].x, start[0].y) == (10.0, 20.0)

    middle = pulses.markers({"X": (10.0, 20.0)}, now=1000.0)
    assert [m.name for m in middle] == ["X"]
    assert middle[0].radius == pytest.approx(12.5)
    assert middle[0].opacity == pytest.approx(0.4)


def test_restart_resets_phase():
    scheduler = ManualFrameScheduler()
    pulses = PulseAnimator(scheduler)
    pulses.sync(["X"])
    scheduler.advance(700.0)
    pulses.restart()
    assert pulses.phase("X") == 0.0


def test_stop_clears_everything():
    scheduler = ManualFrameScheduler()
    pulses = PulseAnimator(scheduler)
    pulses.sync(["X"])
    pulses.stop()
    assert pulses.active_names == frozenset()
    assert scheduler.pending == 0


def test_duration_must_be_positive():
    with pytest.raises(ValueError):
        PulseAnimator(None, duration_ms=0.0)
