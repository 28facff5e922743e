import logging
import math
import threading

import pytest

from marchnav.base_structures import FieldPoint
from marchnav.config import load_config
from marchnav.field.calibration import AffineTransform
from marchnav.gps.throttle_driver import Tick
from marchnav.gps.tracking_snapshot import TrackingSnapshot
from marchnav.guidance import GuidancePipeline, accuracy_in_yards

# lat -> x, lon -> y
IDENTITY = AffineTransform(m=(1.0, 0.0, 0.0, 0.0, 1.0, 0.0))


def _pipeline(**kwargs):
    return GuidancePipeline(load_config(), **kwargs)


def test_tick_skipped_without_calibration_or_target():
    p = _pipeline()
    tick = Tick(lat=10.0, lon=10.0, t=0.0)
    assert p.on_tick(tick) is None

    p.set_calibration(IDENTITY)
    assert p.on_tick(tick) is None

    p.set_target(FieldPoint(11.0, 12.0))
    assert p.on_tick(tick) is not None

    p.clear_calibration()
    assert p.on_tick(tick) is None


def test_guidance_values():
    p = _pipeline()
    p.set_calibration(IDENTITY)
    p.set_target(FieldPoint(11.0, 12.0))
    g = p.on_tick(Tick(lat=10.0, lon=10.0, t=500.0))

    assert g.t == 500.0
    assert g.position == FieldPoint(10.0, 10.0)
    assert g.distance_yards == pytest.approx(math.hypot(1, 2))
    assert g.distance_steps == pytest.approx(math.hypot(1, 2) / 0.75)
    assert g.longitudinal_steps == pytest.approx(1 / 0.75)
    assert g.lateral_steps == pytest.approx(2 / 0.75)
    assert math.hypot(g.direction.x, g.direction.y) == pytest.approx(1.0)
    assert g.heading_deg == pytest.approx(math.degrees(math.atan2(2, 1)))
    assert g.off_target is True
    assert p.last_guidance == g


def test_on_target_within_half_step():
    p = _pipeline()
    p.set_calibration(IDENTITY)
    p.set_target(FieldPoint(50.0, 20.0))
    g = p.on_tick(Tick(lat=50.2, lon=20.1, t=0.0))
    assert g.off_target is False


def test_projection_is_clamped_to_field():
    p = _pipeline()
    p.set_calibration(IDENTITY)
    p.set_target(FieldPoint(60.0, 20.0))
    g = p.on_tick(Tick(lat=500.0, lon=-3.0, t=0.0))
    assert g.position == FieldPoint(120.0, 0.0)


def test_accuracy_flows_into_snapshot():
    snap = TrackingSnapshot()
    p = _pipeline(snapshot=snap)
    p.on_tick(Tick(lat=0.0, lon=0.0, t=0.0, accuracy=4.0))
    p.on_tick(Tick(lat=0.0, lon=0.0, t=500.0, accuracy=2.0))
    assert snap.accuracy == 2.0
    assert snap.best_accuracy == 2.0
    assert snap.average_accuracy == pytest.approx(3.0)


def test_route_waypoints_advance_and_stop_at_end():
    p = _pipeline()
    p.set_route([FieldPoint(10, 10), FieldPoint(15, 10), FieldPoint(20, 10)])
    assert p.target == FieldPoint(10, 10)
    assert p.advance_waypoint() == FieldPoint(15, 10)
    assert p.advance_waypoint() == FieldPoint(20, 10)
    assert p.advance_waypoint() == FieldPoint(20, 10)

    p.set_route([])
    assert p.target is None
    assert p.advance_waypoint() is None


def test_subscribers_receive_guidance_from_driver_ticks():
    p = _pipeline()
    p.set_calibration(IDENTITY)
    p.set_target(FieldPoint(30.0, 20.0))
    received = []
    p.subscribe(received.append)

    p.push_fix(30.0, 20.0, t=0.0, accuracy=3.0)
    g = p.on_tick(p.driver.tick_once())
    assert received == [g]
    assert g.distance_yards == pytest.approx(0.0, abs=1e-9)
    assert g.direction == FieldPoint(0.0, 0.0)


def test_start_stop_runs_in_background(caplog):
    snap = TrackingSnapshot()
    p = _pipeline(snapshot=snap)
    p.settings.hz = 10
    p.set_calibration(IDENTITY)
    p.set_target(FieldPoint(40.0, 20.0))
    got = threading.Event()
    p.subscribe(lambda g: got.set())

    p.start()
    try:
        assert snap.is_tracking is True
        p.push_fix(41.0, 20.0, accuracy=5.0)
        assert got.wait(timeout=2.0)
    finally:
        p.stop()
    with caplog.at_level(logging.INFO):
        p.stop()
    assert snap.is_tracking is False
    assert not p.driver.running
    assert "Tracking stopped" in caplog.text
    assert "'best_accuracy': 5.0" in caplog.text


def test_accuracy_in_yards():
    assert accuracy_in_yards(None) is None
    assert accuracy_in_yards(10.0) == pytest.approx(10.9361)


def test_pipeline_builds_from_config_with_empty_sections(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("tracking:\nlogging:\nkalman:\n  process_noise: 1.0e-3\n")
    p = GuidancePipeline(load_config(str(path)))
    assert p.settings.hz == 2.0
    assert p.driver.kalman.q == 1e-3
