#!/usr/bin/env python3
"""
Practice guidance runtime:
• Fixed-rate GPS sampling with Kalman smoothing
• Calibrated geo -> field projection
• Step-based error metrics against the current route waypoint
• Tracking snapshot (accuracy history) for status displays

High-level flow
- Build the smoother and sampling driver from config
- Raw fixes from the location service go to `push_fix`
- On every driver tick:
  * record the fix accuracy in the tracking snapshot
  * project the smoothed estimate through the affine calibration, clamp to the field
  * compare against the target waypoint: distance, direction, lateral/longitudinal steps, off-target flag
  * publish a `Guidance` record to subscribers; periodic summaries go to the log
- Without a calibration or a target the tick is skipped
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from marchnav.base_structures import FieldPoint, GeoPoint, clamp_to_field
from marchnav.config import TrackingConfig
from marchnav.field.calibration import AffineTransform, apply_affine
from marchnav.gps.kalman_filter import Kalman2D
from marchnav.gps.throttle_driver import ThrottleDriver, Tick
from marchnav.gps.tracking_snapshot import TrackingSnapshot
from marchnav.practice.error_metrics import (
    direction_vector,
    error_components_steps,
    error_in_steps,
    is_off_target,
    next_waypoint_index,
)
from marchnav.units import heading_deg, meters_to_yards


@dataclass(frozen=True)
class Guidance:
    """Per-tick guidance consumed by the HUD."""
    t: float
    position: FieldPoint
    target: FieldPoint
    distance_yards: float
    distance_steps: float
    direction: FieldPoint
    heading_deg: float
    lateral_steps: float
    longitudinal_steps: float
    off_target: bool


def accuracy_in_yards(accuracy_m):
    """GPS horizontal accuracy (meters) expressed in field yards; None passes through."""
    if accuracy_m is None:
        return None
    return meters_to_yards(accuracy_m)


class GuidancePipeline:
    """Top-level orchestrator from raw fixes to field guidance."""

    def __init__(self, cfg=None, snapshot: Optional[TrackingSnapshot] = None, summary_interval_sec=1.0):
        """Build the smoother and driver from a config dict (see marchnav.config)."""
        self.cfg = cfg or {}
        self.settings = TrackingConfig.from_dict(self.cfg)
        self.snapshot = snapshot or TrackingSnapshot()

        self.kalman = Kalman2D(
            process_noise=self.settings.process_noise,
            measurement_noise=self.settings.measurement_noise,
        )
        self.driver = ThrottleDriver(self.kalman, queue_size=self.settings.queue_size)
        self._unsubscribe_driver = None

        self._lock = threading.Lock()
        self.transform: Optional[AffineTransform] = None
        self.route: List[FieldPoint] = []
        self.waypoint_index = 0
        self.target: Optional[FieldPoint] = None
        self.last_guidance: Optional[Guidance] = None

        self._subscribers = []
        log_cfg = self.cfg.get("logging", {}) or {}
        self._summary_interval = float(log_cfg.get("summary_interval_sec", summary_interval_sec))
        self._last_summary_time = 0.0

    # --- calibration and route

    def set_calibration(self, transform: Optional[AffineTransform]):
        with self._lock:
            self.transform = transform
        logging.info(f"[GUIDE] Calibration {'set' if transform is not None else 'cleared'}")

    def clear_calibration(self):
        self.set_calibration(None)

    def set_target(self, target: Optional[FieldPoint]):
        with self._lock:
            self.target = None if target is None else clamp_to_field(target)

    def set_route(self, waypoints: Sequence[FieldPoint]):
        """Load a route and aim at its first waypoint."""
        with self._lock:
            self.route = [clamp_to_field(w) for w in waypoints]
            self.waypoint_index = 0
            self.target = self.route[0] if self.route else None

    def advance_waypoint(self) -> Optional[FieldPoint]:
        """Move the target to the next waypoint (stays on the last one)."""
        with self._lock:
            self.waypoint_index = next_waypoint_index(self.route, self.waypoint_index)
            self.target = self.route[self.waypoint_index] if self.route else None
            return self.target

    # --- runtime

    def subscribe(self, callback: Callable[[Guidance], None]):
        """Register a guidance listener; returns a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def start(self):
        if self._unsubscribe_driver is None:
            self._unsubscribe_driver = self.driver.subscribe(self.on_tick)
        self.driver.init(hz=self.settings.hz, smoothing=self.settings.smoothing)
        self.snapshot.set(is_tracking=True)

    def stop(self):
        self.driver.stop()
        if self._unsubscribe_driver is not None:
            self._unsubscribe_driver()
            self._unsubscribe_driver = None
        self.snapshot.set(is_tracking=False)
        logging.info(f"[GUIDE] Tracking stopped: {self.snapshot.as_dict()}")

    def push_fix(self, lat, lon, t=None, accuracy=None):
        """Hand a raw fix from the location service to the driver (t in ms; now if omitted)."""
        if t is None:
            t = time.time() * 1000.0
        self.driver.position(GeoPoint(lat=lat, lon=lon, t=t, accuracy=accuracy))

    def to_field(self, geo: GeoPoint) -> Optional[FieldPoint]:
        """Project a geographic estimate onto the field; None while uncalibrated."""
        with self._lock:
            transform = self.transform
        if transform is None:
            return None
        return clamp_to_field(apply_affine(transform, geo))

    def compute_guidance(self, position: FieldPoint, target: FieldPoint, t=0.0) -> Guidance:
        step = self.settings.step_size_yards
        yards, steps = error_in_steps(position, target, step)
        comps = error_components_steps(position, target, step)
        direction = direction_vector(position, target)
        return Guidance(
            t=t,
            position=position,
            target=target,
            distance_yards=yards,
            distance_steps=steps,
            direction=direction,
            heading_deg=heading_deg(direction),
            lateral_steps=comps.lateral,
            longitudinal_steps=comps.longitudinal,
            off_target=is_off_target(position, target, step, self.settings.off_target_threshold_steps),
        )

    def on_tick(self, tick: Tick) -> Optional[Guidance]:
        """Turn a driver tick into guidance; None when the frame is skipped."""
        if tick.accuracy is not None:
            self.snapshot.record_accuracy(tick.accuracy)

        position = self.to_field(tick.as_geo())
        with self._lock:
            target = self.target
        if position is None or target is None:
            logging.debug("[GUIDE] Skipping tick: " + ("no calibration" if position is None else "no target"))
            return None

        guidance = self.compute_guidance(position, target, t=tick.t)
        self.last_guidance = guidance
        for cb in list(self._subscribers):
            try:
                cb(guidance)
            except Exception as e:
                logging.error(f"[GUIDE] Guidance subscriber raised: {e}")
        self._log_summary(guidance)
        return guidance

    def _log_summary(self, g: Guidance):
        now = time.monotonic()
        if now - self._last_summary_time < self._summary_interval:
            return
        self._last_summary_time = now
        logging.info(
            f"[GUIDE] pos=({g.position.x:.2f},{g.position.y:.2f}) target=({g.target.x:.2f},{g.target.y:.2f}) "
            f"dist={g.distance_yards:.2f}yd/{g.distance_steps:.1f}steps heading={g.heading_deg:.0f}deg "
            f"{'OFF' if g.off_target else 'ON'} target"
        )
