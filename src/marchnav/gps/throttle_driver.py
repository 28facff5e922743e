#!/usr/bin/env python3
"""
Fixed-rate sampling driver between the location service and the smoother.

Notes
-----
- GPS fixes arrive at irregular, device dependent intervals. `position()`
  only overwrites a single latest-fix slot (last write wins); nothing is
  queued, so the smoother never works through a backlog.
- A background thread ticks every `period = max(100 ms, round(1000 / hz))`.
  Each tick feeds the latest fix to the Kalman filter (or passes it through
  raw when smoothing is off) and emits a `Tick` message. Before the first
  fix a tick does nothing.
- Ticks are delivered by message passing: a bounded outbound queue (oldest
  dropped when the consumer lags) and optional subscriber callbacks run on
  the tick thread.
- `stop()` is idempotent and joins the thread; no tick fires after it returns.
"""

import logging
import math
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from marchnav.base_structures import GeoPoint
from marchnav.gps.kalman_filter import Kalman2D

DEFAULT_HZ = 2.0
MIN_PERIOD_MS = 100


@dataclass(frozen=True)
class Tick:
    """One output sample: estimate position, fix timestamp (ms), fix accuracy (m)."""
    lat: float
    lon: float
    t: float
    accuracy: Optional[float] = None
    smoothed: bool = True

    def as_geo(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lon=self.lon, t=self.t, accuracy=self.accuracy)


def period_ms(hz) -> int:
    """Tick period in milliseconds for an output rate, floored at 100 ms."""
    # Round half up
    return max(MIN_PERIOD_MS, int(math.floor(1000.0 / hz + 0.5)))


class ThrottleDriver:
    def __init__(self, kalman: Optional[Kalman2D] = None, queue_size=32):
        """Create an idle driver.

        Parameters
        ----------
        kalman : Kalman2D | None
            Smoother owned by this driver; a default-tuned filter if omitted.
        queue_size : int
            Capacity of the outbound tick queue.
        """
        self.kalman = kalman or Kalman2D()
        self.hz = DEFAULT_HZ
        self.smoothing = True
        self.ticks: "queue.Queue[Tick]" = queue.Queue(maxsize=max(1, int(queue_size)))

        # Shared state guarded by locks
        self._latest: Optional[GeoPoint] = None
        self._lock = threading.Lock()
        self._tick_lock = threading.RLock()
        self._subscribers = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.tick_count = 0

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    @property
    def period_sec(self):
        return period_ms(self.hz) / 1000.0

    def init(self, hz=DEFAULT_HZ, smoothing=True):
        """Configure the output rate and smoothing, then (re)start the tick thread."""
        self.stop()
        if hz is None or hz <= 0:
            logging.warning(f"[DRIVER] Invalid rate {hz!r} Hz; using {DEFAULT_HZ} Hz")
            hz = DEFAULT_HZ
        self.hz = float(hz)
        self.smoothing = bool(smoothing)
        self._stop_event = threading.Event()

        stop_event = self._stop_event
        period = self.period_sec

        def ticker():
            next_at = time.monotonic() + period
            while not stop_event.wait(max(0.0, next_at - time.monotonic())):
                next_at += period
                if next_at < time.monotonic():
                    # Fell behind; resync instead of bursting
                    next_at = time.monotonic() + period
                try:
                    self._tick(stop_event)
                except Exception as e:
                    logging.error(f"[DRIVER] Tick failed: {e}")

        self._thread = threading.Thread(target=ticker, name="marchnav-throttle", daemon=True)
        self._thread.start()
        logging.info(f"[DRIVER] Started at {self.hz:g} Hz (period {period * 1000:.0f} ms), smoothing={'on' if self.smoothing else 'off'}")

    def stop(self):
        """Stop the tick thread; safe to call repeatedly."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join()
        self._thread = None
        logging.info("[DRIVER] Stopped")

    def position(self, fix: GeoPoint):
        """Store the latest raw fix; the first fix seeds the smoother."""
        # Seed and publish together so no tick sees the fix before the smoother has it
        with self._tick_lock:
            with self._lock:
                first = self._latest is None
                self._latest = fix
            if first:
                self.kalman.init(fix)

    def latest(self) -> Optional[GeoPoint]:
        with self._lock:
            return self._latest

    def subscribe(self, callback: Callable[[Tick], None]):
        """Register a tick listener (runs on the tick thread); returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def tick_once(self) -> Optional[Tick]:
        """Run a single tick synchronously; returns the emitted Tick or None."""
        return self._tick(None)

    def _tick(self, stop_event: Optional[threading.Event]) -> Optional[Tick]:
        with self._tick_lock:
            if stop_event is not None and stop_event.is_set():
                return None
            fix = self.latest()
            if fix is None:
                return None
            obs = GeoPoint(lat=fix.lat, lon=fix.lon, t=fix.t)
            est = self.kalman.update(obs) if self.smoothing else obs
            tick = Tick(lat=est.lat, lon=est.lon, t=est.t, accuracy=fix.accuracy, smoothed=self.smoothing)
            self.tick_count += 1
            self._publish(tick)
        return tick

    def _publish(self, tick: Tick):
        try:
            self.ticks.put_nowait(tick)
        except queue.Full:
            # Consumer is lagging; keep the newest ticks
            try:
                self.ticks.get_nowait()
            except queue.Empty:
                pass
            self.ticks.put_nowait(tick)

        with self._lock:
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(tick)
            except Exception as e:
                logging.error(f"[DRIVER] Tick subscriber raised: {e}")

    def get(self, timeout=None) -> Optional[Tick]:
        """Pop the next tick from the outbound queue, or None on timeout."""
        try:
            return self.ticks.get(timeout=timeout)
        except queue.Empty:
            return None
