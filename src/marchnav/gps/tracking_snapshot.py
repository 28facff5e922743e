import logging
import threading
from collections import deque
from typing import Callable, Optional


class TrackingSnapshot:
    """Live tracking status shared with consumers (HUD, field view).

    Holds whether tracking is active and the recent GPS accuracy figures
    (meters): latest, mean and best over the last `history_size` readings.
    Pass an instance explicitly to whoever needs it; listeners registered with
    `subscribe` are called after every change.
    """

    def __init__(self, history_size=20):
        self.is_tracking = False
        self.accuracy: Optional[float] = None
        self.average_accuracy: Optional[float] = None
        self.best_accuracy: Optional[float] = None
        self.accuracy_history = deque(maxlen=history_size)
        self._listeners = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[["TrackingSnapshot"], None]):
        """Register a listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)
        return unsubscribe

    def _emit(self):
        with self._lock:
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb(self)
            except Exception as e:
                logging.error(f"[SNAPSHOT] Listener raised: {e}")

    def set(self, **fields):
        """Update plain fields (is_tracking, accuracy, ...) and notify."""
        with self._lock:
            for name, value in fields.items():
                if not hasattr(self, name) or name.startswith("_"):
                    raise AttributeError(f"Unknown snapshot field: {name}")
                setattr(self, name, value)
        self._emit()

    def record_accuracy(self, accuracy: float):
        """Append an accuracy reading and refresh the mean/best figures."""
        with self._lock:
            self.accuracy = float(accuracy)
            self.accuracy_history.append(self.accuracy)
            self.average_accuracy = sum(self.accuracy_history) / len(self.accuracy_history)
            self.best_accuracy = min(self.accuracy_history)
        self._emit()

    def as_dict(self):
        with self._lock:
            return {
                "is_tracking": self.is_tracking,
                "accuracy": self.accuracy,
                "average_accuracy": self.average_accuracy,
                "best_accuracy": self.best_accuracy,
            }
