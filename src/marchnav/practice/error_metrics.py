"""
Field-space error metrics for marching guidance.

All points are field coordinates in yards. Errors are reported in yards or
in marching steps (yards / step size). Axes: x runs along the 120 yd field
length (longitudinal), y across the width (lateral).
"""
import math
from dataclasses import dataclass
from typing import Sequence

from marchnav.base_structures import FieldPoint

MIN_STEP_SIZE_YARDS = 0.0001


@dataclass(frozen=True)
class ErrorComponents:
    lateral: float
    longitudinal: float


def yards_to_steps(yards: float, step_size_yards: float) -> float:
    return yards / max(MIN_STEP_SIZE_YARDS, step_size_yards)


def steps_to_yards(steps: float, step_size_yards: float) -> float:
    return steps * step_size_yards


def distance_yards(a: FieldPoint, b: FieldPoint) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def direction_vector(src: FieldPoint, dst: FieldPoint) -> FieldPoint:
    """Unit vector from `src` toward `dst`; (0, 0) when the points coincide."""
    dx = dst.x - src.x
    dy = dst.y - src.y
    length = math.hypot(dx, dy) or 1.0
    return FieldPoint(dx / length, dy / length)


def error_components_yards(current: FieldPoint, target: FieldPoint) -> ErrorComponents:
    """Target-minus-current displacement split along the field axes (yards)."""
    return ErrorComponents(lateral=target.y - current.y, longitudinal=target.x - current.x)


def error_components_steps(current: FieldPoint, target: FieldPoint, step_size_yards: float) -> ErrorComponents:
    comps = error_components_yards(current, target)
    return ErrorComponents(
        lateral=yards_to_steps(comps.lateral, step_size_yards),
        longitudinal=yards_to_steps(comps.longitudinal, step_size_yards),
    )


def error_in_steps(current: FieldPoint, target: FieldPoint, step_size_yards: float):
    """Return (yards, steps) between current position and target."""
    dist = distance_yards(current, target)
    return dist, yards_to_steps(dist, step_size_yards)


def is_off_target(current: FieldPoint, target: FieldPoint, step_size_yards: float,
                  threshold_steps: float = 0.5) -> bool:
    # Exactly at the threshold counts as on target
    _, steps = error_in_steps(current, target, step_size_yards)
    return steps > threshold_steps


def next_waypoint_index(waypoints: Sequence[FieldPoint], current_index: int) -> int:
    if not waypoints:
        return 0
    return min(current_index + 1, len(waypoints) - 1)
