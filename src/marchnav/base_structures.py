from dataclasses import dataclass
from typing import Optional
import math

"""
Base data structures used across the guidance pipeline.

Currently provides:
- GeoPoint: geographic reading (deg) with a millisecond timestamp and a Haversine distance helper.
- FieldPoint: position on the football field in yards.
- Field dimensions and a clamp helper.
"""

FIELD_LENGTH_YARDS = 120.0
FIELD_WIDTH_YARDS = 160.0 / 3.0  # 53 1/3 yd


@dataclass(frozen=True)
class GeoPoint:
    """Geographic reading with latitude (deg), longitude (deg), timestamp t (ms).

    `accuracy` is the horizontal accuracy in meters reported by the location
    service, when known.
    """
    lat: float = 0.0
    lon: float = 0.0
    t: float = 0.0
    accuracy: Optional[float] = None

    def distance_to(self, other: "GeoPoint") -> float:
        """Approximate great-circle distance to another GeoPoint using Haversine (meters)."""
        R = 6_371_000.0  # Earth radius, m
        φ1, φ2 = math.radians(self.lat), math.radians(other.lat)
        Δφ = math.radians(other.lat - self.lat)
        Δλ = math.radians(other.lon - self.lon)
        a = math.sin(Δφ/2)**2 + math.cos(φ1)*math.cos(φ2)*math.sin(Δλ/2)**2
        return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass(frozen=True)
class FieldPoint:
    """Field position in yards: x along the 120 yd length, y across the 53 1/3 yd width."""
    x: float = 0.0
    y: float = 0.0


def clamp_to_field(p: FieldPoint) -> FieldPoint:
    """Clamp a field point to the playing surface bounds."""
    x = max(0.0, min(FIELD_LENGTH_YARDS, p.x))
    y = max(0.0, min(FIELD_WIDTH_YARDS, p.y))
    return FieldPoint(x, y)
