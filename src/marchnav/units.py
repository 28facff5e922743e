#!/usr/bin/env python3
"""
Basic unit and angle utilities for the guidance toolkit.
- meters_to_yards: GPS accuracy is reported in meters, the field is laid out in yards
- heading_deg: direction vector to a field heading
- wrap_angle_deg: normalize degrees to [-180, 180)
"""
import math

YARDS_PER_METER = 1.09361


def meters_to_yards(meters):
    """Convert meters to yards."""
    return meters * YARDS_PER_METER


def wrap_angle_deg(angle):
    """Wrap angle (degrees) to the range [-180, 180)."""
    return (angle + 180.0) % 360.0 - 180.0


def heading_deg(direction):
    """Heading of a field direction vector in degrees.

    0 deg points along +x (down the field length), 90 deg along +y (across the width).
    A zero vector yields 0.
    """
    if direction.x == 0.0 and direction.y == 0.0:
        return 0.0
    return wrap_angle_deg(math.degrees(math.atan2(direction.y, direction.x)))
