"""
Geo math for waypoint targeting.

Pure functions: great-circle bearing and distance, heading-relative angles,
field-of-view gating and the mapping from angle/distance to a position on a
target surface (screen or image pixels).
"""

import math

from .models import GeoPoint

EARTH_RADIUS_M = 6371000.0

DEFAULT_HALF_FOV = 60.0          # Degrees, i.e. 120 deg total horizontal field
DEFAULT_MAX_DISTANCE = 5000.0    # Meters
DEFAULT_NEAR_FACTOR = 0.3        # Fraction of height for nearest targets
DEFAULT_DISTANCE_SPAN = 0.4      # Additional fraction for farthest targets


def bearing(origin: GeoPoint, target: GeoPoint) -> float:
    """
    Initial great-circle bearing from origin to target.

    Args:
        origin: Start coordinate
        target: End coordinate

    Returns:
        Bearing in degrees, [0, 360), clockwise from true north.
        Identical points return 0.
    """
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(target.latitude)
    d_lon = math.radians(target.longitude - origin.longitude)

    y = math.sin(d_lon) * math.cos(lat2)
    x = (math.cos(lat1) * math.sin(lat2)
         - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon))

    if x == 0.0 and y == 0.0:
        return 0.0

    result = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 and tiny negatives can round up to exactly 360
    return 0.0 if result >= 360.0 else result


def relative_angle(target_bearing: float, heading: float) -> float:
    """Signed offset of a bearing from the current heading, in [-180, 180]."""
    angle = target_bearing - heading
    if angle > 180.0:
        angle -= 360.0
    elif angle < -180.0:
        angle += 360.0
    return angle


def is_visible(angle: float, half_fov: float = DEFAULT_HALF_FOV) -> bool:
    """Whether a relative angle lies inside the field of view (inclusive)."""
    return abs(angle) <= half_fov


def horizontal_position(angle: float, half_fov: float, surface_width: float) -> float:
    """Map a relative angle in [-half_fov, half_fov] linearly onto [0, width]."""
    return ((angle + half_fov) / (2.0 * half_fov)) * surface_width


def vertical_position(distance: float,
                      max_distance: float,
                      surface_height: float,
                      near_factor: float = DEFAULT_NEAR_FACTOR,
                      span: float = DEFAULT_DISTANCE_SPAN) -> float:
    """
    Vertical placement from distance.

    Near targets sit at ``near_factor * height``, targets at or beyond
    ``max_distance`` at ``(near_factor + span) * height``. This is a display
    heuristic, not a projective camera model.
    """
    factor = min(max(distance / max_distance, 0.0), 1.0)
    return surface_height * (near_factor + factor * span)


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine ground distance in meters, ignoring altitude."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)

    h = (math.sin(d_lat / 2) ** 2
         + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2)
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def format_distance(meters: float) -> str:
    """Label text for a distance: meters below 1 km, kilometers above."""
    if meters < 1000:
        return f"{meters:.0f} m"
    return f"{meters / 1000:.1f} km"
