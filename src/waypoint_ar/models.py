"""
Core data types shared across the engine.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class GeoPoint:
    """Geographic coordinate (WGS84, degrees)."""
    latitude: float
    longitude: float


class WaypointType(Enum):
    """Waypoint category. Affects marker color only."""
    OBJECTIVE = "objective"
    CHECKPOINT = "checkpoint"
    INTEL = "intel"
    EXTRACTION = "extraction"


@dataclass(frozen=True)
class Waypoint:
    """Named, typed geographic point of interest."""
    id: str               # Short display code, unique within the active set
    name: str
    location: GeoPoint
    type: WaypointType = WaypointType.CHECKPOINT


@dataclass(frozen=True)
class LocationSample:
    """Location fix from the geolocation provider."""
    location: GeoPoint
    altitude: float = 0.0               # Meters
    horizontal_accuracy: float = -1.0   # Meters, negative if unknown
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class HeadingSample:
    """Heading reading from the compass provider."""
    true_heading: float            # Degrees clockwise from true north
    heading_accuracy: float = -1.0
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Pose:
    """Latest combined location + heading of the user."""
    location: GeoPoint
    heading: float                 # True heading, [0, 360)
    altitude: float = 0.0
    horizontal_accuracy: float = -1.0
    heading_accuracy: float = -1.0
    timestamp: float = 0.0


@dataclass(frozen=True)
class ProjectedMarker:
    """A waypoint placed on a target surface for one projection pass."""
    waypoint: Waypoint
    x: float
    y: float
    distance_meters: float
    relative_angle: float
    visible: bool = True

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)


class CameraSessionState(Enum):
    """Lifecycle of the camera hardware session."""
    UNINITIALIZED = "uninitialized"
    REQUESTING_PERMISSION = "requesting_permission"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"
    CONFIGURING = "configuring"
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


class FilterMode(Enum):
    """Capture color filter."""
    NORMAL = "NORMAL"
    NIGHT_VISION = "NIGHT VISION"

    def next(self) -> "FilterMode":
        modes = list(FilterMode)
        return modes[(modes.index(self) + 1) % len(modes)]


@dataclass(frozen=True)
class ARSnapshot:
    """Pose and waypoint list frozen at capture-request time."""
    pose: Pose
    waypoints: Tuple[Waypoint, ...]


@dataclass(frozen=True)
class CaptureRequest:
    """One user-triggered capture."""
    filter_mode: FilterMode = FilterMode.NORMAL
    snapshot: Optional[ARSnapshot] = None
    zoom_factor: float = 1.0


@dataclass
class RawCapture:
    """Still image as delivered by the capture device."""
    data: bytes                  # Encoded image bytes
    rotation_degrees: int = 0    # Clockwise rotation needed for physical "up"


@dataclass
class CapturedPhoto:
    """Result of a completed capture."""
    raw: RawCapture
    processed: np.ndarray        # BGR pixels after filter and overlay
    encoded: bytes               # Final JPEG bytes
    saved_as: Optional[str] = None
    fallbacks: Tuple[str, ...] = ()

    @property
    def size(self) -> Tuple[int, int]:
        return (self.processed.shape[1], self.processed.shape[0])
