"""
Waypoint AR
===========

Camera viewfinder engine that overlays geographic waypoints on the live
preview and bakes the same overlay into captured photos.

Main components:
- geo: Bearing, relative angle, visibility and screen placement math
- pose: Latest location/heading tracking (simulated or MAVLink sources)
- waypoints: Waypoint store with YAML loading
- projector: Pose + waypoints -> on-screen markers
- overlay: Marker badge/label rendering
- session: Camera session state machine with zoom and focus control
- capture: Still capture, night-vision filter, overlay bake, storage
- engine: Long-lived context that wires the components together
- viewer: OpenCV live viewfinder window
"""

__version__ = "0.1.0"

from .config import Config
from .engine import ARCameraEngine
from .errors import (
    WaypointARError,
    PermissionDenied,
    DeviceUnavailable,
    SessionConfigurationFailed,
    SessionInterrupted,
    SessionRuntimeError,
    CaptureError,
    CaptureFailed,
    ImageProcessingFailed,
    StorageSaveFailed,
)
from .models import (
    GeoPoint,
    Waypoint,
    WaypointType,
    Pose,
    ProjectedMarker,
    CameraSessionState,
    FilterMode,
    ARSnapshot,
    CaptureRequest,
    CapturedPhoto,
)
from .projector import ARProjector
from .session import CameraSessionController
from .capture import CapturePipeline, PhotoProcessor

__all__ = [
    "Config",
    "ARCameraEngine",
    "ARProjector",
    "CameraSessionController",
    "CapturePipeline",
    "PhotoProcessor",
    "GeoPoint",
    "Waypoint",
    "WaypointType",
    "Pose",
    "ProjectedMarker",
    "CameraSessionState",
    "FilterMode",
    "ARSnapshot",
    "CaptureRequest",
    "CapturedPhoto",
    "WaypointARError",
    "PermissionDenied",
    "DeviceUnavailable",
    "SessionConfigurationFailed",
    "SessionInterrupted",
    "SessionRuntimeError",
    "CaptureError",
    "CaptureFailed",
    "ImageProcessingFailed",
    "StorageSaveFailed",
    "__version__",
]
