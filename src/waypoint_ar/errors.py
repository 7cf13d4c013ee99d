"""
Error taxonomy for the AR waypoint camera engine.

Session-class errors (permission, device, configuration, interruption) are
reported through session state and ``last_error``; capture-class errors are
scoped to a single capture request.
"""

from typing import Any, Dict, Optional


class WaypointARError(Exception):
    """Base class for all engine errors."""

    code = "WAYPOINT_AR_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        """Serializable form for UI surfaces."""
        payload: Dict[str, Any] = {"error_code": self.code, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class PermissionDenied(WaypointARError):
    """User declined camera or photo-library access."""

    code = "PERMISSION_DENIED"


class DeviceUnavailable(WaypointARError):
    """No capture device is present."""

    code = "DEVICE_UNAVAILABLE"


class SessionConfigurationFailed(WaypointARError):
    """Device binding or format negotiation failed."""

    code = "SESSION_CONFIGURATION_FAILED"


class SessionInterrupted(WaypointARError):
    """Transient loss of camera access."""

    code = "SESSION_INTERRUPTED"


class SessionRuntimeError(WaypointARError):
    """Hardware reported an error while the session was live."""

    code = "SESSION_RUNTIME_ERROR"


class CaptureError(WaypointARError):
    """Base class for errors scoped to one capture request."""

    code = "CAPTURE_ERROR"


class CaptureFailed(CaptureError):
    code = "CAPTURE_FAILED"


class ImageProcessingFailed(CaptureError):
    code = "IMAGE_PROCESSING_FAILED"


class StorageSaveFailed(CaptureError):
    code = "STORAGE_SAVE_FAILED"
