"""Shared test fixtures."""

from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np
import pytest

from waypoint_ar.camera import (
    AuthorizationStatus,
    CameraBackend,
    CaptureDevice,
    DeviceEventType,
    StillCallback,
)
from waypoint_ar.config import CameraConfig, Config, ZoomConfig
from waypoint_ar.dispatch import InlineDispatcher
from waypoint_ar.engine import ARCameraEngine
from waypoint_ar.models import GeoPoint, RawCapture, Waypoint, WaypointType
from waypoint_ar.pose import PoseTracker, SimulatedPoseProvider
from waypoint_ar.session import CameraSessionController
from waypoint_ar.storage import DirectoryPhotoStorage
from waypoint_ar.waypoints import InMemoryWaypointStore

USER_LOCATION = GeoPoint(37.7749, -122.4194)
NORTH_WAYPOINT = Waypoint("N", "North Tower", GeoPoint(37.7949, -122.4194), WaypointType.OBJECTIVE)


def encode_png(width: int = 320, height: int = 240, value: int = 128) -> bytes:
    image = np.full((height, width, 3), value, dtype=np.uint8)
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


class FakeCaptureDevice(CaptureDevice):
    """Scriptable device: counts calls, fails on demand, completes stills manually."""

    name = "fake"

    def __init__(self,
                 formats: Sequence[Tuple[int, int]] = ((640, 480), (1920, 1080), (1280, 720)),
                 max_zoom: float = 8.0,
                 supports_points: bool = True,
                 auto_complete: bool = False):
        super().__init__()
        self.formats = list(formats)
        self._max_zoom = max_zoom
        self.supports_focus_point = supports_points
        self.supports_exposure_point = supports_points
        self.supports_auto_focus = True
        self.supports_auto_exposure = True
        self.auto_complete = auto_complete
        self.still_data = encode_png()
        self.still_rotation = 0

        self.fail_bind = 0
        self.fail_start = 0
        self.connected = True

        self.bound = False
        self.running = False
        self.selected_format: Optional[Tuple[int, int]] = None
        self.bind_count = 0
        self.start_count = 0
        self.stop_count = 0
        self.unbind_count = 0
        self.zoom_calls: List[float] = []
        self.auto_focus_count = 0
        self.auto_exposure_count = 0
        self.focus_point: Optional[Tuple[float, float]] = None
        self.exposure_point: Optional[Tuple[float, float]] = None
        self.pending_stills: List[StillCallback] = []

    def bind(self) -> None:
        self.bind_count += 1
        if self.fail_bind > 0:
            self.fail_bind -= 1
            raise RuntimeError("bind failed")
        self.bound = True

    def unbind(self) -> None:
        self.unbind_count += 1
        self.bound = False
        self.running = False

    def supported_formats(self) -> List[Tuple[int, int]]:
        return list(self.formats)

    def set_format(self, size: Tuple[int, int]) -> None:
        self.selected_format = size

    def start(self) -> None:
        self.start_count += 1
        if self.fail_start > 0:
            self.fail_start -= 1
            raise RuntimeError("start failed")
        self.running = True

    def stop(self) -> None:
        self.stop_count += 1
        self.running = False

    @property
    def is_running(self) -> bool:
        return self.running

    def has_active_connection(self) -> bool:
        return self.running and self.connected

    @property
    def max_zoom_factor(self) -> float:
        return self._max_zoom

    def set_zoom(self, factor: float) -> None:
        self.zoom_calls.append(factor)

    def trigger_auto_focus(self) -> None:
        self.auto_focus_count += 1

    def trigger_auto_exposure(self) -> None:
        self.auto_exposure_count += 1

    def set_focus_point(self, x: float, y: float) -> None:
        self.focus_point = (x, y)

    def set_exposure_point(self, x: float, y: float) -> None:
        self.exposure_point = (x, y)

    def read_frame(self) -> Optional[np.ndarray]:
        if not self.running:
            return None
        return np.zeros((480, 640, 3), dtype=np.uint8)

    def capture_still(self, callback: StillCallback) -> None:
        self.pending_stills.append(callback)
        if self.auto_complete:
            self.complete_still()

    # -- test controls ---------------------------------------------------

    def complete_still(self, raw: Optional[RawCapture] = None,
                       error: Optional[Exception] = None) -> None:
        callback = self.pending_stills.pop(0)
        if error is not None:
            callback(None, error)
        else:
            callback(raw or RawCapture(self.still_data, self.still_rotation), None)

    def interrupt(self, reason: str = "video device in use") -> None:
        self.running = False
        self.notify(DeviceEventType.INTERRUPTION_BEGAN, reason)

    def end_interruption(self) -> None:
        self.notify(DeviceEventType.INTERRUPTION_ENDED)

    def runtime_error(self) -> None:
        self.notify(DeviceEventType.RUNTIME_ERROR, error=RuntimeError("media services reset"))


class FakeCameraBackend(CameraBackend):
    def __init__(self, device: Optional[FakeCaptureDevice] = None,
                 status: AuthorizationStatus = AuthorizationStatus.AUTHORIZED,
                 grant: bool = True):
        self.device = device
        self.status = status
        self.grant = grant
        self.access_requests = 0

    def authorization_status(self) -> AuthorizationStatus:
        return self.status

    def request_access(self) -> bool:
        self.access_requests += 1
        self.status = AuthorizationStatus.AUTHORIZED if self.grant else AuthorizationStatus.DENIED
        return self.grant

    def default_device(self) -> Optional[CaptureDevice]:
        return self.device


class StateRecorder:
    """Collects SessionStateChanged events."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def states(self):
        return [e.state for e in self.events]

    def clear(self):
        self.events.clear()


@pytest.fixture
def device():
    return FakeCaptureDevice()


@pytest.fixture
def backend(device):
    return FakeCameraBackend(device)


@pytest.fixture
def ui():
    return InlineDispatcher()


@pytest.fixture
def session(backend, ui):
    return CameraSessionController(backend, CameraConfig(), ZoomConfig(),
                                   io=InlineDispatcher(), ui=ui)


@pytest.fixture
def recorder(session):
    rec = StateRecorder()
    session.events.subscribe(rec)
    return rec


@pytest.fixture
def running_session(session):
    session.request_permission()
    assert session.is_available
    return session


@pytest.fixture
def still_png():
    return encode_png()


@pytest.fixture
def make_device():
    return FakeCaptureDevice


@pytest.fixture
def make_backend():
    return FakeCameraBackend


@pytest.fixture
def make_recorder():
    return StateRecorder


@pytest.fixture
def user_location():
    return USER_LOCATION


@pytest.fixture
def north_waypoint():
    return NORTH_WAYPOINT


@pytest.fixture
def engine_factory(tmp_path, make_device, make_backend):
    def factory(device=None, ui=None, waypoints=None):
        device = device if device is not None else make_device(auto_complete=True)
        tracker = PoseTracker()
        return ARCameraEngine(
            Config(),
            backend=make_backend(device),
            pose_provider=SimulatedPoseProvider(tracker, USER_LOCATION.latitude, USER_LOCATION.longitude, 0.0),
            waypoint_store=InMemoryWaypointStore(waypoints or [NORTH_WAYPOINT]),
            storage=DirectoryPhotoStorage(tmp_path / "photos"),
            io=InlineDispatcher(),
            ui=ui or InlineDispatcher(),
        )
    return factory
