"""
Camera hardware abstraction.

A CameraBackend answers authorization questions and hands out the default
CaptureDevice. A CaptureDevice owns the input/output bindings, exposes zoom
and focus controls bounded by its own limits, delivers preview frames and
performs asynchronous still captures. Interruptions and runtime errors are
published on ``device.events`` as DeviceEvent values.

Implementations:
- OpenCVCameraBackend / OpenCVCaptureDevice: USB or built-in cameras
- SimulatedCameraBackend / SimulatedCaptureDevice: synthetic frames
"""

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .dispatch import EventBus
from .models import RawCapture

logger = logging.getLogger(__name__)

StillCallback = Callable[[Optional[RawCapture], Optional[Exception]], None]


class AuthorizationStatus(Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    LIMITED = "limited"
    DENIED = "denied"
    RESTRICTED = "restricted"


class DeviceEventType(Enum):
    INTERRUPTION_BEGAN = "interruption_began"
    INTERRUPTION_ENDED = "interruption_ended"
    RUNTIME_ERROR = "runtime_error"


@dataclass
class DeviceEvent:
    type: DeviceEventType
    reason: str = ""
    error: Optional[Exception] = None


class CaptureDevice(ABC):
    """A camera with a single input/output pipeline."""

    name: str = "camera"

    def __init__(self):
        self.events = EventBus()

    # -- session bindings ------------------------------------------------

    @abstractmethod
    def bind(self) -> None:
        """Attach input and still output to the session."""

    @abstractmethod
    def unbind(self) -> None:
        """Remove input and output bindings."""

    @abstractmethod
    def supported_formats(self) -> List[Tuple[int, int]]:
        """Still resolutions the device supports."""

    @abstractmethod
    def set_format(self, size: Tuple[int, int]) -> None:
        """Select the still resolution."""

    @abstractmethod
    def start(self) -> None:
        """Start streaming. May block."""

    @abstractmethod
    def stop(self) -> None:
        """Stop streaming. May block."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        ...

    def has_active_connection(self) -> bool:
        return self.is_running

    # -- controls --------------------------------------------------------

    @property
    def max_zoom_factor(self) -> float:
        return 1.0

    def set_zoom(self, factor: float) -> None:
        pass

    supports_auto_focus = False
    supports_auto_exposure = False
    supports_focus_point = False
    supports_exposure_point = False

    def trigger_auto_focus(self) -> None:
        pass

    def trigger_auto_exposure(self) -> None:
        pass

    def set_focus_point(self, x: float, y: float) -> None:
        pass

    def set_exposure_point(self, x: float, y: float) -> None:
        pass

    # -- frames ----------------------------------------------------------

    @abstractmethod
    def read_frame(self) -> Optional[np.ndarray]:
        """Latest preview frame (BGR) or None."""

    @abstractmethod
    def capture_still(self, callback: StillCallback) -> None:
        """
        Capture one still at the selected format.

        ``callback(raw, error)`` fires exactly once, possibly on another
        thread.
        """

    def notify(self, event_type: DeviceEventType, reason: str = "",
               error: Optional[Exception] = None) -> None:
        """Publish a hardware event to the session controller."""
        self.events.publish(DeviceEvent(event_type, reason, error))


class CameraBackend(ABC):
    """Platform camera access."""

    @abstractmethod
    def authorization_status(self) -> AuthorizationStatus:
        ...

    @abstractmethod
    def request_access(self) -> bool:
        """Prompt for camera access. May block."""

    @abstractmethod
    def default_device(self) -> Optional[CaptureDevice]:
        """Default video device, or None if there is no camera."""


def best_format(formats: Sequence[Tuple[int, int]]) -> Tuple[int, int]:
    """Highest pixel-count format."""
    return max(formats, key=lambda size: size[0] * size[1])


class OpenCVCaptureDevice(CaptureDevice):
    """
    cv2.VideoCapture-backed device.

    Stills are grabbed from the stream after switching the capture to the
    selected still resolution. Consecutive read failures are reported as a
    runtime error.
    """

    MAX_READ_FAILURES = 30

    def __init__(self, camera_index: int = 0,
                 probe_resolutions: Optional[Sequence[Sequence[int]]] = None,
                 preview_size: Tuple[int, int] = (1280, 720),
                 max_zoom: float = 8.0):
        super().__init__()
        self.camera_index = camera_index
        self.name = f"opencv:{camera_index}"
        self.probe_resolutions = [tuple(r) for r in (probe_resolutions or [(1920, 1080), (1280, 720), (640, 480)])]
        self.preview_size = preview_size
        self._max_zoom = max_zoom
        self._capture: Optional[cv2.VideoCapture] = None
        self._still_size: Optional[Tuple[int, int]] = None
        self._running = False
        self._read_failures = 0
        self._lock = threading.Lock()

    def bind(self) -> None:
        # Try DirectShow backend on Windows first
        capture = cv2.VideoCapture(self.camera_index, cv2.CAP_DSHOW)
        if not capture.isOpened():
            capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            raise RuntimeError(f"Failed to open camera {self.camera_index}")
        with self._lock:
            self._capture = capture

    def unbind(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
            self._capture = None
            self._running = False

    def supported_formats(self) -> List[Tuple[int, int]]:
        """Probe candidate resolutions; keep the ones the driver accepts."""
        supported = []
        with self._lock:
            if self._capture is None:
                return []
            for width, height in self.probe_resolutions:
                self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
                self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
                actual = (int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                          int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT)))
                if actual == (width, height):
                    supported.append(actual)
        return supported

    def set_format(self, size: Tuple[int, int]) -> None:
        self._still_size = size
        logger.info("Camera %s still format: %dx%d", self.name, size[0], size[1])

    def start(self) -> None:
        with self._lock:
            if self._capture is None:
                raise RuntimeError("Camera is not bound")
            self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.preview_size[0])
            self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.preview_size[1])
            ok, _ = self._capture.read()
            if not ok:
                raise RuntimeError("Camera did not deliver a frame")
            self._running = True
            self._read_failures = 0

    def stop(self) -> None:
        with self._lock:
            self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def max_zoom_factor(self) -> float:
        return self._max_zoom

    def set_zoom(self, factor: float) -> None:
        with self._lock:
            if self._capture is not None:
                # UVC zoom is an absolute integer; scale 1x..max onto 100..max*100
                self._capture.set(cv2.CAP_PROP_ZOOM, int(round(factor * 100)))

    supports_auto_focus = True
    supports_auto_exposure = True

    def trigger_auto_focus(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.set(cv2.CAP_PROP_AUTOFOCUS, 1)

    def trigger_auto_exposure(self) -> None:
        with self._lock:
            if self._capture is not None:
                # 0.75 selects aperture-priority (auto) on V4L2 and DirectShow
                self._capture.set(cv2.CAP_PROP_AUTO_EXPOSURE, 0.75)

    def read_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            if not self._running or self._capture is None:
                return None
            ok, frame = self._capture.read()
            if ok:
                self._read_failures = 0
                return frame
            self._read_failures += 1
            failures = self._read_failures

        # Published outside the lock; the session tears the device down in response
        if failures == self.MAX_READ_FAILURES:
            self.notify(DeviceEventType.RUNTIME_ERROR, "frame reads failing",
                        RuntimeError(f"{failures} consecutive read failures"))
        return None

    def capture_still(self, callback: StillCallback) -> None:
        threading.Thread(target=self._capture_still, args=(callback,),
                         name="still-capture", daemon=True).start()

    def _capture_still(self, callback: StillCallback) -> None:
        try:
            with self._lock:
                if self._capture is None or not self._running:
                    raise RuntimeError("Camera is not running")
                if self._still_size:
                    self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._still_size[0])
                    self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._still_size[1])
                ok, frame = self._capture.read()
                self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.preview_size[0])
                self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.preview_size[1])
            if not ok:
                raise RuntimeError("Still capture returned no frame")
            ok, encoded = cv2.imencode(".png", frame)
            if not ok:
                raise RuntimeError("Could not encode still")
        except Exception as e:
            callback(None, e)
            return
        callback(RawCapture(data=encoded.tobytes(), rotation_degrees=0), None)


class OpenCVCameraBackend(CameraBackend):
    """Desktop cameras need no runtime permission prompt."""

    def __init__(self, camera_index: int = 0, **device_kwargs: Any):
        self.camera_index = camera_index
        self.device_kwargs = device_kwargs

    def authorization_status(self) -> AuthorizationStatus:
        return AuthorizationStatus.AUTHORIZED

    def request_access(self) -> bool:
        return True

    def default_device(self) -> Optional[CaptureDevice]:
        probe = cv2.VideoCapture(self.camera_index)
        present = probe.isOpened()
        probe.release()
        if not present:
            return None
        return OpenCVCaptureDevice(self.camera_index, **self.device_kwargs)


class SimulatedCaptureDevice(CaptureDevice):
    """
    Synthetic camera for running without hardware.

    Frames are a sky-to-ground gradient with a horizon line; stills are
    rendered at the selected format.
    """

    name = "simulated"

    def __init__(self, formats: Optional[Sequence[Tuple[int, int]]] = None,
                 preview_size: Tuple[int, int] = (1280, 720),
                 max_zoom: float = 8.0):
        super().__init__()
        self._formats = list(formats or [(1280, 720), (4032, 3024)])
        self.preview_size = preview_size
        self._max_zoom = max_zoom
        self._bound = False
        self._running = False
        self._still_size = self._formats[0]
        self.zoom = 1.0
        self.focus_point: Optional[Tuple[float, float]] = None
        self._tick = 0

    def bind(self) -> None:
        self._bound = True

    def unbind(self) -> None:
        self._bound = False
        self._running = False

    def supported_formats(self) -> List[Tuple[int, int]]:
        return list(self._formats)

    def set_format(self, size: Tuple[int, int]) -> None:
        self._still_size = size

    def start(self) -> None:
        if not self._bound:
            raise RuntimeError("Simulated camera is not bound")
        self._running = True

    def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def max_zoom_factor(self) -> float:
        return self._max_zoom

    def set_zoom(self, factor: float) -> None:
        self.zoom = factor

    supports_auto_focus = True
    supports_auto_exposure = True
    supports_focus_point = True
    supports_exposure_point = True

    def set_focus_point(self, x: float, y: float) -> None:
        self.focus_point = (x, y)

    def _render(self, size: Tuple[int, int]) -> np.ndarray:
        width, height = size
        rows = np.linspace(0, 1, height, dtype=np.float32)[:, None]
        sky = np.array([90, 40, 10], dtype=np.float32)
        ground = np.array([30, 60, 40], dtype=np.float32)
        horizon = 0.55 + 0.02 * math.sin(self._tick / 30.0)
        mix = np.clip((rows - horizon) * 8 + 0.5, 0, 1)[..., None]
        frame = (sky * (1 - mix) + ground * mix)
        frame = np.broadcast_to(frame, (height, width, 3)).astype(np.uint8).copy()
        cv2.line(frame, (0, int(horizon * height)), (width, int(horizon * height)), (80, 80, 80), 1)
        return frame

    def read_frame(self) -> Optional[np.ndarray]:
        if not self._running:
            return None
        self._tick += 1
        return self._render(self.preview_size)

    def capture_still(self, callback: StillCallback) -> None:
        if not self._running:
            callback(None, RuntimeError("Simulated camera is not running"))
            return
        ok, encoded = cv2.imencode(".png", self._render(self._still_size))
        if not ok:
            callback(None, RuntimeError("Could not encode still"))
            return
        callback(RawCapture(data=encoded.tobytes()), None)


class SimulatedCameraBackend(CameraBackend):
    """Backend that always grants access and returns a simulated device."""

    def __init__(self, device: Optional[SimulatedCaptureDevice] = None):
        self.device = device or SimulatedCaptureDevice()

    def authorization_status(self) -> AuthorizationStatus:
        return AuthorizationStatus.AUTHORIZED

    def request_access(self) -> bool:
        return True

    def default_device(self) -> Optional[CaptureDevice]:
        return self.device
