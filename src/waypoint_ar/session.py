"""
Camera session controller.

State machine owning the capture hardware:

    UNINITIALIZED -> REQUESTING_PERMISSION -> DENIED
                                           -> CONFIGURING -> RUNNING <-> INTERRUPTED
    CONFIGURING -> UNAVAILABLE (no device)
    CONFIGURING / RUNNING / INTERRUPTED -> FAILED -> (teardown) -> CONFIGURING

Blocking hardware work runs on the I/O dispatcher. Transitions are published
as SessionStateChanged events; subscribers pick their own delivery context.
Zoom and focus commands are serialized with transitions and only accepted
while RUNNING.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from .camera import (
    AuthorizationStatus,
    CameraBackend,
    CaptureDevice,
    DeviceEvent,
    DeviceEventType,
    StillCallback,
    best_format,
)
from .config import CameraConfig, ZoomConfig
from .dispatch import Dispatcher, EventBus, InlineDispatcher, ThreadDispatcher
from .errors import (
    CaptureFailed,
    DeviceUnavailable,
    PermissionDenied,
    SessionConfigurationFailed,
    SessionInterrupted,
    SessionRuntimeError,
    WaypointARError,
)
from .models import CameraSessionState

logger = logging.getLogger(__name__)

State = CameraSessionState


@dataclass(frozen=True)
class SessionStateChanged:
    """Published on every state transition."""
    previous: CameraSessionState
    state: CameraSessionState
    error: Optional[WaypointARError] = None


class CameraSessionController:
    """
    Single owner of the camera session.

    Args:
        backend: Platform camera access
        camera_config: Recovery and stall settings
        zoom_config: Zoom limits
        io: Dispatcher for blocking hardware calls
        ui: Dispatcher for delayed checks (stall watchdog)
    """

    def __init__(self,
                 backend: CameraBackend,
                 camera_config: Optional[CameraConfig] = None,
                 zoom_config: Optional[ZoomConfig] = None,
                 io: Optional[Dispatcher] = None,
                 ui: Optional[Dispatcher] = None):
        self.backend = backend
        self.camera_config = camera_config or CameraConfig()
        self.zoom_config = zoom_config or ZoomConfig()
        self.io = io or ThreadDispatcher("camera-io")
        self.ui = ui or InlineDispatcher()
        self.events = EventBus()

        self._lock = threading.RLock()
        self._state = State.UNINITIALIZED
        self._device: Optional[CaptureDevice] = None
        self._device_unsubscribe: Optional[Callable[[], None]] = None
        self._authorized = False
        self._recovery_attempts = 0
        self._zoom = 1.0
        self._base_zoom = 1.0
        self.last_error: Optional[WaypointARError] = None

    # ------------------------------------------------------------------
    # Read models

    @property
    def state(self) -> CameraSessionState:
        with self._lock:
            return self._state

    @property
    def is_available(self) -> bool:
        return self.state == State.RUNNING

    @property
    def zoom_level(self) -> float:
        with self._lock:
            return self._zoom

    @property
    def base_zoom(self) -> float:
        with self._lock:
            return self._base_zoom

    @property
    def device(self) -> Optional[CaptureDevice]:
        with self._lock:
            return self._device

    # ------------------------------------------------------------------
    # Lifecycle commands

    def request_permission(self) -> None:
        """Ask for camera access and configure the session if granted."""
        with self._lock:
            if self._state in (State.REQUESTING_PERMISSION, State.CONFIGURING, State.RUNNING):
                logger.debug("Permission request ignored in state %s", self._state.value)
                return
            event = self._set_state(State.REQUESTING_PERMISSION)
        self._publish(event)
        self.io.submit(self._resolve_permission)

    def handle_view_appeared(self) -> None:
        """
        Re-entry of a screen hosting the camera.

        Running: nothing to do. Denied/unconfigured: ask again. Failed:
        restart. Anything else gets a stall check after ``stall_timeout_s``.
        """
        state = self.state
        if state == State.RUNNING:
            return
        if state in (State.UNINITIALIZED, State.DENIED, State.UNAVAILABLE):
            self.request_permission()
        elif state == State.FAILED:
            self.restart()
        self.ui.call_later(self.camera_config.stall_timeout_s, self._check_stalled)

    def restart(self) -> None:
        """Force a full teardown and reconfiguration."""
        with self._lock:
            authorized = self._authorized
            if authorized:
                self._recovery_attempts = 0
        if not authorized:
            self.request_permission()
            return
        logger.info("Force restarting camera session")
        self.io.submit(self._restart)

    def shutdown(self) -> None:
        """Stop the session and release the device."""
        self.io.submit(self._teardown)
        self.io.shutdown()

    # ------------------------------------------------------------------
    # External hardware signals

    def notify_interruption_began(self, reason: str = "") -> None:
        self.io.submit(self._handle_device_event,
                       DeviceEvent(DeviceEventType.INTERRUPTION_BEGAN, reason))

    def notify_interruption_ended(self) -> None:
        self.io.submit(self._handle_device_event,
                       DeviceEvent(DeviceEventType.INTERRUPTION_ENDED))

    def notify_runtime_error(self, error: Optional[Exception] = None) -> None:
        self.io.submit(self._handle_device_event,
                       DeviceEvent(DeviceEventType.RUNTIME_ERROR, error=error))

    # ------------------------------------------------------------------
    # Zoom and focus

    def update_zoom(self, multiplier: float) -> bool:
        """Live pinch update: zoom = clamp(base * multiplier)."""
        with self._lock:
            if self._state != State.RUNNING:
                logger.debug("Zoom ignored in state %s", self._state.value)
                return False
            self._zoom = self._clamp_zoom(self._base_zoom * multiplier)
            self._apply_zoom(self._zoom)
            return True

    def finalize_zoom(self, multiplier: float) -> bool:
        """Pinch ended: commit the zoom as the base for the next gesture."""
        with self._lock:
            if self._state != State.RUNNING:
                logger.debug("Zoom ignored in state %s", self._state.value)
                return False
            self._zoom = self._base_zoom = self._clamp_zoom(self._base_zoom * multiplier)
            self._apply_zoom(self._zoom)
            return True

    def reset_zoom(self) -> bool:
        with self._lock:
            if self._state != State.RUNNING:
                return False
            self._zoom = self._base_zoom = 1.0
            self._apply_zoom(1.0)
            return True

    def focus_at(self, point: Tuple[float, float], view_size: Tuple[float, float]) -> bool:
        """
        Focus and meter at a tap location.

        Args:
            point: Tap (x, y) in view coordinates
            view_size: (width, height) of the view

        Returns:
            True if the device accepted a point of interest
        """
        width, height = view_size
        if width <= 0 or height <= 0:
            return False
        nx = min(max(point[0] / width, 0.0), 1.0)
        ny = min(max(point[1] / height, 0.0), 1.0)

        with self._lock:
            device = self._device
            if self._state != State.RUNNING or device is None:
                return False
            if not (device.supports_focus_point or device.supports_exposure_point):
                return False
            try:
                if device.supports_focus_point:
                    device.set_focus_point(nx, ny)
                    if device.supports_auto_focus:
                        device.trigger_auto_focus()
                if device.supports_exposure_point:
                    device.set_exposure_point(nx, ny)
                    if device.supports_auto_exposure:
                        device.trigger_auto_exposure()
            except Exception as e:
                logger.warning("Failed to focus at (%.2f, %.2f): %s", nx, ny, e)
                return False
        logger.debug("Focus applied at (%.2f, %.2f)", nx, ny)
        return True

    def _clamp_zoom(self, zoom: float) -> float:
        return max(self.zoom_config.min_zoom, min(self.zoom_config.max_zoom, zoom))

    def _apply_zoom(self, zoom: float) -> None:
        """Push zoom to hardware (caller holds the lock)."""
        device = self._device
        if device is None:
            return
        hardware_max = min(device.max_zoom_factor, self.zoom_config.max_zoom)
        clamped = max(self.zoom_config.min_zoom, min(hardware_max, zoom))
        try:
            device.set_zoom(clamped)
            # Refocus and re-expose after a zoom change
            if device.supports_auto_focus:
                device.trigger_auto_focus()
            if device.supports_auto_exposure:
                device.trigger_auto_exposure()
        except Exception as e:
            logger.warning("Failed to apply zoom %.2fx: %s", clamped, e)
            return
        logger.debug("Hardware zoom applied: %.2fx", clamped)

    # ------------------------------------------------------------------
    # Frames and stills

    def read_frame(self) -> Optional[np.ndarray]:
        device = self.device
        if device is None or self.state != State.RUNNING:
            return None
        return device.read_frame()

    def capture_still(self, callback: StillCallback) -> None:
        """
        Start a still capture on the active device.

        Raises:
            CaptureFailed: session not running or no active connection
        """
        with self._lock:
            device = self._device
            if self._state != State.RUNNING or device is None:
                raise CaptureFailed("Camera not available",
                                    details={"state": self._state.value})
            if not device.has_active_connection():
                raise CaptureFailed("No active video connection")
        self.io.submit(self._capture_still, device, callback)

    @staticmethod
    def _capture_still(device: CaptureDevice, callback: StillCallback) -> None:
        try:
            device.capture_still(callback)
        except Exception as e:
            callback(None, e)

    # ------------------------------------------------------------------
    # Transitions (I/O dispatcher)

    def _set_state(self, new_state: CameraSessionState,
                   error: Optional[WaypointARError] = None) -> Optional[SessionStateChanged]:
        """Swap state under the lock. Returns the event to publish, if any."""
        with self._lock:
            previous = self._state
            if previous == new_state and error is None:
                return None
            self._state = new_state
            if error is not None:
                self.last_error = error
            elif new_state == State.RUNNING:
                self.last_error = None
        return SessionStateChanged(previous, new_state, error)

    def _publish(self, event: Optional[SessionStateChanged]) -> None:
        """Notify subscribers. Never called with the lock held."""
        if event is None:
            return
        if event.error is not None:
            logger.info("Camera session %s -> %s (%s)", event.previous.value,
                        event.state.value, event.error.message)
        else:
            logger.info("Camera session %s -> %s", event.previous.value, event.state.value)
        self.events.publish(event)

    def _transition(self, new_state: CameraSessionState,
                    error: Optional[WaypointARError] = None) -> None:
        self._publish(self._set_state(new_state, error))

    def _resolve_permission(self) -> None:
        try:
            status = self.backend.authorization_status()
            if status == AuthorizationStatus.NOT_DETERMINED:
                granted = self.backend.request_access()
                status = AuthorizationStatus.AUTHORIZED if granted else AuthorizationStatus.DENIED
        except Exception as e:
            logger.error("Camera authorization check failed: %s", e)
            status = AuthorizationStatus.DENIED

        if status in (AuthorizationStatus.AUTHORIZED, AuthorizationStatus.LIMITED):
            with self._lock:
                self._authorized = True
            self._configure()
        else:
            with self._lock:
                self._authorized = False
            self._transition(State.DENIED, PermissionDenied(
                "Camera access denied", details={"status": status.value}))

    def _configure(self) -> None:
        self._transition(State.CONFIGURING)
        self._teardown()

        try:
            device = self.backend.default_device()
        except Exception as e:
            logger.error("Camera enumeration failed: %s", e)
            self._fail(SessionConfigurationFailed(f"Camera enumeration failed: {e}"))
            return

        if device is None:
            self._transition(State.UNAVAILABLE, DeviceUnavailable("No camera device available"))
            return

        with self._lock:
            self._device = device
            self._device_unsubscribe = device.events.subscribe(self._on_device_event)

        try:
            device.bind()
            formats = device.supported_formats()
            if formats:
                device.set_format(best_format(formats))
            device.start()
        except Exception as e:
            logger.error("Camera configuration failed: %s", e)
            self._fail(SessionConfigurationFailed(
                f"Camera configuration failed: {e}", details={"device": device.name}))
            return

        with self._lock:
            self._recovery_attempts = 0
            event = self._set_state(State.RUNNING)
            if self._zoom != 1.0:
                self._apply_zoom(self._zoom)
        self._publish(event)

    def _fail(self, error: WaypointARError) -> None:
        """Enter FAILED, tear down, and reconfigure while the retry budget lasts."""
        self._transition(State.FAILED, error)
        self._teardown()

        with self._lock:
            if self._recovery_attempts >= self.camera_config.max_recovery_attempts:
                logger.error("Camera recovery gave up after %d attempt(s): %s",
                             self._recovery_attempts, error.message)
                return
            self._recovery_attempts += 1
            attempt = self._recovery_attempts

        logger.warning("Recovering camera session (attempt %d)", attempt)
        self._configure()

    def _teardown(self) -> None:
        """Stop the session and remove input/output bindings."""
        with self._lock:
            device = self._device
            unsubscribe = self._device_unsubscribe
            self._device = None
            self._device_unsubscribe = None

        if unsubscribe is not None:
            unsubscribe()
        if device is None:
            return

        try:
            if device.is_running:
                device.stop()
        except Exception as e:
            logger.warning("Error stopping camera %s: %s", device.name, e)
        try:
            device.unbind()
        except Exception as e:
            logger.warning("Error unbinding camera %s: %s", device.name, e)

    def _restart(self) -> None:
        self._teardown()
        self._configure()

    def _check_stalled(self) -> None:
        # Queued behind any configuration still running on the I/O dispatcher
        self.io.submit(self._restart_if_stalled)

    def _restart_if_stalled(self) -> None:
        with self._lock:
            stalled = self._authorized and self._state in (
                State.CONFIGURING, State.INTERRUPTED, State.FAILED)
            state = self._state
            if stalled:
                self._recovery_attempts = 0
        if stalled:
            logger.warning("Camera still %s after %.1fs, forcing restart",
                           state.value, self.camera_config.stall_timeout_s)
            self._restart()

    def _on_device_event(self, event: DeviceEvent) -> None:
        # Hardware events may arrive on any thread
        self.io.submit(self._handle_device_event, event)

    def _handle_device_event(self, event: DeviceEvent) -> None:
        state = self.state

        if event.type == DeviceEventType.INTERRUPTION_BEGAN:
            if state == State.RUNNING:
                logger.warning("Camera session was interrupted: %s", event.reason or "unknown")
                self._transition(State.INTERRUPTED, SessionInterrupted(
                    "Camera session interrupted", details={"reason": event.reason}))

        elif event.type == DeviceEventType.INTERRUPTION_ENDED:
            if state == State.INTERRUPTED:
                logger.info("Camera session interruption ended, resuming")
                self._resume()

        elif event.type == DeviceEventType.RUNTIME_ERROR:
            if state in (State.RUNNING, State.INTERRUPTED):
                logger.error("Camera session runtime error: %s", event.error)
                with self._lock:
                    self._recovery_attempts = 0
                self._fail(SessionRuntimeError(f"Camera runtime error: {event.error}"))

    def _resume(self) -> None:
        device = self.device
        try:
            if device is None:
                raise RuntimeError("No device bound")
            if not device.is_running:
                device.start()
        except Exception as e:
            logger.error("Failed to resume camera session: %s", e)
            self._fail(SessionRuntimeError(f"Resume failed: {e}"))
            return
        self._transition(State.RUNNING)
