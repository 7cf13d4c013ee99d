"""
Engine context.

One ``ARCameraEngine`` is built at startup and handed to whatever drives it
(the live viewer, the CLI, tests). It owns the pose tracker and provider, the
waypoint store, the projector, the camera session and the capture pipeline,
and exposes the read models and commands a UI layer needs.
"""

import logging
from concurrent.futures import Future
from typing import Callable, List, Optional, Tuple, Union

from .camera import (
    CameraBackend,
    OpenCVCameraBackend,
    SimulatedCameraBackend,
    SimulatedCaptureDevice,
)
from .capture import CapturePipeline, PhotoProcessor
from .config import CameraConfig, Config, PoseConfig
from .dispatch import Dispatcher, QueueDispatcher, ThreadDispatcher
from .errors import CaptureFailed, WaypointARError
from .models import (
    ARSnapshot,
    CameraSessionState,
    CapturedPhoto,
    CaptureRequest,
    FilterMode,
    ProjectedMarker,
)
from .overlay import MarkerRenderer
from .pose import MavlinkPoseProvider, PoseTracker, SimulatedPoseProvider
from .projector import ARProjector
from .session import CameraSessionController, SessionStateChanged
from .storage import DirectoryPhotoStorage, PhotoStorage
from .waypoints import InMemoryWaypointStore, sample_waypoints

logger = logging.getLogger(__name__)

PoseProvider = Union[SimulatedPoseProvider, MavlinkPoseProvider]


def build_camera_backend(config: CameraConfig) -> CameraBackend:
    """Create the camera backend selected in the config."""
    if config.backend == "simulated":
        return SimulatedCameraBackend(SimulatedCaptureDevice(
            preview_size=(config.preview_width, config.preview_height),
            max_zoom=config.max_zoom_factor,
        ))
    if config.backend == "opencv":
        return OpenCVCameraBackend(
            camera_index=config.camera_index,
            probe_resolutions=[tuple(r) for r in config.probe_resolutions],
            preview_size=(config.preview_width, config.preview_height),
            max_zoom=config.max_zoom_factor,
        )
    raise ValueError(f"Unknown camera backend: {config.backend}")


def build_pose_provider(config: PoseConfig, tracker: PoseTracker) -> PoseProvider:
    """Create the pose provider selected in the config."""
    if config.source == "simulated":
        return SimulatedPoseProvider(tracker, config.latitude, config.longitude, config.heading)
    if config.source == "mavlink":
        return MavlinkPoseProvider(tracker, config.mavlink_port, config.mavlink_baud)
    raise ValueError(f"Unknown pose source: {config.source}")


def load_waypoint_store(config: Config) -> InMemoryWaypointStore:
    """Waypoints from the configured file, or the demo set."""
    if config.waypoints_file is not None:
        return InMemoryWaypointStore.from_yaml(config.waypoints_file)
    return InMemoryWaypointStore(sample_waypoints())


class ARCameraEngine:
    """
    Long-lived engine context.

    Collaborators not given explicitly are built from ``config``.

    Args:
        config: Engine configuration
        backend: Camera backend
        pose_provider: Location/heading source; its tracker becomes the engine's
        waypoint_store: Waypoints to project
        storage: Destination for captured photos
        io: Dispatcher for blocking hardware calls
        ui: Dispatcher that delivers state changes to observers
    """

    def __init__(self,
                 config: Optional[Config] = None,
                 backend: Optional[CameraBackend] = None,
                 pose_provider: Optional[PoseProvider] = None,
                 waypoint_store: Optional[InMemoryWaypointStore] = None,
                 storage: Optional[PhotoStorage] = None,
                 io: Optional[Dispatcher] = None,
                 ui: Optional[Dispatcher] = None):
        self.config = config or Config()
        self.io = io or ThreadDispatcher("camera-io")
        self.ui = ui or QueueDispatcher()

        if pose_provider is not None:
            self.tracker = pose_provider.tracker
            self.pose_provider = pose_provider
        else:
            self.tracker = PoseTracker(self.config.pose.max_age_seconds)
            self.pose_provider = build_pose_provider(self.config.pose, self.tracker)

        self.waypoints = waypoint_store if waypoint_store is not None else load_waypoint_store(self.config)
        self.projector = ARProjector(self.config.projection)
        self.renderer = MarkerRenderer()

        self.session = CameraSessionController(
            backend or build_camera_backend(self.config.camera),
            self.config.camera, self.config.zoom, io=self.io, ui=self.ui)
        self.storage = storage or DirectoryPhotoStorage(
            self.config.capture.output_dir, self.config.capture.filename_prefix)
        self.processor = PhotoProcessor(self.projector, self.renderer,
                                        self.config.capture, self.config.night_vision)
        self.pipeline = CapturePipeline(self.session, self.processor, self.storage)

        # Read models, only mutated on the UI dispatcher
        self._state = self.session.state
        self._last_error: Optional[WaypointARError] = None
        self._filter = FilterMode.NORMAL
        self._ar_enabled = False
        self._markers: List[ProjectedMarker] = []
        self.last_photo: Optional[CapturedPhoto] = None
        self.last_capture_error: Optional[WaypointARError] = None

        self._unsubscribe = self.session.events.subscribe(self._on_session_event, self.ui)

    # ------------------------------------------------------------------
    # Read models

    @property
    def state(self) -> CameraSessionState:
        return self._state

    @property
    def last_error(self) -> Optional[WaypointARError]:
        return self._last_error

    @property
    def camera_available(self) -> bool:
        return self._state == CameraSessionState.RUNNING

    @property
    def zoom_level(self) -> float:
        return self.session.zoom_level

    @property
    def current_filter(self) -> FilterMode:
        return self._filter

    @property
    def ar_enabled(self) -> bool:
        return self._ar_enabled

    @property
    def markers(self) -> List[ProjectedMarker]:
        return list(self._markers)

    def subscribe(self, callback: Callable[[SessionStateChanged], None]) -> Callable[[], None]:
        """Observe session transitions on the UI dispatcher."""
        return self.session.events.subscribe(callback, self.ui)

    # ------------------------------------------------------------------
    # Commands

    def request_permission(self) -> None:
        self.session.request_permission()

    def handle_view_appeared(self) -> None:
        self.session.handle_view_appeared()

    def restart_camera(self) -> None:
        self.session.restart()

    def cycle_filter(self) -> FilterMode:
        self._filter = self._filter.next()
        logger.info("Filter: %s", self._filter.value)
        return self._filter

    def toggle_ar(self) -> bool:
        """Toggle the AR overlay; the pose provider runs only while it is on."""
        self._ar_enabled = not self._ar_enabled
        if self._ar_enabled:
            if not self.pose_provider.start():
                logger.warning("Pose source unavailable, AR waypoints stay disabled")
                self._ar_enabled = False
                return False
        else:
            self.pose_provider.stop()
            self.tracker.reset()
            self._markers = []
        logger.info("AR waypoints %s", "enabled" if self._ar_enabled else "disabled")
        return self._ar_enabled

    def update_zoom(self, multiplier: float) -> bool:
        return self.session.update_zoom(multiplier)

    def finalize_zoom(self, multiplier: float) -> bool:
        return self.session.finalize_zoom(multiplier)

    def reset_zoom(self) -> bool:
        return self.session.reset_zoom()

    def focus_at(self, point: Tuple[float, float], view_size: Tuple[float, float]) -> bool:
        return self.session.focus_at(point, view_size)

    def refresh_markers(self, surface_size: Tuple[float, float]) -> List[ProjectedMarker]:
        """Re-project the live markers for a viewfinder of the given size."""
        if not self._ar_enabled:
            self._markers = []
        else:
            self._markers = self.projector.project(
                self.tracker.current_pose(), self.waypoints.snapshot(), surface_size)
        return self.markers

    def snapshot(self) -> Optional[ARSnapshot]:
        """Pose and waypoints frozen together, or None without AR or a pose."""
        if not self._ar_enabled:
            return None
        pose = self.tracker.current_pose()
        if pose is None:
            return None
        return ARSnapshot(pose=pose, waypoints=self.waypoints.snapshot())

    def capture_photo(self) -> "Future[CapturedPhoto]":
        """
        Capture with the current filter and, if AR is on, the current overlay.

        Never raises; a rejected request comes back as an already-failed future.
        """
        request = CaptureRequest(
            filter_mode=self._filter,
            snapshot=self.snapshot(),
            zoom_factor=self.session.zoom_level,
        )
        try:
            future = self.pipeline.capture(request)
        except CaptureFailed as e:
            logger.warning("Photo capture rejected: %s", e.message)
            self.last_capture_error = e
            future = Future()
            future.set_exception(e)
            return future

        future.add_done_callback(lambda f: self.ui.submit(self._on_capture_done, f))
        return future

    def shutdown(self) -> None:
        """Stop the pose provider and camera and release background workers."""
        self._unsubscribe()
        self.pipeline.close()
        if self._ar_enabled:
            self.pose_provider.stop()
        self.session.shutdown()

    # ------------------------------------------------------------------
    # UI dispatcher callbacks

    def _on_session_event(self, event: SessionStateChanged) -> None:
        self._state = event.state
        if event.error is not None:
            self._last_error = event.error
        elif event.state == CameraSessionState.RUNNING:
            self._last_error = None

    def _on_capture_done(self, future: Future) -> None:
        error = future.exception()
        if error is not None:
            self.last_capture_error = error
            return
        self.last_photo = future.result()
        self.last_capture_error = None
        logger.info("Photo captured: %s", self.last_photo.saved_as)
