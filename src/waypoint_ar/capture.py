"""
Capture pipeline.

A capture request becomes a still from the running session, then:

1. orientation is baked into the pixels
2. the night-vision transform is applied if selected
3. the AR overlay is projected from the request's snapshot at image size
   and drawn at a fixed scale factor
4. the result is JPEG-encoded and handed to photo storage

Only one capture may be in flight. A second request while one is pending is
rejected with CaptureFailed. A pending capture resolves to CaptureFailed if
the session leaves RUNNING (interruption, failure or forced restart) before
the still arrives.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from functools import partial
from typing import List, Optional

import cv2
import numpy as np

from .camera import AuthorizationStatus
from .config import CaptureConfig, NightVisionConfig
from .errors import CaptureError, CaptureFailed, ImageProcessingFailed, StorageSaveFailed
from .filters import apply_night_vision, normalize_orientation
from .models import (
    ARSnapshot,
    CameraSessionState,
    CapturedPhoto,
    CaptureRequest,
    FilterMode,
    RawCapture,
)
from .overlay import MarkerRenderer
from .projector import ARProjector
from .session import CameraSessionController, SessionStateChanged
from .storage import AccessScope, PhotoStorage

logger = logging.getLogger(__name__)


def decode_image(data: bytes) -> np.ndarray:
    """Decode image bytes to BGR, ignoring any embedded orientation tag."""
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR | cv2.IMREAD_IGNORE_ORIENTATION)
    if image is None:
        raise CaptureFailed("Unable to decode captured image", details={"bytes": len(data)})
    return image


class PhotoProcessor:
    """Turns a raw still into the final photo (no I/O)."""

    def __init__(self,
                 projector: ARProjector,
                 renderer: Optional[MarkerRenderer] = None,
                 capture_config: Optional[CaptureConfig] = None,
                 night_vision_config: Optional[NightVisionConfig] = None):
        self.projector = projector
        self.renderer = renderer or MarkerRenderer()
        self.capture_config = capture_config or CaptureConfig()
        self.night_vision_config = night_vision_config or NightVisionConfig()

    def process(self, raw: RawCapture, request: CaptureRequest) -> CapturedPhoto:
        """
        Run orientation, filter, overlay and encoding.

        Filter and overlay failures fall back to the image from the previous
        step and are listed in ``CapturedPhoto.fallbacks``.

        Raises:
            CaptureFailed: the still cannot be decoded or the result encoded
        """
        fallbacks: List[str] = []
        image = decode_image(raw.data)

        try:
            image = normalize_orientation(image, raw.rotation_degrees)
        except ImageProcessingFailed as e:
            raise CaptureFailed(f"Cannot normalize orientation: {e.message}") from e

        if request.filter_mode == FilterMode.NIGHT_VISION:
            try:
                image = apply_night_vision(image, self.night_vision_config)
            except (ImageProcessingFailed, cv2.error) as e:
                logger.warning("Night-vision filter failed, keeping unfiltered image: %s", e)
                fallbacks.append("filter")

        if request.snapshot is not None:
            try:
                image = self.bake_overlay(image, request.snapshot)
            except (ImageProcessingFailed, cv2.error) as e:
                logger.warning("AR overlay failed, keeping image without overlay: %s", e)
                fallbacks.append("overlay")

        encoded = self.encode(image)
        logger.info("Processed %dx%d photo (filter=%s, overlay=%s, zoom=%.1fx)",
                    image.shape[1], image.shape[0], request.filter_mode.value,
                    request.snapshot is not None, request.zoom_factor)
        return CapturedPhoto(raw=raw, processed=image, encoded=encoded,
                             fallbacks=tuple(fallbacks))

    def bake_overlay(self, image: np.ndarray, snapshot: ARSnapshot) -> np.ndarray:
        """Project the snapshot at image resolution and draw the markers."""
        height, width = image.shape[:2]
        markers = self.projector.project(snapshot.pose, snapshot.waypoints, (width, height))
        return self.renderer.render(image, markers, scale=self.capture_config.marker_scale)

    def encode(self, image: np.ndarray) -> bytes:
        try:
            ok, buffer = cv2.imencode(".jpg", image,
                                      [cv2.IMWRITE_JPEG_QUALITY, self.capture_config.jpeg_quality])
        except cv2.error as e:
            raise CaptureFailed(f"Unable to encode photo: {e}") from e
        if not ok:
            raise CaptureFailed("Unable to encode photo")
        return buffer.tobytes()


@dataclass
class _PendingCapture:
    request: CaptureRequest
    future: Future


class CapturePipeline:
    """
    Single-slot capture coordinator.

    Args:
        session: Camera session supplying stills
        processor: Post-processing steps
        storage: Destination for finished photos
    """

    def __init__(self, session: CameraSessionController, processor: PhotoProcessor,
                 storage: PhotoStorage):
        self.session = session
        self.processor = processor
        self.storage = storage
        self._lock = threading.Lock()
        self._pending: Optional[_PendingCapture] = None
        self._unsubscribe = session.events.subscribe(self._on_session_event)

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._pending is not None

    def capture(self, request: CaptureRequest) -> "Future[CapturedPhoto]":
        """
        Start a capture.

        Returns:
            Future resolving to the CapturedPhoto, or failing with a
            CaptureError subclass

        Raises:
            CaptureFailed: another capture is in flight, or the session
                cannot capture right now
        """
        pending = _PendingCapture(request, Future())
        with self._lock:
            if self._pending is not None:
                raise CaptureFailed("A capture is already in flight")
            self._pending = pending

        try:
            self.session.capture_still(partial(self._on_still, pending))
        except CaptureFailed:
            self._release(pending)
            raise

        logger.info("Capture requested (filter=%s, overlay=%s)",
                    request.filter_mode.value, request.snapshot is not None)
        return pending.future

    def close(self) -> None:
        self._unsubscribe()

    def _release(self, pending: _PendingCapture) -> bool:
        """Clear the slot if it still holds this capture."""
        with self._lock:
            if self._pending is not pending:
                return False
            self._pending = None
            return True

    def _on_still(self, pending: _PendingCapture, raw: Optional[RawCapture],
                  error: Optional[Exception]) -> None:
        if not self._release(pending):
            logger.warning("Discarding still for a capture that already resolved")
            return

        if error is not None or raw is None:
            logger.error("Photo capture error: %s", error)
            pending.future.set_exception(CaptureFailed(f"Capture failed: {error}"))
            return

        try:
            photo = self.processor.process(raw, pending.request)
            photo.saved_as = self._store(photo.encoded)
        except CaptureError as e:
            logger.error("Capture failed: %s", e.message)
            pending.future.set_exception(e)
            return
        except Exception as e:
            logger.exception("Unexpected error while processing capture")
            pending.future.set_exception(CaptureFailed(f"Capture processing error: {e}"))
            return

        pending.future.set_result(photo)

    def _store(self, data: bytes) -> str:
        status = self.storage.request_authorization(AccessScope.ADD_ONLY)
        if status not in (AuthorizationStatus.AUTHORIZED, AuthorizationStatus.LIMITED):
            raise StorageSaveFailed(f"Photo library access {status.value}",
                                    details={"status": status.value})
        return self.storage.save(data)

    def _on_session_event(self, event: SessionStateChanged) -> None:
        # Leaving RUNNING drops the device's still callback
        if event.state == CameraSessionState.RUNNING:
            return
        with self._lock:
            pending = self._pending
            self._pending = None
        if pending is not None:
            logger.warning("Camera session %s during capture", event.state.value)
            pending.future.set_exception(CaptureFailed(
                f"Camera session {event.state.value} during capture",
                details={"state": event.state.value}))
