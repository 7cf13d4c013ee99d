"""
Live viewfinder window.

OpenCV window that drives an ARCameraEngine: shows the camera preview with
the live waypoint overlay and a status line, and maps keys and mouse input to
engine commands. Drains the engine's UI dispatcher once per frame.
"""

import logging
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from .dispatch import QueueDispatcher
from .engine import ARCameraEngine
from .filters import tint_preview
from .geo import format_distance
from .models import CameraSessionState, FilterMode
from .pose import SimulatedPoseProvider

logger = logging.getLogger(__name__)

HELP_LINES = [
    "SPACE  capture photo",
    "F      cycle filter",
    "A      toggle AR waypoints",
    "+ / -  zoom in / out",
    "0      reset zoom",
    "[ / ]  rotate (simulated heading)",
    "R      restart camera",
    "CLICK  focus",
    "H      help",
    "Q/ESC  quit",
]

STATUS_TEXT = {
    CameraSessionState.UNINITIALIZED: "CAMERA STARTING",
    CameraSessionState.REQUESTING_PERMISSION: "REQUESTING CAMERA ACCESS",
    CameraSessionState.DENIED: "CAMERA ACCESS DENIED - PRESS R TO RETRY",
    CameraSessionState.UNAVAILABLE: "NO CAMERA AVAILABLE",
    CameraSessionState.CONFIGURING: "CONFIGURING CAMERA",
    CameraSessionState.INTERRUPTED: "CAMERA UNAVAILABLE",
    CameraSessionState.FAILED: "CAMERA ERROR - RECOVERING",
}


class LiveViewer:
    """
    Viewfinder application loop.

    Args:
        engine: Engine to drive; its UI dispatcher should be a QueueDispatcher
    """

    # Colors (BGR format for OpenCV)
    COLOR_HUD = (0, 255, 0)
    COLOR_WARN = (0, 165, 255)
    COLOR_DIM = (200, 200, 200)

    def __init__(self, engine: ARCameraEngine):
        self.engine = engine
        self.config = engine.config.viewer
        self.running = False
        self.show_help = False
        self.mouse_last_pos: Optional[Tuple[int, int]] = None
        self.view_size = (engine.config.camera.preview_width, engine.config.camera.preview_height)

    @property
    def simulated_pose(self) -> Optional[SimulatedPoseProvider]:
        provider = self.engine.pose_provider
        return provider if isinstance(provider, SimulatedPoseProvider) else None

    def handle_key(self, key: int) -> bool:
        """
        Handle keyboard input.

        Args:
            key: Key code from cv2.waitKey

        Returns:
            False if should quit, True otherwise
        """
        if key == -1:
            return True

        key = key & 0xFF
        engine = self.engine
        step = engine.config.zoom.key_step

        if key == ord('q') or key == 27:  # Q or ESC
            return False

        if key == ord('h'):
            self.show_help = not self.show_help
        elif key == ord(' '):
            future = engine.capture_photo()
            if future.done() and future.exception() is not None:
                logger.warning("Capture not started: %s", future.exception())
        elif key == ord('f'):
            engine.cycle_filter()
        elif key == ord('a'):
            engine.toggle_ar()
        elif key == ord('+') or key == ord('='):
            engine.finalize_zoom(step)
        elif key == ord('-') or key == ord('_'):
            engine.finalize_zoom(1.0 / step)
        elif key == ord('0'):
            engine.reset_zoom()
        elif key == ord('r'):
            engine.handle_view_appeared()
        elif key in (ord('['), ord(']')) and self.simulated_pose is not None:
            self.simulated_pose.rotate(-5.0 if key == ord('[') else 5.0)

        return True

    def handle_mouse(self, event, x, y, flags, param):
        """Click to focus; drag the simulated heading with the mouse."""
        if event == cv2.EVENT_LBUTTONDOWN:
            self.engine.focus_at((x, y), self.view_size)
            return

        if event == cv2.EVENT_MOUSEMOVE and self.simulated_pose is not None:
            if self.mouse_last_pos is not None and flags & cv2.EVENT_FLAG_RBUTTON:
                dx = x - self.mouse_last_pos[0]
                self.simulated_pose.update_from_mouse(dx, self.config.heading_sensitivity)
            self.mouse_last_pos = (x, y)

    def compose(self, frame: Optional[np.ndarray]) -> np.ndarray:
        """Build the displayed image from a preview frame (or a blank one)."""
        width, height = self.view_size
        if frame is None:
            output = np.zeros((height, width, 3), dtype=np.uint8)
        else:
            output = frame
            height, width = frame.shape[:2]
            self.view_size = (width, height)

        engine = self.engine
        if engine.current_filter == FilterMode.NIGHT_VISION:
            output = tint_preview(output)

        markers = engine.refresh_markers((width, height))
        if markers:
            output = engine.renderer.render(output, markers)
        else:
            output = output.copy()

        if self.show_help:
            self._draw_help(output)
        self._draw_hud(output, len(markers))
        return output

    def _draw_hud(self, output: np.ndarray, marker_count: int) -> None:
        engine = self.engine
        height, width = output.shape[:2]

        status = STATUS_TEXT.get(engine.state)
        if status is not None:
            cv2.putText(output, status, (20, height // 2), cv2.FONT_HERSHEY_SIMPLEX,
                        0.8, self.COLOR_WARN, 2)

        line = f"{engine.current_filter.value}  ZOOM {engine.zoom_level:.1f}x"
        if engine.ar_enabled:
            pose = engine.tracker.current_pose()
            if pose is None:
                line += "  AR: NO FIX"
            else:
                line += f"  AR: HDG {pose.heading:03.0f}  {marker_count} IN VIEW"
        cv2.putText(output, line, (20, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6, self.COLOR_HUD, 2)

        if engine.last_photo is not None and engine.last_capture_error is None:
            saved = f"SAVED {engine.last_photo.saved_as}"
            cv2.putText(output, saved, (20, height - 20), cv2.FONT_HERSHEY_SIMPLEX,
                        0.5, self.COLOR_DIM, 1)
        elif engine.last_capture_error is not None:
            cv2.putText(output, f"CAPTURE FAILED: {engine.last_capture_error}", (20, height - 20),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, self.COLOR_WARN, 1)

        nearest = min(engine.markers, key=lambda m: m.distance_meters, default=None)
        if nearest is not None:
            text = f"NEAREST {nearest.waypoint.id} {format_distance(nearest.distance_meters)}"
            cv2.putText(output, text, (width - 260, 30), cv2.FONT_HERSHEY_SIMPLEX,
                        0.6, self.COLOR_HUD, 2)

    def _draw_help(self, output: np.ndarray) -> None:
        for i, text in enumerate(HELP_LINES):
            cv2.putText(output, text, (20, 70 + i * 24), cv2.FONT_HERSHEY_SIMPLEX,
                        0.55, self.COLOR_DIM, 1)

    def run(self) -> None:
        """Main application loop."""
        engine = self.engine
        window = self.config.window_name

        cv2.namedWindow(window, cv2.WINDOW_NORMAL)
        if self.config.fullscreen:
            cv2.setWindowProperty(window, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
        cv2.setMouseCallback(window, self.handle_mouse)

        engine.handle_view_appeared()
        logger.info("Viewer started, press 'h' for help, 'q' to quit")

        self.running = True
        try:
            while self.running:
                if isinstance(engine.ui, QueueDispatcher):
                    engine.ui.drain()

                frame = engine.session.read_frame()
                if frame is None:
                    time.sleep(0.03)

                cv2.imshow(window, self.compose(frame))

                if not self.handle_key(cv2.waitKey(1)):
                    break

        except KeyboardInterrupt:
            logger.info("Stopping...")

        finally:
            self.cleanup()

    def cleanup(self) -> None:
        """Clean up resources."""
        self.running = False
        self.engine.shutdown()
        cv2.destroyAllWindows()
        logger.info("Cleanup complete")
