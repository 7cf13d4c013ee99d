"""
Pose tracking.

The PoseTracker keeps only the latest location fix and heading reading;
providers push samples into it from their own threads and the projector
reads the combined pose whenever it runs.

Providers:
- SimulatedPoseProvider: fixed location, heading driven by keyboard/mouse
- MavlinkPoseProvider: GPS + attitude from an ArduPilot flight controller
"""

import logging
import math
import threading
import time
from typing import Optional

from pymavlink import mavutil

from .models import GeoPoint, HeadingSample, LocationSample, Pose

logger = logging.getLogger(__name__)


class PoseTracker:
    """
    Latest-value store for location and heading samples.

    Location and heading arrive independently; each update replaces the
    previous value. There is no history.
    """

    def __init__(self, max_age_seconds: Optional[float] = None):
        """
        Args:
            max_age_seconds: Location fixes older than this are treated as
                absent. None disables the check.
        """
        self.max_age_seconds = max_age_seconds
        self._lock = threading.Lock()
        self._location: Optional[LocationSample] = None
        self._heading: Optional[HeadingSample] = None

    def update_location(self, sample: LocationSample) -> None:
        if not (math.isfinite(sample.location.latitude) and math.isfinite(sample.location.longitude)):
            logger.warning("Ignoring non-finite location sample: %s", sample)
            return
        with self._lock:
            self._location = sample

    def update_heading(self, sample: HeadingSample) -> None:
        # Negative true heading means the provider has no valid reading
        if not math.isfinite(sample.true_heading) or sample.true_heading < 0:
            logger.debug("Ignoring invalid heading sample: %s", sample)
            return
        with self._lock:
            self._heading = sample

    def reset(self) -> None:
        """Forget all samples."""
        with self._lock:
            self._location = None
            self._heading = None

    def current_pose(self, now: Optional[float] = None) -> Optional[Pose]:
        """
        Combine the latest location and heading.

        Returns:
            Pose, or None if either sample is missing or the location is stale
        """
        with self._lock:
            location = self._location
            heading = self._heading

        if location is None or heading is None:
            return None

        if self.max_age_seconds is not None:
            now = time.time() if now is None else now
            if now - location.timestamp > self.max_age_seconds:
                return None

        return Pose(
            location=location.location,
            heading=heading.true_heading % 360.0,
            altitude=location.altitude,
            horizontal_accuracy=location.horizontal_accuracy,
            heading_accuracy=heading.heading_accuracy,
            timestamp=max(location.timestamp, heading.timestamp),
        )

    @property
    def has_pose(self) -> bool:
        return self.current_pose() is not None


class SimulatedPoseProvider:
    """
    Simulated location/heading source for running without sensors.

    Keeps a fixed location; heading is changed from mouse movement or keys.
    """

    def __init__(self, tracker: PoseTracker, latitude: float, longitude: float,
                 heading: float = 0.0):
        self.tracker = tracker
        self.location = GeoPoint(latitude, longitude)
        self.heading = heading % 360.0
        self._running = False

    def start(self) -> bool:
        logger.info("Using simulated pose at %.5f, %.5f", self.location.latitude, self.location.longitude)
        self._running = True
        self._publish()
        return True

    def stop(self) -> None:
        self._running = False

    def rotate(self, degrees: float) -> None:
        """Turn the simulated device by a number of degrees."""
        self.heading = (self.heading + degrees) % 360.0
        if self._running:
            self.tracker.update_heading(HeadingSample(true_heading=self.heading, heading_accuracy=0.0))

    def update_from_mouse(self, dx: int, sensitivity: float = 0.2) -> None:
        self.rotate(dx * sensitivity)

    def _publish(self) -> None:
        self.tracker.update_location(LocationSample(location=self.location, horizontal_accuracy=0.0))
        self.tracker.update_heading(HeadingSample(true_heading=self.heading, heading_accuracy=0.0))

    @property
    def is_connected(self) -> bool:
        return self._running


class MavlinkPoseProvider:
    """
    Location and heading from an ArduPilot flight controller via MAVLink.

    Reads GLOBAL_POSITION_INT for position and ATTITUDE for heading on a
    background thread.
    """

    def __init__(self, tracker: PoseTracker, port: str = "COM6", baudrate: int = 115200):
        """
        Args:
            tracker: Pose tracker receiving samples
            port: Serial port (e.g., "COM6" on Windows, "/dev/ttyACM0" on Linux)
            baudrate: Baud rate (typically 115200)
        """
        self.tracker = tracker
        self.port = port
        self.baudrate = baudrate
        self._connection = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._last_update = 0.0

    def connect(self) -> bool:
        """
        Connect to the flight controller.

        Returns:
            True if a heartbeat was received
        """
        try:
            connection_string = f"serial:{self.port}:{self.baudrate}"
            logger.info("Connecting to flight controller: %s", connection_string)
            self._connection = mavutil.mavlink_connection(connection_string)

            heartbeat = self._connection.wait_heartbeat(timeout=10)
            if heartbeat is None:
                logger.error("No heartbeat from %s", connection_string)
                self._connection.close()
                self._connection = None
                return False
            logger.info("Heartbeat received from system %s", self._connection.target_system)

            self._connection.mav.request_data_stream_send(
                self._connection.target_system,
                self._connection.target_component,
                mavutil.mavlink.MAV_DATA_STREAM_ALL,
                10,  # Hz
                1    # Start
            )
            return True

        except Exception as e:
            logger.error("Failed to connect to flight controller: %s", e)
            self._connection = None
            return False

    def start(self) -> bool:
        """
        Start reading in a background thread.

        Returns:
            False if the flight controller could not be reached
        """
        if self._connection is None and not self.connect():
            return False
        self._running = True
        self._thread = threading.Thread(target=self._read_loop, name="mavlink-pose", daemon=True)
        self._thread.start()
        return True

    def stop(self) -> None:
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._connection:
            self._connection.close()
            self._connection = None

    def _read_loop(self) -> None:
        while self._running and self._connection:
            try:
                msg = self._connection.recv_match(
                    type=["GLOBAL_POSITION_INT", "ATTITUDE"],
                    blocking=True,
                    timeout=0.1
                )
                if msg is not None:
                    self.handle_message(msg)
            except Exception as e:
                if self._running:
                    logger.warning("MAVLink read error: %s", e)
                time.sleep(0.1)

    def handle_message(self, msg) -> None:
        """Convert one MAVLink message into a pose sample."""
        now = time.time()
        msg_type = msg.get_type()

        if msg_type == "GLOBAL_POSITION_INT":
            # Autopilot reports 0/0 until the GPS has a fix
            if msg.lat == 0 and msg.lon == 0:
                logger.debug("Ignoring GLOBAL_POSITION_INT without GPS fix")
                self._last_update = now
                return
            self.tracker.update_location(LocationSample(
                location=GeoPoint(msg.lat / 1e7, msg.lon / 1e7),
                altitude=msg.alt / 1000.0,
                timestamp=now,
            ))
            self._last_update = now
        elif msg_type == "ATTITUDE":
            yaw = math.degrees(msg.yaw)
            # Convert yaw from -180..180 to 0..360 (compass heading)
            if yaw < 0:
                yaw += 360
            self.tracker.update_heading(HeadingSample(true_heading=yaw, timestamp=now))
            self._last_update = now

    @property
    def is_connected(self) -> bool:
        """Check if receiving data."""
        return (time.time() - self._last_update) < 1.0
