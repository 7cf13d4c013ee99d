"""
Waypoint store.

The engine only ever reads waypoints through ``snapshot()``; editing happens
in the map feature that owns the store.
"""

import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import yaml

from .models import GeoPoint, Waypoint, WaypointType

logger = logging.getLogger(__name__)


def sample_waypoints() -> List[Waypoint]:
    """Demo waypoints around San Francisco."""
    return [
        Waypoint("A", "Primary Target", GeoPoint(37.7749, -122.4194), WaypointType.OBJECTIVE),
        Waypoint("B", "Checkpoint Alpha", GeoPoint(37.7849, -122.4094), WaypointType.CHECKPOINT),
        Waypoint("C", "Intel Point", GeoPoint(37.7649, -122.4294), WaypointType.INTEL),
        Waypoint("E", "Extraction Zone", GeoPoint(37.7949, -122.3994), WaypointType.EXTRACTION),
    ]


class InMemoryWaypointStore:
    """Thread-safe ordered collection of waypoints keyed by id."""

    def __init__(self, waypoints: Optional[Iterable[Waypoint]] = None):
        self._lock = threading.Lock()
        self._waypoints: List[Waypoint] = []
        for waypoint in waypoints or []:
            self.add(waypoint)

    def snapshot(self) -> Tuple[Waypoint, ...]:
        """Immutable copy of the current waypoints, in insertion order."""
        with self._lock:
            return tuple(self._waypoints)

    def get(self, waypoint_id: str) -> Optional[Waypoint]:
        with self._lock:
            for waypoint in self._waypoints:
                if waypoint.id == waypoint_id:
                    return waypoint
        return None

    def add(self, waypoint: Waypoint) -> None:
        with self._lock:
            if any(w.id == waypoint.id for w in self._waypoints):
                raise ValueError(f"Duplicate waypoint id: {waypoint.id}")
            self._waypoints.append(waypoint)

    def update(self, waypoint_id: str, name: Optional[str] = None,
               waypoint_type: Optional[WaypointType] = None) -> Waypoint:
        """Replace name and/or type of an existing waypoint, keeping its position."""
        with self._lock:
            for i, waypoint in enumerate(self._waypoints):
                if waypoint.id == waypoint_id:
                    updated = Waypoint(
                        id=waypoint.id,
                        name=waypoint.name if name is None else name,
                        location=waypoint.location,
                        type=waypoint.type if waypoint_type is None else waypoint_type,
                    )
                    self._waypoints[i] = updated
                    return updated
        raise KeyError(waypoint_id)

    def remove(self, waypoint_id: str) -> None:
        with self._lock:
            before = len(self._waypoints)
            self._waypoints = [w for w in self._waypoints if w.id != waypoint_id]
            if len(self._waypoints) == before:
                raise KeyError(waypoint_id)

    def clear(self) -> None:
        with self._lock:
            self._waypoints = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._waypoints)

    @classmethod
    def from_yaml(cls, path: Path) -> "InMemoryWaypointStore":
        """
        Load waypoints from a YAML list.

        Each entry needs ``id``, ``name``, ``lat``, ``lon`` and optionally
        ``type`` (objective, checkpoint, intel, extraction).
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or []

        if isinstance(data, dict):
            data = data.get("waypoints", [])

        waypoints = []
        for entry in data:
            waypoints.append(Waypoint(
                id=str(entry["id"]),
                name=str(entry.get("name", entry["id"])),
                location=GeoPoint(float(entry["lat"]), float(entry["lon"])),
                type=WaypointType(entry.get("type", "checkpoint")),
            ))

        logger.info("Loaded %d waypoints from %s", len(waypoints), path)
        return cls(waypoints)
