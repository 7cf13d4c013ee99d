"""
AR projector: pose + waypoints -> markers on a target surface.

The same projection backs the live viewfinder overlay and the overlay baked
into captured photos, so it must stay a pure function of its inputs.
"""

from typing import Iterable, List, Optional, Tuple

from . import geo
from .config import ProjectionConfig
from .models import Pose, ProjectedMarker, Waypoint


class ARProjector:
    """Projects waypoints into a viewfinder-shaped surface."""

    def __init__(self, config: Optional[ProjectionConfig] = None):
        self.config = config or ProjectionConfig()

    def project(self,
                pose: Optional[Pose],
                waypoints: Iterable[Waypoint],
                surface_size: Tuple[float, float]) -> List[ProjectedMarker]:
        """
        Compute visible markers.

        Args:
            pose: Current pose, or None when no fix/heading is available
            waypoints: Waypoints to project, in display order
            surface_size: (width, height) of the target surface in pixels

        Returns:
            Markers for waypoints inside the field of view, in input order.
            Empty if pose is None.
        """
        if pose is None:
            return []

        width, height = surface_size
        cfg = self.config
        markers = []

        for waypoint in waypoints:
            target_bearing = geo.bearing(pose.location, waypoint.location)
            angle = geo.relative_angle(target_bearing, pose.heading)
            if not geo.is_visible(angle, cfg.half_fov_deg):
                continue

            distance = geo.distance_meters(pose.location, waypoint.location)
            markers.append(ProjectedMarker(
                waypoint=waypoint,
                x=geo.horizontal_position(angle, cfg.half_fov_deg, width),
                y=geo.vertical_position(distance, cfg.max_distance_m, height,
                                        cfg.near_factor, cfg.distance_span),
                distance_meters=distance,
                relative_angle=angle,
            ))

        return markers
