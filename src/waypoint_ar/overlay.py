"""
Waypoint marker rendering.

Draws projected markers as a circular badge with the waypoint id and a
name/distance label beneath it. Used for the live viewfinder (scale 1) and
for baking into full-resolution stills (larger scale).
"""

from typing import Iterable, List, Tuple

import cv2
import numpy as np

from .geo import format_distance
from .models import ProjectedMarker, WaypointType


class MarkerRenderer:
    """Renders projected waypoint markers onto BGR frames."""

    # Colors (BGR format for OpenCV)
    TYPE_COLORS = {
        WaypointType.OBJECTIVE: (48, 59, 255),     # Red
        WaypointType.CHECKPOINT: (0, 149, 255),    # Orange
        WaypointType.INTEL: (255, 122, 0),         # Blue
        WaypointType.EXTRACTION: (89, 199, 52),    # Green
    }
    COLOR_TEXT = (255, 255, 255)
    COLOR_LABEL_BG = (0, 0, 0)

    # Screen-sized geometry in pixels at scale 1
    BADGE_RADIUS = 20
    BADGE_STROKE = 2
    ID_FONT_PX = 14
    LABEL_FONT_PX = 12
    LABEL_GAP = 8
    LABEL_PAD_X = 8
    LABEL_PAD_Y = 4
    LINE_SPACING = 4

    BADGE_ALPHA = 0.3
    LABEL_BG_ALPHA = 0.7

    FONT = cv2.FONT_HERSHEY_SIMPLEX

    def color_for(self, waypoint_type: WaypointType) -> Tuple[int, int, int]:
        return self.TYPE_COLORS[waypoint_type]

    def render(self, frame: np.ndarray, markers: Iterable[ProjectedMarker],
               scale: float = 1.0) -> np.ndarray:
        """
        Draw markers onto a copy of the frame.

        Args:
            frame: BGR image
            markers: Projected markers in the frame's pixel space
            scale: Size multiplier for badges and text

        Returns:
            New frame with markers drawn
        """
        output = frame.copy()
        markers = list(markers)
        if not markers:
            return output

        layouts = [self._layout(m, scale) for m in markers]

        # Semi-transparent badge fills
        fills = output.copy()
        for marker, layout in zip(markers, layouts):
            cv2.circle(fills, layout["center"], layout["radius"],
                       self.color_for(marker.waypoint.type), -1, cv2.LINE_AA)
        cv2.addWeighted(fills, self.BADGE_ALPHA, output, 1 - self.BADGE_ALPHA, 0, output)

        # Label backgrounds
        backgrounds = output.copy()
        for layout in layouts:
            (x1, y1), (x2, y2) = layout["label_rect"]
            cv2.rectangle(backgrounds, (x1, y1), (x2, y2), self.COLOR_LABEL_BG, -1)
        cv2.addWeighted(backgrounds, self.LABEL_BG_ALPHA, output, 1 - self.LABEL_BG_ALPHA, 0, output)

        # Opaque strokes and text on top
        for marker, layout in zip(markers, layouts):
            color = self.color_for(marker.waypoint.type)
            cv2.circle(output, layout["center"], layout["radius"], color,
                       layout["stroke"], cv2.LINE_AA)
            text, origin, font_scale, thickness = layout["id_text"]
            cv2.putText(output, text, origin, self.FONT, font_scale, self.COLOR_TEXT,
                        thickness, cv2.LINE_AA)
            for text, origin, font_scale, thickness in layout["label_lines"]:
                cv2.putText(output, text, origin, self.FONT, font_scale, self.COLOR_TEXT,
                            thickness, cv2.LINE_AA)

        return output

    def _font_scale(self, pixel_height: float, thickness: int) -> float:
        return cv2.getFontScaleFromHeight(self.FONT, max(1, int(round(pixel_height))), thickness)

    def _layout(self, marker: ProjectedMarker, scale: float) -> dict:
        """Pixel geometry for one marker."""
        cx, cy = int(round(marker.x)), int(round(marker.y))
        radius = max(1, int(round(self.BADGE_RADIUS * scale)))
        stroke = max(1, int(round(self.BADGE_STROKE * scale)))
        thickness = max(1, int(round(2 * scale)))

        # Waypoint id centered in the badge
        id_scale = self._font_scale(self.ID_FONT_PX * scale, thickness)
        (id_w, id_h), _ = cv2.getTextSize(marker.waypoint.id, self.FONT, id_scale, thickness)
        id_origin = (cx - id_w // 2, cy + id_h // 2)

        # Name and distance below the badge
        label_scale = self._font_scale(self.LABEL_FONT_PX * scale, thickness)
        lines = [marker.waypoint.name, format_distance(marker.distance_meters)]
        sizes = [cv2.getTextSize(line, self.FONT, label_scale, thickness)[0] for line in lines]
        spacing = int(round(self.LINE_SPACING * scale))
        label_w = max(w for w, _ in sizes)
        label_h = sum(h for _, h in sizes) + spacing * (len(lines) - 1)
        top = cy + radius + int(round(self.LABEL_GAP * scale))

        label_lines: List[tuple] = []
        y = top
        for line, (w, h) in zip(lines, sizes):
            y += h
            label_lines.append((line, (cx - w // 2, y), label_scale, thickness))
            y += spacing

        pad_x = int(round(self.LABEL_PAD_X * scale))
        pad_y = int(round(self.LABEL_PAD_Y * scale))
        label_rect = (
            (cx - label_w // 2 - pad_x, top - pad_y),
            (cx + (label_w + 1) // 2 + pad_x, top + label_h + pad_y),
        )

        return {
            "center": (cx, cy),
            "radius": radius,
            "stroke": stroke,
            "id_text": (marker.waypoint.id, id_origin, id_scale, thickness),
            "label_lines": label_lines,
            "label_rect": label_rect,
        }
