"""
Configuration management for the AR waypoint camera engine.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional
import yaml


@dataclass
class ProjectionConfig:
    """Waypoint-to-surface projection tuning."""

    half_fov_deg: float = 60.0
    max_distance_m: float = 5000.0
    # Vertical placement heuristic: near targets at 30% of height, far at 70%
    near_factor: float = 0.3
    distance_span: float = 0.4

    def __post_init__(self):
        if not 0.0 < self.half_fov_deg <= 180.0:
            raise ValueError(f"half_fov_deg must be in (0, 180], got {self.half_fov_deg}")
        if self.max_distance_m <= 0.0:
            raise ValueError(f"max_distance_m must be positive, got {self.max_distance_m}")


@dataclass
class CameraConfig:
    """Camera hardware configuration."""

    backend: Literal["opencv", "simulated"] = "opencv"
    camera_index: int = 0
    # Candidate still resolutions probed when selecting the best format
    probe_resolutions: list = field(default_factory=lambda: [
        [4032, 3024], [3840, 2160], [2592, 1944], [1920, 1080], [1280, 720], [640, 480],
    ])
    preview_width: int = 1280
    preview_height: int = 720
    max_zoom_factor: float = 8.0      # Hardware zoom limit reported for OpenCV devices
    stall_timeout_s: float = 1.0      # Force restart if not running this long after authorization
    max_recovery_attempts: int = 1


@dataclass
class ZoomConfig:
    """Pinch-zoom limits."""

    min_zoom: float = 1.0
    max_zoom: float = 8.0
    key_step: float = 1.25


@dataclass
class NightVisionConfig:
    """Night-vision color transform applied at capture time."""

    # Rows produce output R, G, B from input (r, g, b)
    color_matrix: list = field(default_factory=lambda: [
        [0.3, 0.0, 0.0],
        [0.6, 1.2, 0.0],
        [0.1, 0.0, 0.3],
    ])
    brightness: float = 0.3
    contrast: float = 1.3
    saturation: float = 1.2


@dataclass
class CaptureConfig:
    """Still capture and post-processing configuration."""

    jpeg_quality: int = 95
    # Marker size multiplier relative to screen-sized markers
    marker_scale: float = 3.0
    output_dir: Path = field(default_factory=lambda: Path("captures"))
    filename_prefix: str = "capture"


@dataclass
class PoseConfig:
    """Location/heading provider configuration."""

    source: Literal["simulated", "mavlink"] = "simulated"
    # Simulated provider start pose
    latitude: float = 37.7749
    longitude: float = -122.4194
    heading: float = 0.0
    # MAVLink provider
    mavlink_port: str = "COM6"
    mavlink_baud: int = 115200
    # Location fixes older than this are ignored (None disables the check)
    max_age_seconds: Optional[float] = None


@dataclass
class ViewerConfig:
    """Live viewer window settings."""

    window_name: str = "Waypoint AR"
    fullscreen: bool = False
    heading_sensitivity: float = 0.2


@dataclass
class Config:
    """Main configuration container."""

    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    zoom: ZoomConfig = field(default_factory=ZoomConfig)
    night_vision: NightVisionConfig = field(default_factory=NightVisionConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    pose: PoseConfig = field(default_factory=PoseConfig)
    viewer: ViewerConfig = field(default_factory=ViewerConfig)

    waypoints_file: Optional[Path] = None
    verbose: bool = False

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "projection" in data:
            config.projection = ProjectionConfig(**data["projection"])
        if "camera" in data:
            config.camera = CameraConfig(**data["camera"])
        if "zoom" in data:
            config.zoom = ZoomConfig(**data["zoom"])
        if "night_vision" in data:
            config.night_vision = NightVisionConfig(**data["night_vision"])
        if "capture" in data:
            cap_data = dict(data["capture"])
            if "output_dir" in cap_data:
                cap_data["output_dir"] = Path(cap_data["output_dir"])
            config.capture = CaptureConfig(**cap_data)
        if "pose" in data:
            config.pose = PoseConfig(**data["pose"])
        if "viewer" in data:
            config.viewer = ViewerConfig(**data["viewer"])

        if data.get("waypoints_file"):
            config.waypoints_file = Path(data["waypoints_file"])
        config.verbose = data.get("verbose", False)

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        import dataclasses

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return {f.name: convert(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
            elif isinstance(obj, Path):
                return str(obj)
            elif isinstance(obj, (list, tuple)):
                return [convert(v) for v in obj]
            return obj

        data = convert(self)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
