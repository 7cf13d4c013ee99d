"""
Command-line interface for the AR waypoint camera.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple
import logging

import click
from tqdm import tqdm

from . import __version__
from .camera import AuthorizationStatus
from .config import Config
from .errors import CaptureError
from .geo import format_distance
from .models import ARSnapshot, CaptureRequest, FilterMode, GeoPoint, Pose, RawCapture
from .storage import AccessScope, DirectoryPhotoStorage


# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _load_config(config: Optional[Path], verbose: bool) -> Config:
    try:
        cfg = Config.from_yaml(config) if config else Config()
    except (TypeError, ValueError) as e:
        click.echo(click.style(f"✗ Invalid configuration: {e}", fg="red"))
        sys.exit(1)
    cfg.verbose = cfg.verbose or verbose
    if cfg.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    return cfg


def _apply_pose_overrides(cfg: Config, lat: Optional[float], lon: Optional[float],
                          heading: Optional[float]) -> None:
    if lat is not None:
        cfg.pose.latitude = lat
    if lon is not None:
        cfg.pose.longitude = lon
    if heading is not None:
        cfg.pose.heading = heading


def _fixed_pose(cfg: Config) -> Pose:
    return Pose(
        location=GeoPoint(cfg.pose.latitude, cfg.pose.longitude),
        heading=cfg.pose.heading % 360.0,
    )


config_option = click.option(
    "-c", "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration YAML file"
)
waypoints_option = click.option(
    "-w", "--waypoints",
    type=click.Path(exists=True, path_type=Path),
    help="Waypoints YAML file (default: demo waypoints)"
)
verbose_option = click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output"
)


@click.group()
@click.version_option(version=__version__)
def main():
    """Waypoint AR - camera viewfinder with geographic waypoint overlay."""
    pass


@main.command()
@config_option
@waypoints_option
@click.option(
    "--camera",
    type=click.Choice(["opencv", "simulated"]),
    help="Camera backend"
)
@click.option("--camera-index", type=int, help="Camera index")
@click.option(
    "--pose",
    type=click.Choice(["simulated", "mavlink"]),
    help="Location/heading source"
)
@click.option("--lat", type=float, help="Simulated latitude (degrees North)")
@click.option("--lon", type=float, help="Simulated longitude (degrees East, negative for West)")
@click.option("--heading", type=float, help="Simulated start heading (degrees)")
@click.option("--port", type=str, help="Flight controller serial port")
@click.option("--baud", type=int, help="Serial baud rate")
@click.option(
    "-o", "--output-dir",
    type=click.Path(path_type=Path),
    help="Directory for captured photos"
)
@click.option("--fullscreen", is_flag=True, help="Start in fullscreen mode")
@verbose_option
def run(
    config: Optional[Path],
    waypoints: Optional[Path],
    camera: Optional[str],
    camera_index: Optional[int],
    pose: Optional[str],
    lat: Optional[float],
    lon: Optional[float],
    heading: Optional[float],
    port: Optional[str],
    baud: Optional[int],
    output_dir: Optional[Path],
    fullscreen: bool,
    verbose: bool,
):
    """
    Open the live viewfinder.

    Keys: SPACE capture, F filter, A AR overlay, +/- zoom, H help, Q quit.
    """
    from .engine import ARCameraEngine
    from .viewer import LiveViewer

    cfg = _load_config(config, verbose)

    # Apply command-line overrides
    if waypoints:
        cfg.waypoints_file = waypoints
    if camera:
        cfg.camera.backend = camera
    if camera_index is not None:
        cfg.camera.camera_index = camera_index
    if pose:
        cfg.pose.source = pose
    _apply_pose_overrides(cfg, lat, lon, heading)
    if port:
        cfg.pose.mavlink_port = port
    if baud:
        cfg.pose.mavlink_baud = baud
    if output_dir:
        cfg.capture.output_dir = output_dir
    cfg.viewer.fullscreen = cfg.viewer.fullscreen or fullscreen

    try:
        engine = ARCameraEngine(cfg)
    except (OSError, ValueError) as e:
        click.echo(click.style(f"✗ Error: {e}", fg="red"))
        sys.exit(1)

    click.echo(f"Camera: {cfg.camera.backend}, pose: {cfg.pose.source}, "
               f"{len(engine.waypoints)} waypoints")
    LiveViewer(engine).run()


@main.command()
@config_option
@waypoints_option
@click.option("--lat", type=float, help="Observer latitude (degrees North)")
@click.option("--lon", type=float, help="Observer longitude (degrees East, negative for West)")
@click.option("--heading", type=float, help="True heading (degrees)")
@click.option("--width", type=int, default=1280, help="Surface width in pixels")
@click.option("--height", type=int, default=720, help="Surface height in pixels")
def project(
    config: Optional[Path],
    waypoints: Optional[Path],
    lat: Optional[float],
    lon: Optional[float],
    heading: Optional[float],
    width: int,
    height: int,
):
    """
    Print where each waypoint lands on a surface for a fixed pose.
    """
    from .engine import load_waypoint_store
    from .projector import ARProjector

    cfg = _load_config(config, False)
    if waypoints:
        cfg.waypoints_file = waypoints
    _apply_pose_overrides(cfg, lat, lon, heading)

    store = load_waypoint_store(cfg)
    pose = _fixed_pose(cfg)
    markers = ARProjector(cfg.projection).project(pose, store.snapshot(), (width, height))

    click.echo(f"Pose: {pose.location.latitude:.5f}, {pose.location.longitude:.5f} "
               f"heading {pose.heading:.1f}°")
    click.echo(f"Surface: {width}x{height}")
    click.echo(f"Visible: {len(markers)} of {len(store)} waypoints")
    for marker in markers:
        click.echo(f"  {marker.waypoint.id:>4}  {marker.waypoint.name:<24} "
                   f"x={marker.x:7.1f} y={marker.y:7.1f}  "
                   f"angle={marker.relative_angle:+6.1f}°  {format_distance(marker.distance_meters)}")


@main.command()
@click.argument("images", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@config_option
@waypoints_option
@click.option("--lat", type=float, help="Observer latitude at capture time")
@click.option("--lon", type=float, help="Observer longitude at capture time")
@click.option("--heading", type=float, help="True heading at capture time")
@click.option(
    "--filter", "filter_name",
    type=click.Choice(["normal", "night-vision"]),
    default="normal",
    help="Color filter to apply"
)
@click.option("--no-overlay", is_flag=True, help="Do not bake the waypoint overlay")
@click.option(
    "-o", "--output-dir",
    type=click.Path(path_type=Path),
    help="Output directory (default: capture.output_dir)"
)
@verbose_option
def bake(
    images: Tuple[Path, ...],
    config: Optional[Path],
    waypoints: Optional[Path],
    lat: Optional[float],
    lon: Optional[float],
    heading: Optional[float],
    filter_name: str,
    no_overlay: bool,
    output_dir: Optional[Path],
    verbose: bool,
):
    """
    Run capture post-processing over existing images.

    IMAGES: Image files to process (orientation, filter, overlay, JPEG)
    """
    from .capture import PhotoProcessor
    from .engine import load_waypoint_store
    from .projector import ARProjector

    cfg = _load_config(config, verbose)
    if waypoints:
        cfg.waypoints_file = waypoints
    if output_dir:
        cfg.capture.output_dir = output_dir
    _apply_pose_overrides(cfg, lat, lon, heading)

    snapshot = None
    if not no_overlay:
        store = load_waypoint_store(cfg)
        snapshot = ARSnapshot(pose=_fixed_pose(cfg), waypoints=store.snapshot())
    request = CaptureRequest(
        filter_mode=FilterMode.NIGHT_VISION if filter_name == "night-vision" else FilterMode.NORMAL,
        snapshot=snapshot,
    )

    processor = PhotoProcessor(ARProjector(cfg.projection), capture_config=cfg.capture,
                               night_vision_config=cfg.night_vision)
    storage = DirectoryPhotoStorage(cfg.capture.output_dir, cfg.capture.filename_prefix)
    status = storage.request_authorization(AccessScope.ADD_ONLY)
    if status not in (AuthorizationStatus.AUTHORIZED, AuthorizationStatus.LIMITED):
        click.echo(click.style(f"✗ Cannot write to {cfg.capture.output_dir}: {status.value}", fg="red"))
        sys.exit(1)

    failures = 0
    for image_path in tqdm(images, desc="Baking", disable=len(images) < 2):
        try:
            raw = RawCapture(data=image_path.read_bytes())
            photo = processor.process(raw, request)
            saved = storage.save(photo.encoded)
        except (OSError, CaptureError) as e:
            failures += 1
            tqdm.write(click.style(f"✗ {image_path}: {e}", fg="red"))
            continue

        note = f" (fallback: {', '.join(photo.fallbacks)})" if photo.fallbacks else ""
        tqdm.write(f"{image_path} -> {saved}{note}")

    if failures:
        click.echo(click.style(f"✗ {failures} of {len(images)} images failed", fg="red"))
        sys.exit(1)
    click.echo(click.style(f"✓ Baked {len(images)} image(s) into {cfg.capture.output_dir}", fg="green"))


@main.command()
@click.argument("output_path", type=click.Path(path_type=Path))
def init_config(output_path: Path):
    """
    Create a default configuration file.
    """
    cfg = Config()
    cfg.to_yaml(output_path)
    click.echo(f"Created configuration file: {output_path}")


if __name__ == "__main__":
    main()
