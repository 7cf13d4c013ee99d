"""Tests for the engine context."""

import pytest

from waypoint_ar.camera import OpenCVCameraBackend, SimulatedCameraBackend
from waypoint_ar.config import Config
from waypoint_ar.dispatch import InlineDispatcher, QueueDispatcher
from waypoint_ar.engine import (
    ARCameraEngine,
    build_camera_backend,
    build_pose_provider,
    load_waypoint_store,
)
from waypoint_ar.errors import CaptureFailed, DeviceUnavailable
from waypoint_ar.models import CameraSessionState, FilterMode
from waypoint_ar.pose import MavlinkPoseProvider, PoseTracker, SimulatedPoseProvider
from waypoint_ar.storage import DirectoryPhotoStorage


@pytest.fixture
def engine(engine_factory):
    return engine_factory()


def test_initial_read_models(engine):
    assert engine.state == CameraSessionState.UNINITIALIZED
    assert engine.current_filter == FilterMode.NORMAL
    assert engine.zoom_level == 1.0
    assert engine.ar_enabled is False
    assert engine.markers == []
    assert engine.last_error is None


def test_request_permission(engine):
    engine.request_permission()
    assert engine.state == CameraSessionState.RUNNING
    assert engine.camera_available


def test_state_published_through_ui_dispatcher(engine_factory):
    ui = QueueDispatcher()
    engine = engine_factory(ui=ui)

    engine.request_permission()
    assert engine.session.state == CameraSessionState.RUNNING
    assert engine.state == CameraSessionState.UNINITIALIZED

    ui.drain()
    assert engine.state == CameraSessionState.RUNNING


def test_unavailable_device_reported(make_backend, tmp_path):
    engine = ARCameraEngine(
        Config(), backend=make_backend(None),
        storage=DirectoryPhotoStorage(tmp_path), io=InlineDispatcher(), ui=InlineDispatcher(),
    )
    engine.handle_view_appeared()
    assert engine.state == CameraSessionState.UNAVAILABLE
    assert isinstance(engine.last_error, DeviceUnavailable)


def test_cycle_filter(engine):
    assert engine.cycle_filter() == FilterMode.NIGHT_VISION
    assert engine.current_filter == FilterMode.NIGHT_VISION
    assert engine.cycle_filter() == FilterMode.NORMAL


def test_toggle_ar_controls_pose_and_markers(engine):
    engine.refresh_markers((1000, 1000))
    assert engine.markers == []

    assert engine.toggle_ar() is True
    assert engine.pose_provider.is_connected
    markers = engine.refresh_markers((1000, 1000))
    assert len(markers) == 1
    assert markers[0].x == pytest.approx(500.0)
    assert markers[0].y == pytest.approx(476, abs=5)

    assert engine.toggle_ar() is False
    assert not engine.pose_provider.is_connected
    assert engine.tracker.current_pose() is None
    assert engine.markers == []
    assert engine.refresh_markers((1000, 1000)) == []


def test_markers_empty_without_pose(engine):
    engine.toggle_ar()
    engine.tracker.reset()
    assert engine.refresh_markers((800, 600)) == []


def test_zoom_commands(engine):
    assert not engine.update_zoom(2.0)
    engine.request_permission()

    assert engine.update_zoom(3.0)
    assert engine.zoom_level == pytest.approx(3.0)
    engine.finalize_zoom(2.0)
    assert engine.zoom_level == pytest.approx(2.0)
    engine.reset_zoom()
    assert engine.zoom_level == 1.0


def test_focus_command(engine):
    engine.request_permission()
    assert engine.focus_at((100, 100), (200, 200))
    assert engine.session.device.focus_point == (0.5, 0.5)


def test_capture_photo_with_overlay(engine, tmp_path):
    engine.request_permission()
    engine.toggle_ar()
    engine.cycle_filter()

    future = engine.capture_photo()
    photo = future.result(timeout=0)

    assert photo.saved_as is not None
    assert engine.last_photo is photo
    assert engine.last_capture_error is None
    assert len(list((tmp_path / "photos").iterdir())) == 1


def test_capture_snapshot_only_with_ar_and_pose(engine):
    assert engine.snapshot() is None
    engine.toggle_ar()
    snapshot = engine.snapshot()
    assert snapshot is not None
    assert snapshot.pose.heading == 0.0
    assert [w.id for w in snapshot.waypoints] == ["N"]


def test_capture_rejected_returns_failed_future(engine):
    future = engine.capture_photo()
    assert future.done()
    with pytest.raises(CaptureFailed):
        future.result(timeout=0)
    assert isinstance(engine.last_capture_error, CaptureFailed)


def test_concurrent_capture_rejected(engine_factory, make_device):
    device = make_device()
    engine = engine_factory(device=device)
    engine.request_permission()

    first = engine.capture_photo()
    second = engine.capture_photo()
    assert not first.done()
    with pytest.raises(CaptureFailed):
        second.result(timeout=0)

    device.complete_still()
    assert first.result(timeout=0).saved_as is not None


def test_shutdown(engine):
    engine.request_permission()
    engine.toggle_ar()
    engine.shutdown()
    assert not engine.pose_provider.is_connected
    assert engine.session.device is None


def test_builders(tmp_path):
    cfg = Config()
    cfg.camera.backend = "simulated"
    assert isinstance(build_camera_backend(cfg.camera), SimulatedCameraBackend)
    cfg.camera.backend = "opencv"
    assert isinstance(build_camera_backend(cfg.camera), OpenCVCameraBackend)

    tracker = PoseTracker()
    assert isinstance(build_pose_provider(cfg.pose, tracker), SimulatedPoseProvider)
    cfg.pose.source = "mavlink"
    assert isinstance(build_pose_provider(cfg.pose, tracker), MavlinkPoseProvider)

    assert len(load_waypoint_store(cfg)) == 4


def test_builders_reject_unknown_names():
    cfg = Config()
    cfg.camera.backend = "webcam9000"
    with pytest.raises(ValueError):
        build_camera_backend(cfg.camera)
    cfg.pose.source = "astrolabe"
    with pytest.raises(ValueError):
        build_pose_provider(cfg.pose, PoseTracker())


def test_toggle_ar_stays_off_without_pose_source(make_backend, make_device, tmp_path, monkeypatch):
    provider = MavlinkPoseProvider(PoseTracker())
    monkeypatch.setattr(provider, "connect", lambda: False)
    engine = ARCameraEngine(
        Config(), backend=make_backend(make_device()), pose_provider=provider,
        storage=DirectoryPhotoStorage(tmp_path), io=InlineDispatcher(), ui=InlineDispatcher(),
    )

    assert engine.toggle_ar() is False
    assert not engine.ar_enabled
    assert engine.snapshot() is None
    assert engine.refresh_markers((800, 600)) == []
