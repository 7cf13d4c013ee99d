"""Tests for the camera session state machine."""

import pytest

from waypoint_ar.camera import AuthorizationStatus
from waypoint_ar.config import CameraConfig, ZoomConfig
from waypoint_ar.dispatch import InlineDispatcher, QueueDispatcher
from waypoint_ar.errors import (
    CaptureFailed,
    DeviceUnavailable,
    PermissionDenied,
    SessionConfigurationFailed,
    SessionInterrupted,
    SessionRuntimeError,
)
from waypoint_ar.models import CameraSessionState as State
from waypoint_ar.session import CameraSessionController


# ----------------------------------------------------------------------
# Permission and configuration


def test_request_permission_runs_session(session, recorder, device):
    session.request_permission()

    assert recorder.states == [State.REQUESTING_PERMISSION, State.CONFIGURING, State.RUNNING]
    assert session.state == State.RUNNING
    assert session.is_available
    assert device.bound and device.running
    assert device.selected_format == (1920, 1080)
    assert session.last_error is None


def test_undetermined_permission_prompts(make_backend, device):
    backend = make_backend(device, status=AuthorizationStatus.NOT_DETERMINED)
    session = CameraSessionController(backend, io=InlineDispatcher())
    session.request_permission()
    assert backend.access_requests == 1
    assert session.state == State.RUNNING


def test_permission_denied(make_backend, device, make_recorder):
    backend = make_backend(device, status=AuthorizationStatus.NOT_DETERMINED, grant=False)
    session = CameraSessionController(backend, io=InlineDispatcher())
    recorder = make_recorder()
    session.events.subscribe(recorder)

    session.request_permission()

    assert session.state == State.DENIED
    assert isinstance(session.last_error, PermissionDenied)
    assert recorder.events[-1].error is session.last_error
    assert device.bind_count == 0


@pytest.mark.parametrize("status", [AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED])
def test_denied_or_restricted_does_not_prompt(make_backend, device, status):
    backend = make_backend(device, status=status)
    session = CameraSessionController(backend, io=InlineDispatcher())
    session.request_permission()
    assert backend.access_requests == 0
    assert session.state == State.DENIED


def test_view_reentry_after_denial_asks_again(make_backend, device):
    backend = make_backend(device, status=AuthorizationStatus.NOT_DETERMINED, grant=False)
    session = CameraSessionController(backend, io=InlineDispatcher(), ui=InlineDispatcher())
    session.request_permission()
    assert session.state == State.DENIED

    backend.status = AuthorizationStatus.NOT_DETERMINED
    backend.grant = True
    session.handle_view_appeared()

    assert backend.access_requests == 2
    assert session.state == State.RUNNING


def test_no_device_is_unavailable(make_backend, make_recorder):
    session = CameraSessionController(make_backend(None), io=InlineDispatcher())
    session.request_permission()

    assert session.state == State.UNAVAILABLE
    assert isinstance(session.last_error, DeviceUnavailable)


def test_configuration_failure_retried_once(session, recorder, device):
    device.fail_bind = 1
    session.request_permission()

    assert recorder.states == [
        State.REQUESTING_PERMISSION,
        State.CONFIGURING,
        State.FAILED,
        State.CONFIGURING,
        State.RUNNING,
    ]
    assert device.bind_count == 2
    assert session.last_error is None


def test_repeated_configuration_failure_surfaces(session, recorder, device):
    device.fail_start = 10
    session.request_permission()

    assert session.state == State.FAILED
    assert isinstance(session.last_error, SessionConfigurationFailed)
    assert device.start_count == 2
    # Bindings torn down after every failed attempt
    assert device.unbind_count >= 2
    assert not device.bound


def test_duplicate_permission_request_ignored(running_session, recorder, device):
    running_session.request_permission()
    assert recorder.states == []
    assert device.bind_count == 1


# ----------------------------------------------------------------------
# Interruptions and runtime errors


def test_interruption_and_resume(running_session, recorder, device):
    device.interrupt()

    assert running_session.state == State.INTERRUPTED
    assert not running_session.is_available
    assert isinstance(running_session.last_error, SessionInterrupted)

    device.end_interruption()

    assert running_session.state == State.RUNNING
    assert recorder.states == [State.INTERRUPTED, State.RUNNING]
    # Resumed without a full reconfiguration
    assert device.bind_count == 1
    assert device.start_count == 2


def test_resume_failure_recovers_through_failed(running_session, recorder, device):
    device.interrupt()
    device.fail_start = 1
    device.end_interruption()

    assert recorder.states == [State.INTERRUPTED, State.FAILED, State.CONFIGURING, State.RUNNING]
    assert running_session.state == State.RUNNING


def test_runtime_error_while_running_reconfigures(running_session, recorder, device):
    device.runtime_error()

    assert recorder.states == [State.FAILED, State.CONFIGURING, State.RUNNING]
    assert isinstance(recorder.events[0].error, SessionRuntimeError)
    assert device.stop_count == 1
    assert device.unbind_count >= 1
    assert device.bind_count == 2
    assert running_session.state == State.RUNNING


def test_runtime_error_ends_failed_when_reconfigure_fails(running_session, recorder, device):
    device.fail_bind = 10
    device.runtime_error()

    assert recorder.states == [State.FAILED, State.CONFIGURING, State.FAILED]
    assert running_session.state == State.FAILED
    assert State.INTERRUPTED not in recorder.states


def test_runtime_error_while_interrupted(running_session, recorder, device):
    device.interrupt()
    device.runtime_error()

    assert recorder.states == [State.INTERRUPTED, State.FAILED, State.CONFIGURING, State.RUNNING]


def test_each_runtime_error_gets_a_fresh_retry(running_session, device):
    device.runtime_error()
    device.runtime_error()
    assert running_session.state == State.RUNNING
    assert device.bind_count == 3


def test_external_signals(running_session, recorder):
    running_session.notify_interruption_began("phone call")
    assert running_session.state == State.INTERRUPTED
    assert running_session.last_error.details == {"reason": "phone call"}

    running_session.notify_interruption_ended()
    assert running_session.state == State.RUNNING

    running_session.notify_runtime_error(RuntimeError("boom"))
    assert recorder.states[-3:] == [State.FAILED, State.CONFIGURING, State.RUNNING]


def test_interruption_ignored_when_not_running(session, recorder):
    session.notify_interruption_began()
    session.notify_runtime_error()
    assert recorder.states == []
    assert session.state == State.UNINITIALIZED


# ----------------------------------------------------------------------
# View re-entry


def test_view_reentry_when_running_is_noop(running_session, recorder, ui, device):
    running_session.handle_view_appeared()
    assert recorder.states == []
    assert ui.timers == []
    assert device.bind_count == 1


def test_view_reentry_when_failed_restarts(running_session, device):
    device.fail_bind = 10
    device.runtime_error()
    assert running_session.state == State.FAILED

    device.fail_bind = 0
    running_session.handle_view_appeared()
    assert running_session.state == State.RUNNING


def test_stalled_session_forces_restart(running_session, ui, device):
    device.interrupt()
    running_session.handle_view_appeared()

    assert running_session.state == State.INTERRUPTED
    assert len(ui.timers) == 1
    delay, _, _ = ui.timers[0]
    assert delay == pytest.approx(1.0)

    ui.run_timers()
    assert running_session.state == State.RUNNING
    assert device.bind_count == 2


def test_stall_check_with_queued_io(backend, device):
    io = QueueDispatcher()
    ui = InlineDispatcher()
    session = CameraSessionController(backend, io=io, ui=ui)

    session.request_permission()
    assert session.state == State.REQUESTING_PERMISSION
    session.handle_view_appeared()
    assert len(ui.timers) == 1

    io.drain()
    assert session.state == State.RUNNING

    # Already running when the check fires
    ui.run_timers()
    io.drain()
    assert io.pending == 0
    assert session.state == State.RUNNING
    assert device.bind_count == 1


def test_stall_check_during_slow_configure_keeps_session(backend, device):
    io = QueueDispatcher()
    ui = InlineDispatcher()
    session = CameraSessionController(backend, io=io, ui=ui)

    # Timer fires while the device is still binding
    bind = device.bind

    def slow_bind():
        ui.run_timers()
        bind()

    device.bind = slow_bind

    session.handle_view_appeared()
    io.drain()
    assert session.state == State.RUNNING
    io.drain()

    assert session.state == State.RUNNING
    assert device.bind_count == 1
    assert device.unbind_count == 0


# ----------------------------------------------------------------------
# Zoom and focus


def test_zoom_gestures(running_session, device):
    assert running_session.update_zoom(3.0)
    assert running_session.zoom_level == pytest.approx(3.0)
    assert device.zoom_calls[-1] == pytest.approx(3.0)

    assert running_session.update_zoom(0.1)
    assert running_session.zoom_level == pytest.approx(1.0)

    running_session.finalize_zoom(2.0)
    assert running_session.base_zoom == pytest.approx(2.0)
    running_session.update_zoom(2.0)
    assert running_session.zoom_level == pytest.approx(4.0)

    running_session.update_zoom(100.0)
    assert running_session.zoom_level == pytest.approx(8.0)


def test_zoom_clamped_to_device_max(make_device, make_backend):
    device = make_device(max_zoom=4.0)
    session = CameraSessionController(make_backend(device), io=InlineDispatcher())
    session.request_permission()

    session.update_zoom(6.0)
    assert session.zoom_level == pytest.approx(6.0)
    assert device.zoom_calls[-1] == pytest.approx(4.0)


def test_zoom_retriggers_focus_and_exposure(running_session, device):
    running_session.update_zoom(2.0)
    assert device.auto_focus_count == 1
    assert device.auto_exposure_count == 1


def test_reset_zoom(running_session, device):
    running_session.finalize_zoom(5.0)
    assert running_session.reset_zoom()
    assert running_session.zoom_level == 1.0
    assert running_session.base_zoom == 1.0
    assert device.zoom_calls[-1] == 1.0


def test_zoom_rejected_when_not_running(session, running_session, device):
    device.interrupt()
    assert not running_session.update_zoom(3.0)
    assert not running_session.finalize_zoom(3.0)
    assert not running_session.reset_zoom()
    assert running_session.zoom_level == 1.0


def test_zoom_reapplied_after_reconfigure(running_session, device):
    running_session.finalize_zoom(3.0)
    device.runtime_error()
    assert running_session.state == State.RUNNING
    assert device.zoom_calls[-1] == pytest.approx(3.0)


def test_focus_at(running_session, device):
    assert running_session.focus_at((250, 360), (1000, 720))
    assert device.focus_point == pytest.approx((0.25, 0.5))
    assert device.exposure_point == pytest.approx((0.25, 0.5))


def test_focus_point_clamped(running_session, device):
    running_session.focus_at((-10, 2000), (1000, 720))
    assert device.focus_point == (0.0, 1.0)


def test_focus_unsupported_is_noop(make_device, make_backend):
    device = make_device(supports_points=False)
    session = CameraSessionController(make_backend(device), io=InlineDispatcher())
    session.request_permission()

    assert not session.focus_at((10, 10), (100, 100))
    assert device.focus_point is None


def test_focus_rejected_when_not_running(session):
    assert not session.focus_at((10, 10), (100, 100))


# ----------------------------------------------------------------------
# Stills


def test_capture_still_requires_running(session):
    with pytest.raises(CaptureFailed):
        session.capture_still(lambda raw, error: None)


def test_capture_still_requires_connection(running_session, device):
    device.connected = False
    with pytest.raises(CaptureFailed):
        running_session.capture_still(lambda raw, error: None)


def test_shutdown_releases_device(running_session, device):
    running_session.shutdown()
    assert not device.running
    assert not device.bound
    assert running_session.device is None
