import sys
import types
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from vivetrack.config import TrackingConfig  # noqa: E402
from vivetrack.devices import (  # noqa: E402
    BUTTON_GRIP, BUTTON_TRIGGER,
    RUNTIME_CLASS_CONTROLLER, RUNTIME_CLASS_HMD, RUNTIME_CLASS_TRACKING_REFERENCE,
    DeviceClass,
)
from vivetrack.query import QueryStatus, TrackingContext  # noqa: E402
from vivetrack.session import (  # noqa: E402
    BackendError, BackendUnavailableError, ConnectionSession, OpenVRBackend,
)


class FakeOpenVRError(Exception):
    pass


class FakePose:
    def __init__(self, translation, valid: bool = True):
        x, y, z = translation
        self.mDeviceToAbsoluteTracking = [
            [1.0, 0.0, 0.0, x],
            [0.0, 1.0, 0.0, y],
            [0.0, 0.0, 1.0, z],
        ]
        self.bPoseIsValid = valid


class FakeAxis:
    def __init__(self, x: float, y: float):
        self.x = x
        self.y = y


class FakeControllerState:
    def __init__(self, pressed: int, touched: int, axes):
        self.ulButtonPressed = pressed
        self.ulButtonTouched = touched
        self.rAxis = [FakeAxis(x, y) for x, y in axes]


class FakeVRSystem:
    """Four slots: HMD, controller, a disconnected index, a base station."""

    def __init__(self):
        self.classes = {0: RUNTIME_CLASS_HMD, 1: RUNTIME_CLASS_CONTROLLER, 3: RUNTIME_CLASS_TRACKING_REFERENCE}
        self.serials = {0: "HMD-A", 1: "CTRL-A", 3: "LHB-A"}
        self.poses = {
            0: FakePose((0.0, 1.7, 0.0)),
            1: FakePose((0.2, 1.0, -0.3)),
            3: FakePose((2.0, 2.4, 2.0), valid=False),
        }
        self.universes: List[int] = []
        self.serial_calls: List[int] = []
        self.poll_error: Optional[str] = None
        self.controller_state = FakeControllerState(
            pressed=(1 << BUTTON_TRIGGER) | (1 << BUTTON_GRIP),
            touched=1 << BUTTON_TRIGGER,
            axes=[(0.5, -0.25), (1.0, 0.0)],
        )

    def getDeviceToAbsoluteTrackingPose(self, universe, seconds, count):
        if self.poll_error is not None:
            raise FakeOpenVRError(self.poll_error)
        self.universes.append(universe)
        return [self.poses.get(i, FakePose((0.0, 0.0, 0.0), valid=False)) for i in range(count)]

    def isTrackedDeviceConnected(self, index):
        return index in self.classes

    def getTrackedDeviceClass(self, index):
        return self.classes[index]

    def getControllerState(self, index):
        return True, self.controller_state

    def getStringTrackedDeviceProperty(self, index, prop):
        self.serial_calls.append(index)
        if index not in self.serials:
            raise FakeOpenVRError("TrackedProp_UnknownProperty")
        return self.serials[index]


def _fake_openvr(system: FakeVRSystem, installed: bool = True, init_error: Optional[str] = None):
    module = types.ModuleType("openvr")
    calls: Dict[str, list] = {"init": [], "shutdown": []}

    def init(app_type):
        calls["init"].append(app_type)
        if init_error is not None:
            raise FakeOpenVRError(init_error)
        return system

    def shutdown():
        calls["shutdown"].append(True)

    module.OpenVRError = FakeOpenVRError
    module.isRuntimeInstalled = lambda: installed
    module.init = init
    module.shutdown = shutdown
    module.VRApplication_Other = 10
    module.VRApplication_Scene = 11
    module.VRApplication_Background = 12
    module.TrackingUniverseSeated = 20
    module.TrackingUniverseStanding = 21
    module.TrackingUniverseRawAndUncalibrated = 22
    module.k_unMaxTrackedDeviceCount = 4
    module.Prop_SerialNumber_String = 1000
    module.calls = calls
    return module


@pytest.fixture()
def vr_system() -> FakeVRSystem:
    return FakeVRSystem()


@pytest.fixture()
def fake_openvr(monkeypatch, vr_system):
    module = _fake_openvr(vr_system)
    monkeypatch.setitem(sys.modules, "openvr", module)
    return module


def test_connect_uses_configured_app_type(fake_openvr) -> None:
    backend = OpenVRBackend(TrackingConfig(app_type="background"))
    assert backend.runtime_available()
    backend.connect()
    backend.connect()
    assert fake_openvr.calls["init"] == [fake_openvr.VRApplication_Background]

    backend.disconnect()
    assert fake_openvr.calls["shutdown"] == [True]
    with pytest.raises(BackendError):
        backend.poll()


def test_poll_reports_connected_devices(fake_openvr, vr_system) -> None:
    backend = OpenVRBackend(TrackingConfig(tracking_universe="seated"))
    backend.connect()
    devices = backend.poll()

    assert vr_system.universes == [fake_openvr.TrackingUniverseSeated]
    assert [d.index for d in devices] == [0, 1, 3]
    assert [d.runtime_class for d in devices] == [
        RUNTIME_CLASS_HMD, RUNTIME_CLASS_CONTROLLER, RUNTIME_CLASS_TRACKING_REFERENCE]
    assert [d.serial for d in devices] == ["HMD-A", "CTRL-A", "LHB-A"]

    hmd = devices[0]
    assert hmd.pose.shape == (4, 4)
    assert np.allclose(hmd.pose[3], [0.0, 0.0, 0.0, 1.0])
    assert np.allclose(hmd.pose[:3, 3], [0.0, 1.7, 0.0])
    assert hmd.buttons is None
    assert not devices[2].pose_valid


def test_poll_decodes_controller_buttons(fake_openvr) -> None:
    backend = OpenVRBackend()
    backend.connect()
    controller = backend.poll()[1]

    assert controller.buttons.trigger_clicked
    assert controller.buttons.trigger_pressed
    assert controller.buttons.trigger_value == 1.0
    assert controller.buttons.grip_pressed
    assert controller.buttons.touchpad_x == 0.5
    assert controller.buttons.touchpad_y == -0.25


def test_serials_are_cached_between_polls(fake_openvr, vr_system) -> None:
    backend = OpenVRBackend()
    backend.connect()
    backend.poll()
    backend.poll()
    assert sorted(vr_system.serial_calls) == [0, 1, 3]


def test_missing_serial_reads_as_empty(fake_openvr, vr_system) -> None:
    del vr_system.serials[3]
    backend = OpenVRBackend()
    backend.connect()
    assert backend.poll()[2].serial == ""


def test_poll_error_becomes_backend_error(fake_openvr, vr_system) -> None:
    backend = OpenVRBackend()
    backend.connect()
    vr_system.poll_error = "IPC_ReadFailure"
    with pytest.raises(BackendError, match="openvr_poll_failed: IPC_ReadFailure"):
        backend.poll()

    session = ConnectionSession(backend)
    assert session.connect()
    assert not session.update()
    assert "IPC_ReadFailure" in session.state.message


def test_init_error_becomes_connection_failure(monkeypatch, vr_system) -> None:
    monkeypatch.setitem(sys.modules, "openvr", _fake_openvr(vr_system, init_error="Init_HmdNotFound"))
    backend = OpenVRBackend()
    with pytest.raises(BackendError, match="openvr_init_failed"):
        backend.connect()

    session = ConnectionSession(backend)
    assert not session.connect()
    assert "Init_HmdNotFound" in session.state.error_message


def test_runtime_not_installed(monkeypatch, vr_system) -> None:
    monkeypatch.setitem(sys.modules, "openvr", _fake_openvr(vr_system, installed=False))
    session = ConnectionSession(OpenVRBackend())
    assert not session.connect()
    assert "SteamVR not running" in session.state.error_message


def test_sdk_missing(monkeypatch) -> None:
    monkeypatch.setitem(sys.modules, "openvr", None)
    backend = OpenVRBackend()
    assert not backend.runtime_available()
    with pytest.raises(BackendUnavailableError, match="openvr_import_failed"):
        backend.connect()


def test_context_queries_through_openvr(fake_openvr) -> None:
    context = TrackingContext(OpenVRBackend())
    assert context.connect()
    assert "Controller: 1 (CTRL-A)" in context.summary()

    hmd = context.hmd()
    assert hmd.ok
    assert np.allclose(hmd.frame.origin, [0.0, 0.0, 1.7])
    assert context.controller(0).buttons.trigger_clicked

    # Base station pose flagged invalid: no pose captured yet
    lighthouse = context.lighthouse(0)
    assert lighthouse.ok
    assert lighthouse.frame is None
    assert context.query(DeviceClass.GENERIC_TRACKER, 0).status == QueryStatus.NOT_FOUND
