"""
Connection to the tracking runtime.

Provides functionality to:
- Wrap the runtime SDK behind a small backend protocol
- Connect / poll the runtime without letting failures escape
- Keep the connection state (success flag + error message)
- Reclassify the device list on every successful poll
"""

import importlib
import logging
from typing import Optional, Dict, Any, List, Protocol
from dataclasses import dataclass

from .config import TrackingConfig
from .devices import (
    RawDevice, ClassIndex, classify, decode_controller_state, pose_from_hmd34,
    RUNTIME_CLASS_CONTROLLER,
)


logger = logging.getLogger(__name__)


class BackendUnavailableError(RuntimeError):
    """The runtime SDK or the runtime itself is not available."""


class BackendError(RuntimeError):
    """Handshake or poll against the runtime failed."""


class TrackingBackend(Protocol):
    def runtime_available(self) -> bool: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def poll(self) -> List[RawDevice]: ...


@dataclass
class ConnectionState:
    success: bool = False
    error_message: str = "Not connected"

    @property
    def message(self) -> str:
        """Host-facing description of a failure."""
        if self.success:
            return ""
        return (
            "Vive is not setup correctly!! Detailed Reason:\n"
            f"{self.error_message}\n"
            "Check online the error code for more information."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "error_message": self.error_message}


class OpenVRBackend:
    """
    Backend on top of pyopenvr.

    The SDK is imported on first use so the rest of the package works
    without it.
    """

    def __init__(self, config: Optional[TrackingConfig] = None):
        self.config = config or TrackingConfig()
        self._openvr = None
        self._vr_system = None
        self._serials: Dict[int, str] = {}

    def _import(self):
        if self._openvr is None:
            try:
                self._openvr = importlib.import_module("openvr")
            except Exception as exc:
                raise BackendUnavailableError(f"openvr_import_failed: {exc}") from exc
        return self._openvr

    def runtime_available(self) -> bool:
        try:
            openvr = self._import()
        except BackendUnavailableError as exc:
            logger.warning("%s", exc)
            return False
        return bool(openvr.isRuntimeInstalled())

    def connect(self) -> None:
        openvr = self._import()
        if self._vr_system is not None:
            return

        app_types = {
            "other": openvr.VRApplication_Other,
            "scene": openvr.VRApplication_Scene,
            "background": openvr.VRApplication_Background,
        }
        try:
            self._vr_system = openvr.init(app_types[self.config.app_type])
        except openvr.OpenVRError as exc:
            raise BackendError(f"openvr_init_failed: {exc}") from exc
        self._serials.clear()

    def disconnect(self) -> None:
        if self._vr_system is None:
            return
        self._vr_system = None
        self._serials.clear()
        self._openvr.shutdown()

    def poll(self) -> List[RawDevice]:
        if self._vr_system is None:
            raise BackendError("openvr backend not connected")

        openvr = self._openvr
        universes = {
            "standing": openvr.TrackingUniverseStanding,
            "seated": openvr.TrackingUniverseSeated,
            "raw": openvr.TrackingUniverseRawAndUncalibrated,
        }
        count = min(self.config.max_device_count, openvr.k_unMaxTrackedDeviceCount)

        try:
            poses = self._vr_system.getDeviceToAbsoluteTrackingPose(
                universes[self.config.tracking_universe], 0.0, count)

            devices = []
            for i in range(count):
                if not self._vr_system.isTrackedDeviceConnected(i):
                    self._serials.pop(i, None)
                    continue

                runtime_class = int(self._vr_system.getTrackedDeviceClass(i))
                device = RawDevice(
                    index=i,
                    runtime_class=runtime_class,
                    pose=pose_from_hmd34(poses[i].mDeviceToAbsoluteTracking),
                    pose_valid=bool(poses[i].bPoseIsValid),
                    serial=self._serial(i),
                )
                if runtime_class == RUNTIME_CLASS_CONTROLLER:
                    result, state = self._vr_system.getControllerState(i)
                    if result:
                        device.buttons = decode_controller_state(
                            state.ulButtonPressed,
                            state.ulButtonTouched,
                            [(axis.x, axis.y) for axis in state.rAxis],
                        )
                devices.append(device)
        except openvr.OpenVRError as exc:
            raise BackendError(f"openvr_poll_failed: {exc}") from exc

        return devices

    def _serial(self, index: int) -> str:
        if index not in self._serials:
            openvr = self._openvr
            try:
                self._serials[index] = self._vr_system.getStringTrackedDeviceProperty(
                    index, openvr.Prop_SerialNumber_String)
            except openvr.OpenVRError:
                return ""
        return self._serials[index]


class ConnectionSession:
    """
    Owns the connect / update cycle against one backend.

    Neither call raises; both return the success flag and leave the reason in
    ``state``. There is no retry: the caller polls again later.
    """

    def __init__(self, backend: TrackingBackend):
        self.backend = backend
        self.state = ConnectionState()
        self.class_index: Optional[ClassIndex] = None
        self.poll_id = 0
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _fail(self, reason: str) -> bool:
        self.state = ConnectionState(success=False, error_message=reason)
        logger.warning("Connection failure: %s", reason)
        return False

    def connect(self) -> bool:
        """Handshake with the runtime."""
        if not self.backend.runtime_available():
            self._connected = False
            return self._fail("SteamVR not running. Please run SteamVR first.")

        try:
            self.backend.connect()
        except (BackendUnavailableError, BackendError) as exc:
            self._connected = False
            return self._fail(str(exc))

        self._connected = True
        self.state = ConnectionState(success=True, error_message="")
        logger.info("Connected to tracking runtime")
        return True

    def update(self) -> bool:
        """Refresh the device list and reclassify it for a new poll."""
        if not self._connected:
            return self._fail("Not connected")

        try:
            devices = self.backend.poll()
        except (BackendUnavailableError, BackendError) as exc:
            return self._fail(str(exc))

        self.poll_id += 1
        self.class_index = classify(devices, poll_id=self.poll_id)
        self.state = ConnectionState(success=True, error_message="")
        logger.debug("Poll %d: %s", self.poll_id, self.class_index.to_dict()["counts"])
        return True

    def disconnect(self) -> None:
        if self._connected:
            self.backend.disconnect()
        self._connected = False
        self.class_index = None
        self.state = ConnectionState()

    def summary(self) -> str:
        if self.class_index is None:
            return "No devices polled"
        return self.class_index.summary()
