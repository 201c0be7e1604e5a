"""
Per-role device queries.

Ties the pipeline together:
- ConnectionSession poll → ClassIndex → resolve (class, index)
- tracked=True: correct → align axes → calibrate → validate → frame → plane,
  written into the slot
- tracked=False: the slot is frozen and its last data returned

Every query returns a QueryResult; none raises.
"""

import copy
import logging
import threading
import numpy as np
from enum import Enum
from typing import Optional, Dict, Any
from dataclasses import dataclass

from .config import TrackingConfig
from .convert import (
    CoordinateFrame, Plane, MalformedPoseError,
    align_axes, validate_pose, matrix_to_frame, frame_to_plane, plane_to_matrix,
)
from .correction import PoseCorrector, calibration_from_matrix
from .devices import DeviceClass, ButtonState, RawDevice
from .metrics import PollMetrics
from .session import ConnectionSession, TrackingBackend
from .slots import DeviceSlot, DeviceSlotCache, SlotState


logger = logging.getLogger(__name__)

# Runtime poses are column-vector matrices: basis vectors in columns
POSE_TRANSPOSE = True

_NOT_FOUND_MESSAGES = {
    DeviceClass.HMD: "No HMD detected.",
    DeviceClass.CONTROLLER: "No Controller detected.",
    DeviceClass.LIGHTHOUSE: "No Lighthouse detected.",
    DeviceClass.GENERIC_TRACKER: "Cannot find Generic Tracker. Wrong index?",
}


class QueryStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONNECTION_FAILURE = "connection_failure"
    MALFORMED_POSE = "malformed_pose"


@dataclass(frozen=True)
class DeviceSnapshot:
    """Immutable copy of a slot handed back to the caller."""
    device_class: DeviceClass
    index: int
    state: SlotState
    frame: Optional[CoordinateFrame]
    plane: Optional[Plane]
    buttons: Optional[ButtonState]
    serial: str
    captured_poll: int

    @classmethod
    def from_slot(cls, slot: DeviceSlot) -> "DeviceSnapshot":
        return cls(
            device_class=slot.device_class,
            index=slot.index,
            state=slot.state,
            frame=copy.deepcopy(slot.frame),
            plane=copy.deepcopy(slot.plane),
            buttons=slot.buttons,
            serial=slot.serial,
            captured_poll=slot.captured_poll,
        )

    @property
    def has_pose(self) -> bool:
        return self.frame is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_class": self.device_class.value,
            "index": self.index,
            "state": self.state.value,
            "serial": self.serial,
            "captured_poll": self.captured_poll,
            "frame": self.frame.to_dict() if self.frame else None,
            "plane": self.plane.to_dict() if self.plane else None,
            "buttons": self.buttons.to_dict() if self.buttons else None,
        }


@dataclass(frozen=True)
class QueryResult:
    status: QueryStatus
    device_class: Optional[DeviceClass] = None
    index: int = 0
    snapshot: Optional[DeviceSnapshot] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == QueryStatus.OK

    @property
    def frame(self) -> Optional[CoordinateFrame]:
        return self.snapshot.frame if self.snapshot else None

    @property
    def plane(self) -> Optional[Plane]:
        return self.snapshot.plane if self.snapshot else None

    @property
    def buttons(self) -> Optional[ButtonState]:
        return self.snapshot.buttons if self.snapshot else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "device_class": self.device_class.value if self.device_class else None,
            "index": self.index,
            "message": self.message,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
        }


class TrackingContext:
    """
    Session-scoped tracking state owned by the host scheduler.

    Holds the connection session, the slot cache and the calibration. The
    host calls ``update()`` once per poll, then any number of queries.

    Usage:
        context = TrackingContext(OpenVRBackend())
        context.connect()
        while polling:
            context.update()
            result = context.controller(0, tracked=True)
    """

    def __init__(
        self,
        backend: TrackingBackend,
        config: Optional[TrackingConfig] = None
    ):
        self.config = (config or TrackingConfig()).validate()
        self.session = ConnectionSession(backend)
        self.slots = DeviceSlotCache()
        self.corrector = PoseCorrector(self.config.tracker_offset_deg)
        self.metrics = PollMetrics()
        self.calibration = np.eye(4)
        self._lock = threading.Lock()

    @property
    def state(self):
        return self.session.state

    def connect(self) -> bool:
        """Handshake and run a first poll."""
        with self._lock:
            if not self.session.connect():
                self.metrics.record_poll(False, error=self.session.state.error_message)
                return False
        return self.update()

    def update(self) -> bool:
        """Refresh the device list for a new poll."""
        with self._lock:
            ok = self.session.update()
            if ok:
                counts = self.session.class_index.to_dict()["counts"]
                self.metrics.record_poll(True, counts)
            else:
                self.metrics.record_poll(False, error=self.session.state.error_message)
            return ok

    def disconnect(self) -> None:
        with self._lock:
            self.session.disconnect()

    def summary(self) -> str:
        """Device summary on success, failure description otherwise."""
        if not self.session.state.success:
            return self.session.state.message
        return self.session.summary()

    def calibrate_origin(self, plane: Plane) -> bool:
        """
        Make ``plane`` (in the current application frame) the new origin.

        Applies to poses computed by later tracked queries only.

        Returns:
            False if the plane is degenerate; the calibration is then unchanged
        """
        try:
            origin_pose = plane_to_matrix(plane, transpose=POSE_TRANSPOSE)
            origin_pose = validate_pose(origin_pose, "orthonormalize")
        except ValueError as exc:
            logger.warning("Calibration plane rejected: %s", exc)
            return False
        with self._lock:
            self.calibration = calibration_from_matrix(origin_pose) @ self.calibration
        return True

    def reset_calibration(self) -> None:
        with self._lock:
            self.calibration = np.eye(4)

    def corrected_pose(self, device: RawDevice, device_class: DeviceClass) -> np.ndarray:
        """
        Full correction of one raw pose into the application frame.

        Raises:
            MalformedPoseError: If the pose fails validation
        """
        m = self.corrector.correct(device.pose, device_class)
        m = align_axes(m, self.config.z_up, self.config.unit_scale)
        m = self.calibration @ m
        return validate_pose(m, self.config.pose_validation, self.config.orthonormal_tolerance)

    def query(
        self,
        device_class: Any,
        index: int = 0,
        tracked: bool = True
    ) -> QueryResult:
        try:
            cls = DeviceClass.parse(device_class)
        except ValueError as exc:
            logger.warning("%s", exc)
            return QueryResult(QueryStatus.INVALID_INPUT, message=str(exc), index=index)

        if isinstance(index, bool) or not isinstance(index, (int, np.integer)) or index < 0:
            message = f"Invalid {cls.value} index: {index!r}"
            logger.warning(message)
            return self._finish(QueryResult(QueryStatus.INVALID_INPUT, cls, index, message=message))

        if not isinstance(tracked, (bool, np.bool_)):
            message = f"Invalid tracked flag: {tracked!r}"
            logger.warning(message)
            return self._finish(QueryResult(QueryStatus.INVALID_INPUT, cls, index, message=message))

        index = int(index)
        with self._lock:
            result = self._query_locked(cls, index, bool(tracked))
        return self._finish(result)

    def _finish(self, result: QueryResult) -> QueryResult:
        if result.device_class is not None:
            self.metrics.record_query(result.device_class.value, result.status.value)
        return result

    def _snapshot(self, device_class: DeviceClass, index: int) -> Optional[DeviceSnapshot]:
        slot = self.slots.get(device_class, index)
        return DeviceSnapshot.from_slot(slot) if slot else None

    def _query_locked(self, cls: DeviceClass, index: int, tracked: bool) -> QueryResult:
        class_index = self.session.class_index
        if not self.session.state.success or class_index is None:
            return QueryResult(
                QueryStatus.CONNECTION_FAILURE, cls, index,
                snapshot=self._snapshot(cls, index),
                message=self.session.state.message,
            )

        device = class_index.resolve(cls, index)
        if device is None:
            message = _NOT_FOUND_MESSAGES[cls]
            logger.warning(message)
            return QueryResult(QueryStatus.NOT_FOUND, cls, index, message=message)

        slot = self.slots.get_or_create(cls, index)

        if not tracked:
            slot.freeze()
            return QueryResult(QueryStatus.OK, cls, index, snapshot=DeviceSnapshot.from_slot(slot))

        if not device.pose_valid:
            logger.debug("%s[%d] pose not valid this poll, keeping last pose", cls.value, index)
            slot.freeze()
            return QueryResult(
                QueryStatus.OK, cls, index,
                snapshot=DeviceSnapshot.from_slot(slot),
                message="Pose not valid this poll",
            )

        try:
            pose = self.corrected_pose(device, cls)
        except MalformedPoseError as exc:
            logger.warning("%s[%d] malformed pose: %s", cls.value, index, exc)
            slot.freeze()
            return QueryResult(
                QueryStatus.MALFORMED_POSE, cls, index,
                snapshot=DeviceSnapshot.from_slot(slot),
                message=str(exc),
            )

        frame = matrix_to_frame(pose, transpose=POSE_TRANSPOSE)
        plane = frame_to_plane(frame)
        slot.capture(frame, plane, device.buttons, device.serial, class_index.poll_id)
        return QueryResult(QueryStatus.OK, cls, index, snapshot=DeviceSnapshot.from_slot(slot))

    def hmd(self, tracked: bool = True) -> QueryResult:
        return self.query(DeviceClass.HMD, 0, tracked)

    def controller(self, index: int = 0, tracked: bool = True) -> QueryResult:
        return self.query(DeviceClass.CONTROLLER, index, tracked)

    def lighthouse(self, index: int = 0, tracked: bool = True) -> QueryResult:
        return self.query(DeviceClass.LIGHTHOUSE, index, tracked)

    def generic_tracker(self, index: int = 0, tracked: bool = True) -> QueryResult:
        return self.query(DeviceClass.GENERIC_TRACKER, index, tracked)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            class_index = self.session.class_index
            return {
                "connection": self.session.state.to_dict(),
                "poll_id": self.session.poll_id,
                "devices": class_index.to_dict()["counts"] if class_index else {},
                "slots": len(self.slots),
                "calibrated": not np.allclose(self.calibration, np.eye(4)),
                "metrics": self.metrics.get_summary(),
            }


def query_device(
    context: Any,
    device_class: Any,
    index: int = 0,
    tracked: bool = True
) -> QueryResult:
    """
    Entry point for host schedulers holding an untyped context handle.

    Returns INVALID_INPUT when ``context`` is not a TrackingContext.
    """
    if not isinstance(context, TrackingContext):
        message = "Please connect a Vive object to this node's input."
        logger.warning(message)
        return QueryResult(QueryStatus.INVALID_INPUT, message=message, index=index)
    return context.query(device_class, index, tracked)
