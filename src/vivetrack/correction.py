"""
Per-class pose correction.

HMD, controller and lighthouse poses pass through unchanged. Generic tracker
poses get a constant local rotation compensating the puck's mounting angle,
so the corrected Y axis points along the tracked object's forward direction.
"""

import numpy as np
from typing import Optional, Sequence
from scipy.spatial.transform import Rotation

from .devices import DeviceClass


DEFAULT_TRACKER_OFFSET_DEG = (-90.0, 0.0, 0.0)


def offset_matrix(euler_deg: Sequence[float]) -> np.ndarray:
    """4x4 rotation from intrinsic xyz Euler angles in degrees."""
    out = np.eye(4)
    out[:3, :3] = Rotation.from_euler("XYZ", list(euler_deg), degrees=True).as_matrix()
    return out


TRACKER_OFFSET = offset_matrix(DEFAULT_TRACKER_OFFSET_DEG)


class PoseCorrector:
    """
    Stateless class-specific correction of raw column-vector poses.

    The tracker offset is fixed at construction; ``correct`` never mutates
    its input and yields identical output for identical input.
    """

    def __init__(self, tracker_offset_deg: Optional[Sequence[float]] = None):
        if tracker_offset_deg is None:
            self.tracker_offset = TRACKER_OFFSET.copy()
        else:
            self.tracker_offset = offset_matrix(tracker_offset_deg)
        self.tracker_offset.setflags(write=False)

    def correct(self, raw: np.ndarray, device_class: DeviceClass) -> np.ndarray:
        """
        Args:
            raw: 4x4 pose, basis in columns
            device_class: Role of the device

        Returns:
            Corrected 4x4 pose (a new array)
        """
        m = np.array(raw, dtype=np.float64)
        if device_class == DeviceClass.GENERIC_TRACKER:
            # Local offset: right-multiply so the origin is unchanged
            return m @ self.tracker_offset
        return m


_DEFAULT = PoseCorrector()


def correct(raw: np.ndarray, device_class: DeviceClass) -> np.ndarray:
    """Correct with the default tracker offset."""
    return _DEFAULT.correct(raw, device_class)


def calibration_from_matrix(origin_pose: np.ndarray) -> np.ndarray:
    """
    World-side transform that maps ``origin_pose`` to the identity.

    Args:
        origin_pose: 4x4 rigid transform, basis in columns

    Returns:
        Its inverse, to be left-multiplied onto application-frame poses
    """
    T = np.asarray(origin_pose, dtype=np.float64)
    Rm = T[:3, :3]
    t = T[:3, 3]
    Ti = np.eye(4)
    Ti[:3, :3] = Rm.T
    Ti[:3, 3] = -Rm.T @ t
    return Ti
