"""
Coordinate conversion between 4x4 transforms, coordinate frames and planes.

Provides functionality to:
- Read a 4x4 matrix (or 16 values) as an origin + X/Y/Z basis
- Write a frame or plane back into a 4x4 matrix
- Align the runtime's Y-up metre frame with a Z-up application frame
- Check and repair (orthonormalize) the rotation block of a pose

Matrix convention
-----------------
``transpose=False``: basis vectors occupy rows 0..2, the origin row 3
(row-vector layout, translation in the last row).

``transpose=True``: basis vectors occupy columns 0..2, the origin column 3
(column-vector layout, translation in the last column). Runtime poses are
column-vector matrices.
"""

import numpy as np
from typing import Optional, Dict, Any, Union, Sequence
from dataclasses import dataclass
from scipy.spatial.transform import Rotation


MatrixLike = Union[np.ndarray, Sequence[float], Sequence[Sequence[float]]]

# Runtime frame (+Y up, -Z forward) to application frame (+Z up, +Y forward)
Y_UP_TO_Z_UP = np.array([
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 0.0, -1.0, 0.0],
    [0.0, 1.0, 0.0, 0.0],
    [0.0, 0.0, 0.0, 1.0],
], dtype=np.float64)


class MalformedPoseError(ValueError):
    """Raised when a matrix cannot be read as a rigid transform."""


@dataclass
class CoordinateFrame:
    """Origin and X/Y/Z axes of a tracked pose."""
    origin: np.ndarray
    x_axis: np.ndarray
    y_axis: np.ndarray
    z_axis: np.ndarray

    @classmethod
    def identity(cls) -> "CoordinateFrame":
        return cls(
            origin=np.zeros(3),
            x_axis=np.array([1.0, 0.0, 0.0]),
            y_axis=np.array([0.0, 1.0, 0.0]),
            z_axis=np.array([0.0, 0.0, 1.0]),
        )

    @property
    def rotation(self) -> np.ndarray:
        """3x3 rotation with the axes as columns."""
        return np.column_stack([self.x_axis, self.y_axis, self.z_axis])

    @property
    def quaternion(self) -> np.ndarray:
        """Orientation as [w, x, y, z]."""
        quat = Rotation.from_matrix(self.rotation).as_quat()  # [x, y, z, w]
        return np.array([quat[3], quat[0], quat[1], quat[2]])

    def is_orthonormal(self, tol: float = 1e-5) -> bool:
        return is_orthonormal(self.rotation, tol)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin": self.origin.tolist(),
            "x_axis": self.x_axis.tolist(),
            "y_axis": self.y_axis.tolist(),
            "z_axis": self.z_axis.tolist(),
        }


@dataclass
class Plane:
    """Origin + X/Y axes. The normal is implied by X cross Y."""
    origin: np.ndarray
    x_axis: np.ndarray
    y_axis: np.ndarray

    @property
    def normal(self) -> np.ndarray:
        return np.cross(self.x_axis, self.y_axis)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin": self.origin.tolist(),
            "x_axis": self.x_axis.tolist(),
            "y_axis": self.y_axis.tolist(),
            "normal": self.normal.tolist(),
        }


def as_matrix(m: MatrixLike) -> np.ndarray:
    """
    Coerce 16 values (reading order) or a 4x4 nested sequence to a 4x4 array.

    Raises:
        MalformedPoseError: If the input does not hold exactly 16 values
    """
    a = np.asarray(m, dtype=np.float64)
    if a.size != 16:
        raise MalformedPoseError(f"expected 16 matrix entries, got {a.size}")
    return a.reshape(4, 4).copy()


def matrix_to_frame(m: MatrixLike, transpose: bool = False) -> CoordinateFrame:
    """
    Read a matrix as a coordinate frame.

    No validation is done here: a matrix that is not a rigid transform gives a
    frame whose axes are not orthonormal.

    Args:
        m: 4x4 matrix or 16 values in reading order
        transpose: False reads the basis from rows, True from columns

    Returns:
        CoordinateFrame
    """
    a = as_matrix(m)
    if transpose:
        a = a.T
    return CoordinateFrame(
        origin=a[3, :3].copy(),
        x_axis=a[0, :3].copy(),
        y_axis=a[1, :3].copy(),
        z_axis=a[2, :3].copy(),
    )


def frame_to_matrix(frame: CoordinateFrame, transpose: bool = False) -> np.ndarray:
    """Inverse of :func:`matrix_to_frame` for the same ``transpose`` flag."""
    a = np.zeros((4, 4), dtype=np.float64)
    a[0, :3] = frame.x_axis
    a[1, :3] = frame.y_axis
    a[2, :3] = frame.z_axis
    a[3, :3] = frame.origin
    a[3, 3] = 1.0
    return a.T.copy() if transpose else a


def frame_to_plane(frame: CoordinateFrame) -> Plane:
    return Plane(
        origin=frame.origin.copy(),
        x_axis=frame.x_axis.copy(),
        y_axis=frame.y_axis.copy(),
    )


def plane_to_frame(plane: Plane) -> CoordinateFrame:
    return CoordinateFrame(
        origin=np.asarray(plane.origin, dtype=np.float64).copy(),
        x_axis=np.asarray(plane.x_axis, dtype=np.float64).copy(),
        y_axis=np.asarray(plane.y_axis, dtype=np.float64).copy(),
        z_axis=np.asarray(plane.normal, dtype=np.float64).copy(),
    )


def plane_to_matrix(plane: Plane, transpose: bool = False) -> np.ndarray:
    """
    Build a matrix from a caller-supplied plane (calibration workflows).

    The plane normal becomes the Z axis. ``transpose`` has the same meaning as
    in :func:`matrix_to_frame`.
    """
    return frame_to_matrix(plane_to_frame(plane), transpose)


def align_axes(m: np.ndarray, z_up: bool = True, unit_scale: float = 1.0) -> np.ndarray:
    """
    Bring a column-vector runtime pose into the application frame.

    The basis change is applied on the world side only, so the device-local
    axes keep their meaning. Translation is scaled by ``unit_scale``.
    """
    out = np.asarray(m, dtype=np.float64).copy()
    if z_up:
        out = Y_UP_TO_Z_UP @ out
    out[:3, 3] *= unit_scale
    return out


def is_orthonormal(rotation: np.ndarray, tol: float = 1e-5) -> bool:
    """Check that a 3x3 block has unit, mutually orthogonal columns."""
    r = np.asarray(rotation, dtype=np.float64)
    if not np.all(np.isfinite(r)):
        return False
    return bool(np.allclose(r.T @ r, np.eye(3), atol=tol))


def orthonormalize(rotation: np.ndarray, min_singular: float = 1e-6) -> np.ndarray:
    """
    Return the rotation closest to a 3x3 block (SVD projection).

    Raises:
        MalformedPoseError: If the block is non-finite or rank deficient
    """
    r = np.asarray(rotation, dtype=np.float64)
    if not np.all(np.isfinite(r)):
        raise MalformedPoseError("rotation contains non-finite values")

    U, S, Vt = np.linalg.svd(r)
    if S[-1] < min_singular:
        raise MalformedPoseError("rotation is rank deficient")

    R = U @ Vt
    # Handle reflection case
    if np.linalg.det(R) < 0:
        U[:, -1] *= -1
        R = U @ Vt
    return R


def validate_pose(
    m: np.ndarray,
    policy: str = "orthonormalize",
    tol: float = 1e-5
) -> np.ndarray:
    """
    Apply the malformed-pose policy to a column-vector 4x4 pose.

    Args:
        m: 4x4 pose, basis in columns
        policy: "pass", "orthonormalize" or "reject"
        tol: Orthonormality tolerance

    Returns:
        The (possibly repaired) pose

    Raises:
        MalformedPoseError: Non-finite input, a rank deficient rotation, or any
            deviation beyond ``tol`` (including a mirrored basis) under the
            "reject" policy
    """
    a = np.asarray(m, dtype=np.float64)
    if not np.all(np.isfinite(a)):
        raise MalformedPoseError("pose contains non-finite values")

    if policy == "pass":
        return a

    rotation = a[:3, :3]
    mirrored = np.linalg.det(rotation) < 0
    if is_orthonormal(rotation, tol) and not mirrored:
        return a

    if policy == "reject":
        if mirrored:
            raise MalformedPoseError("pose rotation is a reflection (det < 0)")
        raise MalformedPoseError("pose rotation is not orthonormal")

    out = a.copy()
    out[:3, :3] = orthonormalize(rotation)
    return out


def frame_from_rotation(
    rotation: np.ndarray,
    origin: Optional[np.ndarray] = None
) -> CoordinateFrame:
    """Build a frame from a 3x3 rotation (axes as columns) and an origin."""
    r = np.asarray(rotation, dtype=np.float64)
    return CoordinateFrame(
        origin=np.zeros(3) if origin is None else np.asarray(origin, dtype=np.float64).copy(),
        x_axis=r[:, 0].copy(),
        y_axis=r[:, 1].copy(),
        z_axis=r[:, 2].copy(),
    )
