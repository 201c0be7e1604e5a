import sys
from pathlib import Path

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from vivetrack.convert import (  # noqa: E402
    CoordinateFrame, Plane, MalformedPoseError,
    matrix_to_frame, frame_to_matrix, frame_to_plane, plane_to_frame,
    plane_to_matrix, align_axes, orthonormalize, validate_pose, is_orthonormal,
    frame_from_rotation,
)


# Distinct entry per row/column: entry (r, c) == 10 * r + c
FIXTURE = np.array([
    [0.0, 1.0, 2.0, 3.0],
    [10.0, 11.0, 12.0, 13.0],
    [20.0, 21.0, 22.0, 23.0],
    [30.0, 31.0, 32.0, 33.0],
])


def _random_frames(n: int, seed: int = 7):
    rng = np.random.default_rng(seed)
    angles = rng.uniform(-180.0, 180.0, size=(n, 3))
    rotations = Rotation.from_euler("xyz", angles, degrees=True).as_matrix()
    for R in rotations:
        yield frame_from_rotation(R, rng.uniform(-5.0, 5.0, size=3))


@pytest.mark.parametrize("transpose", [False, True])
def test_frame_matrix_round_trip(transpose: bool) -> None:
    for frame in _random_frames(25):
        back = matrix_to_frame(frame_to_matrix(frame, transpose), transpose)
        assert np.allclose(back.origin, frame.origin, atol=1e-5)
        assert np.allclose(back.x_axis, frame.x_axis, atol=1e-5)
        assert np.allclose(back.y_axis, frame.y_axis, atol=1e-5)
        assert np.allclose(back.z_axis, frame.z_axis, atol=1e-5)
        assert back.is_orthonormal()


def test_transpose_false_reads_rows() -> None:
    frame = matrix_to_frame(FIXTURE, transpose=False)
    assert np.array_equal(frame.x_axis, [0.0, 1.0, 2.0])
    assert np.array_equal(frame.y_axis, [10.0, 11.0, 12.0])
    assert np.array_equal(frame.z_axis, [20.0, 21.0, 22.0])
    assert np.array_equal(frame.origin, [30.0, 31.0, 32.0])


def test_transpose_true_reads_columns() -> None:
    frame = matrix_to_frame(FIXTURE, transpose=True)
    assert np.array_equal(frame.x_axis, [0.0, 10.0, 20.0])
    assert np.array_equal(frame.y_axis, [1.0, 11.0, 21.0])
    assert np.array_equal(frame.z_axis, [2.0, 12.0, 22.0])
    assert np.array_equal(frame.origin, [3.0, 13.0, 23.0])


def test_flat_sixteen_values_match_nested() -> None:
    flat = FIXTURE.ravel().tolist()
    a = matrix_to_frame(flat, transpose=True)
    b = matrix_to_frame(FIXTURE, transpose=True)
    assert np.array_equal(a.origin, b.origin)
    assert np.array_equal(a.x_axis, b.x_axis)


def test_wrong_size_rejected() -> None:
    with pytest.raises(MalformedPoseError):
        matrix_to_frame(np.eye(3))


def test_degenerate_matrix_is_not_validated() -> None:
    m = np.eye(4)
    m[0, 0] = 3.0
    frame = matrix_to_frame(m, transpose=True)
    assert np.allclose(frame.x_axis, [3.0, 0.0, 0.0])
    assert not frame.is_orthonormal()


def test_frame_to_plane_keeps_origin_and_axes() -> None:
    frame = next(_random_frames(1, seed=3))
    plane = frame_to_plane(frame)
    assert np.array_equal(plane.origin, frame.origin)
    assert np.array_equal(plane.x_axis, frame.x_axis)
    assert np.array_equal(plane.y_axis, frame.y_axis)
    assert np.allclose(plane.normal, frame.z_axis, atol=1e-9)


@pytest.mark.parametrize("transpose", [False, True])
def test_plane_to_matrix_inverts_frame_to_plane(transpose: bool) -> None:
    frame = next(_random_frames(1, seed=11))
    m = plane_to_matrix(frame_to_plane(frame), transpose)
    assert np.allclose(m, frame_to_matrix(frame, transpose), atol=1e-9)
    back = plane_to_frame(frame_to_plane(frame))
    assert np.allclose(back.z_axis, frame.z_axis, atol=1e-9)


def test_quaternion_of_identity() -> None:
    frame = CoordinateFrame.identity()
    assert np.allclose(frame.quaternion, [1.0, 0.0, 0.0, 0.0])
    assert np.allclose(frame.rotation, np.eye(3))


def test_align_axes_maps_y_up_to_z_up() -> None:
    m = np.eye(4)
    m[:3, 3] = [0.5, 1.7, -2.0]  # 1.7 m above the floor, 2 m forward
    out = align_axes(m, z_up=True, unit_scale=1000.0)
    assert np.allclose(out[:3, 3], [500.0, 2000.0, 1700.0])
    assert is_orthonormal(out[:3, :3])
    assert np.isclose(np.linalg.det(out[:3, :3]), 1.0)


def test_align_axes_without_z_up_only_scales() -> None:
    m = np.eye(4)
    m[:3, 3] = [1.0, 2.0, 3.0]
    out = align_axes(m, z_up=False, unit_scale=2.0)
    assert np.allclose(out[:3, :3], np.eye(3))
    assert np.allclose(out[:3, 3], [2.0, 4.0, 6.0])
    assert np.allclose(m[:3, 3], [1.0, 2.0, 3.0])


def test_orthonormalize_repairs_drift() -> None:
    R = Rotation.from_euler("xyz", [10, 20, 30], degrees=True).as_matrix()
    drifted = R + 1e-3 * np.arange(9).reshape(3, 3)
    assert not is_orthonormal(drifted)
    fixed = orthonormalize(drifted)
    assert is_orthonormal(fixed)
    assert np.isclose(np.linalg.det(fixed), 1.0)
    assert np.allclose(fixed, R, atol=1e-2)


def test_orthonormalize_rejects_rank_deficient() -> None:
    with pytest.raises(MalformedPoseError):
        orthonormalize(np.zeros((3, 3)))


def test_validate_pose_policies() -> None:
    m = np.eye(4)
    m[:3, :3] *= 1.01

    assert np.array_equal(validate_pose(m, "pass"), m)
    assert is_orthonormal(validate_pose(m, "orthonormalize")[:3, :3])
    with pytest.raises(MalformedPoseError):
        validate_pose(m, "reject")

    nan_pose = np.eye(4)
    nan_pose[0, 3] = np.nan
    for policy in ("pass", "orthonormalize", "reject"):
        with pytest.raises(MalformedPoseError):
            validate_pose(nan_pose, policy)


def test_plane_normal_is_cross_product() -> None:
    plane = Plane(
        origin=np.zeros(3),
        x_axis=np.array([0.0, 1.0, 0.0]),
        y_axis=np.array([0.0, 0.0, 1.0]),
    )
    assert np.allclose(plane.normal, [1.0, 0.0, 0.0])
    assert plane.to_dict()["normal"] == [1.0, 0.0, 0.0]


def test_mirrored_basis_is_not_a_valid_rotation() -> None:
    mirrored = np.diag([1.0, 1.0, -1.0, 1.0])
    mirrored[:3, 3] = [0.1, 0.2, 0.3]
    assert is_orthonormal(mirrored[:3, :3])

    with pytest.raises(MalformedPoseError):
        validate_pose(mirrored, "reject")

    fixed = validate_pose(mirrored, "orthonormalize")
    assert is_orthonormal(fixed[:3, :3])
    assert np.isclose(np.linalg.det(fixed[:3, :3]), 1.0)
    assert np.allclose(fixed[:3, 3], [0.1, 0.2, 0.3])

    assert np.array_equal(validate_pose(mirrored, "pass"), mirrored)
