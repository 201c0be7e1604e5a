"""
vivetrack: device classification, pose caching and coordinate conversion for
a VR tracking rig (headset, controllers, base stations, generic trackers).

Modules:
- convert: Matrix / frame / plane conversion, axis alignment, validation
- devices: Device roles, raw devices, button decoding, classification
- correction: Per-class pose correction and calibration transforms
- slots: Persistent per-(class, index) slot cache
- session: Runtime backends and the connect / update cycle
- query: Tracking context and per-role queries
- config: Configuration loading
- metrics: Poll and query statistics
- visualize: Console / JSONL output and render transform hand-off
- sim: Simulated rig and command-line poll loop
"""

from .convert import (
    CoordinateFrame, Plane, MalformedPoseError,
    matrix_to_frame, frame_to_matrix, frame_to_plane, plane_to_frame,
    plane_to_matrix, align_axes, orthonormalize, validate_pose,
)
from .devices import (
    DeviceClass, RawDevice, ButtonState, ClassIndex,
    classify, decode_controller_state, pose_from_hmd34,
)
from .correction import PoseCorrector, correct, calibration_from_matrix
from .slots import DeviceSlot, DeviceSlotCache, SlotState
from .session import (
    ConnectionState, ConnectionSession, TrackingBackend, OpenVRBackend,
    BackendError, BackendUnavailableError,
)
from .query import (
    QueryStatus, QueryResult, DeviceSnapshot, TrackingContext, query_device,
)
from .config import TrackingConfig
from .metrics import PollMetrics
from .visualize import TrackingVisualizer, RenderCapabilities, render_transform
from .sim import SimulatedBackend, create_rig, run_simulation

__all__ = [
    # Conversion
    "CoordinateFrame",
    "Plane",
    "MalformedPoseError",
    "matrix_to_frame",
    "frame_to_matrix",
    "frame_to_plane",
    "plane_to_frame",
    "plane_to_matrix",
    "align_axes",
    "orthonormalize",
    "validate_pose",
    # Devices
    "DeviceClass",
    "RawDevice",
    "ButtonState",
    "ClassIndex",
    "classify",
    "decode_controller_state",
    "pose_from_hmd34",
    # Correction
    "PoseCorrector",
    "correct",
    "calibration_from_matrix",
    # Slots
    "DeviceSlot",
    "DeviceSlotCache",
    "SlotState",
    # Session
    "ConnectionState",
    "ConnectionSession",
    "TrackingBackend",
    "OpenVRBackend",
    "BackendError",
    "BackendUnavailableError",
    # Query
    "QueryStatus",
    "QueryResult",
    "DeviceSnapshot",
    "TrackingContext",
    "query_device",
    # Config / metrics / output
    "TrackingConfig",
    "PollMetrics",
    "TrackingVisualizer",
    "RenderCapabilities",
    "render_transform",
    # Simulation
    "SimulatedBackend",
    "create_rig",
    "run_simulation",
]
