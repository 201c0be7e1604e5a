"""
Simulated tracking rig and command-line poll loop.

Provides functionality to:
- Emulate the runtime backend with scripted HMD / controller / lighthouse /
  tracker devices (static, linear or circular trajectories)
- Inject connect and poll failures
- Run a poll loop that queries every role and prints / exports snapshots
"""

from __future__ import annotations

import argparse
import logging
import math
import sys
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .config import TrackingConfig
from .devices import (
    ButtonState, DeviceClass, RawDevice,
    RUNTIME_CLASS_HMD, RUNTIME_CLASS_CONTROLLER,
    RUNTIME_CLASS_TRACKING_REFERENCE, RUNTIME_CLASS_GENERIC_TRACKER,
)
from .query import QueryResult, TrackingContext
from .session import BackendError, BackendUnavailableError, OpenVRBackend
from .visualize import TrackingVisualizer


logger = logging.getLogger(__name__)

TRAJECTORIES = ("static", "linear", "circle")

_SERIAL_PREFIX = {
    RUNTIME_CLASS_HMD: "HMD",
    RUNTIME_CLASS_CONTROLLER: "CTRL",
    RUNTIME_CLASS_TRACKING_REFERENCE: "LHB",
    RUNTIME_CLASS_GENERIC_TRACKER: "TRK",
}


def _roty(theta_rad: float) -> np.ndarray:
    """Rotation about the runtime's vertical (+Y) axis."""
    c = float(np.cos(theta_rad))
    s = float(np.sin(theta_rad))
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]], dtype=np.float64)


@dataclass
class SimulatedDevice:
    """One scripted device; poses are in the runtime frame (metres, Y up)."""
    index: int
    runtime_class: int
    serial: str
    position: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    trajectory: str = "static"
    radius: float = 0.2
    speed: float = 0.5  # rad/s for circle, m/s for linear
    pose_valid: bool = True
    buttons: ButtonState | None = None
    override: np.ndarray | None = None

    def pose(self, t: float) -> np.ndarray:
        if self.override is not None:
            return self.override.copy()

        R = self.rotation
        p = np.asarray(self.position, dtype=np.float64).copy()
        if self.trajectory == "circle":
            theta = self.speed * t
            R = _roty(theta) @ R
            p = p + self.radius * np.array([math.cos(theta), 0.0, math.sin(theta)])
        elif self.trajectory == "linear":
            p = p + np.array([self.speed * t, 0.0, 0.0])

        out = np.eye(4)
        out[:3, :3] = R
        out[:3, 3] = p
        return out


class SimulatedBackend:
    """
    In-process stand-in for the runtime backend.

    Devices are enumerated in the order they were added.
    """

    def __init__(self, fps: float = 90.0, runtime_installed: bool = True):
        self.fps = fps
        self.runtime_installed = runtime_installed
        self.connect_error: str | None = None
        self.poll_error: str | None = None
        self.devices: list[SimulatedDevice] = []
        self._next_index = 0
        self._connected = False
        self._frame_index = 0

    @property
    def frame_index(self) -> int:
        return self._frame_index

    def add_device(
        self,
        runtime_class: int,
        serial: str | None = None,
        position: Any = (0.0, 0.0, 0.0),
        rotation: np.ndarray | None = None,
        trajectory: str = "static",
        **kwargs: Any,
    ) -> SimulatedDevice:
        if trajectory not in TRAJECTORIES:
            raise ValueError(f"trajectory must be one of {TRAJECTORIES}")
        if serial is None:
            serial = f"{_SERIAL_PREFIX.get(runtime_class, 'DEV')}-{self._next_index:04d}"
        device = SimulatedDevice(
            index=self._next_index,
            runtime_class=runtime_class,
            serial=serial,
            position=np.asarray(position, dtype=np.float64),
            rotation=np.eye(3) if rotation is None else np.asarray(rotation, dtype=np.float64),
            trajectory=trajectory,
            **kwargs,
        )
        if runtime_class == RUNTIME_CLASS_CONTROLLER and device.buttons is None:
            device.buttons = ButtonState()
        self._next_index += 1
        self.devices.append(device)
        return device

    def device(self, serial: str) -> SimulatedDevice:
        for device in self.devices:
            if device.serial == serial:
                return device
        raise KeyError(serial)

    def remove_device(self, serial: str) -> None:
        self.devices.remove(self.device(serial))

    def set_pose(self, serial: str, matrix: np.ndarray | None) -> None:
        """Pin a device to a fixed 4x4 pose (None restores its trajectory)."""
        self.device(serial).override = None if matrix is None else np.asarray(matrix, dtype=np.float64)

    def set_buttons(self, serial: str, buttons: ButtonState) -> None:
        self.device(serial).buttons = buttons

    def runtime_available(self) -> bool:
        return self.runtime_installed

    def connect(self) -> None:
        if not self.runtime_installed:
            raise BackendUnavailableError("simulated runtime not installed")
        if self.connect_error is not None:
            raise BackendError(self.connect_error)
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def poll(self) -> list[RawDevice]:
        if not self._connected:
            raise BackendError("simulated backend not connected")
        if self.poll_error is not None:
            raise BackendError(self.poll_error)

        t = self._frame_index / float(self.fps)
        self._frame_index += 1
        return [
            RawDevice(
                index=d.index,
                runtime_class=d.runtime_class,
                pose=d.pose(t),
                pose_valid=d.pose_valid,
                serial=d.serial,
                buttons=d.buttons,
            )
            for d in self.devices
        ]


def create_rig(
    hmd: int = 1,
    controllers: int = 2,
    lighthouses: int = 2,
    trackers: int = 0,
    trajectory: str = "circle",
    fps: float = 90.0,
) -> SimulatedBackend:
    """Typical room setup: headset at eye height, base stations in the corners."""
    backend = SimulatedBackend(fps=fps)
    for _ in range(hmd):
        backend.add_device(RUNTIME_CLASS_HMD, position=(0.0, 1.7, 0.0), trajectory=trajectory)
    for i in range(controllers):
        side = -0.25 if i % 2 == 0 else 0.25
        backend.add_device(
            RUNTIME_CLASS_CONTROLLER, position=(side, 1.1, -0.3), trajectory=trajectory)
    for i in range(lighthouses):
        corner = 1.0 if i % 2 == 0 else -1.0
        # Tilted down towards the play area centre
        tilt = _roty(math.pi / 4 if corner > 0 else -3 * math.pi / 4)
        backend.add_device(
            RUNTIME_CLASS_TRACKING_REFERENCE,
            position=(2.0 * corner, 2.4, 2.0 * corner),
            rotation=tilt,
        )
    for i in range(trackers):
        backend.add_device(
            RUNTIME_CLASS_GENERIC_TRACKER,
            position=(0.3 * i, 0.9, 0.0),
            trajectory=trajectory,
        )
    return backend


def query_all(context: TrackingContext, tracked: bool = True) -> dict[str, QueryResult]:
    """Query every device of every role for the current poll."""
    class_index = context.session.class_index
    counts = {cls: class_index.count(cls) if class_index else 0 for cls in DeviceClass}
    results: dict[str, QueryResult] = {}
    for cls in DeviceClass:
        for i in range(max(counts[cls], 1)):
            results[f"{cls.value}[{i}]"] = context.query(cls, i, tracked)
    return results


def run_simulation(
    polls: int,
    controllers: int = 2,
    lighthouses: int = 2,
    trackers: int = 0,
    trajectory: str = "circle",
    freeze_after: int | None = None,
    config: TrackingConfig | None = None,
    out_dir: str | None = None,
    console: bool = False,
) -> dict[str, Any]:
    """
    Poll a simulated rig and query every role each poll.

    Args:
        polls: Number of polls (>0)
        freeze_after: After this many polls, query with tracked=False
        out_dir: Directory for the JSONL snapshot log (None disables it)
        console: Print snapshots each poll

    Returns:
        Summary with the final status and the log path
    """
    if polls <= 0:
        raise ValueError("polls must be > 0")

    backend = create_rig(
        controllers=controllers, lighthouses=lighthouses,
        trackers=trackers, trajectory=trajectory,
    )
    context = TrackingContext(backend, config)
    visualizer = TrackingVisualizer(output_dir=out_dir, enable_console=console)

    if not context.connect():
        raise RuntimeError(context.summary())

    visualizer.start_session(session_name="sim")
    last: dict[str, QueryResult] = {}
    try:
        for i in range(polls):
            if i > 0 and not context.update():
                logger.warning("Poll %d failed: %s", i, context.state.error_message)
                continue
            tracked = freeze_after is None or i < freeze_after
            last = query_all(context, tracked=tracked)
            visualizer.visualize(last, context.session.poll_id)
    finally:
        visualizer.end_session()

    return {
        "summary": context.summary(),
        "status": context.get_status(),
        "last": {label: r.to_dict() for label, r in last.items()},
        "snapshot_log": str(visualizer.output_path) if visualizer.output_path else None,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m vivetrack.sim")
    parser.add_argument("--polls", type=int, default=10, help="Number of polls (>0)")
    parser.add_argument("--backend", type=str, default="sim", choices=["sim", "openvr"],
                        help="Device source: simulated rig or the OpenVR runtime")
    parser.add_argument("--controllers", type=int, default=2, help="Simulated controllers")
    parser.add_argument("--lighthouses", type=int, default=2, help="Simulated base stations")
    parser.add_argument("--trackers", type=int, default=0, help="Simulated generic trackers")
    parser.add_argument("--trajectory", type=str, default="circle",
                        help="Trajectory: static|linear|circle")
    parser.add_argument("--freeze-after", type=int, default=None,
                        help="Stop updating poses after this many polls")
    parser.add_argument("--config", type=str, default=None, help="JSON configuration file")
    parser.add_argument("--out-dir", type=str, default=None, help="Directory for the snapshot log")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level")

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        try:
            return int(e.code)
        except Exception:
            return 2

    def _err(msg: str) -> int:
        print(f"error: {msg}", file=sys.stderr)
        return 2

    if args.polls <= 0:
        return _err("--polls must be > 0")
    if min(args.controllers, args.lighthouses, args.trackers) < 0:
        return _err("device counts must be >= 0")
    if args.trajectory not in TRAJECTORIES:
        return _err("--trajectory must be one of: static, linear, circle")
    if args.freeze_after is not None and args.freeze_after < 0:
        return _err("--freeze-after must be >= 0")

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = TrackingConfig.from_json(args.config) if args.config else TrackingConfig()
    except (OSError, ValueError) as e:
        return _err(f"invalid config: {e}")

    if args.backend == "openvr":
        context = TrackingContext(OpenVRBackend(config), config)
        if not context.connect():
            print(context.summary(), file=sys.stderr)
            return 1
        print(context.summary())
        visualizer = TrackingVisualizer(output_dir=args.out_dir)
        visualizer.start_session()
        try:
            for i in range(args.polls):
                if i > 0 and not context.update():
                    print(context.summary(), file=sys.stderr)
                    continue
                tracked = args.freeze_after is None or i < args.freeze_after
                visualizer.visualize(query_all(context, tracked), context.session.poll_id)
        finally:
            visualizer.end_session()
            context.disconnect()
        return 0

    try:
        out = run_simulation(
            polls=args.polls,
            controllers=args.controllers,
            lighthouses=args.lighthouses,
            trackers=args.trackers,
            trajectory=args.trajectory,
            freeze_after=args.freeze_after,
            config=config,
            out_dir=args.out_dir,
            console=True,
        )
    except RuntimeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print()
    print(out["summary"])
    if out["snapshot_log"]:
        print(f"snapshot_log: {out['snapshot_log']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
