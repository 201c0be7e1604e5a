"""
Tracked device model and role classification.

Provides functionality to:
- Describe a raw device reported by the runtime for one poll (RawDevice)
- Decode controller button/axis readings (ButtonState)
- Group devices into roles in enumeration order (ClassIndex, classify)
"""

import numpy as np
from enum import Enum
from typing import Optional, Dict, Any, List, Sequence, Tuple
from dataclasses import dataclass, field


class DeviceClass(str, Enum):
    """Tracked role of a device."""
    HMD = "HMD"
    CONTROLLER = "Controller"
    LIGHTHOUSE = "Lighthouse"
    GENERIC_TRACKER = "Tracker"

    @classmethod
    def parse(cls, value: Any) -> "DeviceClass":
        """
        Accept a DeviceClass, its value or a common alias.

        Raises:
            ValueError: If the value names no role
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "").replace(" ", "")
            if key in _ALIASES:
                return _ALIASES[key]
        raise ValueError(f"unknown device class: {value!r}")


_ALIASES = {
    "hmd": DeviceClass.HMD,
    "headset": DeviceClass.HMD,
    "controller": DeviceClass.CONTROLLER,
    "lighthouse": DeviceClass.LIGHTHOUSE,
    "basestation": DeviceClass.LIGHTHOUSE,
    "trackingreference": DeviceClass.LIGHTHOUSE,
    "tracker": DeviceClass.GENERIC_TRACKER,
    "generictracker": DeviceClass.GENERIC_TRACKER,
}

# ETrackedDeviceClass values reported by the runtime
RUNTIME_CLASS_INVALID = 0
RUNTIME_CLASS_HMD = 1
RUNTIME_CLASS_CONTROLLER = 2
RUNTIME_CLASS_GENERIC_TRACKER = 3
RUNTIME_CLASS_TRACKING_REFERENCE = 4
RUNTIME_CLASS_DISPLAY_REDIRECT = 5

RUNTIME_CLASS_MAP: Dict[int, DeviceClass] = {
    RUNTIME_CLASS_HMD: DeviceClass.HMD,
    RUNTIME_CLASS_CONTROLLER: DeviceClass.CONTROLLER,
    RUNTIME_CLASS_GENERIC_TRACKER: DeviceClass.GENERIC_TRACKER,
    RUNTIME_CLASS_TRACKING_REFERENCE: DeviceClass.LIGHTHOUSE,
}

# EVRButtonId bit positions
BUTTON_APPLICATION_MENU = 1
BUTTON_GRIP = 2
BUTTON_TOUCHPAD = 32
BUTTON_TRIGGER = 33


@dataclass(frozen=True)
class ButtonState:
    """Controller inputs captured with a pose."""
    trigger_pressed: bool = False
    trigger_clicked: bool = False
    trigger_value: float = 0.0  # 0 (released) .. 1 (fully pressed)
    touchpad_touched: bool = False
    touchpad_clicked: bool = False
    touchpad_x: float = 0.0  # -1 (left) .. 1 (right)
    touchpad_y: float = 0.0  # -1 (bottom) .. 1 (top)
    grip_pressed: bool = False
    menu_pressed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger_pressed": self.trigger_pressed,
            "trigger_clicked": self.trigger_clicked,
            "trigger_value": self.trigger_value,
            "touchpad_touched": self.touchpad_touched,
            "touchpad_clicked": self.touchpad_clicked,
            "touchpad_x": self.touchpad_x,
            "touchpad_y": self.touchpad_y,
            "grip_pressed": self.grip_pressed,
            "menu_pressed": self.menu_pressed,
        }


def decode_controller_state(
    pressed: int,
    touched: int,
    axes: Sequence[Tuple[float, float]]
) -> ButtonState:
    """
    Decode the runtime's controller state.

    Args:
        pressed: ulButtonPressed bit mask
        touched: ulButtonTouched bit mask
        axes: (x, y) per axis; axis 0 is the touchpad, axis 1 the trigger

    Returns:
        ButtonState
    """
    def bit(mask: int, button: int) -> bool:
        return bool(int(mask) & (1 << button))

    pad_x, pad_y = axes[0] if len(axes) > 0 else (0.0, 0.0)
    trigger = axes[1][0] if len(axes) > 1 else 0.0

    return ButtonState(
        trigger_pressed=bit(touched, BUTTON_TRIGGER) or trigger > 0.0,
        trigger_clicked=bit(pressed, BUTTON_TRIGGER),
        trigger_value=float(np.clip(trigger, 0.0, 1.0)),
        touchpad_touched=bit(touched, BUTTON_TOUCHPAD),
        touchpad_clicked=bit(pressed, BUTTON_TOUCHPAD),
        touchpad_x=float(np.clip(pad_x, -1.0, 1.0)),
        touchpad_y=float(np.clip(pad_y, -1.0, 1.0)),
        grip_pressed=bit(pressed, BUTTON_GRIP),
        menu_pressed=bit(pressed, BUTTON_APPLICATION_MENU),
    )


@dataclass
class RawDevice:
    """
    One connected device as reported by the runtime for a single poll.

    ``pose`` is the runtime's 3x4 device-to-absolute transform padded to 4x4
    (column-vector layout, metres, Y up). It is only meaningful within the
    poll that produced it.
    """
    index: int  # runtime device index
    runtime_class: int
    pose: np.ndarray = field(default_factory=lambda: np.eye(4))
    pose_valid: bool = True
    serial: str = ""
    model: str = ""
    buttons: Optional[ButtonState] = None

    @property
    def device_class(self) -> Optional[DeviceClass]:
        return RUNTIME_CLASS_MAP.get(self.runtime_class)


def pose_from_hmd34(m: Any) -> np.ndarray:
    """Pad a 3x4 runtime matrix (rows of 4 values) to a 4x4 array."""
    out = np.eye(4)
    for i in range(3):
        for j in range(4):
            out[i, j] = m[i][j]
    return out


class ClassIndex:
    """
    Role -> ordered device positions for one poll.

    Built once per poll and never mutated, so every query against the same
    poll resolves a (class, index) pair to the same device.
    """

    def __init__(
        self,
        devices: Sequence[RawDevice],
        by_class: Dict[DeviceClass, Tuple[int, ...]],
        poll_id: int = 0
    ):
        self.devices: Tuple[RawDevice, ...] = tuple(devices)
        self.by_class = {cls: tuple(by_class.get(cls, ())) for cls in DeviceClass}
        self.poll_id = poll_id

    def count(self, device_class: DeviceClass) -> int:
        return len(self.by_class[device_class])

    def positions(self, device_class: DeviceClass) -> Tuple[int, ...]:
        """Positions into ``devices`` for a role, in enumeration order."""
        return self.by_class[device_class]

    def resolve(self, device_class: DeviceClass, index: int) -> Optional[RawDevice]:
        """Device at ``index`` within a role, or None if out of range."""
        positions = self.by_class[device_class]
        if index < 0 or index >= len(positions):
            return None
        return self.devices[positions[index]]

    def summary(self) -> str:
        """Multi-line device count per role."""
        lines = [f"Devices detected: {sum(self.count(c) for c in DeviceClass)}"]
        for cls in DeviceClass:
            serials = [self.devices[p].serial for p in self.by_class[cls]]
            named = ", ".join(s for s in serials if s)
            line = f"  {cls.value}: {len(serials)}"
            if named:
                line += f" ({named})"
            lines.append(line)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "counts": {cls.value: self.count(cls) for cls in DeviceClass},
        }


def classify(devices: Sequence[RawDevice], poll_id: int = 0) -> ClassIndex:
    """
    Partition this poll's devices into roles.

    Enumeration order is kept; devices whose runtime class maps to no role
    are left out of every list.
    """
    by_class: Dict[DeviceClass, List[int]] = {cls: [] for cls in DeviceClass}
    for position, device in enumerate(devices):
        device_class = device.device_class
        if device_class is None:
            continue
        by_class[device_class].append(position)

    return ClassIndex(
        devices,
        {cls: tuple(p) for cls, p in by_class.items()},
        poll_id=poll_id,
    )
