"""
Persistent per-(class, index) pose slots.

A slot keeps the last corrected frame, its plane and (controllers only) the
button state captured with it. Slots are created on first successful
resolution and live as long as their cache.
"""

from enum import Enum
from typing import Optional, Dict, Any, Iterator, Tuple
from dataclasses import dataclass

from .convert import CoordinateFrame, Plane
from .devices import DeviceClass, ButtonState


SlotKey = Tuple[DeviceClass, int]


class SlotState(str, Enum):
    EMPTY = "empty"
    STALE = "stale"
    FRESH = "fresh"


@dataclass
class DeviceSlot:
    """Last captured data for one (class, index) pair."""
    device_class: DeviceClass
    index: int
    state: SlotState = SlotState.EMPTY
    frame: Optional[CoordinateFrame] = None
    plane: Optional[Plane] = None
    buttons: Optional[ButtonState] = None
    serial: str = ""
    captured_poll: int = -1  # poll id of the last fresh capture

    @property
    def key(self) -> SlotKey:
        return (self.device_class, self.index)

    @property
    def has_pose(self) -> bool:
        return self.frame is not None

    def capture(
        self,
        frame: CoordinateFrame,
        plane: Plane,
        buttons: Optional[ButtonState],
        serial: str,
        poll_id: int
    ) -> None:
        """Overwrite with freshly computed data."""
        self.frame = frame
        self.plane = plane
        self.buttons = buttons if self.device_class == DeviceClass.CONTROLLER else None
        self.serial = serial
        self.captured_poll = poll_id
        self.state = SlotState.FRESH

    def freeze(self) -> None:
        """Keep the captured data; mark it as not refreshed by this call."""
        self.state = SlotState.STALE

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


class DeviceSlotCache:
    """
    Growable mapping (class, index) -> DeviceSlot.

    Not thread-safe on its own; callers serialize access (see
    ``TrackingContext``).
    """

    def __init__(self):
        self._slots: Dict[SlotKey, DeviceSlot] = {}

    def get(self, device_class: DeviceClass, index: int) -> Optional[DeviceSlot]:
        return self._slots.get((device_class, index))

    def get_or_create(self, device_class: DeviceClass, index: int) -> DeviceSlot:
        key = (device_class, index)
        slot = self._slots.get(key)
        if slot is None:
            slot = DeviceSlot(device_class=device_class, index=index)
            self._slots[key] = slot
        return slot

    def __contains__(self, key: SlotKey) -> bool:
        return key in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[DeviceSlot]:
        return iter(list(self._slots.values()))

    def keys(self) -> Tuple[SlotKey, ...]:
        return tuple(self._slots.keys())

    def to_dict(self) -> Dict[str, Any]:
        return {
            f"{cls.value}[{index}]": slot.to_dict()
            for (cls, index), slot in self._slots.items()
        }
