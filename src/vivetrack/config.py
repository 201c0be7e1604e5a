"""
Configuration for the tracking context.

JSON layout (every section and key optional)::

    {
        "runtime": {"app_type": "other", "tracking_universe": "standing",
                    "max_device_count": 64},
        "frame": {"unit_scale": 1000.0, "z_up": true},
        "correction": {"tracker_offset_deg": [-90, 0, 0]},
        "validation": {"policy": "orthonormalize", "tolerance": 1e-5}
    }
"""

import json
from typing import Any, Dict, Tuple
from dataclasses import dataclass, field

from .correction import DEFAULT_TRACKER_OFFSET_DEG


APP_TYPES = ("other", "scene", "background")
TRACKING_UNIVERSES = ("standing", "seated", "raw")
VALIDATION_POLICIES = ("pass", "orthonormalize", "reject")


@dataclass
class TrackingConfig:
    """Configuration for runtime access, frame conversion and validation."""
    # Runtime settings
    app_type: str = "other"
    tracking_universe: str = "standing"
    max_device_count: int = 64

    # Application frame
    unit_scale: float = 1.0  # metres -> application units
    z_up: bool = True

    # Correction
    tracker_offset_deg: Tuple[float, float, float] = field(
        default_factory=lambda: tuple(DEFAULT_TRACKER_OFFSET_DEG))

    # Malformed pose handling
    pose_validation: str = "orthonormalize"
    orthonormal_tolerance: float = 1e-5

    def validate(self) -> "TrackingConfig":
        """
        Raises:
            ValueError: On any out-of-range setting
        """
        if self.app_type not in APP_TYPES:
            raise ValueError(f"app_type must be one of {APP_TYPES}, got {self.app_type!r}")
        if self.tracking_universe not in TRACKING_UNIVERSES:
            raise ValueError(
                f"tracking_universe must be one of {TRACKING_UNIVERSES}, got {self.tracking_universe!r}")
        if self.pose_validation not in VALIDATION_POLICIES:
            raise ValueError(
                f"pose_validation must be one of {VALIDATION_POLICIES}, got {self.pose_validation!r}")
        if self.max_device_count <= 0:
            raise ValueError("max_device_count must be > 0")
        if self.unit_scale <= 0:
            raise ValueError("unit_scale must be > 0")
        if self.orthonormal_tolerance <= 0:
            raise ValueError("orthonormal_tolerance must be > 0")
        if len(self.tracker_offset_deg) != 3:
            raise ValueError("tracker_offset_deg must have 3 angles")
        return self

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> "TrackingConfig":
        config = cls()

        runtime_config = config_data.get('runtime', {})
        config.app_type = runtime_config.get('app_type', config.app_type)
        config.tracking_universe = runtime_config.get('tracking_universe', config.tracking_universe)
        config.max_device_count = int(runtime_config.get('max_device_count', config.max_device_count))

        frame_config = config_data.get('frame', {})
        config.unit_scale = float(frame_config.get('unit_scale', config.unit_scale))
        config.z_up = bool(frame_config.get('z_up', config.z_up))

        correction_config = config_data.get('correction', {})
        config.tracker_offset_deg = tuple(
            float(a) for a in correction_config.get('tracker_offset_deg', config.tracker_offset_deg))

        validation_config = config_data.get('validation', {})
        config.pose_validation = validation_config.get('policy', config.pose_validation)
        config.orthonormal_tolerance = float(
            validation_config.get('tolerance', config.orthonormal_tolerance))

        return config.validate()

    @classmethod
    def from_json(cls, config_file: str) -> "TrackingConfig":
        """
        Load configuration from a JSON file.

        Args:
            config_file: Path to JSON configuration file

        Returns:
            TrackingConfig instance
        """
        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
        return cls.from_dict(config_data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runtime": {
                "app_type": self.app_type,
                "tracking_universe": self.tracking_universe,
                "max_device_count": self.max_device_count,
            },
            "frame": {"unit_scale": self.unit_scale, "z_up": self.z_up},
            "correction": {"tracker_offset_deg": list(self.tracker_offset_deg)},
            "validation": {
                "policy": self.pose_validation,
                "tolerance": self.orthonormal_tolerance,
            },
        }
