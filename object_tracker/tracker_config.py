"""
Object Tracker Configuration
=============================
Runtime parameters of the object tracker and the YAML loader for them.

The defaults reproduce the behaviour of a freshly started tracker node:
objects live in the ``map`` frame, percepts are not projected onto
obstacles, and bearing-only percepts are placed 1 m in front of the camera.

Example ``tracker.yaml``::

    object_tracker:
      frame_id: map
      project_objects: true
      default_distance: 1.5
      angle_variance: 0.0076
      min_height: -0.5
      max_height: 1.8
      verification_services: victim_verification,heat_verification

License: AGPL-3.0-or-later
"""

import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List

import yaml


@dataclass
class TrackerConfig:
    """Configuration for :class:`object_tracker.ObjectTracker`.

    Attributes:
        frame_id: Global reference frame all tracked objects are stored in
        project_objects: Snap percept range to the nearest obstacle
        default_distance: Assumed range of bearing-only percepts [m]
        distance_variance: Default variance along the bearing axis [m²]
        angle_variance: Default angular variance [rad²], scaled by range²
        min_height: Lowest accepted percept height relative to the sensor [m]
        max_height: Highest accepted percept height relative to the sensor [m]
        verification_services: Names of verification services, in call order
        transform_timeout: Bounded wait for a frame transform [s]
        gate_threshold: Squared Mahalanobis association gate
        confirm_support: Support bonus for a CONFIRM verification verdict
        default_variance: Positional variance of directly added objects [m²]
    """
    frame_id: str = "map"
    project_objects: bool = False
    default_distance: float = 1.0
    distance_variance: float = 1.0
    angle_variance: float = math.radians(5.0)
    min_height: float = -999.9
    max_height: float = 999.9
    verification_services: List[str] = field(default_factory=list)
    transform_timeout: float = 1.0
    gate_threshold: float = 1.0
    confirm_support: float = 100.0
    default_variance: float = 1.0

    def validate(self) -> None:
        """Raise ValueError if the parameters are inconsistent."""
        if self.default_distance <= 0.0:
            raise ValueError(f"default_distance must be > 0, got {self.default_distance}")
        for name in ("distance_variance", "angle_variance", "default_variance"):
            value = getattr(self, name)
            if value <= 0.0:
                raise ValueError(f"{name} must be > 0, got {value}")
        if self.min_height > self.max_height:
            raise ValueError(
                f"min_height ({self.min_height}) exceeds max_height ({self.max_height})")
        if self.gate_threshold <= 0.0:
            raise ValueError(f"gate_threshold must be > 0, got {self.gate_threshold}")
        if self.transform_timeout < 0.0:
            raise ValueError(f"transform_timeout must be >= 0, got {self.transform_timeout}")

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "TrackerConfig":
        """Build a config from a parameter dict, rejecting unknown keys.

        ``verification_services`` may be a list or a comma-separated string;
        empty entries are skipped.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValueError(f"Unknown tracker parameters: {', '.join(unknown)}")

        params = dict(params)
        services = params.get("verification_services")
        if services is None:
            params["verification_services"] = []
        elif isinstance(services, str):
            params["verification_services"] = [
                s.strip() for s in services.split(",") if s.strip()]
        else:
            params["verification_services"] = [str(s) for s in services if str(s)]

        config = cls(**params)
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(config_path: str) -> TrackerConfig:
    """Load a :class:`TrackerConfig` from a YAML file.

    The parameters may sit at the top level or under an ``object_tracker``
    section. An empty file yields the defaults.
    """
    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{config_path}: expected a mapping, got {type(raw).__name__}")
    section = raw.get("object_tracker", raw)
    return TrackerConfig.from_dict(section or {})
