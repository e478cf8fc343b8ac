"""
Object Tracker Camera Adapter
==============================
Turns bearing-only image percepts into pose percepts.

  pixel (u, v) --K⁻¹--> optical ray --axes--> body direction
  position    = normalize(direction) * default_distance
  orientation = small-angle bearing rotation (yaw = y/x, pitch = -z/x)
  covariance  = zero (the projector substitutes the range-dependent default)

A zero-length ray, or a ray perpendicular to the viewing axis (x == 0 in the
body frame), has no defined bearing. The arithmetic runs under
``np.errstate`` and yields NaN/inf, which is reported and the percept is
dropped.

License: AGPL-3.0-or-later
"""

import logging
import threading
from typing import Dict, Optional

import numpy as np

from .tracker_geometry import bearing_quaternion, normalized, optical_to_body
from .tracker_percepts import CameraInfo, ImagePercept, PosePercept

logger = logging.getLogger(__name__)


class PinholeCamera:
    """Pinhole projection model built from a CameraInfo."""

    def __init__(self, fx: float, fy: float, cx: float, cy: float):
        self.fx = fx
        self.fy = fy
        self.cx = cx
        self.cy = cy

    @classmethod
    def from_camera_info(cls, info: CameraInfo) -> "PinholeCamera":
        K = info.K
        return cls(fx=K[0, 0], fy=K[1, 1], cx=K[0, 2], cy=K[1, 2])

    def project_pixel_to_ray(self, u: float, v: float) -> np.ndarray:
        """Ray through pixel (u, v) in the optical frame, z = 1."""
        with np.errstate(divide='ignore', invalid='ignore'):
            x = (np.float64(u) - self.cx) / np.float64(self.fx)
            y = (np.float64(v) - self.cy) / np.float64(self.fy)
        return np.array([x, y, 1.0])

    def __repr__(self):
        return f"PinholeCamera(fx={self.fx:.1f}, fy={self.fy:.1f}, cx={self.cx:.1f}, cy={self.cy:.1f})"


class ImagePerceptAdapter:
    """Maps ImagePercepts to PosePercepts at a fixed assumed range.

    One camera model is cached per frame id; the first calibration received
    for a frame is kept.
    """

    def __init__(self, default_distance: float = 1.0):
        self.default_distance = default_distance
        self.camera_models: Dict[str, PinholeCamera] = {}
        self._lock = threading.Lock()

    def camera_model(self, percept: ImagePercept) -> PinholeCamera:
        frame_id = percept.header.frame_id
        with self._lock:
            if frame_id not in self.camera_models:
                self.camera_models[frame_id] = PinholeCamera.from_camera_info(percept.camera_info)
            return self.camera_models[frame_id]

    def to_pose_percept(self, percept: ImagePercept) -> Optional[PosePercept]:
        """Pose percept along the bearing of the region centre, or None."""
        model = self.camera_model(percept)
        u = percept.x + percept.width / 2.0
        v = percept.y + percept.height / 2.0
        direction = optical_to_body(model.project_pixel_to_ray(u, v))

        position = normalized(direction) * self.default_distance
        orientation = bearing_quaternion(direction)
        if not (np.all(np.isfinite(position)) and np.all(np.isfinite(orientation))):
            logger.warning("Ignoring %s percept with undefined bearing (direction %s)",
                           percept.info.class_id or "unclassified", direction)
            return None

        return PosePercept(
            header=percept.header,
            info=percept.info,
            position=position,
            orientation=orientation,
        )
