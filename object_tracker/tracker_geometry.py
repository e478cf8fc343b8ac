"""
Object Tracker Geometry
========================
Rigid transforms, bearing rotations and covariance rotation for the object
tracker.

Conventions:
  - Quaternions are [x, y, z, w] (scipy.spatial.transform convention)
  - Sensor body frame: x forward, y left, z up
  - Camera optical frame: z forward, x right, y down
  - Covariances are rotated as R C Rᵀ and re-symmetrized afterwards, so
    floating-point drift never leaves an asymmetric matrix in the model

The bearing of a direction vector d = [x, y, z] is encoded as a small-angle
rotation: yaw = y/x, pitch = -z/x, roll = 0. For x == 0 the ratio is
undefined; the result is non-finite and callers must check it.

License: AGPL-3.0-or-later
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Tuple
from scipy.spatial.transform import Rotation


def identity_quaternion() -> np.ndarray:
    return np.array([0.0, 0.0, 0.0, 1.0])


@dataclass
class Header:
    """Timestamp [s] and frame of a message. ``stamp == 0`` means "unset"."""
    stamp: float = 0.0
    frame_id: str = ""


# ===== RIGID TRANSFORMS =====

@dataclass
class Transform:
    """Rigid transform p' = R p + t.

    Attributes:
        translation: [x, y, z] origin of the child frame in the parent frame
        rotation: Quaternion [x, y, z, w] of the child frame in the parent frame
    """
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=identity_quaternion)

    def __post_init__(self):
        self.translation = np.asarray(self.translation, dtype=float).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=float).reshape(4)

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    @property
    def matrix(self) -> np.ndarray:
        """3x3 rotation matrix."""
        return Rotation.from_quat(self.rotation).as_matrix()

    def apply(self, point: np.ndarray) -> np.ndarray:
        return self.matrix @ np.asarray(point, dtype=float) + self.translation

    def apply_rotation(self, quaternion: np.ndarray) -> np.ndarray:
        """Rotate an orientation given in the child frame into the parent frame."""
        q = Rotation.from_quat(self.rotation) * Rotation.from_quat(quaternion)
        return q.as_quat()

    def compose(self, other: "Transform") -> "Transform":
        """self * other: apply ``other`` first, then ``self``."""
        r = Rotation.from_quat(self.rotation)
        return Transform(
            translation=r.apply(other.translation) + self.translation,
            rotation=(r * Rotation.from_quat(other.rotation)).as_quat(),
        )

    def inverse(self) -> "Transform":
        r_inv = Rotation.from_quat(self.rotation).inv()
        return Transform(translation=-r_inv.apply(self.translation),
                         rotation=r_inv.as_quat())


@dataclass
class StampedTransform:
    """Transform from ``child_frame_id`` into ``frame_id`` valid at ``stamp``."""
    frame_id: str
    child_frame_id: str
    stamp: float
    transform: Transform


# ===== COVARIANCE HELPERS =====

def symmetrize(P: np.ndarray) -> np.ndarray:
    return 0.5 * (P + P.T)


def enforce_psd(P: np.ndarray, tol: float = 0.0) -> np.ndarray:
    """Symmetrize and clip negative eigenvalues produced by round-off."""
    P = symmetrize(np.asarray(P, dtype=float))
    w, V = np.linalg.eigh(P)
    if w.min() >= -tol:
        return P
    w = np.clip(w, 0.0, None)
    return symmetrize(V @ np.diag(w) @ V.T)


def rotate_covariance(P: np.ndarray, R: np.ndarray) -> np.ndarray:
    """R P Rᵀ, re-symmetrized."""
    return symmetrize(R @ P @ R.T)


def position_covariance(covariance: np.ndarray) -> np.ndarray:
    """Positional 3x3 block of a 6x6 pose covariance (or a 3x3 as is)."""
    C = np.asarray(covariance, dtype=float)
    if C.size == 36:
        C = C.reshape(6, 6)
    return C[:3, :3].copy()


def default_bearing_covariance(distance: float, distance_variance: float,
                               angle_variance: float) -> np.ndarray:
    """Covariance of a percept without uncertainty estimate, bearing frame.

    Fixed variance along the bearing, lateral variance growing with the
    squared range (never below ``angle_variance``).
    """
    lateral = max(distance * distance, 1.0) * angle_variance
    return np.diag([distance_variance, lateral, lateral])


# ===== BEARING ROTATION =====

def bearing_angles(direction: np.ndarray) -> Tuple[float, float]:
    """Small-angle (yaw, pitch) of a body-frame direction. Non-finite for x == 0."""
    x, y, z = np.asarray(direction, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        yaw = np.float64(y) / np.float64(x)
        pitch = -np.float64(z) / np.float64(x)
    return float(yaw), float(pitch)


def bearing_quaternion(direction: np.ndarray) -> np.ndarray:
    """Quaternion [x, y, z, w] rotating the body x-axis onto the bearing.

    Returns NaNs when the bearing is undefined.
    """
    yaw, pitch = bearing_angles(direction)
    if not (np.isfinite(yaw) and np.isfinite(pitch)):
        return np.full(4, np.nan)
    return Rotation.from_euler('ZYX', [yaw, pitch, 0.0]).as_quat()


def bearing_rotation(direction: np.ndarray) -> np.ndarray:
    """3x3 matrix of :func:`bearing_quaternion` (NaNs when undefined)."""
    q = bearing_quaternion(direction)
    if not np.all(np.isfinite(q)):
        return np.full((3, 3), np.nan)
    return Rotation.from_quat(q).as_matrix()


def optical_to_body(ray: np.ndarray) -> np.ndarray:
    """Camera optical frame (z fwd, x right, y down) -> body (x fwd, y left, z up)."""
    x, y, z = np.asarray(ray, dtype=float)
    return np.array([z, -x, -y])


def normalized(v: np.ndarray) -> np.ndarray:
    """Unit vector; NaNs for a zero-length input."""
    v = np.asarray(v, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        return v / np.linalg.norm(v)


def yaw_pitch_roll(quaternion: np.ndarray) -> Tuple[float, float, float]:
    """Intrinsic Z-Y-X Euler angles (yaw, pitch, roll) of a quaternion."""
    yaw, pitch, roll = Rotation.from_quat(quaternion).as_euler('ZYX')
    return float(yaw), float(pitch), float(roll)


def quaternion_from_ypr(yaw: float, pitch: float, roll: float) -> np.ndarray:
    return Rotation.from_euler('ZYX', [yaw, pitch, roll]).as_quat()
