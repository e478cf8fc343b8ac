"""
Object Tracker Percept Types
=============================
Plain data carried into the tracker by its observation channels and by the
direct object API.

  Header            : timestamp [s] + coordinate frame id
  PerceptInfo       : class / object hints and their support values
  PosePercept       : pose with 6x6 covariance in the sensor frame
  CameraInfo        : pinhole calibration (intrinsic matrix K)
  ImagePercept      : pixel region + calibration (bearing-only)
  ObjectDescription : full object for create-or-update requests

Optional identifiers are ``None`` rather than empty strings.

License: AGPL-3.0-or-later
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Optional

from .tracker_geometry import Header, identity_quaternion
from .tracker_model import ObjectState


@dataclass
class PerceptInfo:
    """Identity hints of a percept.

    The object support is used when an object id is given, otherwise the
    class support; a percept with neither id carries no information.
    """
    class_id: Optional[str] = None
    class_support: float = 0.0
    object_id: Optional[str] = None
    object_support: float = 0.0
    name: Optional[str] = None

    @property
    def support(self) -> float:
        if self.object_id:
            return float(self.object_support)
        if self.class_id:
            return float(self.class_support)
        return 0.0


@dataclass
class PosePercept:
    """Pose-with-covariance observation in the sensor frame.

    Attributes:
        header: Observation time and source frame
        info: Class / object hints and support
        position: [x, y, z] in ``header.frame_id``
        orientation: Quaternion [x, y, z, w]
        covariance: 6x6 pose covariance (only the positional 3x3 block is used);
                    all zeros means "no estimate"
    """
    header: Header
    info: PerceptInfo
    position: np.ndarray
    orientation: np.ndarray = field(default_factory=identity_quaternion)
    covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float)
        self.orientation = np.asarray(self.orientation, dtype=float)
        self.covariance = np.asarray(self.covariance, dtype=float)


@dataclass
class CameraInfo:
    """Pinhole calibration. K = [[fx, 0, cx], [0, fy, cy], [0, 0, 1]]."""
    width: int
    height: int
    K: np.ndarray

    def __post_init__(self):
        self.K = np.asarray(self.K, dtype=float).reshape(3, 3)


@dataclass
class ImagePercept:
    """Bearing-only observation: a pixel region in a calibrated image.

    The region centre ``(x + width/2, y + height/2)`` defines the bearing.
    """
    header: Header
    info: PerceptInfo
    x: float
    y: float
    width: float
    height: float
    camera_info: CameraInfo


@dataclass
class ObjectDescription:
    """Requested object for :meth:`ObjectTracker.add_object`.

    ``object_id=None`` always creates a new object. The pose is given in
    ``header.frame_id``; a zero covariance selects the default variance.
    """
    header: Header
    position: np.ndarray
    orientation: np.ndarray = field(default_factory=identity_quaternion)
    covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    class_id: Optional[str] = None
    object_id: Optional[str] = None
    state: ObjectState = ObjectState.PENDING
    support: float = 0.0

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float)
        self.orientation = np.asarray(self.orientation, dtype=float)
        self.covariance = np.asarray(self.covariance, dtype=float)
