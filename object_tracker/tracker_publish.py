"""
Object Tracker Publication
===========================
Output side of the tracker: the model channel (full snapshot), the object
channel (single updated object) and covariance drawings for visualization.

  ModelPublisher      : sink interface the transport layer implements
  RecordingPublisher  : keeps every message in memory (tests, demo)
  NullPublisher       : discards everything
  covariance_ellipse  : n-σ ellipse of the 2x2 positional covariance

License: AGPL-3.0-or-later
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List

import numpy as np

from .tracker_model import TrackedObject


@dataclass
class CovarianceEllipse:
    """Drawing primitive for one object.

    Attributes:
        object_id: Object the ellipse belongs to
        center: [x, y] in the global frame
        axes: Semi-axis lengths [major, minor] at ``n_sigma``
        angle: Orientation of the major axis [rad] from the x-axis
        n_sigma: Scale of the ellipse in standard deviations
    """
    object_id: str
    center: np.ndarray
    axes: np.ndarray
    angle: float
    n_sigma: float = 2.0


def covariance_ellipse(obj: TrackedObject, n_sigma: float = 2.0) -> CovarianceEllipse:
    """Ellipse of the x/y block of an object's covariance."""
    P = obj.covariance[:2, :2]
    w, V = np.linalg.eigh(0.5 * (P + P.T))
    w = np.clip(w, 0.0, None)
    # eigh sorts ascending: last column is the major axis
    major = V[:, 1]
    return CovarianceEllipse(
        object_id=obj.object_id,
        center=obj.position[:2].copy(),
        axes=n_sigma * np.sqrt(w[::-1]),
        angle=float(np.arctan2(major[1], major[0])),
        n_sigma=n_sigma,
    )


class ModelPublisher(ABC):
    """Sink for the tracker's output channels."""

    @abstractmethod
    def publish_model(self, objects: List[TrackedObject]) -> None:
        """Full model snapshot in store order."""
        pass

    @abstractmethod
    def publish_object(self, obj: TrackedObject) -> None:
        """Snapshot of one object after it changed."""
        pass

    @abstractmethod
    def draw(self, ellipses: List[CovarianceEllipse]) -> None:
        """Visualization of all objects' positions and covariances."""
        pass


class NullPublisher(ModelPublisher):

    def publish_model(self, objects: List[TrackedObject]) -> None:
        pass

    def publish_object(self, obj: TrackedObject) -> None:
        pass

    def draw(self, ellipses: List[CovarianceEllipse]) -> None:
        pass


class RecordingPublisher(ModelPublisher):
    """Stores every published message; thread-safe."""

    def __init__(self):
        self.models: List[List[Dict[str, Any]]] = []
        self.objects: List[Dict[str, Any]] = []
        self.drawings: List[List[CovarianceEllipse]] = []
        self._lock = threading.Lock()

    def publish_model(self, objects: List[TrackedObject]) -> None:
        with self._lock:
            self.models.append([obj.to_dict() for obj in objects])

    def publish_object(self, obj: TrackedObject) -> None:
        with self._lock:
            self.objects.append(obj.to_dict())

    def draw(self, ellipses: List[CovarianceEllipse]) -> None:
        with self._lock:
            self.drawings.append(list(ellipses))

    @property
    def last_model(self) -> List[Dict[str, Any]]:
        return self.models[-1] if self.models else []

    def clear(self) -> None:
        with self._lock:
            self.models.clear()
            self.objects.clear()
            self.drawings.clear()
