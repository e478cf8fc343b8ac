"""
Object Tracker Model
=====================
Tracked objects and the shared object model (store).

Architecture:
  ObjectModel
    ├── insertion-ordered table  object_id -> TrackedObject
    ├── per-class id counters    "<class>_<n>" / "object_<n>"
    └── one advisory exclusive lock (lock / unlock / locked())

The store does not serialize its own methods. Every caller that reads and
then writes (association, fusion, direct updates) or iterates the table
must hold the lock for the whole sequence:

    with model.locked():
        obj = model.get("cup_0")
        obj.add_support(1.0)

Fusion of a new observation (xb, Pb) into an object (xa, Pa) uses the
information form:
    P = (Pa⁻¹ + Pb⁻¹)⁻¹
    x = P (Pa⁻¹ xa + Pb⁻¹ xb)
so the fused covariance is never larger than either input along any axis.

License: AGPL-3.0-or-later
"""

import copy
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .tracker_geometry import Header, enforce_psd, identity_quaternion, symmetrize
from .tracker_services import ObjectTrackerError


class ObjectState(Enum):
    """Lifecycle state of a tracked object.

    LOCKED is the fixed sentinel: association may still hit a locked object
    but no fusion, support change or verification verdict alters it. Only
    the direct object API changes a locked object. DISCARDED is not locked.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISCARDED = "discarded"
    LOCKED = "locked"


class DuplicateObjectError(ObjectTrackerError, KeyError):
    """An object with the requested id already exists in the model."""


# ===== INFORMATION FUSION =====

def fuse_estimates(xa: np.ndarray, Pa: np.ndarray,
                   xb: np.ndarray, Pb: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Information-form fusion of two independent position estimates.

    A tiny ridge keeps singular inputs invertible; the result is
    re-symmetrized and clipped to positive semidefinite.

    Returns:
        Tuple of (x_fused, P_fused)
    """
    n = len(xa)
    reg = np.eye(n) * 1e-10
    Pa_inv = np.linalg.inv(Pa + reg)
    Pb_inv = np.linalg.inv(Pb + reg)

    P_fused = np.linalg.inv(Pa_inv + Pb_inv)
    x_fused = P_fused @ (Pa_inv @ xa + Pb_inv @ xb)

    return x_fused, enforce_psd(P_fused)


def mahalanobis_squared(xa: np.ndarray, Pa: np.ndarray,
                        xb: np.ndarray, Pb: np.ndarray) -> float:
    """d² = (xa - xb)ᵀ (Pa + Pb)⁻¹ (xa - xb); 1e6 if the sum is singular."""
    diff = xa - xb
    S = Pa + Pb
    try:
        S_inv = np.linalg.inv(S)
        return float(diff @ S_inv @ diff)
    except np.linalg.LinAlgError:
        return 1e6


# ===== TRACKED OBJECT =====

@dataclass
class TrackedObject:
    """One physical thing believed to exist.

    Attributes:
        object_id: Stable identifier, unique within the model
        class_id: Class label, None if unclassified
        position: [x, y, z] in the global frame
        orientation: Quaternion [x, y, z, w] in the global frame
        covariance: 3x3 positional covariance (global frame), symmetric PSD
        support: Accumulated confidence (additive, may go non-positive)
        state: Lifecycle state
        header: Time and frame of the last update
    """
    object_id: str
    class_id: Optional[str] = None
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=identity_quaternion)
    covariance: np.ndarray = field(default_factory=lambda: np.eye(3))
    support: float = 0.0
    state: ObjectState = ObjectState.PENDING
    header: Header = field(default_factory=Header)

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3)
        self.orientation = np.asarray(self.orientation, dtype=float).reshape(4)
        self.covariance = symmetrize(np.asarray(self.covariance, dtype=float).reshape(3, 3))

    @property
    def is_fixed(self) -> bool:
        return self.state is ObjectState.LOCKED

    def set_position(self, position: np.ndarray) -> None:
        self.position = np.asarray(position, dtype=float).reshape(3)

    def set_covariance(self, covariance: np.ndarray) -> None:
        self.covariance = symmetrize(np.asarray(covariance, dtype=float).reshape(3, 3))

    def set_orientation(self, orientation: np.ndarray) -> None:
        self.orientation = np.asarray(orientation, dtype=float).reshape(4)

    def add_support(self, support: float) -> None:
        self.support += float(support)

    def update(self, position: np.ndarray, covariance: np.ndarray,
               support: float) -> None:
        """Fuse an observation into the estimate and accumulate its support."""
        x, P = fuse_estimates(self.position, self.covariance,
                              np.asarray(position, dtype=float),
                              np.asarray(covariance, dtype=float))
        self.position = x
        self.covariance = P
        self.add_support(support)

    def copy(self) -> "TrackedObject":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data message for the model and object channels."""
        return {
            "object_id": self.object_id,
            "class_id": self.class_id,
            "header": {"stamp": self.header.stamp, "frame_id": self.header.frame_id},
            "position": self.position.tolist(),
            "orientation": self.orientation.tolist(),
            "covariance": self.covariance.tolist(),
            "support": self.support,
            "state": self.state.value,
        }

    def __repr__(self):
        return (f"TrackedObject({self.object_id}, {self.class_id}, {self.state.name}, "
                f"pos=({self.position[0]:.2f}, {self.position[1]:.2f}, {self.position[2]:.2f}), "
                f"support={self.support:.1f})")


# ===== OBJECT MODEL =====

class ObjectModel:
    """Insertion-ordered store of tracked objects, unique by id."""

    def __init__(self):
        self._objects: "OrderedDict[str, TrackedObject]" = OrderedDict()
        self._class_counters: Dict[str, int] = {}
        self._lock = threading.Lock()

    # --- locking -----------------------------------------------------------

    def lock(self) -> None:
        self._lock.acquire()

    def unlock(self) -> None:
        self._lock.release()

    @contextmanager
    def locked(self) -> Iterator["ObjectModel"]:
        """Scoped exclusive access; released on every exit path."""
        self._lock.acquire()
        try:
            yield self
        finally:
            self._lock.release()

    # --- access ------------------------------------------------------------

    def __iter__(self) -> Iterator[TrackedObject]:
        return iter(list(self._objects.values()))

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, object_id: str) -> bool:
        return object_id in self._objects

    def get(self, object_id: Optional[str]) -> Optional[TrackedObject]:
        if not object_id:
            return None
        return self._objects.get(object_id)

    def _next_id(self, class_id: Optional[str]) -> str:
        prefix = class_id or "object"
        while True:
            n = self._class_counters.get(prefix, 0)
            self._class_counters[prefix] = n + 1
            candidate = f"{prefix}_{n}"
            if candidate not in self._objects:
                return candidate

    def add(self, class_id: Optional[str] = None,
            object_id: Optional[str] = None) -> TrackedObject:
        """Create and insert a new object; assigns an id if none is given."""
        if object_id and object_id in self._objects:
            raise DuplicateObjectError(object_id)
        obj = TrackedObject(object_id=object_id or self._next_id(class_id),
                            class_id=class_id or None)
        self._objects[obj.object_id] = obj
        return obj

    def add_object(self, obj: TrackedObject) -> TrackedObject:
        """Insert a pre-built object."""
        if obj.object_id in self._objects:
            raise DuplicateObjectError(obj.object_id)
        self._objects[obj.object_id] = obj
        return obj

    def reset(self) -> None:
        """Drop every object and restart id numbering."""
        self._objects = OrderedDict()
        self._class_counters = {}

    def snapshot(self) -> List[TrackedObject]:
        """Deep copies of all objects in store order."""
        return [obj.copy() for obj in self._objects.values()]

    def __repr__(self) -> str:
        return f"ObjectModel({len(self._objects)} objects)"
