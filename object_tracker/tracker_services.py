"""
Object Tracker Collaborators
=============================
Contracts of the external services the tracker talks to, the tracker's
error taxonomy, and two in-process building blocks:

  TransformProvider    : lookup_transform(target, source, stamp, timeout)
  RangingService       : distance_to_obstacle(header, point) -> distance | None
  VerificationService  : verify(object) -> CONFIRM | DISCARD | UNKNOWN | UNREACHABLE

  TransformBuffer         : thread-safe, time-interpolating frame tree that
                            implements TransformProvider
  OdometryTransformBridge : turns robot poses (from the pose estimator) into
                            the map -> base_footprint -> base_stabilized ->
                            base_link transform chain of a TransformBuffer

Error taxonomy:
  ObjectTrackerError
    ├── TransformUnavailable  frame transform missing / timed out
    ├── ServiceUnavailable    ranging or verification service unreachable
    └── ProjectionError       no usable obstacle distance for a direct request

License: AGPL-3.0-or-later
"""

import bisect
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

from .tracker_geometry import (
    Header, StampedTransform, Transform, quaternion_from_ypr, yaw_pitch_roll,
)

logger = logging.getLogger(__name__)


# ===== ERRORS =====

class ObjectTrackerError(Exception):
    """Base class of all tracker errors."""


class TransformUnavailable(ObjectTrackerError):
    """No transform between two frames at the requested time."""


class ServiceUnavailable(ObjectTrackerError):
    """A ranging or verification service could not be reached."""


class ProjectionError(ObjectTrackerError):
    """The ranging service returned no usable distance."""


# ===== CONTRACTS =====

class VerificationResponse(Enum):
    """Verdict of a verification service."""
    CONFIRM = "confirm"
    DISCARD = "discard"
    UNKNOWN = "unknown"
    UNREACHABLE = "unreachable"


class TransformProvider(ABC):
    """Source of rigid transforms between coordinate frames."""

    @abstractmethod
    def lookup_transform(self, target_frame: str, source_frame: str,
                         stamp: float, timeout: float = 0.0) -> Transform:
        """Transform mapping points in ``source_frame`` into ``target_frame``.

        Waits at most ``timeout`` seconds for the data to arrive.
        Raises TransformUnavailable.
        """
        pass


class RangingService(ABC):
    """Distance to the nearest obstacle along a ray."""

    @abstractmethod
    def distance_to_obstacle(self, header: Header, point: np.ndarray) -> Optional[float]:
        """Distance from the origin of ``header.frame_id`` towards ``point``.

        Returns None if unknown. May raise ServiceUnavailable.
        """
        pass


class VerificationService(ABC):
    """External check of a candidate object (e.g. a heat or victim detector)."""

    name: str = "verification"

    @abstractmethod
    def verify(self, obj) -> VerificationResponse:
        """Judge a snapshot of a TrackedObject. May raise ServiceUnavailable."""
        pass


# ===== TRANSFORM BUFFER =====

class _TransformNotYet(TransformUnavailable):
    """Data may still arrive; keep waiting until the timeout."""


class TransformBuffer(TransformProvider):
    """Thread-safe frame tree with a short history per edge.

    Every child frame has exactly one parent. Lookups compose the chain of
    edges through the closest common ancestor; each edge is interpolated at
    the requested stamp (linear translation, spherical rotation). A stamp
    of 0 selects the latest data. Static edges are valid at all times.

    Usage:
        buf = TransformBuffer()
        buf.set_transform(StampedTransform("base_link", "camera", 0.0,
                                           Transform([0.1, 0, 0.5])), static=True)
        buf.set_transform(StampedTransform("map", "base_link", t, robot_pose))
        T = buf.lookup_transform("map", "camera", t, timeout=1.0)
    """

    def __init__(self, cache_time: float = 10.0):
        self.cache_time = cache_time
        self._parents: Dict[str, str] = {}
        self._history: Dict[str, List[StampedTransform]] = {}
        self._static: Dict[str, StampedTransform] = {}
        self._cond = threading.Condition()

    def set_transform(self, stamped: StampedTransform, static: bool = False) -> None:
        child = stamped.child_frame_id
        if not child or not stamped.frame_id:
            raise ValueError("Transform needs both frame_id and child_frame_id")
        if child == stamped.frame_id:
            raise ValueError(f"Frame {child} cannot be its own parent")

        with self._cond:
            old_parent = self._parents.get(child)
            if old_parent is not None and old_parent != stamped.frame_id:
                logger.warning("Frame %s re-parented from %s to %s",
                               child, old_parent, stamped.frame_id)
                self._history.pop(child, None)
                self._static.pop(child, None)
            self._parents[child] = stamped.frame_id

            if static:
                self._static[child] = stamped
                self._history.pop(child, None)
            else:
                self._static.pop(child, None)
                history = self._history.setdefault(child, [])
                stamps = [h.stamp for h in history]
                history.insert(bisect.bisect_right(stamps, stamped.stamp), stamped)
                newest = history[-1].stamp
                while len(history) > 2 and history[0].stamp < newest - self.cache_time:
                    history.pop(0)
            self._cond.notify_all()

    def frames(self) -> List[str]:
        with self._cond:
            return sorted(set(self._parents) | set(self._parents.values()))

    def clear(self) -> None:
        with self._cond:
            self._parents.clear()
            self._history.clear()
            self._static.clear()

    def lookup_transform(self, target_frame: str, source_frame: str,
                         stamp: float, timeout: float = 0.0) -> Transform:
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._cond:
            while True:
                try:
                    return self._lookup(target_frame, source_frame, stamp)
                except _TransformNotYet as e:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0.0:
                        raise TransformUnavailable(str(e)) from None
                    self._cond.wait(remaining)

    # --- internals (caller holds self._cond) --------------------------------

    def _chain(self, frame: str) -> List[str]:
        chain = [frame]
        seen = {frame}
        while chain[-1] in self._parents:
            parent = self._parents[chain[-1]]
            if parent in seen:
                raise TransformUnavailable(f"Loop in frame tree at {parent}")
            seen.add(parent)
            chain.append(parent)
        return chain

    def _edge(self, child: str, stamp: float) -> Transform:
        """Transform child -> parent at ``stamp``."""
        if child in self._static:
            return self._static[child].transform

        history = self._history.get(child, [])
        if not history:
            raise _TransformNotYet(f"No data for frame {child}")
        if stamp == 0.0:
            return history[-1].transform
        if stamp > history[-1].stamp:
            raise _TransformNotYet(
                f"Lookup of {child} at {stamp:.3f} requires extrapolation into the "
                f"future (latest data at {history[-1].stamp:.3f})")
        if stamp < history[0].stamp:
            raise TransformUnavailable(
                f"Lookup of {child} at {stamp:.3f} requires extrapolation into the "
                f"past (earliest data at {history[0].stamp:.3f})")

        stamps = [h.stamp for h in history]
        i = bisect.bisect_left(stamps, stamp)
        if stamps[i] == stamp:
            return history[i].transform
        before, after = history[i - 1], history[i]
        ratio = (stamp - before.stamp) / (after.stamp - before.stamp)
        translation = (1.0 - ratio) * before.transform.translation \
            + ratio * after.transform.translation
        slerp = Slerp([before.stamp, after.stamp],
                      Rotation.from_quat([before.transform.rotation,
                                          after.transform.rotation]))
        rotation = slerp([stamp]).as_quat()[0]
        return Transform(translation=translation, rotation=rotation)

    def _to_ancestor(self, chain: List[str], ancestor: str, stamp: float) -> Transform:
        """Transform chain[0] -> ancestor."""
        result = Transform.identity()
        for frame in chain:
            if frame == ancestor:
                break
            result = self._edge(frame, stamp).compose(result)
        return result

    def _lookup(self, target_frame: str, source_frame: str, stamp: float) -> Transform:
        if target_frame == source_frame:
            return Transform.identity()

        source_chain = self._chain(source_frame)
        target_chain = self._chain(target_frame)
        target_set = set(target_chain)
        ancestor = next((f for f in source_chain if f in target_set), None)
        if ancestor is None:
            raise _TransformNotYet(
                f"Frames {source_frame} and {target_frame} are not connected")

        source_to_ancestor = self._to_ancestor(source_chain, ancestor, stamp)
        target_to_ancestor = self._to_ancestor(target_chain, ancestor, stamp)
        return target_to_ancestor.inverse().compose(source_to_ancestor)


# ===== ODOMETRY -> TRANSFORM CHAIN =====

def odometry_to_transforms(position: np.ndarray, orientation: np.ndarray,
                           header: Header, child_frame_id: str = "",
                           frame_id: Optional[str] = None,
                           footprint_frame_id: str = "base_footprint",
                           stabilized_frame_id: str = "base_stabilized"
                           ) -> List[StampedTransform]:
    """Decompose a robot pose into footprint / stabilized / body transforms.

    Chain:
        frame_id -> footprint   (x, y, yaw)
        footprint -> stabilized (z)
        stabilized -> child     (roll, pitch)

    An empty ``footprint_frame_id`` or ``stabilized_frame_id`` removes that
    stage; the remaining degrees of freedom move into the next stage.

    Args:
        position: Robot position [x, y, z] in ``frame_id``
        orientation: Robot orientation quaternion [x, y, z, w]
        header: Stamp and (default) parent frame of the pose
        child_frame_id: Body frame, "base_link" if empty
        frame_id: Overrides ``header.frame_id`` as the parent frame
    """
    parent = frame_id or header.frame_id
    child = child_frame_id or "base_link"
    yaw, pitch, roll = yaw_pitch_roll(orientation)
    x, y, z = np.asarray(position, dtype=float)

    transforms = []

    if footprint_frame_id and child != footprint_frame_id:
        transforms.append(StampedTransform(
            parent, footprint_frame_id, header.stamp,
            Transform([x, y, 0.0], quaternion_from_ypr(yaw, 0.0, 0.0))))
        yaw = 0.0
        x = y = 0.0
        parent = footprint_frame_id

    if stabilized_frame_id and child != stabilized_frame_id:
        transforms.append(StampedTransform(
            parent, stabilized_frame_id, header.stamp, Transform([0.0, 0.0, z])))
        z = 0.0
        parent = stabilized_frame_id

    transforms.append(StampedTransform(
        parent, child, header.stamp,
        Transform([x, y, z], quaternion_from_ypr(yaw, pitch, roll))))
    return transforms


@dataclass
class OdometryTransformBridge:
    """Feeds robot poses into a TransformBuffer as a transform chain."""
    buffer: TransformBuffer
    child_frame_id: str = ""
    frame_id: Optional[str] = None
    footprint_frame_id: str = "base_footprint"
    stabilized_frame_id: str = "base_stabilized"

    def handle_odometry(self, position: np.ndarray, orientation: np.ndarray,
                        header: Header, child_frame_id: str = "") -> List[StampedTransform]:
        transforms = odometry_to_transforms(
            position, orientation, header,
            child_frame_id=self.child_frame_id or child_frame_id,
            frame_id=self.frame_id,
            footprint_frame_id=self.footprint_frame_id,
            stabilized_frame_id=self.stabilized_frame_id,
        )
        for stamped in transforms:
            self.buffer.set_transform(stamped)
        return transforms

    def handle_pose(self, position: np.ndarray, orientation: np.ndarray,
                    header: Header) -> List[StampedTransform]:
        return self.handle_odometry(position, orientation, header)
