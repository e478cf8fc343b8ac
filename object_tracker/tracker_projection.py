"""
Object Tracker Uncertainty Projector
=====================================
Brings a pose percept into the global frame with a well-formed positional
covariance before it reaches the object model.

Pipeline per percept:
  1. optional range snap   : distance to the next obstacle along the bearing
  2. covariance            : 3x3 block of the 6x6 pose covariance, or the
                             default diag(σ²_dist, max(d², 1)·σ²_ang, same)
  3. bearing rotation      : C <- R_bearing C R_bearingᵀ
  4. frame transform       : sensor frame -> global frame (position,
                             orientation, C <- R C Rᵀ)
  5. height band           : z relative to the sensor origin in [min, max]
  6. support               : object support, else class support; 0 drops

Normal drops (no range, height out of band, zero support, undefined
bearing) return None. The bearing check covers pose percepts too: a pose
percept with x == 0 is dropped even if it carries its own covariance.
A missing transform raises TransformUnavailable so the caller can report
it; nothing has been written to the model yet.

License: AGPL-3.0-or-later
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .tracker_config import TrackerConfig
from .tracker_geometry import (
    Header, Transform, bearing_rotation, default_bearing_covariance,
    normalized, position_covariance, rotate_covariance,
)
from .tracker_percepts import PosePercept
from .tracker_services import (
    ProjectionError, RangingService, ServiceUnavailable,
    TransformProvider, TransformUnavailable,
)

logger = logging.getLogger(__name__)


@dataclass
class ProjectedPercept:
    """A percept expressed in the global frame, ready for association.

    Attributes:
        header: Percept stamp, global frame id
        position: [x, y, z] global frame
        orientation: Quaternion [x, y, z, w] global frame
        covariance: Symmetric 3x3 positional covariance, global frame
        support: Non-zero observation support
        class_id: Class hint (None if unclassified)
        object_id: Explicit object id (None if not given)
    """
    header: Header
    position: np.ndarray
    orientation: np.ndarray
    covariance: np.ndarray
    support: float
    class_id: Optional[str] = None
    object_id: Optional[str] = None


class UncertaintyProjector:
    """Transforms percepts into the global frame of the object model.

    Usage:
        projector = UncertaintyProjector(config, transforms=tf_buffer,
                                         ranging=distance_service)
        projected = projector.project(pose_percept)   # None if dropped
    """

    def __init__(self, config: TrackerConfig,
                 transforms: Optional[TransformProvider] = None,
                 ranging: Optional[RangingService] = None):
        self.config = config
        self.transforms = transforms
        self.ranging = ranging

    # --- ranging -------------------------------------------------------------

    def obstacle_distance(self, header: Header, point: np.ndarray) -> Optional[float]:
        """Positive finite distance to the next obstacle, or None."""
        if self.ranging is None:
            logger.debug("No ranging service configured")
            return None
        try:
            distance = self.ranging.distance_to_obstacle(header, point)
        except ServiceUnavailable as e:
            logger.warning("Ranging service unavailable: %s", e)
            return None
        if distance is None or not np.isfinite(distance) or distance <= 0.0:
            return None
        return float(distance)

    def map_to_next_obstacle(self, position: np.ndarray, header: Header) -> np.ndarray:
        """Move ``position`` along its direction onto the next obstacle.

        Raises ProjectionError if no usable distance is available.
        """
        distance = self.obstacle_distance(header, position)
        if distance is None:
            raise ProjectionError(
                "Could not map object to next obstacle due to unknown or infinite distance")
        return normalized(position) * distance

    # --- frames --------------------------------------------------------------

    def lookup(self, header: Header) -> Transform:
        """Transform from ``header.frame_id`` into the global frame."""
        target = self.config.frame_id
        if not target or header.frame_id == target:
            return Transform.identity()
        if self.transforms is None:
            raise TransformUnavailable(
                f"No transform provider to map {header.frame_id} into {target}")
        return self.transforms.lookup_transform(
            target, header.frame_id, header.stamp, timeout=self.config.transform_timeout)

    def transform_pose(self, position: np.ndarray, orientation: np.ndarray,
                       covariance: np.ndarray, header: Header
                       ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, Header]:
        """Express a pose with 3x3 covariance in the global frame.

        Returns:
            (position, orientation, covariance, header) with the header
            re-labelled to the global frame.
        Raises TransformUnavailable.
        """
        transform = self.lookup(header)
        position = transform.apply(position)
        orientation = transform.apply_rotation(orientation)
        covariance = rotate_covariance(np.asarray(covariance, dtype=float), transform.matrix)
        global_header = Header(stamp=header.stamp,
                               frame_id=self.config.frame_id or header.frame_id)
        return position, orientation, covariance, global_header

    # --- percepts ------------------------------------------------------------

    def project(self, percept: PosePercept) -> Optional[ProjectedPercept]:
        """Project a pose percept into the global frame; None if it is dropped.

        Raises TransformUnavailable if the sensor frame cannot be resolved.
        """
        info = percept.info
        position = percept.position.copy()
        distance = float(np.linalg.norm(position))

        rotation_bearing = bearing_rotation(position)
        if not np.all(np.isfinite(rotation_bearing)):
            logger.warning("Ignoring %s percept with undefined bearing at %s",
                           info.class_id or "unclassified", position)
            return None

        if self.config.project_objects:
            projected_distance = self.obstacle_distance(percept.header, position)
            if projected_distance is None:
                logger.debug("Ignoring percept due to unknown or infinite distance")
                return None
            position = normalized(position) * projected_distance
            distance = projected_distance
            logger.debug("Projected percept to a distance of %.1f m", distance)

        covariance = position_covariance(percept.covariance)
        if not np.any(covariance):
            covariance = default_bearing_covariance(
                distance, self.config.distance_variance, self.config.angle_variance)
        covariance = rotate_covariance(covariance, rotation_bearing)

        transform = self.lookup(percept.header)
        position = transform.apply(position)
        orientation = transform.apply_rotation(percept.orientation)
        covariance = rotate_covariance(covariance, transform.matrix)

        relative_height = position[2] - transform.translation[2]
        if relative_height < self.config.min_height or relative_height > self.config.max_height:
            logger.info("Discarding %s percept with height %f",
                        info.class_id or "unclassified", relative_height)
            return None

        support = info.support
        if support == 0.0:
            logger.warning("Ignoring percept with support == 0.0")
            return None

        return ProjectedPercept(
            header=Header(stamp=percept.header.stamp,
                          frame_id=self.config.frame_id or percept.header.frame_id),
            position=position,
            orientation=orientation,
            covariance=covariance,
            support=support,
            class_id=info.class_id or None,
            object_id=info.object_id or None,
        )
