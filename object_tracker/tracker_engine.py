"""
Object Tracker Engine
======================
Association, fusion and support bookkeeping of percepts against the shared
object model, plus the direct object API and the control channel.

Percept cycle:
    ImagePercept --adapter--> PosePercept --projector--> ProjectedPercept
        |  (transform / ranging lookups, may abort; model untouched)
        v
    [model lock]
        associate  : explicit id -> lookup; else min d² = Δᵀ(Σ_obj + Σ_obs)⁻¹Δ
                     over class-compatible objects, accepted if d² < gate
        LOCKED hit : drop
        no match   : create   (position, covariance, support)
        support>0  : fuse     (information form) + support
        support<0  : decay    (support only)
        always     : orientation + header overwritten
    [unlock]
        verification services, each with the same snapshot
    [model lock]  DISCARD -> DISCARDED, CONFIRM -> +confirm_support
                  (skipped if the object was locked or removed meanwhile;
                  a failing service counts as UNREACHABLE)
    [unlock]
        publish object, publish model

The model lock is never held while a transform, ranging or verification
call is in flight.

License: AGPL-3.0-or-later
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .tracker_camera import ImagePerceptAdapter
from .tracker_config import TrackerConfig
from .tracker_geometry import Header, position_covariance
from .tracker_model import ObjectModel, ObjectState, TrackedObject, mahalanobis_squared
from .tracker_percepts import ImagePercept, ObjectDescription, PosePercept
from .tracker_projection import ProjectedPercept, UncertaintyProjector
from .tracker_publish import ModelPublisher, NullPublisher, covariance_ellipse
from .tracker_services import (
    RangingService, TransformProvider, TransformUnavailable,
    VerificationResponse, VerificationService,
)

logger = logging.getLogger(__name__)


class PerceptAction(Enum):
    """What a percept did to the model."""
    CREATED = "created"
    FUSED = "fused"
    DECAYED = "decayed"
    FIXED = "fixed"        # associated with a LOCKED object, ignored
    DROPPED = "dropped"    # filtered out, or removed from the model during verification


@dataclass
class PerceptResult:
    """Outcome of one percept cycle.

    Attributes:
        action: Branch taken
        object: Snapshot of the affected object after verification
        distance: Squared Mahalanobis distance of the association, None if
                  no gated match or an explicit object id was used
    """
    action: PerceptAction
    object: Optional[TrackedObject] = None
    distance: Optional[float] = None


class ObjectTracker:
    """Shared world model of perceived objects.

    Usage:
        tracker = ObjectTracker(TrackerConfig(frame_id="map"),
                                transforms=tf_buffer,
                                verifiers={"victim_verification": verifier},
                                publisher=publisher)
        result = tracker.process_pose_percept(percept)
        tracker.set_object_state("victim_0", ObjectState.LOCKED)
        snapshot = tracker.get_object_model()
    """

    def __init__(self, config: Optional[TrackerConfig] = None,
                 transforms: Optional[TransformProvider] = None,
                 ranging: Optional[RangingService] = None,
                 verifiers: Union[Sequence[VerificationService],
                                  Dict[str, VerificationService], None] = None,
                 publisher: Optional[ModelPublisher] = None,
                 model: Optional[ObjectModel] = None):
        """
        Args:
            config: Tracker parameters (defaults if None)
            transforms: Frame transform provider
            ranging: Obstacle distance service (needed for projection)
            verifiers: Verification services. A dict is resolved against
                       ``config.verification_services`` by name, in that order;
                       a sequence is used as given.
            publisher: Output sink (discarding if None)
            model: Shared object model (a new one if None)
        """
        self.config = config or TrackerConfig()
        self.config.validate()
        self.model = model if model is not None else ObjectModel()
        self.projector = UncertaintyProjector(self.config, transforms=transforms,
                                              ranging=ranging)
        self.adapter = ImagePerceptAdapter(self.config.default_distance)
        self.publisher = publisher or NullPublisher()
        self.verifiers = self._resolve_verifiers(verifiers)

        if self.config.project_objects and ranging is None:
            logger.warning("project_objects is true, but no ranging service is available")

    def _resolve_verifiers(self, verifiers) -> List[VerificationService]:
        if verifiers is None:
            verifiers = {}
        if not isinstance(verifiers, dict):
            return list(verifiers)

        names = self.config.verification_services or list(verifiers)
        resolved = []
        for name in names:
            service = verifiers.get(name)
            if service is None:
                logger.warning("Verification service %s is not (yet) there...", name)
                continue
            logger.info("Using verification service %s", name)
            resolved.append(service)
        return resolved

    # ===== PERCEPT PATH =====

    def process_image_percept(self, percept: ImagePercept) -> PerceptResult:
        """Bearing-only percept: placed at the default distance, then fused."""
        pose_percept = self.adapter.to_pose_percept(percept)
        if pose_percept is None:
            return PerceptResult(PerceptAction.DROPPED)
        return self.process_pose_percept(pose_percept)

    def process_pose_percept(self, percept: PosePercept) -> PerceptResult:
        """Project, associate and fuse one pose percept."""
        try:
            projected = self.projector.project(percept)
        except TransformUnavailable as e:
            logger.error("%s", e)
            return PerceptResult(PerceptAction.DROPPED)
        if projected is None:
            return PerceptResult(PerceptAction.DROPPED)
        return self.process_projected(projected)

    def associate(self, projected: ProjectedPercept) -> Tuple[Optional[TrackedObject], Optional[float]]:
        """Best matching object for a projected percept. Caller holds the lock.

        Returns:
            (object or None, squared Mahalanobis distance or None)
        """
        if projected.object_id:
            return self.model.get(projected.object_id), None

        best = None
        min_distance = self.config.gate_threshold
        for obj in self.model:
            if projected.class_id and obj.class_id and obj.class_id != projected.class_id:
                continue
            distance = mahalanobis_squared(obj.position, obj.covariance,
                                           projected.position, projected.covariance)
            if distance < min_distance:
                best = obj
                min_distance = distance
        return best, (min_distance if best is not None else None)

    def process_projected(self, projected: ProjectedPercept) -> PerceptResult:
        """Association and create / fuse / decay for a global-frame percept."""
        with self.model.locked():
            obj, distance = self.associate(projected)

            if obj is not None and obj.is_fixed:
                logger.debug("Percept was associated to object %s, which has a fixed state",
                             obj.object_id)
                return PerceptResult(PerceptAction.FIXED, obj.copy(), distance)

            if obj is None:
                obj = self.model.add(projected.class_id, projected.object_id)
                obj.set_position(projected.position)
                obj.set_covariance(projected.covariance)
                obj.support = float(projected.support)
                action = PerceptAction.CREATED
                logger.info("Found new object %s of class %s at (%f,%f)!",
                            obj.object_id, obj.class_id, obj.position[0], obj.position[1])
            elif projected.support > 0.0:
                obj.update(projected.position, projected.covariance, projected.support)
                action = PerceptAction.FUSED
            else:
                obj.add_support(projected.support)
                action = PerceptAction.DECAYED

            obj.set_orientation(projected.orientation)
            obj.header = Header(stamp=projected.header.stamp,
                                frame_id=self.config.frame_id or projected.header.frame_id)
            snapshot = obj.copy()

        snapshot = self._verify(obj, snapshot)
        if snapshot is None:
            self.publish_model()
            return PerceptResult(PerceptAction.DROPPED, None, distance)

        self.publisher.publish_object(snapshot)
        self.publish_model()
        return PerceptResult(action, snapshot, distance)

    def _verify(self, obj: TrackedObject, snapshot: TrackedObject) -> Optional[TrackedObject]:
        """Ask every verification service, then apply the verdicts.

        Returns None if the object left the model while the services were
        being asked (e.g. a reset).
        """
        if not self.verifiers:
            return snapshot

        verdicts = []
        for service in self.verifiers:
            name = getattr(service, "name", type(service).__name__)
            try:
                response = service.verify(snapshot)
            except Exception as e:
                logger.warning("Verification service %s unreachable: %s", name, e)
                response = VerificationResponse.UNREACHABLE
            verdicts.append((name, response))

        with self.model.locked():
            if self.model.get(obj.object_id) is not obj:
                logger.info("Object %s was removed during verification", obj.object_id)
                return None
            if obj.is_fixed:
                logger.debug("Object %s was fixed during verification", obj.object_id)
                return obj.copy()
            for name, response in verdicts:
                if response is VerificationResponse.DISCARD:
                    logger.info("Discarded object %s due to DISCARD message from service %s",
                                obj.object_id, name)
                    obj.state = ObjectState.DISCARDED
                elif response is VerificationResponse.CONFIRM:
                    logger.info("We got a CONFIRMation for object %s from service %s!",
                                obj.object_id, name)
                    obj.add_support(self.config.confirm_support)
                else:
                    logger.info("Verification service %s cannot help us with object %s at the moment",
                                name, obj.object_id)
            return obj.copy()

    # ===== DIRECT OBJECT API =====

    def set_object_state(self, object_id: str, state: ObjectState) -> bool:
        """Overwrite an object's state. Returns False if the id is unknown."""
        with self.model.locked():
            obj = self.model.get(object_id)
            if obj is None:
                logger.warning("Cannot set state of unknown object %s", object_id)
                return False
            obj.state = state
            snapshot = obj.copy()

        logger.info("Object %s set to %s", object_id, state.name)
        self.publisher.publish_object(snapshot)
        self.publish_model()
        return True

    def add_object(self, description: ObjectDescription,
                   map_to_next_obstacle: bool = False) -> TrackedObject:
        """Create or overwrite an object without fusion.

        Raises ProjectionError or TransformUnavailable; the model is left
        unchanged in that case.

        Returns:
            Snapshot of the resulting object
        """
        header = Header(stamp=description.header.stamp or time.time(),
                        frame_id=description.header.frame_id)

        position = description.position
        if map_to_next_obstacle:
            position = self.projector.map_to_next_obstacle(position, header)

        covariance = position_covariance(description.covariance)
        if not np.any(covariance):
            covariance = np.eye(3) * self.config.default_variance

        position, orientation, covariance, header = self.projector.transform_pose(
            position, description.orientation, covariance, header)

        with self.model.locked():
            obj = self.model.get(description.object_id)
            created = obj is None
            if created:
                obj = self.model.add(description.class_id, description.object_id)
            obj.header = header
            obj.set_position(position)
            obj.set_orientation(orientation)
            obj.set_covariance(covariance)
            obj.state = description.state
            obj.support = float(description.support)
            snapshot = obj.copy()

        logger.info("%s object %s of class %s at (%f,%f)",
                    "Added" if created else "Updated", snapshot.object_id,
                    snapshot.class_id, snapshot.position[0], snapshot.position[1])
        self.publisher.publish_object(snapshot)
        self.publish_model()
        return snapshot

    # ===== CONTROL / QUERY / OUTPUT =====

    def handle_syscommand(self, command: str) -> None:
        """System command channel; only ``reset`` is understood."""
        if command == "reset":
            self.reset()

    def reset(self) -> None:
        """Atomically empty the model."""
        with self.model.locked():
            logger.info("Resetting object model.")
            self.model.reset()
        self.publish_model()

    def get_object_model(self) -> List[TrackedObject]:
        """Snapshot of all objects in store order."""
        with self.model.locked():
            return self.model.snapshot()

    def get_object(self, object_id: str) -> Optional[TrackedObject]:
        with self.model.locked():
            obj = self.model.get(object_id)
            return obj.copy() if obj is not None else None

    def publish_model(self) -> None:
        """Emit the model snapshot and its covariance drawings."""
        with self.model.locked():
            snapshot = self.model.snapshot()
        self.publisher.publish_model(snapshot)
        self.publisher.draw([covariance_ellipse(obj) for obj in snapshot])

    def summary(self) -> str:
        objects = self.get_object_model()
        lines = [f"ObjectTracker: {len(objects)} objects in frame '{self.config.frame_id}'"]
        for obj in objects:
            lines.append(f"  {obj.object_id:<16} {obj.state.name:<10} "
                         f"support={obj.support:7.1f}  "
                         f"pos=({obj.position[0]:.2f}, {obj.position[1]:.2f}, {obj.position[2]:.2f})")
        return "\n".join(lines)

    def __repr__(self):
        return (f"ObjectTracker(frame={self.config.frame_id}, objects={len(self.model)}, "
                f"verifiers={len(self.verifiers)})")
