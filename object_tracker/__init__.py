"""Object Tracker: shared world model of perceived objects.

Percepts from cameras and detectors are projected into a global frame,
associated by Mahalanobis gating, fused in information form and published
as a model snapshot. External services rank (obstacle distance) and
confirm or discard objects.

Quick Start::

    from object_tracker import ObjectTracker, TrackerConfig, PosePercept, PerceptInfo
    tracker = ObjectTracker(TrackerConfig(frame_id="map"), transforms=tf_buffer)
    result = tracker.process_pose_percept(
        PosePercept(header=Header(stamp, "camera"),
                    info=PerceptInfo(class_id="victim", class_support=1.0),
                    position=[2.0, 0.1, 0.0]))
    for obj in tracker.get_object_model():
        print(obj)
"""

__version__ = "1.0.0"
__license__ = "AGPL-3.0-or-later"

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
from .tracker_engine import (
    ObjectTracker,
    PerceptAction,
    PerceptResult,
)

# ---------------------------------------------------------------------------
# Model & messages
# ---------------------------------------------------------------------------
from .tracker_model import (
    DuplicateObjectError,
    ObjectModel,
    ObjectState,
    TrackedObject,
    fuse_estimates,
    mahalanobis_squared,
)
from .tracker_percepts import (
    CameraInfo,
    ImagePercept,
    ObjectDescription,
    PerceptInfo,
    PosePercept,
)

# ---------------------------------------------------------------------------
# Projection & geometry
# ---------------------------------------------------------------------------
from .tracker_camera import ImagePerceptAdapter, PinholeCamera
from .tracker_projection import ProjectedPercept, UncertaintyProjector
from .tracker_geometry import Header, StampedTransform, Transform

# ---------------------------------------------------------------------------
# Collaborators, errors, output
# ---------------------------------------------------------------------------
from .tracker_services import (
    ObjectTrackerError,
    OdometryTransformBridge,
    ProjectionError,
    RangingService,
    ServiceUnavailable,
    TransformBuffer,
    TransformProvider,
    TransformUnavailable,
    VerificationResponse,
    VerificationService,
    odometry_to_transforms,
)
from .tracker_publish import (
    CovarianceEllipse,
    ModelPublisher,
    NullPublisher,
    RecordingPublisher,
    covariance_ellipse,
)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from .tracker_config import TrackerConfig, load_config


__all__ = [
    # Engine
    "ObjectTracker", "PerceptAction", "PerceptResult",
    # Model & messages
    "DuplicateObjectError", "ObjectModel", "ObjectState", "TrackedObject",
    "fuse_estimates", "mahalanobis_squared",
    "CameraInfo", "ImagePercept", "ObjectDescription", "PerceptInfo", "PosePercept",
    # Projection & geometry
    "ImagePerceptAdapter", "PinholeCamera", "ProjectedPercept", "UncertaintyProjector",
    "Header", "StampedTransform", "Transform",
    # Collaborators, errors, output
    "ObjectTrackerError", "OdometryTransformBridge", "ProjectionError",
    "RangingService", "ServiceUnavailable", "TransformBuffer", "TransformProvider",
    "TransformUnavailable", "VerificationResponse", "VerificationService",
    "odometry_to_transforms",
    "CovarianceEllipse", "ModelPublisher", "NullPublisher", "RecordingPublisher",
    "covariance_ellipse",
    # Configuration
    "TrackerConfig", "load_config",
]
