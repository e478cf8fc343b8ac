"""
Tests for the Uncertainty Projector and the camera adapter
===========================================================
pytest tests/test_tracker_projection.py -v
"""

import math
import threading

import numpy as np
import pytest
import sys, os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from object_tracker import (
    CameraInfo, Header, ImagePercept, ImagePerceptAdapter, PerceptInfo, PinholeCamera,
    PosePercept, ProjectionError, RangingService, ServiceUnavailable, TrackerConfig,
    Transform, TransformProvider, TransformUnavailable, UncertaintyProjector,
)


def yaw_quaternion(yaw):
    return np.array([0.0, 0.0, np.sin(yaw / 2.0), np.cos(yaw / 2.0)])


class FixedTransforms(TransformProvider):
    def __init__(self, transform):
        self.transform = transform
        self.calls = []

    def lookup_transform(self, target_frame, source_frame, stamp, timeout=0.0):
        self.calls.append((target_frame, source_frame, stamp, timeout))
        return self.transform


class FixedRanging(RangingService):
    def __init__(self, distance=None, error=None):
        self.distance = distance
        self.error = error

    def distance_to_obstacle(self, header, point):
        if self.error is not None:
            raise self.error
        return self.distance


def percept(position, frame="map", class_support=1.0, covariance=None, **info):
    info.setdefault("class_id", "cup")
    kwargs = {}
    if covariance is not None:
        kwargs["covariance"] = covariance
    return PosePercept(header=Header(10.0, frame),
                       info=PerceptInfo(class_support=class_support, **info),
                       position=position, **kwargs)


@pytest.fixture
def config():
    return TrackerConfig(frame_id="map")


# ===== PROJECTOR =====

class TestUncertaintyProjector:
    def test_default_covariance_along_bearing(self, config):
        p = UncertaintyProjector(config).project(percept([2.0, 0.0, 0.0]))
        av = math.radians(5.0)
        np.testing.assert_allclose(p.position, [2.0, 0.0, 0.0])
        np.testing.assert_allclose(p.covariance, np.diag([1.0, 4 * av, 4 * av]), atol=1e-12)
        assert p.support == 1.0
        assert p.class_id == "cup"
        assert p.object_id is None
        assert p.header.frame_id == "map"
        assert p.header.stamp == 10.0

    def test_default_covariance_rotated_to_bearing(self, config):
        p = UncertaintyProjector(config).project(percept([1.0, 1.0, 0.0]))
        C = p.covariance
        np.testing.assert_array_equal(C, C.T)
        # radial variance lies along the rotated x-axis
        radial = np.array([np.cos(1.0), np.sin(1.0), 0.0])
        assert radial @ C @ radial == pytest.approx(config.distance_variance)

    def test_given_covariance_used(self, config):
        cov = np.zeros((6, 6))
        cov[:3, :3] = np.diag([0.1, 0.2, 0.3])
        p = UncertaintyProjector(config).project(percept([2.0, 0.0, 0.0], covariance=cov))
        np.testing.assert_allclose(p.covariance, np.diag([0.1, 0.2, 0.3]), atol=1e-12)

    def test_transform_applied_to_pose_and_covariance(self, config):
        tf = FixedTransforms(Transform([1.0, 0.0, 0.0], yaw_quaternion(np.pi / 2)))
        cov = np.zeros((6, 6))
        cov[:3, :3] = np.diag([1.0, 2.0, 3.0])
        p = UncertaintyProjector(config, transforms=tf).project(
            percept([1.0, 0.0, 0.0], frame="camera", covariance=cov))
        np.testing.assert_allclose(p.position, [1.0, 1.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(p.covariance, np.diag([2.0, 1.0, 3.0]), atol=1e-12)
        np.testing.assert_allclose(p.orientation, yaw_quaternion(np.pi / 2), atol=1e-12)
        assert tf.calls == [("map", "camera", 10.0, config.transform_timeout)]

    def test_missing_transform_raises(self, config):
        with pytest.raises(TransformUnavailable):
            UncertaintyProjector(config).project(percept([1.0, 0.0, 0.0], frame="camera"))

    def test_zero_support_dropped(self, config):
        assert UncertaintyProjector(config).project(percept([1.0, 0.0, 0.0], class_support=0.0)) is None

    def test_no_identity_dropped(self, config):
        assert UncertaintyProjector(config).project(percept([1.0, 0.0, 0.0], class_id=None)) is None

    def test_object_support_preferred(self, config):
        p = UncertaintyProjector(config).project(
            percept([1.0, 0.0, 0.0], object_id="door_1", object_support=3.0))
        assert p.support == 3.0
        assert p.object_id == "door_1"

    def test_negative_support_kept(self, config):
        p = UncertaintyProjector(config).project(percept([1.0, 0.0, 0.0], class_support=-0.5))
        assert p.support == -0.5

    def test_undefined_bearing_dropped(self, config):
        assert UncertaintyProjector(config).project(percept([0.0, 1.0, 0.0])) is None

    def test_undefined_bearing_dropped_with_own_covariance(self, config):
        cov = np.zeros((6, 6))
        cov[:3, :3] = 0.1 * np.eye(3)
        projector = UncertaintyProjector(config)
        assert projector.project(percept([0.0, 1.0, 0.5], covariance=cov)) is None

    def test_height_relative_to_sensor(self):
        config = TrackerConfig(frame_id="map", min_height=-0.5, max_height=0.5)
        tf = FixedTransforms(Transform([0.0, 0.0, 10.0]))
        projector = UncertaintyProjector(config, transforms=tf)
        p = projector.project(percept([2.0, 0.0, 0.2], frame="camera"))
        assert p is not None
        assert p.position[2] == pytest.approx(10.2)
        assert projector.project(percept([2.0, 0.0, 1.0], frame="camera")) is None
        assert projector.project(percept([2.0, 0.0, -1.0], frame="camera")) is None


class TestObstacleProjection:
    def test_snaps_to_obstacle(self):
        config = TrackerConfig(frame_id="map", project_objects=True)
        p = UncertaintyProjector(config, ranging=FixedRanging(4.0)).project(
            percept([3.0, 0.0, 4.0]))
        np.testing.assert_allclose(p.position, [2.4, 0.0, 3.2])

    def test_range_scales_default_covariance(self):
        config = TrackerConfig(frame_id="map", project_objects=True)
        p = UncertaintyProjector(config, ranging=FixedRanging(3.0)).project(
            percept([1.0, 0.0, 0.0]))
        assert p.covariance[1, 1] == pytest.approx(9.0 * config.angle_variance)

    @pytest.mark.parametrize("ranging", [
        FixedRanging(None),
        FixedRanging(float('inf')),
        FixedRanging(0.0),
        FixedRanging(error=ServiceUnavailable("down")),
        None,
    ])
    def test_unknown_distance_dropped(self, ranging):
        config = TrackerConfig(frame_id="map", project_objects=True)
        projector = UncertaintyProjector(config, ranging=ranging)
        assert projector.project(percept([1.0, 0.0, 0.0])) is None

    def test_map_to_next_obstacle(self, config):
        projector = UncertaintyProjector(config, ranging=FixedRanging(5.0))
        np.testing.assert_allclose(
            projector.map_to_next_obstacle(np.array([0.0, 2.0, 0.0]), Header(1.0, "map")),
            [0.0, 5.0, 0.0])

    def test_map_to_next_obstacle_unknown(self, config):
        projector = UncertaintyProjector(config, ranging=FixedRanging(None))
        with pytest.raises(ProjectionError):
            projector.map_to_next_obstacle(np.array([1.0, 0.0, 0.0]), Header(1.0, "map"))


# ===== CAMERA ADAPTER =====

CAMERA_INFO = CameraInfo(width=640, height=480,
                         K=[[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def image_percept(u, v, camera_info=CAMERA_INFO, frame="camera"):
    return ImagePercept(header=Header(1.0, frame),
                        info=PerceptInfo(class_id="heat", class_support=1.0),
                        x=u - 10.0, y=v - 10.0, width=20.0, height=20.0,
                        camera_info=camera_info)


class TestImagePerceptAdapter:
    def test_principal_point_is_straight_ahead(self):
        pose = ImagePerceptAdapter(2.0).to_pose_percept(image_percept(320.0, 240.0))
        np.testing.assert_allclose(pose.position, [2.0, 0.0, 0.0])
        np.testing.assert_allclose(pose.orientation, [0.0, 0.0, 0.0, 1.0])
        assert not np.any(pose.covariance)
        assert pose.info.class_id == "heat"
        assert pose.header.frame_id == "camera"

    def test_right_of_centre_is_negative_y(self):
        pose = ImagePerceptAdapter(1.0).to_pose_percept(image_percept(820.0, 240.0))
        s = 1.0 / np.sqrt(2.0)
        np.testing.assert_allclose(pose.position, [s, -s, 0.0], atol=1e-12)
        np.testing.assert_allclose(pose.orientation, yaw_quaternion(-1.0), atol=1e-12)

    def test_below_centre_is_negative_z(self):
        pose = ImagePerceptAdapter(1.0).to_pose_percept(image_percept(320.0, 740.0))
        assert pose.position[2] < 0.0
        assert pose.position[1] == pytest.approx(0.0)

    def test_camera_model_cached_per_frame(self):
        adapter = ImagePerceptAdapter()
        adapter.to_pose_percept(image_percept(320.0, 240.0))
        other = CameraInfo(width=640, height=480,
                           K=[[100.0, 0.0, 0.0], [0.0, 100.0, 0.0], [0.0, 0.0, 1.0]])
        pose = adapter.to_pose_percept(image_percept(320.0, 240.0, camera_info=other))
        np.testing.assert_allclose(pose.position, [1.0, 0.0, 0.0])
        adapter.to_pose_percept(image_percept(320.0, 240.0, camera_info=other, frame="cam2"))
        assert set(adapter.camera_models) == {"camera", "cam2"}

    def test_concurrent_first_calibration_single_model(self):
        adapter = ImagePerceptAdapter()
        n_threads = 8
        barrier = threading.Barrier(n_threads)
        models = []

        def first_frame(fx):
            info = CameraInfo(width=640, height=480,
                              K=[[fx, 0.0, 320.0], [0.0, fx, 240.0], [0.0, 0.0, 1.0]])
            barrier.wait()
            models.append(adapter.camera_model(image_percept(320.0, 240.0, camera_info=info)))

        threads = [threading.Thread(target=first_frame, args=(400.0 + 10.0 * i,))
                   for i in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10.0)

        assert len(models) == n_threads
        assert all(m is models[0] for m in models)
        assert list(adapter.camera_models) == ["camera"]

    def test_degenerate_calibration_dropped(self):
        broken = CameraInfo(width=640, height=480,
                            K=[[0.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
        assert ImagePerceptAdapter().to_pose_percept(image_percept(400.0, 240.0, broken)) is None

    def test_pixel_ray(self):
        cam = PinholeCamera.from_camera_info(CAMERA_INFO)
        np.testing.assert_allclose(cam.project_pixel_to_ray(570.0, 140.0), [0.5, -0.2, 1.0])
