#!/usr/bin/env python3
"""
Object Tracker Demo: Synthetic Search-and-Rescue Run
======================================================

Run with:
    python -m object_tracker.demo                  # default run, text summary
    python -m object_tracker.demo --project        # snap range to obstacles
    python -m object_tracker.demo --plot --save    # write demo_object_model.png
    python -m object_tracker.demo --config tracker.yaml

A robot drives along the x-axis of the ``map`` frame with a forward camera.
Odometry is turned into a transform chain (map -> base_footprint ->
base_stabilized -> base_link) and the camera is mounted statically on
base_link. Each step:
  1. every victim in the field of view yields a noisy pose percept
  2. every heat source in view yields a bearing-only image percept
  3. one spurious detection appears at random
A demo verifier confirms victims once they have gathered enough support.
At the end the best-supported victim is locked.

License: AGPL-3.0-or-later
"""

import argparse
import logging
import os
from typing import List, Optional

import numpy as np

from .tracker_config import TrackerConfig, load_config
from .tracker_engine import ObjectTracker
from .tracker_geometry import Header, StampedTransform, Transform
from .tracker_model import ObjectState
from .tracker_percepts import CameraInfo, ImagePercept, PerceptInfo, PosePercept
from .tracker_publish import RecordingPublisher
from .tracker_services import (
    OdometryTransformBridge, RangingService, TransformBuffer,
    VerificationResponse, VerificationService,
)

logger = logging.getLogger(__name__)

CAMERA_FRAME = "camera"
CAMERA_MOUNT = Transform(translation=[0.2, 0.0, 0.5])
CAMERA_INFO = CameraInfo(width=640, height=480,
                         K=[[525.0, 0.0, 320.0], [0.0, 525.0, 240.0], [0.0, 0.0, 1.0]])
FIELD_OF_VIEW = np.radians(30.0)


def generate_world(seed=7):
    """Victims and heat sources scattered beside the robot's path [map frame]."""
    rng = np.random.RandomState(seed)
    victims = np.column_stack([
        np.array([4.0, 7.5, 11.0]),
        rng.uniform(-1.5, 1.5, 3),
        np.full(3, 0.3),
    ])
    heat_sources = np.column_stack([
        np.array([6.0, 13.0]),
        rng.uniform(-1.0, 1.0, 2),
        np.full(2, 0.6),
    ])
    return victims, heat_sources


class SphereRanging(RangingService):
    """Obstacle distance against spheres of radius ``radius`` around targets."""

    def __init__(self, buffer: TransformBuffer, targets: np.ndarray,
                 frame_id: str = "map", radius: float = 0.25):
        self.buffer = buffer
        self.targets = targets
        self.frame_id = frame_id
        self.radius = radius

    def distance_to_obstacle(self, header: Header, point: np.ndarray) -> Optional[float]:
        to_map = self.buffer.lookup_transform(self.frame_id, header.frame_id, header.stamp)
        origin = to_map.translation
        direction = to_map.matrix @ (point / np.linalg.norm(point))

        best = None
        for target in self.targets:
            oc = origin - target
            b = direction @ oc
            disc = b * b - (oc @ oc - self.radius ** 2)
            if disc < 0.0:
                continue
            distance = -b - np.sqrt(disc)
            if distance > 0.0 and (best is None or distance < best):
                best = distance
        return best


class SupportVerifier(VerificationService):
    """Confirms objects of one class once their support passes a threshold."""

    def __init__(self, name: str = "victim_verification",
                 class_id: str = "victim", threshold: float = 5.0):
        self.name = name
        self.class_id = class_id
        self.threshold = threshold
        self.confirmed = set()

    def verify(self, obj) -> VerificationResponse:
        if obj.class_id != self.class_id or obj.object_id in self.confirmed:
            return VerificationResponse.UNKNOWN
        if obj.support >= self.threshold:
            self.confirmed.add(obj.object_id)
            return VerificationResponse.CONFIRM
        return VerificationResponse.UNKNOWN


def _in_view(point_camera: np.ndarray) -> bool:
    x, y, z = point_camera
    return x > 0.3 and abs(np.arctan2(y, x)) < FIELD_OF_VIEW and abs(np.arctan2(z, x)) < FIELD_OF_VIEW


def _pixel_region(point_camera: np.ndarray, size: float = 20.0):
    """Pixel box around the projection of a body-frame point."""
    x, y, z = point_camera
    K = CAMERA_INFO.K
    u = K[0, 0] * (-y / x) + K[0, 2]
    v = K[1, 1] * (-z / x) + K[1, 2]
    return u - size / 2.0, v - size / 2.0, size, size


def run_scenario(tracker: ObjectTracker, buffer: TransformBuffer,
                 victims: np.ndarray, heat_sources: np.ndarray,
                 n_steps: int = 60, dt: float = 0.25, speed: float = 0.5,
                 noise: float = 0.08, seed: int = 42) -> List[np.ndarray]:
    """Drive the robot and feed percepts; returns the robot path."""
    rng = np.random.RandomState(seed)
    bridge = OdometryTransformBridge(buffer, child_frame_id="base_link", frame_id="map")
    buffer.set_transform(StampedTransform("base_link", CAMERA_FRAME, 0.0, CAMERA_MOUNT),
                         static=True)

    path = []
    for step in range(n_steps):
        stamp = 1.0 + step * dt
        yaw = 0.05 * np.sin(0.2 * step)
        position = np.array([step * dt * speed, 0.0, 0.0])
        orientation = np.array([0.0, 0.0, np.sin(yaw / 2.0), np.cos(yaw / 2.0)])
        bridge.handle_odometry(position, orientation, Header(stamp, "map"))
        path.append(position)
        logger.debug("Step %d: robot at x=%.2f yaw=%.3f", step, position[0], yaw)

        map_to_camera = buffer.lookup_transform(CAMERA_FRAME, "map", stamp)
        header = Header(stamp, CAMERA_FRAME)

        for victim in victims:
            p = map_to_camera.apply(victim)
            if not _in_view(p):
                continue
            cov = np.zeros((6, 6))
            cov[:3, :3] = np.eye(3) * (3.0 * noise) ** 2
            tracker.process_pose_percept(PosePercept(
                header=header,
                info=PerceptInfo(class_id="victim", class_support=1.0),
                position=p + rng.randn(3) * noise,
                covariance=cov,
            ))

        for source in heat_sources:
            p = map_to_camera.apply(source)
            if not _in_view(p):
                continue
            x, y, w, h = _pixel_region(p + rng.randn(3) * noise)
            tracker.process_image_percept(ImagePercept(
                header=header,
                info=PerceptInfo(class_id="heat", class_support=0.5),
                x=x, y=y, width=w, height=h,
                camera_info=CAMERA_INFO,
            ))

        if rng.rand() < 0.2:
            tracker.process_pose_percept(PosePercept(
                header=header,
                info=PerceptInfo(class_id="victim", class_support=0.5),
                position=rng.uniform([1.0, -2.0, -0.5], [6.0, 2.0, 0.5]),
            ))

    return path


def plot_model(publisher: RecordingPublisher, victims, heat_sources, path,
               save_path=None):
    """Top view of the final model with 2σ covariance ellipses."""
    import matplotlib
    if save_path:
        matplotlib.use('Agg')
    import matplotlib.pyplot as plt
    from matplotlib.patches import Ellipse

    fig, ax = plt.subplots(figsize=(10, 5))
    path = np.array(path)
    ax.plot(path[:, 0], path[:, 1], 'k-', linewidth=1.5, alpha=0.6, label='Robot path')
    ax.plot(victims[:, 0], victims[:, 1], 'r*', markersize=12, label='Victims (truth)')
    ax.plot(heat_sources[:, 0], heat_sources[:, 1], 'o', color='#ff8800',
            markersize=8, label='Heat sources (truth)')

    states = {obj['object_id']: obj['state'] for obj in publisher.last_model}
    colors = {'pending': '#4488ff', 'confirmed': '#00aa55',
              'discarded': '#999999', 'locked': '#aa00aa'}
    ellipses = publisher.drawings[-1] if publisher.drawings else []
    for e in ellipses:
        color = colors.get(states.get(e.object_id), '#4488ff')
        ax.add_patch(Ellipse(e.center, 2 * e.axes[0], 2 * e.axes[1],
                             angle=np.degrees(e.angle), fill=False,
                             edgecolor=color, linewidth=1.5))
        ax.annotate(e.object_id, e.center, fontsize=7, color=color)

    ax.set_xlabel('x (m)')
    ax.set_ylabel('y (m)')
    ax.set_title('Object model (2σ position covariance)')
    ax.set_aspect('equal')
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper left', fontsize=8)
    plt.tight_layout()
    if save_path:
        plt.savefig(save_path, dpi=150)
        print(f"  Saved: {save_path}")
    return fig


def run_demo(config: TrackerConfig, plot=False, save=False, output_dir='.'):
    """Run the synthetic scenario and print the resulting object model."""
    victims, heat_sources = generate_world()
    buffer = TransformBuffer(cache_time=30.0)
    publisher = RecordingPublisher()
    verifier = SupportVerifier()
    if not config.verification_services:
        config.verification_services = [verifier.name]

    tracker = ObjectTracker(
        config,
        transforms=buffer,
        ranging=SphereRanging(buffer, np.vstack([victims, heat_sources])),
        verifiers={verifier.name: verifier},
        publisher=publisher,
    )

    print("━━━ Object Tracker: synthetic search run ━━━")
    path = run_scenario(tracker, buffer, victims, heat_sources)
    print(tracker.summary())

    victims_found = [o for o in tracker.get_object_model() if o.class_id == "victim"]
    if victims_found:
        strongest = max(victims_found, key=lambda o: o.support)
        tracker.set_object_state(strongest.object_id, ObjectState.LOCKED)
        print(f"\n  Locked {strongest.object_id} at "
              f"({strongest.position[0]:.2f}, {strongest.position[1]:.2f})")

    print(f"  Model messages: {len(publisher.models)} | "
          f"Object messages: {len(publisher.objects)}")

    if plot:
        os.makedirs(output_dir, exist_ok=True)
        path_png = os.path.join(output_dir, 'demo_object_model.png') if save else None
        plot_model(publisher, victims, heat_sources, path, save_path=path_png)
        if not save:
            import matplotlib.pyplot as plt
            plt.show()

    return tracker


def main():
    parser = argparse.ArgumentParser(
        description='Object Tracker Demo: synthetic search-and-rescue run',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m object_tracker.demo                # text summary
  python -m object_tracker.demo --project      # obstacle range projection
  python -m object_tracker.demo --plot --save  # save PNG (headless)
""")
    parser.add_argument('--config', '-c', type=str, default=None,
                        help='YAML configuration file')
    parser.add_argument('--project', action='store_true',
                        help='Snap percept ranges to the nearest obstacle')
    parser.add_argument('--plot', action='store_true',
                        help='Plot the final model (needs matplotlib)')
    parser.add_argument('--save', action='store_true',
                        help='Save the plot instead of displaying it')
    parser.add_argument('--output-dir', '-o', type=str, default='.',
                        help='Output directory for the PNG (default: current)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(asctime)s %(name)s %(levelname)s: %(message)s')

    config = load_config(args.config) if args.config else TrackerConfig()
    if args.project:
        config.project_objects = True
    run_demo(config, plot=args.plot, save=args.save, output_dir=args.output_dir)


if __name__ == '__main__':
    main()
