"""SLAM system wiring tracking, mapping and relocalization together.

SLAMSystem runs the complete per-frame pipeline synchronously:
- Frame creation from the frontend pose and tracked points
- Optional pose refinement with the reprojection aligner
- Landmark update and local map segmentation
- Closure detection, registration and acceptance for new local maps
- Landmark purification

Every stage finishes before the next frame is accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import numpy as np

from .aligners.uvd import align_frame
from .config import SLAMConfig
from .frontend.camera import PinholeCamera
from .frontend.pose import SE3
from .mapping.frame import Frame
from .mapping.world_map import WorldMap
from .metrics import NullTimings, Timings
from .relocalization.closure import Closure
from .relocalization.relocalizer import Relocalizer

logger = logging.getLogger(__name__)


@dataclass
class PointObservation:
    """A tracked point delivered by the frontend.

    Attributes:
        image_coordinates: (u, v) pixel coordinates
        camera_coordinates: (x, y, z) in the camera frame
        descriptor: Packed binary descriptor, e.g. (32,) uint8 for ORB
        previous_index: Index of the same track in the previous frame's
            point list, None for a new track
    """

    image_coordinates: np.ndarray
    camera_coordinates: np.ndarray
    descriptor: np.ndarray | None = None
    previous_index: int | None = None


@dataclass
class FrameInput:
    """Frontend output for one frame."""

    sequence_number: int
    robot_to_world: SE3
    points: list[PointObservation] = field(default_factory=list)


@dataclass
class SLAMFrame:
    """Output of the SLAM system for a single frame."""

    frame_id: int
    sequence_number: int
    robot_to_world: SE3
    num_points: int = 0
    num_landmarks_created: int = 0
    tracking_converged: bool | None = None
    local_map_id: int | None = None
    num_closures_detected: int = 0
    accepted_closures: list[tuple[int, int]] = field(default_factory=list)
    relocalized: bool = False

    @property
    def is_local_map_boundary(self) -> bool:
        """Return True if this frame closed a local map."""
        return self.local_map_id is not None


@dataclass
class SLAMStats:
    """Statistics from the SLAM system."""

    num_frames: int = 0
    num_local_maps: int = 0
    num_landmarks: int = 0
    num_closures_detected: int = 0
    num_closures_accepted: int = 0
    num_tracking_failures: int = 0
    total_distance: float = 0.0


class SLAMSystem:
    """Single-threaded SLAM pipeline with appearance-based relocalization.

    Example:
        >>> system = SLAMSystem(camera, SLAMConfig())
        >>> for frame_input in frontend:
        ...     slam_frame = system.process_frame(frame_input)
        >>> system.write_trajectory("trajectory.txt")
    """

    def __init__(
        self,
        camera: PinholeCamera | None = None,
        config: SLAMConfig | None = None,
        timings: Timings | None = None,
    ) -> None:
        """Initialize SLAM system.

        Args:
            camera: Camera model; required when tracking is enabled
            config: System configuration
            timings: Timing sink for the processing stages

        Raises:
            ValueError: If tracking is enabled without a camera
        """
        self._config = config or SLAMConfig()
        if self._config.enable_tracking and camera is None:
            raise ValueError("camera required when enable_tracking=True")

        self._camera = camera
        self._timings = timings or NullTimings()
        camera_to_robot = camera.camera_to_robot if camera is not None else SE3.identity()
        self._world_map = WorldMap(self._config.world_map, camera_to_robot=camera_to_robot)
        self._relocalizer = Relocalizer(self._config.relocalizer, timings=self._timings)

        self._stats = SLAMStats()
        # Frame point IDs of the previous frame, indexed like its input points
        self._previous_point_ids: list[int] = []

    @classmethod
    def from_yaml(
        cls,
        camera_path: str | Path,
        config_path: str | Path | None = None,
        timings: Timings | None = None,
    ) -> SLAMSystem:
        """Create SLAMSystem from camera and configuration YAML files.

        Args:
            camera_path: Camera calibration file (intrinsics, resolution, T_BS)
            config_path: Optional SLAM configuration file
            timings: Timing sink for the processing stages

        Returns:
            Configured SLAMSystem
        """
        camera = PinholeCamera.from_yaml(camera_path)
        config = SLAMConfig.from_yaml(config_path) if config_path is not None else SLAMConfig()
        return cls(camera, config, timings)

    def process_frame(self, frame_input: FrameInput) -> SLAMFrame:
        """Process one frame through the complete pipeline.

        Args:
            frame_input: Pose estimate and tracked points from the frontend

        Returns:
            SLAMFrame summarizing what happened for this frame
        """
        self._timings.start("slam.frame")
        world_map = self._world_map

        frame = world_map.create_frame(frame_input.robot_to_world, frame_input.sequence_number)
        point_ids: list[int] = []
        for observation in frame_input.points:
            point = world_map.create_frame_point(
                observation.image_coordinates,
                observation.camera_coordinates,
                descriptor=observation.descriptor,
                previous_id=self._previous_id(observation.previous_index),
            )
            point_ids.append(point.identifier)
        self._previous_point_ids = point_ids

        tracking_converged = self._track(frame) if self._config.enable_tracking else None

        self._timings.start("slam.mapping")
        landmarks_created = world_map.update_landmarks()
        local_map = world_map.create_local_map()
        self._timings.stop("slam.mapping")

        slam_frame = SLAMFrame(
            frame_id=frame.identifier,
            sequence_number=frame.sequence_number,
            robot_to_world=frame.robot_to_world.copy(),
            num_points=frame.num_points,
            num_landmarks_created=landmarks_created,
            tracking_converged=tracking_converged,
        )

        if local_map is not None:
            slam_frame.local_map_id = local_map.identifier
            self._stats.num_local_maps += 1

            self._timings.start("slam.relocalization")
            detected = self._relocalizer.detect_closures(local_map, world_map.landmarks)
            self._relocalizer.register_closures()
            for closure in detected:
                if self._accept(closure):
                    world_map.close_local_maps(
                        closure.query,
                        closure.reference,
                        closure.transform_query_to_reference,
                        closure.information,
                    )
                    slam_frame.accepted_closures.append(
                        (closure.query.identifier, closure.reference.identifier)
                    )
            slam_frame.num_closures_detected = len(detected)
            self._stats.num_closures_detected += len(detected)
            self._stats.num_closures_accepted += len(slam_frame.accepted_closures)

            if world_map.relocalized:
                world_map.reset_window()
            self._relocalizer.clear()
            self._timings.stop("slam.relocalization")

        world_map.purify_landmarks()
        slam_frame.relocalized = world_map.relocalized

        # Stats
        if frame.previous_id is not None:
            previous = world_map.frames[frame.previous_id]
            self._stats.total_distance += float(
                np.linalg.norm(frame.robot_to_world.translation - previous.robot_to_world.translation)
            )
        self._stats.num_frames += 1
        self._stats.num_landmarks = world_map.num_landmarks
        world_map.set_robot_to_world_previous(frame.robot_to_world)

        self._timings.stop("slam.frame")
        return slam_frame

    def run(self, frame_inputs: Iterable[FrameInput]) -> list[SLAMFrame]:
        """Process a sequence of frames.

        Returns:
            SLAMFrame per processed frame
        """
        return [self.process_frame(frame_input) for frame_input in frame_inputs]

    def _previous_id(self, previous_index: int | None) -> int | None:
        if previous_index is None or not 0 <= previous_index < len(self._previous_point_ids):
            return None
        return self._previous_point_ids[previous_index]

    def _track(self, frame: Frame) -> bool:
        """Refine the pose of the current frame against the map."""
        if frame.previous_id is None:
            return False

        self._timings.start("slam.tracking")
        aligned = align_frame(
            frame,
            self._world_map,
            self._camera,
            frame.robot_to_world,
            self._config.tracking,
        )
        self._timings.stop("slam.tracking")

        if aligned is None:
            self._stats.num_tracking_failures += 1
            return False

        robot_to_world, result = aligned
        if not result.converged:
            self._stats.num_tracking_failures += 1
            logger.warning(
                "[SLAMSystem] Tracking did not converge for frame %d, keeping frontend pose",
                frame.identifier,
            )
            return False

        self._world_map.update_current_pose(robot_to_world)
        return True

    def _accept(self, closure: Closure) -> bool:
        """Return True if a registered closure passes the acceptance gates."""
        if not closure.is_converged:
            return False
        if closure.number_of_inliers < self._config.minimum_inliers:
            return False
        if closure.inlier_ratio < self._config.minimum_inlier_ratio:
            return False
        logger.info(
            "[SLAMSystem] Closure accepted: local map %d -> %d (%d/%d inliers)",
            closure.query.identifier,
            closure.reference.identifier,
            closure.number_of_inliers,
            closure.num_correspondences,
        )
        return True

    def write_trajectory(self, path: str | Path) -> None:
        """Write all frame poses in KITTI format."""
        self._world_map.write_trajectory(path)

    @property
    def config(self) -> SLAMConfig:
        """Return the configuration."""
        return self._config

    @property
    def world_map(self) -> WorldMap:
        """Return the world map."""
        return self._world_map

    @property
    def relocalizer(self) -> Relocalizer:
        """Return the relocalizer."""
        return self._relocalizer

    @property
    def stats(self) -> SLAMStats:
        """Return SLAM statistics."""
        return self._stats

    @property
    def camera(self) -> PinholeCamera | None:
        """Return the camera model."""
        return self._camera
