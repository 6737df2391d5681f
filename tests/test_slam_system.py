"""End-to-end tests for SLAMSystem on a synthetic scene."""

from pathlib import Path

import numpy as np
import pytest

from relocslam.aligners import AlignerConfig
from relocslam.config import SLAMConfig
from relocslam.frontend import SE3, CameraIntrinsics, PinholeCamera
from relocslam.mapping import WorldMapConfig
from relocslam.metrics import Chronometer
from relocslam.relocalization import RelocalizerConfig
from relocslam.slam_system import FrameInput, PointObservation, SLAMSystem


@pytest.fixture
def camera() -> PinholeCamera:
    """Create a VGA pinhole camera."""
    return PinholeCamera(
        intrinsics=CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0),
        image_cols=640,
        image_rows=480,
    )


@pytest.fixture
def scene() -> tuple[np.ndarray, np.ndarray]:
    """Create world points with one descriptor each."""
    rng = np.random.default_rng(0)
    points = rng.uniform([-1.0, -1.0, 4.0], [2.5, 1.0, 8.0], size=(30, 3))
    descriptors = rng.integers(0, 256, size=(30, 32), dtype=np.uint8)
    return points, descriptors


@pytest.fixture
def config() -> SLAMConfig:
    """Create a configuration for short synthetic sequences."""
    return SLAMConfig(
        world_map=WorldMapConfig(
            minimum_distance_traveled_for_local_map=0.5,
            minimum_number_of_frames_for_local_map=4,
            minimum_track_length_for_landmark=2,
            minimum_updates_for_validation=2,
        ),
        relocalizer=RelocalizerConfig(
            minimum_interspace=1,
            minimum_matching_ratio=0.1,
            minimum_number_of_matched_landmarks=3,
        ),
        tracking=AlignerConfig(maximum_error_kernel=9.0),
        minimum_inliers=3,
        minimum_inlier_ratio=0.5,
    )


def _frame_input(
    camera: PinholeCamera,
    sequence_number: int,
    robot_to_world: SE3,
    scene: tuple[np.ndarray, np.ndarray],
    continue_tracks: bool,
) -> FrameInput:
    """Observe the scene from a pose (camera mounted at the robot origin)."""
    points, descriptors = scene
    in_camera = robot_to_world.inverse().transform_points(points)
    uvd = camera.project(in_camera)
    return FrameInput(
        sequence_number=sequence_number,
        robot_to_world=robot_to_world,
        points=[
            PointObservation(
                image_coordinates=uvd[index, :2],
                camera_coordinates=in_camera[index],
                descriptor=descriptors[index],
                previous_index=index if continue_tracks else None,
            )
            for index in range(len(points))
        ],
    )


def _looped_sequence(camera, scene) -> list[FrameInput]:
    """Drive 1.4 m along x, lose tracking and drive the same stretch again."""
    positions = [0.2 * i for i in range(8)]
    inputs = []
    for lap in range(2):
        for index, x in enumerate(positions[:4] if lap else positions):
            pose = SE3(rotation=np.eye(3), translation=np.array([x, 0.0, 0.0]))
            inputs.append(
                _frame_input(camera, len(inputs), pose, scene, continue_tracks=index > 0)
            )
    return inputs


class TestSLAMSystem:
    """Test suite for SLAMSystem."""

    def test_tracking_requires_camera(self):
        """Test that tracking cannot be enabled without a camera."""
        with pytest.raises(ValueError):
            SLAMSystem(config=SLAMConfig(enable_tracking=True))

    def test_revisit_is_closed(self, camera, scene, config):
        """Test that a revisited place is recognized and closed."""
        timings = Chronometer()
        system = SLAMSystem(camera, config, timings)
        frames = system.run(_looped_sequence(camera, scene))

        assert len(frames) == 12
        boundaries = [frame.frame_id for frame in frames if frame.is_local_map_boundary]
        assert boundaries == [3, 7, 11]

        # Revisit: the third local map recognizes the first one
        last = frames[11]
        assert (2, 0) in last.accepted_closures
        assert last.relocalized

        edges = {
            (query_id, edge.reference_id): edge for query_id, edge in system.world_map.closure_edges
        }
        revisit = edges[(2, 0)]
        np.testing.assert_allclose(
            revisit.transform_query_to_reference.translation, np.zeros(3), atol=1e-3
        )
        np.testing.assert_allclose(
            revisit.transform_query_to_reference.rotation, np.eye(3), atol=1e-3
        )

        # Third local map sits 0.8 m behind the second one
        np.testing.assert_allclose(
            edges[(2, 1)].transform_query_to_reference.translation,
            [-0.8, 0.0, 0.0],
            atol=1e-3,
        )

        stats = system.stats
        assert stats.num_frames == 12
        assert stats.num_local_maps == 3
        assert stats.num_closures_accepted >= 2
        assert system.relocalizer.closures == []
        assert timings.count("slam.frame") == 12
        assert timings.count("slam.relocalization") == 3

    def test_tracking_refines_poses(self, camera, scene, config):
        """Test that tracking corrects a noisy frontend pose."""
        config.enable_tracking = True
        system = SLAMSystem(camera, config)
        truth = [SE3(rotation=np.eye(3), translation=np.array([0.1 * i, 0.0, 0.0])) for i in range(4)]

        for index, pose in enumerate(truth):
            frame_input = _frame_input(camera, index, pose, scene, continue_tracks=index > 0)
            if index == 3:
                frame_input.robot_to_world = SE3(
                    rotation=np.eye(3), translation=pose.translation + np.array([0.03, -0.02, 0.0])
                )
            slam_frame = system.process_frame(frame_input)

        assert slam_frame.tracking_converged
        np.testing.assert_allclose(slam_frame.robot_to_world.translation, truth[3].translation, atol=1e-4)

    def test_write_trajectory(self, tmp_path: Path, camera, scene, config):
        """Test that every processed frame is exported."""
        system = SLAMSystem(camera, config)
        system.run(_looped_sequence(camera, scene)[:5])

        path = tmp_path / "trajectory.txt"
        system.write_trajectory(path)
        assert len(path.read_text().splitlines()) == 5

    def test_from_yaml(self, tmp_path: Path):
        """Test construction from calibration and configuration files."""
        camera_path = tmp_path / "sensor.yaml"
        camera_path.write_text("intrinsics: [500, 500, 320, 240]\nresolution: [640, 480]\n")
        config_path = tmp_path / "slam.yaml"
        config_path.write_text("relocalizer:\n  minimum_interspace: 2\n")

        system = SLAMSystem.from_yaml(camera_path, config_path)
        assert system.camera.image_cols == 640
        assert system.config.relocalizer.minimum_interspace == 2
        assert system.relocalizer.config.minimum_interspace == 2
