"""Tests for KITTI trajectory export."""

from pathlib import Path

import numpy as np
import pytest

from relocslam.frontend import SE3
from relocslam.io import format_kitti_pose, read_kitti_trajectory, write_kitti_trajectory


@pytest.fixture
def poses() -> list[SE3]:
    """Create a short trajectory with rotation and translation."""
    return [
        SE3.identity(),
        SE3.exp(np.array([0.5, 0.0, 0.1, 0.0, 0.0, 0.2])),
        SE3.exp(np.array([1.0, -0.2, 0.3, 0.05, 0.1, 0.4])),
    ]


class TestKittiTrajectory:
    """Test suite for KITTI trajectory files."""

    def test_format_has_twelve_values(self):
        """Test that one pose is formatted as 12 values."""
        line = format_kitti_pose(SE3.identity())
        values = [float(v) for v in line.split()]
        assert len(values) == 12
        np.testing.assert_allclose(values, [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0])

    def test_round_trip(self, tmp_path: Path, poses: list[SE3]):
        """Test that written poses are read back unchanged."""
        path = tmp_path / "out" / "trajectory.txt"
        assert write_kitti_trajectory(path, poses) == 3
        assert len(path.read_text().splitlines()) == 3

        loaded = read_kitti_trajectory(path)
        assert len(loaded) == 3
        for original, restored in zip(poses, loaded):
            np.testing.assert_allclose(restored.to_matrix(), original.to_matrix(), atol=1e-8)

    def test_missing_file(self, tmp_path: Path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            read_kitti_trajectory(tmp_path / "missing.txt")

    def test_malformed_line(self, tmp_path: Path):
        """Test that a line with the wrong number of values is rejected."""
        path = tmp_path / "trajectory.txt"
        path.write_text("1 0 0 0 0 1 0 0 0 0 1\n")
        with pytest.raises(ValueError, match="line 1"):
            read_kitti_trajectory(path)
