"""Trajectory export in the KITTI odometry benchmark format.

Each line holds the 12 values of the 3x4 row-major pose matrix [R | t]
that maps the robot frame to the world frame, separated by spaces.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import numpy as np

from ..frontend.pose import SE3


def format_kitti_pose(pose: SE3) -> str:
    """Format a pose as one KITTI trajectory line.

    Args:
        pose: Pose T_world_robot

    Returns:
        12 space separated values (no trailing newline)
    """
    values = pose.to_matrix()[:3, :].flatten()
    return " ".join(f"{value:.9e}" for value in values)


def write_kitti_trajectory(path: str | Path, poses: Iterable[SE3]) -> int:
    """Write poses to a KITTI trajectory file.

    Args:
        path: Output file path (parent directories are created)
        poses: Poses in frame order

    Returns:
        Number of written poses
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    count = 0
    with open(path, "w") as f:
        for pose in poses:
            f.write(format_kitti_pose(pose) + "\n")
            count += 1
    return count


def read_kitti_trajectory(path: str | Path) -> list[SE3]:
    """Read poses from a KITTI trajectory file.

    Args:
        path: Input file path

    Returns:
        Poses in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If a line does not hold 12 values
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Trajectory not found: {path}")

    poses: list[SE3] = []
    with open(path, "r") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue

            values = line.split()
            if len(values) != 12:
                raise ValueError(
                    f"Expected 12 values on line {line_number} of {path}, got {len(values)}"
                )
            matrix = np.array([float(v) for v in values], dtype=np.float64).reshape(3, 4)
            poses.append(SE3.from_matrix(matrix))
    return poses
