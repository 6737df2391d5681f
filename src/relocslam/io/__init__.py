"""I/O utilities for trajectory export."""

from .trajectory import format_kitti_pose, read_kitti_trajectory, write_kitti_trajectory

__all__ = [
    "format_kitti_pose",
    "read_kitti_trajectory",
    "write_kitti_trajectory",
]
