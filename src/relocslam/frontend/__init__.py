"""Geometry primitives shared by the mapping and alignment components.

- SE3: Rigid body transformation with exponential map
- PinholeCamera: Projection model used by the reprojection aligner
"""

from .camera import CameraIntrinsics, PinholeCamera
from .pose import SE3, rotation_angle, skew

__all__ = [
    # Pose
    "SE3",
    "rotation_angle",
    "skew",
    # Camera
    "CameraIntrinsics",
    "PinholeCamera",
]
