"""Pinhole camera model used by the reprojection aligner."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import yaml

from .pose import SE3


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass
class PinholeCamera:
    """Rectified pinhole camera mounted on the robot.

    Attributes:
        intrinsics: Focal lengths and principal point
        image_cols: Image width in pixels
        image_rows: Image height in pixels
        camera_to_robot: Extrinsics (T_BS in EuRoC terms)
    """

    intrinsics: CameraIntrinsics
    image_cols: int
    image_rows: int
    camera_to_robot: SE3 = field(default_factory=SE3.identity)

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return self.intrinsics.to_matrix()

    @property
    def robot_to_camera(self) -> SE3:
        """Return the inverse extrinsics."""
        return self.camera_to_robot.inverse()

    def project(self, points_in_camera: np.ndarray) -> np.ndarray:
        """Project Nx3 camera-frame points to (u, v, depth).

        Points with non-positive depth yield non-finite image coordinates.

        Args:
            points_in_camera: Nx3 points in the camera frame

        Returns:
            Nx3 array of (u, v, depth)
        """
        points = np.atleast_2d(np.asarray(points_in_camera, dtype=np.float64))
        homogeneous = points @ self.camera_matrix.T
        depth = points[:, 2]
        with np.errstate(divide="ignore", invalid="ignore"):
            uvd = homogeneous / depth[:, None]
        uvd[:, 2] = depth
        return uvd

    def is_in_field_of_view(self, image_coordinates: np.ndarray) -> np.ndarray:
        """Return a mask of image coordinates that lie inside the image."""
        uv = np.atleast_2d(np.asarray(image_coordinates, dtype=np.float64))
        return (
            (uv[:, 0] >= 0)
            & (uv[:, 0] <= self.image_cols)
            & (uv[:, 1] >= 0)
            & (uv[:, 1] <= self.image_rows)
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> PinholeCamera:
        """Load camera parameters from a EuRoC style sensor.yaml.

        Expected keys: ``intrinsics`` [fu, fv, cu, cv], ``resolution``
        [width, height] and optionally ``T_BS.data`` (16 values, row-major).

        Args:
            yaml_path: Path to the YAML file

        Returns:
            PinholeCamera

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        resolution = data.get("resolution")
        if resolution is None or len(resolution) != 2:
            raise ValueError(f"Invalid resolution in {yaml_path}")

        camera_to_robot = SE3.identity()
        T_BS_data = (data.get("T_BS") or {}).get("data")
        if T_BS_data is not None:
            if len(T_BS_data) != 16:
                raise ValueError(f"Invalid T_BS transform in {yaml_path}")
            camera_to_robot = SE3.from_matrix(
                np.array(T_BS_data, dtype=np.float64).reshape(4, 4)
            )

        return cls(
            intrinsics=CameraIntrinsics(
                fx=float(intrinsics_list[0]),
                fy=float(intrinsics_list[1]),
                cx=float(intrinsics_list[2]),
                cy=float(intrinsics_list[3]),
            ),
            image_cols=int(resolution[0]),
            image_rows=int(resolution[1]),
            camera_to_robot=camera_to_robot,
        )
