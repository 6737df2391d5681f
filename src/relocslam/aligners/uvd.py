"""Reprojection residual in image coordinates plus depth (u, v, d).

Estimates the world-to-camera transform of a frame from its tracked
points. The predicted point of a correspondence is the validated landmark
estimate when available, otherwise the world position of the point's
predecessor in the previous frame (down-weighted, since it is not a stable
landmark yet). Points predicted behind the camera, beyond the far depth
limit or outside the image are skipped for that round.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from ..frontend.camera import PinholeCamera
from ..frontend.pose import SE3
from .base import AlignerConfig, AlignmentResult, IterativeAligner, Linearization, skew_batch

if TYPE_CHECKING:
    from ..mapping.frame import Frame
    from ..mapping.world_map import WorldMap


class ReprojectionResidual:
    """(u, v, depth) residual model for the iterative aligner."""

    def __init__(
        self,
        camera: PinholeCamera,
        measurements: np.ndarray,
        points_in_world: np.ndarray,
        is_landmark: np.ndarray,
        config: AlignerConfig | None = None,
        point_ids: list[int] | None = None,
    ) -> None:
        """Initialize residual model.

        Args:
            camera: Pinhole camera model
            measurements: (N, 3) observed (u, v, depth)
            points_in_world: (N, 3) points to predict from
            is_landmark: (N,) True where the point is a validated landmark
            config: Depth limits and weights
            point_ids: Optional frame point IDs, one per row
        """
        self._camera = camera
        self._config = config or AlignerConfig()
        self._measurements = np.asarray(measurements, dtype=np.float64).reshape(-1, 3)
        self._points_in_world = np.asarray(points_in_world, dtype=np.float64).reshape(-1, 3)
        self._is_landmark = np.asarray(is_landmark, dtype=bool).flatten()
        self._point_ids = list(point_ids) if point_ids is not None else []
        self._predicted = np.zeros_like(self._measurements)

    @classmethod
    def from_frame(
        cls,
        frame: Frame,
        world_map: WorldMap,
        camera: PinholeCamera,
        config: AlignerConfig | None = None,
    ) -> ReprojectionResidual:
        """Collect correspondences for all tracked points of a frame.

        Points without a validated landmark and without a predecessor have
        nothing to predict from and are left out.

        Args:
            frame: Frame whose pose is estimated
            world_map: Map resolving landmarks and predecessor points
            camera: Pinhole camera model
            config: Depth limits and weights

        Returns:
            ReprojectionResidual
        """
        measurements = []
        points_in_world = []
        is_landmark = []
        point_ids = []

        for point in frame.points:
            landmark = (
                world_map.landmarks.get(point.landmark_id)
                if point.landmark_id is not None
                else None
            )
            if landmark is not None and landmark.is_valid and landmark.is_validated:
                points_in_world.append(landmark.coordinates)
                is_landmark.append(True)
            else:
                previous = world_map.frame_point(point.previous_id)
                if previous is None:
                    continue
                points_in_world.append(previous.world_coordinates)
                is_landmark.append(False)

            measurements.append(
                [point.image_coordinates[0], point.image_coordinates[1], point.depth]
            )
            point_ids.append(point.identifier)

        return cls(
            camera=camera,
            measurements=np.array(measurements).reshape(-1, 3),
            points_in_world=np.array(points_in_world).reshape(-1, 3),
            is_landmark=np.array(is_landmark, dtype=bool),
            config=config,
            point_ids=point_ids,
        )

    def __len__(self) -> int:
        return len(self._measurements)

    def linearize(self, transform: SE3) -> Linearization:
        """Evaluate residuals at ``transform`` (world to camera)."""
        n = len(self._measurements)
        near = self._config.maximum_depth_near_meters
        far = self._config.maximum_depth_far_meters

        points_in_camera = transform.transform_points(self._points_in_world)
        depth = points_in_camera[:, 2]
        valid = (depth > 0) & (depth <= far)
        safe_depth = np.where(valid, depth, 1.0)

        # Homogeneous projection and image coordinates with depth restored
        uvd_homogeneous = points_in_camera @ self._camera.camera_matrix.T
        predicted = uvd_homogeneous / safe_depth[:, None]
        predicted[:, 2] = depth
        valid &= self._camera.is_in_field_of_view(predicted[:, :2])
        self._predicted = predicted

        errors = predicted - self._measurements

        # Transform Jacobian: translation only for near points
        jacobian_transform = np.zeros((n, 3, 6), dtype=np.float64)
        is_near = depth < near
        jacobian_transform[is_near, :, :3] = np.eye(3)
        jacobian_transform[:, :, 3:] = -skew_batch(points_in_camera)

        # Jacobian of the homogeneous division
        inverse_depth = 1.0 / safe_depth
        jacobian_projection = np.zeros((n, 3, 3), dtype=np.float64)
        jacobian_projection[:, 0, 0] = inverse_depth
        jacobian_projection[:, 0, 2] = -uvd_homogeneous[:, 0] * inverse_depth**2
        jacobian_projection[:, 1, 1] = inverse_depth
        jacobian_projection[:, 1, 2] = -uvd_homogeneous[:, 1] * inverse_depth**2
        jacobian_projection[:, 2, 2] = 1.0

        jacobians = np.einsum(
            "nij,jk,nkl->nil",
            jacobian_projection,
            self._camera.camera_matrix,
            jacobian_transform,
        )

        # Per-axis weights: depth axis, raw points, depth confidence
        scale = np.where(self._is_landmark, 1.0, self._config.weight_framepoint)
        scale = scale * np.where(is_near, (near - depth) / near, (far - depth) / far)
        base_omega = np.diag([1.0, 1.0, self._config.weight_depth])
        omegas = base_omega[None, :, :] * scale[:, None, None]

        return Linearization(errors=errors, jacobians=jacobians, omegas=omegas, valid=valid)

    @property
    def point_ids(self) -> list[int]:
        """Return the frame point IDs of the rows."""
        return self._point_ids

    @property
    def predicted(self) -> np.ndarray:
        """Return the (u, v, depth) predictions of the last linearization."""
        return self._predicted


def align_frame(
    frame: Frame,
    world_map: WorldMap,
    camera: PinholeCamera,
    robot_to_world: SE3,
    config: AlignerConfig | None = None,
) -> tuple[SE3, AlignmentResult] | None:
    """Estimate the pose of a frame from its tracked points.

    Args:
        frame: Frame with tracked points
        world_map: Map resolving landmarks and predecessor points
        camera: Pinhole camera model
        robot_to_world: Initial guess T_world_robot
        config: Solver configuration

    Returns:
        (refined T_world_robot, AlignmentResult), or None if the frame has
        no usable correspondences
    """
    model = ReprojectionResidual.from_frame(frame, world_map, camera, config)
    if len(model) == 0:
        return None

    world_to_camera = robot_to_world.compose(camera.camera_to_robot).inverse()
    aligner = IterativeAligner(model, config)
    aligner.initialize(world_to_camera)
    result = aligner.converge()

    camera_to_world = result.transform.inverse()
    return camera_to_world.compose(camera.robot_to_camera), result
