"""Point-to-point residual between two 3D point clouds.

Used to verify closures: the query landmarks (in the query local map
frame) are aligned onto their corresponding reference landmarks (in the
reference local map frame).

    e_i = T * p_query_i - p_reference_i
    J_i = [I, -skew(T * p_query_i)]
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from ..frontend.pose import SE3
from .base import Linearization, skew_batch

if TYPE_CHECKING:
    from ..relocalization.closure import Closure


class EuclideanResidual:
    """3D Euclidean residual model for the iterative aligner."""

    def __init__(
        self,
        query_points: np.ndarray,
        reference_points: np.ndarray,
        confidences: np.ndarray | None = None,
    ) -> None:
        """Initialize residual model.

        Args:
            query_points: (N, 3) points in the source frame
            reference_points: (N, 3) corresponding points in the target frame
            confidences: (N,) per-correspondence weights (default: ones)
        """
        self._query_points = np.asarray(query_points, dtype=np.float64).reshape(-1, 3)
        self._reference_points = np.asarray(reference_points, dtype=np.float64).reshape(-1, 3)
        if len(self._query_points) != len(self._reference_points):
            raise ValueError(
                f"Point count mismatch: {len(self._query_points)} query vs "
                f"{len(self._reference_points)} reference"
            )

        if confidences is None:
            confidences = np.ones(len(self._query_points), dtype=np.float64)
        self._confidences = np.asarray(confidences, dtype=np.float64).flatten()

    @classmethod
    def from_closure(cls, closure: Closure) -> EuclideanResidual:
        """Build the model from the correspondences of a closure.

        Coordinates are taken from the local map snapshots, so the estimated
        transform maps the query local map frame into the reference one.

        Args:
            closure: Closure with correspondences

        Returns:
            EuclideanResidual over all correspondences
        """
        query_points = []
        reference_points = []
        confidences = []
        for correspondence in closure.correspondences:
            query_points.append(
                closure.query.landmark_coordinates[correspondence.query_landmark_id]
            )
            reference_points.append(
                closure.reference.landmark_coordinates[correspondence.reference_landmark_id]
            )
            confidences.append(correspondence.ratio)

        if not query_points:
            return cls(np.empty((0, 3)), np.empty((0, 3)), np.empty(0))
        return cls(np.array(query_points), np.array(reference_points), np.array(confidences))

    def __len__(self) -> int:
        return len(self._query_points)

    def linearize(self, transform: SE3) -> Linearization:
        """Evaluate residuals at ``transform`` (query to reference)."""
        n = len(self._query_points)
        predicted = transform.transform_points(self._query_points)
        errors = predicted - self._reference_points

        jacobians = np.zeros((n, 3, 6), dtype=np.float64)
        jacobians[:, :, :3] = np.eye(3)
        jacobians[:, :, 3:] = -skew_batch(predicted)

        omegas = np.eye(3)[None, :, :] * self._confidences[:, None, None]

        return Linearization(
            errors=errors,
            jacobians=jacobians,
            omegas=omegas,
            valid=np.ones(n, dtype=bool),
        )

    @property
    def query_points(self) -> np.ndarray:
        """Return the source points."""
        return self._query_points

    @property
    def reference_points(self) -> np.ndarray:
        """Return the target points."""
        return self._reference_points
