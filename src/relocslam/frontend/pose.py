"""SE(3) pose representation for rigid body transformations."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


def skew(vector: np.ndarray) -> np.ndarray:
    """Return the 3x3 skew-symmetric matrix of a 3D vector.

    skew(a) @ b == np.cross(a, b)

    Args:
        vector: 3D vector

    Returns:
        3x3 skew-symmetric matrix
    """
    x, y, z = np.asarray(vector, dtype=np.float64).flatten()
    return np.array(
        [[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]],
        dtype=np.float64,
    )


def rotation_angle(R: np.ndarray) -> float:
    """Extract rotation angle from a 3x3 rotation matrix.

    Uses the trace formula: trace(R) = 1 + 2*cos(theta)

    Args:
        R: 3x3 rotation matrix

    Returns:
        Rotation angle in radians [0, pi]
    """
    trace = np.trace(R)
    # Clamp for numerical stability
    cos_theta = np.clip((trace - 1) / 2, -1.0, 1.0)
    return float(np.arccos(cos_theta))


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    Depending on context the transform maps robot to world, world to
    camera or query local map to reference local map:

        p_target = R @ p_source + t

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from a 4x4 (or 3x4) homogeneous transformation matrix.

        Args:
            T: Transformation matrix [[R t]] with optional [0 0 0 1] row

        Returns:
            SE3 transformation
        """
        T = np.asarray(T, dtype=np.float64)
        if T.shape not in ((4, 4), (3, 4)):
            raise ValueError(f"Transform must be 4x4 or 3x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from an OpenCV Rodrigues vector and translation.

        Args:
            rvec: 3D Rodrigues rotation vector (axis * angle)
            tvec: 3D translation vector

        Returns:
            SE3 transformation
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    @classmethod
    def exp(cls, xi: np.ndarray) -> SE3:
        """Exponential map from the tangent space se(3) to SE(3).

        The tangent vector is ordered translation first, rotation second,
        matching the column order of the aligner Jacobians.

        Args:
            xi: 6D tangent vector [rho_x, rho_y, rho_z, omega_x, omega_y, omega_z]

        Returns:
            SE3 transformation exp(xi)
        """
        xi = np.asarray(xi, dtype=np.float64).flatten()
        if xi.shape != (6,):
            raise ValueError(f"Tangent vector must be (6,), got {xi.shape}")

        rho = xi[:3]
        omega = xi[3:]
        R, _ = cv2.Rodrigues(omega.reshape(3, 1))

        theta = float(np.linalg.norm(omega))
        Omega = skew(omega)
        if theta < 1e-8:
            # Second order expansion of the left Jacobian
            V = np.eye(3) + 0.5 * Omega
        else:
            V = (
                np.eye(3)
                + (1.0 - np.cos(theta)) / theta**2 * Omega
                + (theta - np.sin(theta)) / theta**3 * (Omega @ Omega)
            )
        return cls(rotation=R, translation=V @ rho)

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten(), self.translation.copy()

    def inverse(self) -> SE3:
        """Compute the inverse transformation T^{-1}.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            T_world_prev.compose(T_prev_curr) gives T_world_curr

        Args:
            other: SE3 transformation applied first

        Returns:
            Composed SE3 transformation (self @ other)
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def orthonormalized(self) -> SE3:
        """Return a copy with the rotation pulled back onto SO(3).

        Applies the first order correction R - 0.5 * R (R^T R - I), which
        removes the drift that accumulates over repeated small updates.
        """
        R = self.rotation
        R_squared = R.T @ R - np.eye(3)
        return SE3(rotation=R - 0.5 * R @ R_squared, translation=self.translation.copy())

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Transform Nx3 points: p' = R @ p + t."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return points @ self.rotation.T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        """Transform a single 3D point."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    @property
    def position(self) -> np.ndarray:
        """Return the translation component (origin of the source frame)."""
        return self.translation.copy()

    @property
    def rotation_angle(self) -> float:
        """Return the rotation angle in radians."""
        return rotation_angle(self.rotation)

    def copy(self) -> SE3:
        """Return a deep copy."""
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    def __repr__(self) -> str:
        """Return string representation."""
        pos = self.translation
        return f"SE3(position=[{pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition: T1 @ T2."""
        return self.compose(other)
