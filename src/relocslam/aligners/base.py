"""Robust damped Gauss-Newton alignment of a rigid transform.

The solver minimizes

    sum_i  w_i * e_i^T Omega_i e_i

over a rigid transform T, where the residuals e_i, their Jacobians and the
per-axis weights Omega_i come from a pluggable residual model. The robust
weight w_i is 1 for inliers and kernel / chi_i for outliers (chi_i = e_i^T
e_i above the kernel threshold), which bounds the influence of large
residuals instead of discarding them.

Each round solves the damped normal equations

    (H + damping * I) dx = -b

for a 6D tangent update dx = [translation, rotation], applies it on the
manifold (T <- exp(dx) T) and re-orthonormalizes the rotation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np
from scipy import linalg

from ..frontend.pose import SE3

logger = logging.getLogger(__name__)

# Rounds that exclude outliers once the error stopped changing
NUMBER_OF_REFINEMENT_ROUNDS = 3


@dataclass
class AlignerConfig:
    """Configuration of the iterative aligner."""

    maximum_number_of_iterations: int = 100
    error_delta_for_convergence: float = 1e-5
    maximum_error_kernel: float = 1.0  # chi threshold for outliers
    damping: float = 1.0  # Levenberg-Marquardt style diagonal term
    maximum_depth_near_meters: float = 5.0  # translation constrained below this
    maximum_depth_far_meters: float = 20.0  # points beyond are skipped
    weight_framepoint: float = 0.5  # raw points vs validated landmarks
    weight_depth: float = 10.0  # depth axis of the reprojection residual


@dataclass
class Linearization:
    """Residuals of all correspondences at the current estimate.

    Rows with ``valid == False`` are skipped for this round; their
    content is ignored.

    Attributes:
        errors: (N, 3) residuals
        jacobians: (N, 3, 6) derivatives w.r.t. [translation, rotation]
        omegas: (N, 3, 3) per-axis weight matrices
        valid: (N,) mask of correspondences with valid predicted geometry
    """

    errors: np.ndarray
    jacobians: np.ndarray
    omegas: np.ndarray
    valid: np.ndarray


class ResidualModel(Protocol):
    """Residual and Jacobian strategy used by the aligner."""

    def __len__(self) -> int:
        """Return the number of correspondences."""
        ...

    def linearize(self, transform: SE3) -> Linearization:
        """Evaluate all residuals at ``transform``."""
        ...


@dataclass
class AlignmentResult:
    """Outcome of an alignment run.

    Attributes:
        transform: Estimated transform
        information: 6x6 information matrix (final damped Hessian)
        converged: Whether the error delta dropped below the epsilon
        total_error: Sum of chi over contributing correspondences
        number_of_inliers: Inliers of the final round
        number_of_outliers: Outliers of the final round
        iterations: Number of full rounds before stopping
    """

    transform: SE3
    information: np.ndarray = field(
        default_factory=lambda: np.zeros((6, 6), dtype=np.float64)
    )
    converged: bool = False
    total_error: float = 0.0
    number_of_inliers: int = 0
    number_of_outliers: int = 0
    iterations: int = 0

    @property
    def average_error(self) -> float:
        """Return total error per evaluated correspondence."""
        evaluated = self.number_of_inliers + self.number_of_outliers
        if evaluated == 0:
            return 0.0
        return self.total_error / evaluated

    @property
    def inlier_ratio(self) -> float:
        """Return inliers / evaluated correspondences."""
        evaluated = self.number_of_inliers + self.number_of_outliers
        if evaluated == 0:
            return 0.0
        return self.number_of_inliers / evaluated


class IterativeAligner:
    """Convergence driver shared by all residual models.

    Example:
        >>> aligner = IterativeAligner(EuclideanResidual.from_closure(closure))
        >>> aligner.initialize(SE3.identity())
        >>> result = aligner.converge()
    """

    def __init__(self, model: ResidualModel, config: AlignerConfig | None = None) -> None:
        """Initialize aligner.

        Args:
            model: Residual model providing errors and Jacobians
            config: Solver configuration
        """
        self._model = model
        self._config = config or AlignerConfig()
        self._transform = SE3.identity()
        self._reset()

    def _reset(self) -> None:
        n = len(self._model)
        self._H = np.zeros((6, 6), dtype=np.float64)
        self._b = np.zeros(6, dtype=np.float64)
        self._errors = np.full(n, -1.0, dtype=np.float64)
        self._weights = np.zeros(n, dtype=np.float64)
        self._inliers = np.zeros(n, dtype=bool)
        self._total_error = 0.0
        self._number_of_inliers = 0
        self._number_of_outliers = 0
        self._information = np.zeros((6, 6), dtype=np.float64)
        self._converged = False
        self._iterations = 0

    def initialize(self, initial_state: SE3) -> None:
        """Reset all accumulators and store the seed transform.

        Args:
            initial_state: Initial guess of the transform

        Raises:
            ValueError: If the residual model holds no correspondences
        """
        if len(self._model) == 0:
            raise ValueError("Cannot align without correspondences")
        self._reset()
        self._transform = initial_state.copy()

    def _linearize(self, ignore_outliers: bool) -> None:
        """Build H and b at the current estimate."""
        linearization = self._model.linearize(self._transform)
        valid = np.asarray(linearization.valid, dtype=bool)

        errors = np.where(valid[:, None], linearization.errors, 0.0)
        jacobians = np.where(valid[:, None, None], linearization.jacobians, 0.0)
        omegas = np.where(valid[:, None, None], linearization.omegas, 0.0)

        chi = np.einsum("ni,ni->n", errors, errors)
        kernel = self._config.maximum_error_kernel
        outliers = valid & (chi > kernel)
        inliers = valid & ~outliers

        weights = np.zeros(len(chi), dtype=np.float64)
        weights[inliers] = 1.0
        if not ignore_outliers:
            weights[outliers] = kernel / chi[outliers]

        self._errors = np.where(valid, chi, -1.0)
        self._weights = weights
        self._inliers = inliers
        self._number_of_inliers = int(np.count_nonzero(inliers))
        self._number_of_outliers = int(np.count_nonzero(outliers))

        contributing = inliers if ignore_outliers else valid
        self._total_error = float(chi[contributing].sum())

        # J^T (w * Omega)
        weighted_omegas = omegas * weights[:, None, None]
        jacobians_transposed_omega = np.einsum("nki,nkl->nil", jacobians, weighted_omegas)
        self._H = np.einsum("nil,nlj->ij", jacobians_transposed_omega, jacobians)
        self._b = np.einsum("nil,nl->i", jacobians_transposed_omega, errors)

    def one_round(self, ignore_outliers: bool = False) -> None:
        """Linearize once and apply one damped Gauss-Newton update.

        Args:
            ignore_outliers: Give outliers zero weight instead of a robust weight
        """
        self._linearize(ignore_outliers)

        # Always damp
        self._H = self._H + self._config.damping * np.eye(6)

        try:
            dx = linalg.solve(self._H, -self._b, assume_a="sym")
        except linalg.LinAlgError:
            logger.warning("[Aligner] Singular system, update skipped")
            return

        self._transform = SE3.exp(dx).compose(self._transform).orthonormalized()

    def converge(self) -> AlignmentResult:
        """Iterate until the error stops changing or the budget is spent.

        Returns:
            AlignmentResult of the run
        """
        total_error_previous = 0.0
        maximum_iterations = self._config.maximum_number_of_iterations

        for iteration in range(maximum_iterations):
            self.one_round(False)
            self._iterations = iteration + 1

            if abs(total_error_previous - self._total_error) < self._config.error_delta_for_convergence:
                # Inlier only refinement
                for _ in range(NUMBER_OF_REFINEMENT_ROUNDS):
                    self.one_round(True)

                self._information = self._H.copy()
                self._converged = True
                break

            total_error_previous = self._total_error

        if not self._converged:
            result = self.result
            logger.warning(
                "[Aligner] system did not converge - total error: %.6f average error: %.6f "
                "inliers: %d outliers: %d",
                result.total_error,
                result.average_error,
                result.number_of_inliers,
                result.number_of_outliers,
            )

        return self.result

    @property
    def result(self) -> AlignmentResult:
        """Return the current state as an AlignmentResult."""
        return AlignmentResult(
            transform=self._transform.copy(),
            information=self._information.copy(),
            converged=self._converged,
            total_error=self._total_error,
            number_of_inliers=self._number_of_inliers,
            number_of_outliers=self._number_of_outliers,
            iterations=self._iterations,
        )

    @property
    def config(self) -> AlignerConfig:
        """Return the configuration."""
        return self._config

    @property
    def transform(self) -> SE3:
        """Return the current estimate."""
        return self._transform

    @property
    def errors(self) -> np.ndarray:
        """Return chi per correspondence of the last round (-1 if skipped)."""
        return self._errors

    @property
    def weights(self) -> np.ndarray:
        """Return the robust weight per correspondence of the last round."""
        return self._weights

    @property
    def inliers(self) -> np.ndarray:
        """Return the inlier mask of the last round."""
        return self._inliers

    @property
    def total_error(self) -> float:
        """Return the total error of the last round."""
        return self._total_error

    @property
    def number_of_inliers(self) -> int:
        """Return inliers of the last round."""
        return self._number_of_inliers

    @property
    def number_of_outliers(self) -> int:
        """Return outliers of the last round."""
        return self._number_of_outliers

    @property
    def information_matrix(self) -> np.ndarray:
        """Return the information matrix (zero until converged)."""
        return self._information

    @property
    def has_converged(self) -> bool:
        """Return True if the last converge() call converged."""
        return self._converged


def skew_batch(vectors: np.ndarray) -> np.ndarray:
    """Return (N, 3, 3) skew-symmetric matrices of (N, 3) vectors."""
    vectors = np.asarray(vectors, dtype=np.float64)
    result = np.zeros((len(vectors), 3, 3), dtype=np.float64)
    x, y, z = vectors[:, 0], vectors[:, 1], vectors[:, 2]
    result[:, 0, 1] = -z
    result[:, 0, 2] = y
    result[:, 1, 0] = z
    result[:, 1, 2] = -x
    result[:, 2, 0] = -y
    result[:, 2, 1] = x
    return result
