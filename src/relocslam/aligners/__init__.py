"""Iterative rigid alignment used for closure verification and tracking.

One convergence driver (IterativeAligner) runs over pluggable residual
models:
- EuclideanResidual: 3D point-to-point, used to verify closures
- ReprojectionResidual: (u, v, depth) reprojection, used for frame tracking
"""

from .base import (
    AlignerConfig,
    AlignmentResult,
    IterativeAligner,
    Linearization,
    ResidualModel,
)
from .uvd import ReprojectionResidual, align_frame
from .xyz import EuclideanResidual

__all__ = [
    # Driver
    "AlignerConfig",
    "AlignmentResult",
    "IterativeAligner",
    "Linearization",
    "ResidualModel",
    # Residual models
    "EuclideanResidual",
    "ReprojectionResidual",
    "align_frame",
]
