"""Loop closure hypotheses between two local maps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ..aligners.base import AlignmentResult
    from ..frontend.pose import SE3
    from ..mapping.local_map import LocalMap


@dataclass(frozen=True)
class Candidate:
    """A raw descriptor match between a query and a reference landmark.

    Attributes:
        query_landmark_id: Landmark of the query descriptor
        reference_landmark_id: Landmark of the reference descriptor
        distance: Hamming distance between the descriptors
    """

    query_landmark_id: int
    reference_landmark_id: int
    distance: int


@dataclass
class Correspondence:
    """An accepted pair of query and reference landmarks.

    Attributes:
        query_landmark_id: Landmark in the query local map
        reference_landmark_id: Landmark in the reference local map
        matches: Votes for the reference landmark
        ratio: Votes / candidate matches of the query landmark
    """

    query_landmark_id: int
    reference_landmark_id: int
    matches: int
    ratio: float


@dataclass
class Closure:
    """A candidate (and, once registered, verified) loop closure.

    Attributes:
        query: Newly created local map
        reference: Older local map recognized as the same place
        number_of_matched_landmarks: Distinct query landmarks with matches
        matching_ratio: Matched descriptors / query descriptors
        correspondences: Accepted landmark pairs, in selection order
        registration: Alignment outcome after register_closures()
    """

    query: LocalMap
    reference: LocalMap
    number_of_matched_landmarks: int
    matching_ratio: float
    correspondences: list[Correspondence] = field(default_factory=list)
    registration: AlignmentResult | None = None

    @property
    def num_correspondences(self) -> int:
        """Return number of accepted correspondences."""
        return len(self.correspondences)

    @property
    def is_registered(self) -> bool:
        """Return True once the alignment ran."""
        return self.registration is not None

    @property
    def is_converged(self) -> bool:
        """Return True if the alignment converged."""
        return self.registration is not None and self.registration.converged

    @property
    def transform_query_to_reference(self) -> SE3 | None:
        """Return the estimated relative pose, if registered."""
        if self.registration is None:
            return None
        return self.registration.transform

    @property
    def information(self) -> np.ndarray | None:
        """Return the information matrix of the estimate, if registered."""
        if self.registration is None:
            return None
        return self.registration.information

    @property
    def inlier_ratio(self) -> float:
        """Return inliers / correspondences of the registration."""
        if self.registration is None or not self.correspondences:
            return 0.0
        return self.registration.number_of_inliers / len(self.correspondences)

    @property
    def number_of_inliers(self) -> int:
        """Return inliers of the registration."""
        if self.registration is None:
            return 0
        return self.registration.number_of_inliers
