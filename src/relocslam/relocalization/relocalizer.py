"""Appearance-based relocalization between local maps.

Every new local map is matched against older local maps through the place
database. Matches per reference map are gated by matching ratio and number
of matched landmarks, reduced to one-to-one landmark correspondences by a
majority vote and finally verified with a 3D point-to-point alignment.

Pipeline per local map:
1. detect_closures(): match against the database and insert the new map
2. register_closures(): estimate the relative pose of each candidate
3. caller accepts or rejects the registered closures
4. clear()
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from ..aligners.base import AlignerConfig, IterativeAligner
from ..aligners.xyz import EuclideanResidual
from ..frontend.pose import SE3
from ..mapping.landmark import Landmark
from ..mapping.local_map import LocalMap
from ..metrics import NullTimings, Timings
from .closure import Candidate, Closure, Correspondence
from .place_database import DescriptorMatch, PlaceDatabase

logger = logging.getLogger(__name__)


@dataclass
class RelocalizerConfig:
    """Configuration for closure detection and registration."""

    # Entries that must separate query and reference in the database
    minimum_interspace: int = 5
    minimum_matching_ratio: float = 0.1
    minimum_number_of_matched_landmarks: int = 5
    # Votes must exceed this for a correspondence to be accepted
    minimum_matches_per_correspondence: int = 0
    maximum_descriptor_distance: int = 25  # bits, inclusive
    merge_distance: int | None = None  # None disables descriptor merging
    aligner: AlignerConfig = field(default_factory=AlignerConfig)


class Relocalizer:
    """Detects and registers loop closures between local maps.

    Closures are only valid until the next clear(); the database and the
    history of added local maps persist.

    Example:
        >>> relocalizer = Relocalizer(RelocalizerConfig(minimum_interspace=1))
        >>> relocalizer.detect_closures(local_map, world_map.landmarks)
        >>> relocalizer.register_closures()
        >>> accepted = [c for c in relocalizer.closures if c.is_converged]
        >>> relocalizer.clear()
    """

    def __init__(
        self,
        config: RelocalizerConfig | None = None,
        database: PlaceDatabase | None = None,
        timings: Timings | None = None,
    ) -> None:
        """Initialize relocalizer.

        Args:
            config: Relocalizer configuration
            database: Place database (created from config if None)
            timings: Timing sink for the detection and registration stages
        """
        self._config = config or RelocalizerConfig()
        self._database = database or PlaceDatabase(merge_distance=self._config.merge_distance)
        self._timings = timings or NullTimings()

        self._added_local_maps: list[LocalMap] = []
        self._closures: list[Closure] = []
        # Reference landmarks already claimed within the current closure
        self._mask_reference_ids: set[int] = set()

    def detect_closures(
        self,
        query: LocalMap | None,
        landmarks: Mapping[int, Landmark] | None = None,
    ) -> list[Closure]:
        """Find closure candidates for a new local map and index it.

        Args:
            query: Newly created local map (None is a no-op)
            landmarks: Landmarks of the world map, updated when descriptors
                of the query are merged into stored ones

        Returns:
            Closures detected for this query, also kept in ``closures``
        """
        if query is None:
            return []

        self._timings.start("relocalizer.detect")
        detected: list[Closure] = []

        # Always add the local map, matching is optional
        self._added_local_maps.append(query)

        if self._database.size < self._config.minimum_interspace:
            self._database.add(query.appearances)
        else:
            matches_per_reference = self._database.match_and_add(
                query.appearances, self._config.maximum_descriptor_distance
            )
            number_of_query_appearances = len(query.appearances)
            maximum_index_reference = self._database.size - self._config.minimum_interspace

            for index_reference in range(maximum_index_reference):
                closure = self._evaluate_reference(
                    query,
                    self._added_local_maps[index_reference],
                    matches_per_reference.get(index_reference, []),
                    number_of_query_appearances,
                )
                if closure is not None:
                    detected.append(closure)

        self._apply_merges(query, landmarks)
        self._closures.extend(detected)
        self._timings.stop("relocalizer.detect")
        return detected

    def _evaluate_reference(
        self,
        query: LocalMap,
        reference: LocalMap,
        matches: Sequence[DescriptorMatch],
        number_of_query_appearances: int,
    ) -> Closure | None:
        if number_of_query_appearances == 0:
            return None

        matching_ratio = len(matches) / number_of_query_appearances
        if matching_ratio < self._config.minimum_matching_ratio:
            return None

        logger.debug(
            "[Relocalizer] Local map %d -> %d: %d/%d matches (ratio %.3f), "
            "reference appearances: %d",
            query.identifier,
            reference.identifier,
            len(matches),
            number_of_query_appearances,
            matching_ratio,
            reference.num_appearances,
        )

        # Group by query landmark
        candidates_per_landmark: dict[int, list[Candidate]] = {}
        for match in matches:
            candidates_per_landmark.setdefault(match.query_landmark_id, []).append(
                Candidate(
                    query_landmark_id=match.query_landmark_id,
                    reference_landmark_id=match.reference_landmark_id,
                    distance=match.distance,
                )
            )

        if len(candidates_per_landmark) < self._config.minimum_number_of_matched_landmarks:
            return None

        self._mask_reference_ids.clear()
        correspondences = []
        # Ascending query landmark ID decides which landmark claims a contested reference
        for _, candidates in sorted(candidates_per_landmark.items()):
            correspondence = self._get_correspondence_nn(candidates)
            if correspondence is not None:
                correspondences.append(correspondence)

        return Closure(
            query=query,
            reference=reference,
            number_of_matched_landmarks=len(candidates_per_landmark),
            matching_ratio=matching_ratio,
            correspondences=correspondences,
        )

    def _get_correspondence_nn(self, candidates: Sequence[Candidate]) -> Correspondence | None:
        """Majority vote over the reference landmarks of one query landmark.

        Reference landmarks already claimed in this closure do not vote. On
        a tie the reference landmark that reached the count first wins.
        """
        if not candidates:
            return None

        counts: Counter[int] = Counter()
        best: Candidate | None = None
        count_best = 0
        for candidate in candidates:
            if candidate.reference_landmark_id in self._mask_reference_ids:
                continue
            counts[candidate.reference_landmark_id] += 1
            if counts[candidate.reference_landmark_id] > count_best:
                count_best = counts[candidate.reference_landmark_id]
                best = candidate

        if best is None or count_best <= self._config.minimum_matches_per_correspondence:
            return None

        self._mask_reference_ids.add(best.reference_landmark_id)
        return Correspondence(
            query_landmark_id=best.query_landmark_id,
            reference_landmark_id=best.reference_landmark_id,
            matches=count_best,
            ratio=count_best / len(candidates),
        )

    def _apply_merges(self, query: LocalMap, landmarks: Mapping[int, Landmark] | None) -> None:
        """Replace descriptors absorbed by the last insertion."""
        merges = self._database.get_merges()
        if not merges:
            return

        query.replace_appearances({merge.absorbed_handle: merge.surviving for merge in merges})
        if landmarks is not None:
            for merge in merges:
                landmark = landmarks.get(merge.landmark_id)
                if landmark is not None:
                    landmark.replace_appearance(merge.absorbed_handle, merge.surviving)
        logger.debug("[Relocalizer] Merged appearances: %d", len(merges))

    def register_closures(self) -> None:
        """Estimate the relative pose of every pending closure.

        Closures without correspondences stay unregistered.
        """
        self._timings.start("relocalizer.register")
        for closure in self._closures:
            if not closure.correspondences:
                continue
            aligner = IterativeAligner(EuclideanResidual.from_closure(closure), self._config.aligner)
            aligner.initialize(SE3.identity())
            closure.registration = aligner.converge()
            logger.debug(
                "[Relocalizer] Registered closure %d -> %d: converged=%s inliers=%d/%d",
                closure.query.identifier,
                closure.reference.identifier,
                closure.registration.converged,
                closure.registration.number_of_inliers,
                closure.num_correspondences,
            )
        self._timings.stop("relocalizer.register")

    def clear(self) -> None:
        """Drop pending closures. The database and history are kept."""
        self._closures = []
        self._mask_reference_ids.clear()

    @property
    def config(self) -> RelocalizerConfig:
        """Return the configuration."""
        return self._config

    @property
    def database(self) -> PlaceDatabase:
        """Return the place database."""
        return self._database

    @property
    def closures(self) -> list[Closure]:
        """Return pending closures."""
        return self._closures

    @property
    def added_local_maps(self) -> list[LocalMap]:
        """Return all local maps in insertion order."""
        return self._added_local_maps
