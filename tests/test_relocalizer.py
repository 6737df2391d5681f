"""Tests for the place database and the relocalizer."""

import numpy as np
import pytest

from relocslam.frontend import SE3
from relocslam.mapping import Appearance, Landmark, LocalMap
from relocslam.metrics import Chronometer
from relocslam.relocalization import (
    Candidate,
    PlaceDatabase,
    Relocalizer,
    RelocalizerConfig,
)


def _random_descriptors(count: int, seed: int) -> np.ndarray:
    """Create random 256 bit descriptors."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(count, 32), dtype=np.uint8)


def _local_map(
    identifier: int,
    landmark_ids: list[int],
    descriptors: np.ndarray,
    coordinates: np.ndarray | None = None,
) -> LocalMap:
    """Create a local map with one appearance per landmark.

    Appearance handles equal the landmark IDs.
    """
    if coordinates is None:
        coordinates = np.zeros((len(landmark_ids), 3))
    return LocalMap(
        identifier=identifier,
        robot_to_world=SE3.identity(),
        landmark_coordinates={
            landmark_id: np.array(point, dtype=np.float64)
            for landmark_id, point in zip(landmark_ids, coordinates)
        },
        appearances=[
            Appearance(handle=landmark_id, landmark_id=landmark_id, descriptor=descriptor)
            for landmark_id, descriptor in zip(landmark_ids, descriptors)
        ],
    )


def _with_shared(shared: np.ndarray, count: int, total: int, seed: int) -> np.ndarray:
    """Take the first count shared descriptors and fill up with random ones."""
    return np.vstack([shared[:count], _random_descriptors(total - count, seed)])


class TestPlaceDatabase:
    """Test suite for PlaceDatabase."""

    def test_match_reports_hamming_distance(self):
        """Test bit counting between packed descriptors."""
        stored = np.zeros(32, dtype=np.uint8)
        near = stored.copy()
        near[0] = 0b00001111
        far = np.full(32, 0xFF, dtype=np.uint8)

        database = PlaceDatabase()
        database.add([Appearance(0, 0, near), Appearance(1, 1, far)])
        matches = database.match([Appearance(2, 2, stored)], 256)[0]

        assert [m.reference_handle for m in matches] == [0, 1]
        assert [m.distance for m in matches] == [4, 256]
        assert all(m.query_landmark_id == 2 for m in matches)

    def test_descriptor_length_mismatch(self):
        """Test that descriptors of different length are rejected."""
        database = PlaceDatabase()
        database.add([Appearance(0, 0, np.zeros(32, np.uint8))])
        with pytest.raises(ValueError):
            database.match([Appearance(1, 1, np.zeros(16, np.uint8))], 25)
        with pytest.raises(ValueError):
            database.add([Appearance(1, 1, np.zeros(16, np.uint8))])

    def test_merge_uses_nearest_stored_descriptor(self):
        """Test that an inserted descriptor is absorbed by its closest match."""
        first = np.zeros(32, dtype=np.uint8)
        second = first.copy()
        second[0] = 0b00000011
        database = PlaceDatabase(merge_distance=2)
        database.add([Appearance(0, 0, first), Appearance(1, 1, second)])
        # Merging only considers earlier insertions
        assert database.get_merges() == []
        assert database.number_of_descriptors == 2

        query = second.copy()
        query[1] = 0b00000001
        database.add([Appearance(5, 5, query)])
        (merge,) = database.get_merges()
        assert merge.absorbed_handle == 5
        assert merge.surviving.handle == 1
        assert database.number_of_descriptors == 2

    def test_maximum_distance_is_inclusive(self):
        """Test that a match exactly at the maximum distance is kept."""
        stored = np.zeros(32, dtype=np.uint8)
        query = stored.copy()
        query[0] = 0b00000111

        database = PlaceDatabase()
        database.add([Appearance(0, 0, stored)])
        query_appearances = [Appearance(1, 1, query)]

        assert len(database.match(query_appearances, 3)[0]) == 1
        assert len(database.match(query_appearances, 2)[0]) == 0

    def test_match_and_add_never_matches_itself(self):
        """Test that the inserted entry is not part of its own result."""
        descriptors = _random_descriptors(5, seed=1)
        database = PlaceDatabase()

        first = database.match_and_add(
            [Appearance(i, i, d) for i, d in enumerate(descriptors)], 25
        )
        assert first == {}
        assert database.size == 1

        second = database.match_and_add(
            [Appearance(10 + i, 10 + i, d) for i, d in enumerate(descriptors)], 25
        )
        assert list(second.keys()) == [0]
        assert len(second[0]) == 5
        assert all(match.distance == 0 for match in second[0])
        assert len(database) == 2

    def test_merges_are_consumed(self):
        """Test that merges are reported once and absorbed handles vanish."""
        descriptors = _random_descriptors(3, seed=2)
        database = PlaceDatabase(merge_distance=0)
        database.add([Appearance(i, i, d) for i, d in enumerate(descriptors)])
        assert database.get_merges() == []

        database.add([Appearance(10, 10, descriptors[1])])
        merges = database.get_merges()
        assert len(merges) == 1
        assert merges[0].absorbed_handle == 10
        assert merges[0].surviving.handle == 1
        assert merges[0].landmark_id == 10
        assert database.get_merges() == []

        assert database.descriptor(10) is None
        np.testing.assert_array_equal(database.descriptor(1), descriptors[1])
        assert database.number_of_descriptors == 3


class TestRelocalizer:
    """Test suite for Relocalizer."""

    def test_none_query_is_noop(self):
        """Test that a missing local map is ignored."""
        relocalizer = Relocalizer()
        assert relocalizer.detect_closures(None) == []
        assert relocalizer.added_local_maps == []

    def test_translated_scene_is_closed(self):
        """Test detection and registration of the same scene seen 1 m apart."""
        rng = np.random.default_rng(3)
        points = rng.uniform(-2.0, 2.0, size=(10, 3))
        descriptors = _random_descriptors(10, seed=4)

        reference = _local_map(0, list(range(10)), descriptors, points)
        query = _local_map(
            1, list(range(100, 110)), descriptors, points - np.array([1.0, 0.0, 0.0])
        )

        timings = Chronometer()
        relocalizer = Relocalizer(RelocalizerConfig(minimum_interspace=1), timings=timings)
        assert relocalizer.detect_closures(reference) == []
        closures = relocalizer.detect_closures(query)

        assert len(closures) == 1
        closure = closures[0]
        assert closure.reference is reference
        assert closure.matching_ratio == pytest.approx(1.0)
        assert closure.number_of_matched_landmarks == 10
        assert closure.num_correspondences == 10
        for correspondence in closure.correspondences:
            assert correspondence.reference_landmark_id == correspondence.query_landmark_id - 100
            assert correspondence.ratio == pytest.approx(1.0)

        relocalizer.register_closures()
        assert closure.is_converged
        assert closure.inlier_ratio == pytest.approx(1.0)
        np.testing.assert_allclose(
            closure.transform_query_to_reference.translation, [1.0, 0.0, 0.0], atol=1e-3
        )
        np.testing.assert_allclose(
            closure.transform_query_to_reference.rotation, np.eye(3), atol=1e-3
        )
        assert timings.count("relocalizer.detect") == 2
        assert timings.count("relocalizer.register") == 1

    def test_disjoint_descriptors_yield_no_closure(self):
        """Test that unrelated places are not matched."""
        relocalizer = Relocalizer(RelocalizerConfig(minimum_interspace=1))
        relocalizer.detect_closures(_local_map(0, list(range(20)), _random_descriptors(20, 5)))
        closures = relocalizer.detect_closures(
            _local_map(1, list(range(20, 40)), _random_descriptors(20, 6))
        )
        assert closures == []

    def test_interspace_warm_up(self):
        """Test that recent local maps are never used as reference."""
        descriptors = _random_descriptors(10, seed=7)
        relocalizer = Relocalizer(RelocalizerConfig(minimum_interspace=3))

        maps = [_local_map(i, list(range(10 * i, 10 * i + 10)), descriptors) for i in range(4)]
        for local_map in maps[:3]:
            assert relocalizer.detect_closures(local_map) == []

        closures = relocalizer.detect_closures(maps[3])
        assert [closure.reference.identifier for closure in closures] == [0]
        assert relocalizer.added_local_maps == maps

    def test_reference_landmarks_are_exclusive(self):
        """Test that each reference landmark backs at most one correspondence."""
        descriptors = _random_descriptors(6, seed=8)
        reference = _local_map(0, list(range(6)), descriptors)
        # Landmark 16 carries the descriptor of reference landmark 0 and is submitted first
        query = _local_map(
            1,
            [16, 10, 11, 12, 13, 14, 15],
            np.vstack([descriptors[:1], descriptors]),
        )

        relocalizer = Relocalizer(RelocalizerConfig(minimum_interspace=1))
        relocalizer.detect_closures(reference)
        (closure,) = relocalizer.detect_closures(query)

        reference_ids = [c.reference_landmark_id for c in closure.correspondences]
        assert len(reference_ids) == len(set(reference_ids)) == 6
        assert closure.number_of_matched_landmarks == 7
        # The lowest query landmark ID claims the contested reference landmark
        assert [c.query_landmark_id for c in closure.correspondences] == [10, 11, 12, 13, 14, 15]
        assert closure.correspondences[0].reference_landmark_id == 0
        assert 16 not in [c.query_landmark_id for c in closure.correspondences]

    def test_majority_vote(self):
        """Test vote counting and the tie-break of the correspondence search."""
        relocalizer = Relocalizer()
        candidates = [Candidate(0, reference_id, 0) for reference_id in (1, 2, 2, 1)]
        correspondence = relocalizer._get_correspondence_nn(candidates)
        assert correspondence.reference_landmark_id == 2
        assert correspondence.matches == 2
        assert correspondence.ratio == pytest.approx(0.5)

        relocalizer.clear()
        tie = relocalizer._get_correspondence_nn([Candidate(0, 1, 0), Candidate(0, 2, 0)])
        assert tie.reference_landmark_id == 1

    def test_minimum_votes(self):
        """Test that a correspondence needs more votes than the minimum."""
        relocalizer = Relocalizer(RelocalizerConfig(minimum_matches_per_correspondence=1))
        assert relocalizer._get_correspondence_nn([Candidate(0, 1, 0), Candidate(0, 2, 0)]) is None
        accepted = relocalizer._get_correspondence_nn([Candidate(0, 1, 0), Candidate(0, 1, 0)])
        assert accepted is not None and accepted.matches == 2

    @pytest.mark.parametrize(
        "field_name, thresholds",
        [
            ("minimum_matching_ratio", [0.0, 0.3, 0.6, 1.0]),
            ("minimum_number_of_matched_landmarks", [1, 3, 6, 10]),
        ],
    )
    def test_thresholds_are_monotonic(self, field_name, thresholds):
        """Test that raising a gate never adds candidates."""
        shared = _random_descriptors(10, seed=9)
        references = [
            _local_map(i, list(range(10 * i, 10 * i + 10)), _with_shared(shared, n, 10, 20 + i))
            for i, n in enumerate([2, 5, 9])
        ]
        query = _local_map(3, list(range(100, 110)), shared)

        found = []
        for threshold in thresholds:
            config = RelocalizerConfig(
                minimum_interspace=1,
                minimum_matching_ratio=0.0,
                minimum_number_of_matched_landmarks=1,
            )
            setattr(config, field_name, threshold)
            relocalizer = Relocalizer(config)
            for reference in references:
                relocalizer.detect_closures(reference)
            found.append(
                {closure.reference.identifier for closure in relocalizer.detect_closures(query)}
            )

        assert found == [{0, 1, 2}, {1, 2}, {2}, set()]
        for lower, higher in zip(found, found[1:]):
            assert higher <= lower

    def test_merge_bookkeeping(self):
        """Test that absorbed handles disappear from local maps and landmarks."""
        descriptors = _random_descriptors(5, seed=10)
        near_duplicates = descriptors.copy()
        near_duplicates[:, 0] ^= 0b1

        reference = _local_map(0, list(range(5)), descriptors)
        query = _local_map(1, list(range(10, 15)), near_duplicates)
        landmarks = {
            landmark_id: Landmark(
                identifier=landmark_id,
                coordinates=np.zeros(3),
                appearances=[Appearance(landmark_id, landmark_id, near_duplicates[i])],
            )
            for i, landmark_id in enumerate(range(10, 15))
        }

        relocalizer = Relocalizer(RelocalizerConfig(minimum_interspace=1, merge_distance=2))
        relocalizer.detect_closures(reference)
        (closure,) = relocalizer.detect_closures(query, landmarks)
        assert closure.num_correspondences == 5

        assert [a.handle for a in query.appearances] == [0, 1, 2, 3, 4]
        assert [a.landmark_id for a in query.appearances] == [10, 11, 12, 13, 14]
        for i, landmark_id in enumerate(range(10, 15)):
            assert landmarks[landmark_id].handles == [i]
            assert landmarks[landmark_id].appearances[0].landmark_id == landmark_id
            assert relocalizer.database.descriptor(landmark_id) is None
        assert relocalizer.database.number_of_descriptors == 5

        # Merged descriptors still resolve to the landmark of each entry
        relocalizer.clear()
        third = _local_map(2, list(range(20, 25)), descriptors)
        closures = relocalizer.detect_closures(third)
        by_reference = {c.reference.identifier: c for c in closures}
        assert {c.reference_landmark_id for c in by_reference[0].correspondences} == set(range(5))
        assert {c.reference_landmark_id for c in by_reference[1].correspondences} == set(
            range(10, 15)
        )

    def test_clear_keeps_history(self):
        """Test that clear drops closures only."""
        descriptors = _random_descriptors(10, seed=11)
        relocalizer = Relocalizer(RelocalizerConfig(minimum_interspace=1))
        relocalizer.detect_closures(_local_map(0, list(range(10)), descriptors))
        relocalizer.detect_closures(_local_map(1, list(range(10, 20)), descriptors))
        assert len(relocalizer.closures) == 1

        relocalizer.clear()
        assert relocalizer.closures == []
        assert len(relocalizer.added_local_maps) == 2
        assert relocalizer.database.size == 2

    def test_closure_without_correspondences_is_not_registered(self):
        """Test that registration skips empty closures."""
        descriptors = _random_descriptors(10, seed=12)
        config = RelocalizerConfig(minimum_interspace=1, minimum_matches_per_correspondence=5)
        relocalizer = Relocalizer(config)
        relocalizer.detect_closures(_local_map(0, list(range(10)), descriptors))
        (closure,) = relocalizer.detect_closures(_local_map(1, list(range(10, 20)), descriptors))

        assert closure.correspondences == []
        relocalizer.register_closures()
        assert not closure.is_registered
        assert closure.transform_query_to_reference is None
