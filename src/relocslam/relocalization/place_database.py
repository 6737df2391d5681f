"""Descriptor database for appearance-based place recognition.

Every local map submits its appearance set as one database entry. A query
returns, per previously added entry, all stored descriptors within a
Hamming distance of the query descriptors. Near-duplicate descriptors can
optionally be merged on insertion, which keeps the database compact when
the robot revisits a place many times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import cv2
import numpy as np

from ..mapping.landmark import Appearance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DescriptorMatch:
    """A stored descriptor within range of a query descriptor.

    Attributes:
        query_landmark_id: Landmark holding the query descriptor
        reference_landmark_id: Landmark holding the stored descriptor in the
            matched entry
        distance: Hamming distance in bits
        query_handle: Handle of the query descriptor
        reference_handle: Handle of the stored descriptor
    """

    query_landmark_id: int
    reference_landmark_id: int
    distance: int
    query_handle: int
    reference_handle: int


@dataclass(frozen=True)
class DescriptorMerge:
    """A descriptor absorbed into a near-duplicate during insertion.

    Attributes:
        absorbed_handle: Handle that no longer exists in the database
        surviving: Stored appearance that replaces it
        landmark_id: Landmark that held the absorbed descriptor
    """

    absorbed_handle: int
    surviving: Appearance
    landmark_id: int


@dataclass
class _StoredDescriptor:
    appearance: Appearance
    # entry index -> landmark holding the descriptor in that entry
    entries: dict[int, int] = field(default_factory=dict)


class PlaceDatabase:
    """Brute-force binary descriptor database with optional merging.

    Entries are indexed in insertion order, starting at 0. A descriptor
    merged into a stored one is recorded for every entry that submitted it,
    so matches always report the landmark of the matched entry.
    """

    def __init__(self, merge_distance: int | None = None) -> None:
        """Initialize an empty database.

        Args:
            merge_distance: Largest Hamming distance at which an inserted
                descriptor is absorbed by a stored one. None disables merging.
        """
        self._merge_distance = merge_distance
        self._records: list[_StoredDescriptor] = []
        self._matrix: np.ndarray | None = None  # (n_records, B) uint8
        self._handle_to_record: dict[int, int] = {}
        self._number_of_entries = 0
        self._merges: list[DescriptorMerge] = []

        # radiusMatch and knnMatch both need crossCheck disabled
        self._bf_matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)

    def _stack(self, appearances: Sequence[Appearance]) -> np.ndarray:
        """Stack descriptors into a contiguous (N, B) uint8 matrix.

        Raises:
            ValueError: If the descriptor length differs from the stored ones
        """
        descriptors = np.ascontiguousarray(
            np.stack([appearance.descriptor for appearance in appearances]), dtype=np.uint8
        )
        if self._matrix is not None and descriptors.shape[1] != self._matrix.shape[1]:
            raise ValueError(
                f"Descriptor length mismatch: {descriptors.shape[1]} vs "
                f"{self._matrix.shape[1]} bytes"
            )
        return descriptors

    @property
    def size(self) -> int:
        """Return number of entries (added appearance sets)."""
        return self._number_of_entries

    @property
    def number_of_descriptors(self) -> int:
        """Return number of stored descriptors."""
        return len(self._records)

    @property
    def merge_distance(self) -> int | None:
        """Return the merge distance, None if merging is disabled."""
        return self._merge_distance

    def __len__(self) -> int:
        return self._number_of_entries

    def clear(self) -> None:
        """Drop all entries and descriptors."""
        self._records.clear()
        self._matrix = None
        self._handle_to_record.clear()
        self._number_of_entries = 0
        self._merges.clear()

    def descriptor(self, handle: int) -> np.ndarray | None:
        """Look up a stored descriptor by handle.

        Returns:
            Copy of the descriptor, or None for unknown and absorbed handles
        """
        index = self._handle_to_record.get(handle)
        if index is None:
            return None
        return self._records[index].appearance.descriptor.copy()

    def match(
        self, appearances: Sequence[Appearance], maximum_distance: int
    ) -> dict[int, list[DescriptorMatch]]:
        """Find stored descriptors within range of the query descriptors.

        Args:
            appearances: Query appearance set
            maximum_distance: Largest accepted Hamming distance (inclusive)

        Returns:
            entry index -> matches, with a (possibly empty) list for every
            entry. Matches are ordered by query descriptor.
        """
        result: dict[int, list[DescriptorMatch]] = {
            index: [] for index in range(self._number_of_entries)
        }
        if not appearances or self._matrix is None:
            return result

        # Hamming distances are integers, the half bit keeps the bound inclusive
        matches_per_query = self._bf_matcher.radiusMatch(
            self._stack(appearances), self._matrix, maxDistance=maximum_distance + 0.5
        )

        for appearance, matches in zip(appearances, matches_per_query):
            # Stored descriptors in insertion order
            for dmatch in sorted(matches, key=lambda m: m.trainIdx):
                record = self._records[dmatch.trainIdx]
                for entry_index, landmark_id in record.entries.items():
                    result[entry_index].append(
                        DescriptorMatch(
                            query_landmark_id=appearance.landmark_id,
                            reference_landmark_id=landmark_id,
                            distance=int(round(dmatch.distance)),
                            query_handle=appearance.handle,
                            reference_handle=record.appearance.handle,
                        )
                    )
        return result

    def add(self, appearances: Sequence[Appearance]) -> int:
        """Add an appearance set as a new entry.

        Merges performed here replace those of the previous insertion and
        can be collected once with get_merges().

        Returns:
            Index of the new entry

        Raises:
            ValueError: If the descriptor length differs from the stored ones
        """
        descriptors = self._stack(appearances) if appearances else None
        entry_index = self._number_of_entries
        self._number_of_entries += 1
        self._merges = []

        # Positions in appearances not yet stored
        candidates: list[int] = []
        for index, appearance in enumerate(appearances):
            record_index = self._handle_to_record.get(appearance.handle)
            if record_index is not None:
                # Descriptor already stored, e.g. the survivor of an earlier merge
                self._records[record_index].entries.setdefault(
                    entry_index, appearance.landmark_id
                )
            else:
                candidates.append(index)

        fresh: list[int] = []
        if self._merge_distance is not None and self._matrix is not None and candidates:
            nearest = self._bf_matcher.knnMatch(descriptors[candidates], self._matrix, k=1)
            for index, matches in zip(candidates, nearest):
                if not matches or matches[0].distance > self._merge_distance:
                    fresh.append(index)
                    continue
                appearance = appearances[index]
                record = self._records[matches[0].trainIdx]
                record.entries.setdefault(entry_index, appearance.landmark_id)
                self._merges.append(
                    DescriptorMerge(
                        absorbed_handle=appearance.handle,
                        surviving=record.appearance,
                        landmark_id=appearance.landmark_id,
                    )
                )
        else:
            fresh = candidates

        for index in fresh:
            appearance = appearances[index]
            self._handle_to_record[appearance.handle] = len(self._records)
            self._records.append(
                _StoredDescriptor(
                    appearance=appearance, entries={entry_index: appearance.landmark_id}
                )
            )

        if fresh:
            rows = descriptors[fresh]
            self._matrix = rows if self._matrix is None else np.vstack([self._matrix, rows])

        if self._merges:
            logger.debug(
                "[PlaceDatabase] Entry %d: merged %d of %d descriptors",
                entry_index,
                len(self._merges),
                len(appearances),
            )
        return entry_index

    def match_and_add(
        self, appearances: Sequence[Appearance], maximum_distance: int
    ) -> dict[int, list[DescriptorMatch]]:
        """Match an appearance set against all entries, then add it.

        The new entry never matches itself.
        """
        matches = self.match(appearances, maximum_distance)
        self.add(appearances)
        return matches

    def get_merges(self) -> list[DescriptorMerge]:
        """Return the merges of the last insertion and forget them."""
        merges = self._merges
        self._merges = []
        return merges
