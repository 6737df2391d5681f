"""Landmarks and their binary appearance descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class Appearance:
    """A binary descriptor submitted to place recognition.

    The handle identifies the descriptor across the whole map. Once the
    place database absorbs a handle into a near-duplicate, the handle is
    dropped from every Landmark and Local Map and must not be looked up
    again; the holders refer to the surviving handle instead.

    Attributes:
        handle: Descriptor handle
        landmark_id: Landmark holding this descriptor
        descriptor: Packed binary descriptor, e.g. (32,) uint8 for ORB
    """

    handle: int
    landmark_id: int
    descriptor: np.ndarray

    def __post_init__(self) -> None:
        """Ensure descriptor is a flat uint8 array."""
        self.descriptor = np.asarray(self.descriptor, dtype=np.uint8).flatten()


@dataclass
class Landmark:
    """A 3D landmark estimated from tracked frame points.

    Coordinates are the running mean of all accepted world measurements.
    A landmark becomes validated after enough accepted measurements and is
    invalidated once rejected measurements outnumber accepted ones.

    Attributes:
        identifier: Unique identifier for this landmark
        coordinates: 3D position in world frame
        appearances: Descriptors used for place recognition
        is_validated: True once the coordinate estimate is trustworthy
        is_valid: False once the landmark failed validation
        number_of_updates: Accepted measurements
        number_of_failed_updates: Rejected measurements
    """

    identifier: int
    coordinates: np.ndarray  # (3,) float64
    appearances: list[Appearance] = field(default_factory=list)
    is_validated: bool = False
    is_valid: bool = True
    number_of_updates: int = 1
    number_of_failed_updates: int = 0

    def __post_init__(self) -> None:
        """Ensure arrays are proper types."""
        self.coordinates = np.asarray(self.coordinates, dtype=np.float64).flatten()

    def update(
        self,
        world_coordinates: np.ndarray,
        maximum_deviation: float,
        minimum_updates_for_validation: int,
    ) -> bool:
        """Fuse a new world measurement into the estimate.

        Args:
            world_coordinates: Measured 3D position in world frame
            maximum_deviation: Largest accepted distance to the estimate (m)
            minimum_updates_for_validation: Accepted updates before validation

        Returns:
            True if the measurement was accepted
        """
        measurement = np.asarray(world_coordinates, dtype=np.float64).flatten()
        if np.linalg.norm(measurement - self.coordinates) > maximum_deviation:
            self.number_of_failed_updates += 1
            if self.number_of_failed_updates > self.number_of_updates:
                self.is_valid = False
            return False

        self.number_of_updates += 1
        self.coordinates += (measurement - self.coordinates) / self.number_of_updates
        if self.number_of_updates >= minimum_updates_for_validation:
            self.is_validated = True
        return True

    def add_appearance(self, appearance: Appearance) -> None:
        """Attach a descriptor to this landmark."""
        self.appearances.append(appearance)

    def replace_appearance(self, absorbed_handle: int, surviving: Appearance) -> bool:
        """Swap an absorbed descriptor for the one that survived a merge.

        Args:
            absorbed_handle: Handle discarded by the place database
            surviving: Appearance that absorbed it

        Returns:
            True if the absorbed handle was held by this landmark
        """
        for index, appearance in enumerate(self.appearances):
            if appearance.handle == absorbed_handle:
                if any(a.handle == surviving.handle for a in self.appearances):
                    del self.appearances[index]
                else:
                    self.appearances[index] = Appearance(
                        handle=surviving.handle,
                        landmark_id=self.identifier,
                        descriptor=surviving.descriptor,
                    )
                return True
        return False

    @property
    def handles(self) -> list[int]:
        """Return the descriptor handles of this landmark."""
        return [appearance.handle for appearance in self.appearances]
