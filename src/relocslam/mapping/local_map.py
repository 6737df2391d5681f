"""Local maps: graph nodes aggregating a span of frames."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

import numpy as np

from ..frontend.pose import SE3
from .landmark import Appearance


@dataclass
class LocalMapEdge:
    """A verified closure between two local maps.

    Attributes:
        reference_id: Local map recognized as the same place
        transform_query_to_reference: Relative pose from the alignment
        information: 6x6 information matrix of the estimate
    """

    reference_id: int
    transform_query_to_reference: SE3
    information: np.ndarray = field(
        default_factory=lambda: np.eye(6, dtype=np.float64)
    )


@dataclass
class LocalMap:
    """A contiguous span of frames plus its appearance set.

    Landmark coordinates are a snapshot in the local map frame, taken at
    creation. Besides descriptor merge bookkeeping and closure edges the
    local map does not change after creation.

    Attributes:
        identifier: Unique identifier (creation order)
        robot_to_world: Pose of the frame that closed the local map
        frame_ids: Frames consolidated into this local map
        previous_id: Previous local map in creation order
        root_id: First local map
        landmark_coordinates: landmark_id -> coordinates in local map frame
        appearances: Descriptors submitted to place recognition
        edges: Verified closures with this map as query
    """

    identifier: int
    robot_to_world: SE3
    frame_ids: list[int] = field(default_factory=list)
    previous_id: int | None = None
    root_id: int | None = None
    landmark_coordinates: dict[int, np.ndarray] = field(default_factory=dict)
    appearances: list[Appearance] = field(default_factory=list)
    edges: list[LocalMapEdge] = field(default_factory=list)

    @property
    def world_to_robot(self) -> SE3:
        """Return the inverse pose."""
        return self.robot_to_world.inverse()

    @property
    def landmark_ids(self) -> list[int]:
        """Return the landmark IDs captured by this local map."""
        return list(self.landmark_coordinates.keys())

    @property
    def num_landmarks(self) -> int:
        """Return number of landmarks captured by this local map."""
        return len(self.landmark_coordinates)

    @property
    def num_appearances(self) -> int:
        """Return number of descriptors in the appearance set."""
        return len(self.appearances)

    def replace_appearances(self, replacements: Mapping[int, Appearance]) -> int:
        """Swap absorbed descriptor handles for their surviving appearances.

        Args:
            replacements: absorbed handle -> surviving appearance

        A landmark that already holds the surviving handle keeps a single
        appearance for it.

        Returns:
            Number of replaced entries
        """
        replaced = 0
        appearances: list[Appearance] = []
        held: set[tuple[int, int]] = set()
        for appearance in self.appearances:
            surviving = replacements.get(appearance.handle)
            if surviving is not None:
                appearance = Appearance(
                    handle=surviving.handle,
                    landmark_id=appearance.landmark_id,
                    descriptor=surviving.descriptor,
                )
                replaced += 1
            key = (appearance.handle, appearance.landmark_id)
            if key in held:
                continue
            held.add(key)
            appearances.append(appearance)
        self.appearances = appearances
        return replaced

    def add_edge(self, edge: LocalMapEdge) -> None:
        """Record a verified closure."""
        self.edges.append(edge)
