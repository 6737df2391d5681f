"""Frames and the tracked points they carry.

Frames form a temporal chain through identifiers (previous / root) rather
than object references, and frame points link to their predecessor and to
their landmark the same way. All lookups go through the WorldMap.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from ..frontend.pose import SE3


@dataclass
class FramePoint:
    """A tracked feature point in a single frame.

    Attributes:
        identifier: Unique identifier across all frames
        frame_id: Frame that holds this point
        image_coordinates: (u, v) pixel coordinates in the left image
        camera_coordinates: (x, y, z) in the camera frame, z is depth
        world_coordinates: Position in world frame from the frame pose
        descriptor: Optional packed binary descriptor
        previous_id: Predecessor point in the previous frame (track chain)
        landmark_id: Landmark this point observes
        track_length: Number of frames the track spans, including this one
    """

    identifier: int
    frame_id: int
    image_coordinates: np.ndarray  # (2,) float64
    camera_coordinates: np.ndarray  # (3,) float64
    world_coordinates: np.ndarray = field(default_factory=lambda: np.zeros(3))
    descriptor: np.ndarray | None = None
    previous_id: int | None = None
    landmark_id: int | None = None
    track_length: int = 1

    def __post_init__(self) -> None:
        """Ensure arrays are proper types."""
        self.image_coordinates = np.asarray(
            self.image_coordinates, dtype=np.float64
        ).flatten()[:2]
        self.camera_coordinates = np.asarray(
            self.camera_coordinates, dtype=np.float64
        ).flatten()
        self.world_coordinates = np.asarray(
            self.world_coordinates, dtype=np.float64
        ).flatten()
        if self.descriptor is not None:
            self.descriptor = np.asarray(self.descriptor, dtype=np.uint8).flatten()

    @property
    def depth(self) -> float:
        """Return depth in meters."""
        return float(self.camera_coordinates[2])

    @property
    def has_previous(self) -> bool:
        """Return True if the point continues a track."""
        return self.previous_id is not None


@dataclass
class Frame:
    """A processed camera frame with its estimated pose.

    Attributes:
        identifier: Unique frame identifier (creation order)
        sequence_number: Sequence number of the raw input
        robot_to_world: Estimated pose T_world_robot
        previous_id: Previous frame in the temporal chain
        root_id: First frame of the chain
        points: Active tracked points
        local_map_id: Local map this frame was consolidated into
    """

    identifier: int
    sequence_number: int
    robot_to_world: SE3
    previous_id: int | None = None
    root_id: int | None = None
    points: list[FramePoint] = field(default_factory=list)
    local_map_id: int | None = None

    @property
    def world_to_robot(self) -> SE3:
        """Return the inverse pose."""
        return self.robot_to_world.inverse()

    @property
    def landmark_ids(self) -> set[int]:
        """Return landmark IDs observed in this frame."""
        return {p.landmark_id for p in self.points if p.landmark_id is not None}

    @property
    def num_points(self) -> int:
        """Return number of active points."""
        return len(self.points)

    def set_robot_to_world(self, robot_to_world: SE3) -> None:
        """Replace the pose (e.g. after alignment).

        Point world coordinates are not recomputed here; the WorldMap does
        that before landmarks are updated.
        """
        self.robot_to_world = robot_to_world
