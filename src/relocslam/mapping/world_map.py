"""World map owning all frames, landmarks and local maps.

The world map is the arena for every map entity: frames, frame points,
landmarks and local maps reference each other by identifier and are
resolved here. It also implements the segmentation policy that turns the
sliding window of frames into local maps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import numpy as np

from ..frontend.pose import SE3
from ..io.trajectory import write_kitti_trajectory
from .frame import Frame, FramePoint
from .landmark import Appearance, Landmark
from .local_map import LocalMap, LocalMapEdge

logger = logging.getLogger(__name__)


@dataclass
class WorldMapConfig:
    """Configuration for local map segmentation and landmark handling."""

    minimum_distance_traveled_for_local_map: float = 0.5  # meters
    minimum_degrees_rotated_for_local_map: float = 30.0  # degrees
    minimum_number_of_frames_for_local_map: int = 4
    minimum_track_length_for_landmark: int = 3  # frames
    minimum_updates_for_validation: int = 3
    maximum_landmark_deviation: float = 1.0  # meters


class WorldMap:
    """Owner of the map graph and its segmentation policy.

    Per frame the expected call order is ``create_frame``, any number of
    ``create_frame_point``, ``update_landmarks`` and ``create_local_map``.
    """

    def __init__(
        self,
        config: WorldMapConfig | None = None,
        camera_to_robot: SE3 | None = None,
    ) -> None:
        """Initialize an empty world map.

        Args:
            config: Segmentation and landmark configuration
            camera_to_robot: Camera extrinsics used for point world coordinates
        """
        self._config = config or WorldMapConfig()
        self._camera_to_robot = camera_to_robot or SE3.identity()
        self._minimum_rotation_rad = float(
            np.deg2rad(self._config.minimum_degrees_rotated_for_local_map)
        )
        self.clear()

    def clear(self) -> None:
        """Release all map entities and reset the window."""
        self._frames: dict[int, Frame] = {}
        self._frame_points: dict[int, FramePoint] = {}
        self._landmarks: dict[int, Landmark] = {}
        self._local_maps: list[LocalMap] = []
        self._closure_edges: list[tuple[int, LocalMapEdge]] = []

        self._root_frame: Frame | None = None
        self._current_frame: Frame | None = None
        self._previous_frame: Frame | None = None
        self._current_local_map: LocalMap | None = None

        self._next_frame_id = 0
        self._next_point_id = 0
        self._next_landmark_id = 0
        self._next_local_map_id = 0
        self._next_appearance_handle = 0

        self._relocalized = False
        self._last_good_robot_to_world = SE3.identity()

        # Window since the last local map boundary
        self._frame_queue_for_local_map: list[Frame] = []
        self._distance_traveled_window = 0.0
        self._radians_rotated_window = 0.0
        self._last_window_increment = (0.0, 0.0)

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def create_frame(self, robot_to_world: SE3, sequence_number: int = 0) -> Frame:
        """Create a frame and append it to the temporal chain.

        Args:
            robot_to_world: Estimated pose T_world_robot
            sequence_number: Sequence number of the raw input

        Returns:
            The new current frame
        """
        frame_id = self._next_frame_id
        self._next_frame_id += 1

        frame = Frame(
            identifier=frame_id,
            sequence_number=sequence_number,
            robot_to_world=robot_to_world.copy(),
            previous_id=self._current_frame.identifier if self._current_frame else None,
            root_id=self._root_frame.identifier if self._root_frame else frame_id,
        )
        self._frames[frame_id] = frame

        if self._root_frame is None:
            self._root_frame = frame
        self._previous_frame = self._current_frame
        self._current_frame = frame
        self._relocalized = False

        # Window accumulation
        self._last_window_increment = self._motion_increment(frame)
        self._distance_traveled_window += self._last_window_increment[0]
        self._radians_rotated_window += self._last_window_increment[1]
        self._frame_queue_for_local_map.append(frame)

        return frame

    def update_current_pose(self, robot_to_world: SE3) -> None:
        """Replace the pose of the current frame (e.g. after alignment).

        Recomputes point world coordinates and the window increment of the
        current frame.

        Args:
            robot_to_world: Refined pose T_world_robot
        """
        frame = self._current_frame
        if frame is None:
            return

        frame.set_robot_to_world(robot_to_world.copy())
        for point in frame.points:
            point.world_coordinates = self._to_world(frame, point.camera_coordinates)

        distance, angle = self._last_window_increment
        self._distance_traveled_window -= distance
        self._radians_rotated_window -= angle
        self._last_window_increment = self._motion_increment(frame)
        self._distance_traveled_window += self._last_window_increment[0]
        self._radians_rotated_window += self._last_window_increment[1]

    def _motion_increment(self, frame: Frame) -> tuple[float, float]:
        """Return translation (m) and rotation (rad) from the previous frame."""
        if frame.previous_id is None:
            return 0.0, 0.0
        previous = self._frames[frame.previous_id]
        delta = previous.world_to_robot.compose(frame.robot_to_world)
        return float(np.linalg.norm(delta.translation)), delta.rotation_angle

    def _to_world(self, frame: Frame, camera_coordinates: np.ndarray) -> np.ndarray:
        camera_to_world = frame.robot_to_world.compose(self._camera_to_robot)
        return camera_to_world.transform_point(camera_coordinates)

    def create_frame_point(
        self,
        image_coordinates: np.ndarray,
        camera_coordinates: np.ndarray,
        descriptor: np.ndarray | None = None,
        previous_id: int | None = None,
    ) -> FramePoint:
        """Add a tracked point to the current frame.

        A point continuing a track inherits the landmark and the track
        length of its predecessor.

        Args:
            image_coordinates: (u, v) pixel coordinates
            camera_coordinates: (x, y, z) in the camera frame
            descriptor: Optional packed binary descriptor
            previous_id: Predecessor point in the previous frame

        Returns:
            The new FramePoint

        Raises:
            RuntimeError: If no frame has been created yet
        """
        frame = self._current_frame
        if frame is None:
            raise RuntimeError("create_frame must be called before adding points")

        previous = self._frame_points.get(previous_id) if previous_id is not None else None

        point = FramePoint(
            identifier=self._next_point_id,
            frame_id=frame.identifier,
            image_coordinates=image_coordinates,
            camera_coordinates=camera_coordinates,
            descriptor=descriptor,
            previous_id=previous.identifier if previous is not None else None,
            landmark_id=previous.landmark_id if previous is not None else None,
            track_length=previous.track_length + 1 if previous is not None else 1,
        )
        self._next_point_id += 1
        point.world_coordinates = self._to_world(frame, point.camera_coordinates)

        self._frame_points[point.identifier] = point
        frame.points.append(point)
        return point

    def frame_point(self, point_id: int | None) -> FramePoint | None:
        """Get a frame point by ID."""
        if point_id is None:
            return None
        return self._frame_points.get(point_id)

    # ------------------------------------------------------------------
    # Landmarks
    # ------------------------------------------------------------------

    def create_landmark(
        self,
        coordinates_in_world: np.ndarray,
        descriptors: Iterable[np.ndarray] = (),
    ) -> Landmark:
        """Create a landmark owned by this map.

        Args:
            coordinates_in_world: Initial position estimate
            descriptors: Binary descriptors to attach as appearances

        Returns:
            The new Landmark
        """
        landmark = Landmark(
            identifier=self._next_landmark_id,
            coordinates=coordinates_in_world,
        )
        self._next_landmark_id += 1
        landmark.is_validated = (
            landmark.number_of_updates >= self._config.minimum_updates_for_validation
        )
        for descriptor in descriptors:
            landmark.add_appearance(self._create_appearance(landmark, descriptor))
        self._landmarks[landmark.identifier] = landmark
        return landmark

    def _create_appearance(self, landmark: Landmark, descriptor: np.ndarray) -> Appearance:
        appearance = Appearance(
            handle=self._next_appearance_handle,
            landmark_id=landmark.identifier,
            descriptor=descriptor,
        )
        self._next_appearance_handle += 1
        return appearance

    def update_landmarks(self) -> int:
        """Update or promote landmarks from the points of the current frame.

        Points linked to a landmark refine its estimate and contribute their
        descriptor. Unlinked points whose track reached the minimum length
        are promoted to new landmarks.

        Returns:
            Number of landmarks created
        """
        frame = self._current_frame
        if frame is None:
            return 0

        created = 0
        for point in frame.points:
            if point.landmark_id is not None:
                landmark = self._landmarks.get(point.landmark_id)
                if landmark is None or not landmark.is_valid:
                    point.landmark_id = None
                    continue

                accepted = landmark.update(
                    point.world_coordinates,
                    maximum_deviation=self._config.maximum_landmark_deviation,
                    minimum_updates_for_validation=self._config.minimum_updates_for_validation,
                )
                if accepted and point.descriptor is not None:
                    landmark.add_appearance(
                        self._create_appearance(landmark, point.descriptor)
                    )
                if not landmark.is_valid:
                    point.landmark_id = None

            elif point.track_length >= self._config.minimum_track_length_for_landmark:
                descriptors = [point.descriptor] if point.descriptor is not None else []
                landmark = self.create_landmark(point.world_coordinates, descriptors)
                point.landmark_id = landmark.identifier
                created += 1

        return created

    def purify_landmarks(self) -> int:
        """Remove landmarks that are no longer needed.

        A landmark is removed when it failed validation, or when it is
        neither observed by an active frame (the current frame and the frames
        buffered for the next local map) nor captured by any local map.
        Frame point links to removed landmarks are cleared.

        Returns:
            Number of removed landmarks
        """
        held: set[int] = set()
        for local_map in self._local_maps:
            held.update(local_map.landmark_coordinates.keys())

        active_frames = list(self._frame_queue_for_local_map)
        if self._current_frame is not None and self._current_frame not in active_frames:
            active_frames.append(self._current_frame)
        observed: set[int] = set()
        for frame in active_frames:
            observed.update(frame.landmark_ids)

        removed = {
            landmark_id
            for landmark_id, landmark in self._landmarks.items()
            if not landmark.is_valid or (landmark_id not in observed and landmark_id not in held)
        }
        for landmark_id in removed:
            del self._landmarks[landmark_id]

        if removed:
            for frame in active_frames:
                for point in frame.points:
                    if point.landmark_id in removed:
                        point.landmark_id = None
            logger.debug("[WorldMap] purified landmarks: %d", len(removed))

        return len(removed)

    # ------------------------------------------------------------------
    # Local maps
    # ------------------------------------------------------------------

    def create_local_map(self) -> LocalMap | None:
        """Consolidate the frame window into a local map if the policy fires.

        Fires when the window covers enough translation or rotation and the
        frame queue holds the minimum number of frames.

        Returns:
            The new LocalMap, or None if the window is not ready
        """
        if self._current_frame is None:
            return None

        moved_enough = (
            self._distance_traveled_window >= self._config.minimum_distance_traveled_for_local_map
            or self._radians_rotated_window >= self._minimum_rotation_rad
        )
        if not moved_enough:
            return None
        if len(self._frame_queue_for_local_map) < self._config.minimum_number_of_frames_for_local_map:
            return None

        robot_to_world = self._current_frame.robot_to_world.copy()
        world_to_local = robot_to_world.inverse()
        previous = self._local_maps[-1] if self._local_maps else None

        local_map = LocalMap(
            identifier=self._next_local_map_id,
            robot_to_world=robot_to_world,
            frame_ids=[frame.identifier for frame in self._frame_queue_for_local_map],
            previous_id=previous.identifier if previous is not None else None,
            root_id=self._local_maps[0].identifier if self._local_maps else self._next_local_map_id,
        )
        self._next_local_map_id += 1

        for frame in self._frame_queue_for_local_map:
            frame.local_map_id = local_map.identifier
            for point in frame.points:
                landmark = self._landmarks.get(point.landmark_id) if point.landmark_id is not None else None
                if landmark is None or not landmark.is_valid or not landmark.is_validated:
                    continue
                if landmark.identifier in local_map.landmark_coordinates:
                    continue
                local_map.landmark_coordinates[landmark.identifier] = (
                    world_to_local.transform_point(landmark.coordinates)
                )
                local_map.appearances.extend(
                    Appearance(
                        handle=appearance.handle,
                        landmark_id=landmark.identifier,
                        descriptor=appearance.descriptor,
                    )
                    for appearance in landmark.appearances
                )

        self._local_maps.append(local_map)
        self._current_local_map = local_map
        logger.info(
            "[WorldMap] local map %d created: %d frames, %d landmarks, %d appearances",
            local_map.identifier,
            len(local_map.frame_ids),
            local_map.num_landmarks,
            local_map.num_appearances,
        )

        self.reset_window()
        return local_map

    def close_local_maps(
        self,
        query: LocalMap,
        reference: LocalMap,
        transform_query_to_reference: SE3,
        information: np.ndarray | None = None,
    ) -> None:
        """Apply a verified closure between two local maps.

        Args:
            query: Local map that recognized a previous place
            reference: Local map of the previous place
            transform_query_to_reference: Relative pose from the alignment
            information: 6x6 information matrix of the estimate
        """
        edge = LocalMapEdge(
            reference_id=reference.identifier,
            transform_query_to_reference=transform_query_to_reference.copy(),
            information=(
                np.eye(6, dtype=np.float64) if information is None else np.array(information)
            ),
        )
        query.add_edge(edge)
        self._closure_edges.append((query.identifier, edge))
        self._relocalized = True
        logger.info(
            "[WorldMap] closed local maps %d -> %d", query.identifier, reference.identifier
        )

    def reset_window(self) -> None:
        """Clear the segmentation accumulators and the frame queue."""
        self._distance_traveled_window = 0.0
        self._radians_rotated_window = 0.0
        self._last_window_increment = (0.0, 0.0)
        self._frame_queue_for_local_map = []

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def write_trajectory(self, path: str | Path) -> None:
        """Write all frame poses in KITTI benchmark format.

        Args:
            path: Output file path
        """
        write_kitti_trajectory(path, [frame.robot_to_world for frame in self._frames.values()])

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> WorldMapConfig:
        """Return the configuration."""
        return self._config

    @property
    def frames(self) -> dict[int, Frame]:
        """Return all frames (creation order)."""
        return self._frames

    @property
    def landmarks(self) -> dict[int, Landmark]:
        """Return all landmarks."""
        return self._landmarks

    @property
    def local_maps(self) -> list[LocalMap]:
        """Return all local maps (creation order)."""
        return self._local_maps

    @property
    def closure_edges(self) -> list[tuple[int, LocalMapEdge]]:
        """Return all applied closures as (query_id, edge)."""
        return self._closure_edges

    @property
    def root_frame(self) -> Frame | None:
        """Return the first frame."""
        return self._root_frame

    @property
    def current_frame(self) -> Frame | None:
        """Return the most recent frame."""
        return self._current_frame

    @property
    def previous_frame(self) -> Frame | None:
        """Return the frame before the current one."""
        return self._previous_frame

    @property
    def current_local_map(self) -> LocalMap | None:
        """Return the most recent local map."""
        return self._current_local_map

    @property
    def previous_local_map(self) -> LocalMap | None:
        """Return the local map before the current one."""
        if len(self._local_maps) < 2:
            return None
        return self._local_maps[-2]

    @property
    def frame_queue_for_local_map(self) -> list[Frame]:
        """Return the frames buffered for the next local map."""
        return list(self._frame_queue_for_local_map)

    @property
    def distance_traveled_window(self) -> float:
        """Return translation accumulated since the last boundary (m)."""
        return self._distance_traveled_window

    @property
    def degrees_rotated_window(self) -> float:
        """Return rotation accumulated since the last boundary (degrees)."""
        return float(np.rad2deg(self._radians_rotated_window))

    @property
    def relocalized(self) -> bool:
        """Return True if a closure was applied since the last frame."""
        return self._relocalized

    @property
    def robot_to_world_previous(self) -> SE3:
        """Return the last pose marked as good."""
        return self._last_good_robot_to_world

    def set_robot_to_world_previous(self, robot_to_world: SE3) -> None:
        """Remember the last good pose (fallback after tracking failure)."""
        self._last_good_robot_to_world = robot_to_world.copy()

    @property
    def num_frames(self) -> int:
        """Return number of frames."""
        return len(self._frames)

    @property
    def num_landmarks(self) -> int:
        """Return number of landmarks."""
        return len(self._landmarks)
