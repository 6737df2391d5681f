#!/usr/bin/env python3
"""Demo script for local map relocalization on a synthetic loop.

A camera circles a cloud of textured points twice while always looking at
its center. Tracking is lost at the start of the second lap, so every
point is re-initialized as a new landmark. The relocalizer recognizes the
local maps of the first lap and closes them with the second lap.

Usage:
    uv run python examples/relocalization_demo.py
"""

import logging
from pathlib import Path

import numpy as np

from relocslam import (
    SE3,
    CameraIntrinsics,
    Chronometer,
    FrameInput,
    PinholeCamera,
    PointObservation,
    RelocalizerConfig,
    SLAMConfig,
    SLAMSystem,
    WorldMapConfig,
)


def look_at_center(angle: float, radius: float) -> SE3:
    """Return the pose on a circle in the x-z plane looking at the origin."""
    position = np.array([radius * np.cos(angle), 0.0, radius * np.sin(angle)])
    z_axis = -position / np.linalg.norm(position)
    y_axis = np.array([0.0, 1.0, 0.0])
    x_axis = np.cross(y_axis, z_axis)
    return SE3(rotation=np.column_stack([x_axis, y_axis, z_axis]), translation=position)


def main() -> None:
    """Run the relocalization demo."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    # Configuration
    number_of_points = 200
    frames_per_lap = 60
    radius = 3.0
    output_path = Path("output/relocalization_demo_trajectory.txt")

    rng = np.random.default_rng(0)
    points = rng.uniform(-1.0, 1.0, size=(number_of_points, 3))
    descriptors = rng.integers(0, 256, size=(number_of_points, 32), dtype=np.uint8)

    camera = PinholeCamera(
        intrinsics=CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0),
        image_cols=640,
        image_rows=480,
    )
    config = SLAMConfig(
        world_map=WorldMapConfig(
            minimum_distance_traveled_for_local_map=1.0,
            minimum_track_length_for_landmark=2,
            minimum_updates_for_validation=2,
        ),
        relocalizer=RelocalizerConfig(minimum_interspace=3),
    )
    timings = Chronometer()
    slam = SLAMSystem(camera, config, timings)

    print("=" * 80)
    print("LOCAL MAP RELOCALIZATION")
    print("=" * 80)
    print(f"  Points:         {number_of_points}")
    print(f"  Frames per lap: {frames_per_lap}")
    print(f"  Radius:         {radius:.1f} m")
    print()

    sequence_number = 0
    for lap in range(2):
        for index in range(frames_per_lap):
            robot_to_world = look_at_center(2.0 * np.pi * index / frames_per_lap, radius)
            in_camera = robot_to_world.inverse().transform_points(points)
            uvd = camera.project(in_camera)

            # Tracking is lost when the second lap starts
            continue_tracks = index > 0
            frame_input = FrameInput(
                sequence_number=sequence_number,
                robot_to_world=robot_to_world,
                points=[
                    PointObservation(
                        image_coordinates=uvd[i, :2],
                        camera_coordinates=in_camera[i],
                        descriptor=descriptors[i],
                        previous_index=i if continue_tracks else None,
                    )
                    for i in range(number_of_points)
                ],
            )

            result = slam.process_frame(frame_input)
            sequence_number += 1

            if result.is_local_map_boundary:
                print(
                    f"  lap {lap} frame {result.frame_id:>4}: local map {result.local_map_id:>3} "
                    f"closures detected {result.num_closures_detected:>2} "
                    f"accepted {len(result.accepted_closures):>2}"
                )
            for query_id, reference_id in result.accepted_closures:
                print(f"      closed local map {query_id} -> {reference_id}")

    stats = slam.stats
    print()
    print("=" * 80)
    print("SUMMARY")
    print("=" * 80)
    print(f"  Frames:             {stats.num_frames}")
    print(f"  Local maps:         {stats.num_local_maps}")
    print(f"  Landmarks:          {stats.num_landmarks}")
    print(f"  Closures detected:  {stats.num_closures_detected}")
    print(f"  Closures accepted:  {stats.num_closures_accepted}")
    print(f"  Distance traveled:  {stats.total_distance:.2f} m")
    print()
    for name in timings.names:
        print(f"  {name:<24} {timings.total(name) * 1000:8.1f} ms total")

    slam.write_trajectory(output_path)
    print()
    print(f"Trajectory written to {output_path}")


if __name__ == "__main__":
    main()
