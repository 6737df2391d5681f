"""relocslam - Local map SLAM with appearance-based relocalization."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .aligners import (
    AlignerConfig,
    AlignmentResult,
    EuclideanResidual,
    IterativeAligner,
    ReprojectionResidual,
    align_frame,
)
from .config import SLAMConfig
from .frontend import SE3, CameraIntrinsics, PinholeCamera
from .io import format_kitti_pose, read_kitti_trajectory, write_kitti_trajectory
from .mapping import (
    Appearance,
    Frame,
    FramePoint,
    Landmark,
    LocalMap,
    LocalMapEdge,
    WorldMap,
    WorldMapConfig,
)
from .metrics import Chronometer, NullTimings, Timings
from .relocalization import (
    Closure,
    Correspondence,
    PlaceDatabase,
    Relocalizer,
    RelocalizerConfig,
)
from .slam_system import FrameInput, PointObservation, SLAMFrame, SLAMStats, SLAMSystem

__all__ = [
    "__version__",
    # SLAM System
    "SLAMSystem",
    "SLAMConfig",
    "SLAMFrame",
    "SLAMStats",
    "FrameInput",
    "PointObservation",
    # Geometry
    "SE3",
    "CameraIntrinsics",
    "PinholeCamera",
    # Map
    "Appearance",
    "Frame",
    "FramePoint",
    "Landmark",
    "LocalMap",
    "LocalMapEdge",
    "WorldMap",
    "WorldMapConfig",
    # Alignment
    "AlignerConfig",
    "AlignmentResult",
    "IterativeAligner",
    "EuclideanResidual",
    "ReprojectionResidual",
    "align_frame",
    # Relocalization
    "Closure",
    "Correspondence",
    "PlaceDatabase",
    "Relocalizer",
    "RelocalizerConfig",
    # I/O
    "format_kitti_pose",
    "read_kitti_trajectory",
    "write_kitti_trajectory",
    # Timing
    "Chronometer",
    "NullTimings",
    "Timings",
]
