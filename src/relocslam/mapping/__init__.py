"""Map graph: frames, landmarks, local maps and the world map that owns them."""

from .frame import Frame, FramePoint
from .landmark import Appearance, Landmark
from .local_map import LocalMap, LocalMapEdge
from .world_map import WorldMap, WorldMapConfig

__all__ = [
    # Entities
    "Appearance",
    "Landmark",
    "Frame",
    "FramePoint",
    "LocalMap",
    "LocalMapEdge",
    # World map
    "WorldMap",
    "WorldMapConfig",
]
