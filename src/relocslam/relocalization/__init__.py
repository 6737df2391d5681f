"""Relocalization: recognizing previously visited places.

Key components:
- PlaceDatabase: Binary descriptor database queried per local map
- Relocalizer: Closure detection and geometric registration
- Closure: A candidate loop closure with landmark correspondences
"""

from .closure import Candidate, Closure, Correspondence
from .place_database import DescriptorMatch, DescriptorMerge, PlaceDatabase
from .relocalizer import Relocalizer, RelocalizerConfig

__all__ = [
    # Closures
    "Candidate",
    "Closure",
    "Correspondence",
    # Place database
    "DescriptorMatch",
    "DescriptorMerge",
    "PlaceDatabase",
    # Relocalizer
    "Relocalizer",
    "RelocalizerConfig",
]
