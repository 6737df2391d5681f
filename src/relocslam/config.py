"""Aggregate configuration of the SLAM system.

All component configurations are plain dataclasses with defaults. A YAML
file may override any subset of them:

    world_map:
      minimum_distance_traveled_for_local_map: 0.5
    relocalizer:
      minimum_interspace: 5
      aligner:
        maximum_error_kernel: 1.0
    tracking:
      maximum_number_of_iterations: 50
    enable_tracking: true
    minimum_inliers: 10
    minimum_inlier_ratio: 0.5
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .aligners.base import AlignerConfig
from .mapping.world_map import WorldMapConfig
from .relocalization.relocalizer import RelocalizerConfig


def _build(config_type: type, values: Any, section: str) -> Any:
    """Instantiate a config dataclass from a YAML mapping."""
    if values is None:
        return config_type()
    if not isinstance(values, dict):
        raise ValueError(f"Section '{section}' must be a mapping, got {type(values).__name__}")

    known = {f.name for f in fields(config_type)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown keys in section '{section}': {', '.join(unknown)}")
    return config_type(**values)


@dataclass
class SLAMConfig:
    """Configuration of SLAMSystem.

    Attributes:
        world_map: Landmark and local map segmentation parameters
        relocalizer: Closure detection and registration parameters
        tracking: Aligner parameters for frame-to-frame pose refinement
        enable_tracking: Refine incoming poses with the reprojection aligner
        minimum_inliers: Inliers required to accept a closure
        minimum_inlier_ratio: Inliers / correspondences required to accept
            a closure
    """

    world_map: WorldMapConfig = field(default_factory=WorldMapConfig)
    relocalizer: RelocalizerConfig = field(default_factory=RelocalizerConfig)
    tracking: AlignerConfig = field(
        default_factory=lambda: AlignerConfig(
            maximum_error_kernel=9.0, maximum_number_of_iterations=100
        )
    )
    enable_tracking: bool = False
    minimum_inliers: int = 10
    minimum_inlier_ratio: float = 0.5

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> SLAMConfig:
        """Create configuration from a nested mapping.

        Raises:
            ValueError: On unknown keys or malformed sections
        """
        values = dict(values)
        relocalizer_values = values.pop("relocalizer", None)
        if isinstance(relocalizer_values, dict) and "aligner" in relocalizer_values:
            relocalizer_values = dict(relocalizer_values)
            relocalizer_values["aligner"] = _build(
                AlignerConfig, relocalizer_values["aligner"], "relocalizer.aligner"
            )

        config = cls(
            world_map=_build(WorldMapConfig, values.pop("world_map", None), "world_map"),
            relocalizer=_build(RelocalizerConfig, relocalizer_values, "relocalizer"),
        )
        tracking_values = values.pop("tracking", None)
        if tracking_values is not None:
            config.tracking = _build(AlignerConfig, tracking_values, "tracking")

        for name in ("enable_tracking", "minimum_inliers", "minimum_inlier_ratio"):
            if name in values:
                setattr(config, name, values.pop(name))
        if values:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(values))}")
        return config

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> SLAMConfig:
        """Load configuration from a YAML file.

        Args:
            yaml_path: Path to the configuration file

        Returns:
            SLAMConfig with defaults for all omitted values

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: On unknown keys or malformed sections
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path) as f:
            values = yaml.safe_load(f)

        if values is None:
            return cls()
        if not isinstance(values, dict):
            raise ValueError(f"Configuration root must be a mapping: {yaml_path}")
        return cls.from_dict(values)
