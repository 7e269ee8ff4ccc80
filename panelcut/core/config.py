"""
Configuration dataclasses for ``segment`` and ``flatten``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .runtime_defaults import DEFAULTS

INITIAL_LAYOUTS = ("plane", "lscm")


@dataclass(frozen=True)
class DistanceWeights:
    """Weights of the per-feature terms of the clustering distance."""

    position: float = 0.3
    normal: float = 0.4
    curvature: float = 0.3
    edge_length: float = 0.1

    def __post_init__(self):
        for name in ("position", "normal", "curvature", "edge_length"):
            value = float(getattr(self, name))
            if not value >= 0.0:
                raise ValueError(f"distance weight '{name}' must be >= 0, got {value!r}")


@dataclass(frozen=True)
class SegmentationConfig:
    distance_weights: DistanceWeights = field(default_factory=DistanceWeights)
    max_iterations: int = DEFAULTS.kmeans_max_iterations
    convergence_threshold: float = 1e-4
    timeout_seconds: Optional[float] = DEFAULTS.segment_timeout
    smoothing_passes: int = DEFAULTS.smoothing_passes
    # None draws from system entropy (non-reproducible).
    seed: Optional[int] = DEFAULTS.random_seed

    def __post_init__(self):
        if int(self.max_iterations) < 1:
            raise ValueError("max_iterations must be >= 1")
        if not float(self.convergence_threshold) >= 0.0:
            raise ValueError("convergence_threshold must be >= 0")
        if self.timeout_seconds is not None and not float(self.timeout_seconds) > 0.0:
            raise ValueError("timeout_seconds must be > 0 or None")
        if int(self.smoothing_passes) < 0:
            raise ValueError("smoothing_passes must be >= 0")


@dataclass(frozen=True)
class FlatteningConfig:
    relaxation_iterations: int = DEFAULTS.relaxation_iterations
    # Relative to the mean rest length of the panel.
    convergence_threshold: float = 1e-5
    relaxation_factor: float = 1.0
    initial_layout: str = "plane"
    # Calibration multiplier applied to output coordinates.
    scale: float = 1.0
    orient: bool = True
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        if int(self.relaxation_iterations) < 0:
            raise ValueError("relaxation_iterations must be >= 0")
        if not float(self.convergence_threshold) >= 0.0:
            raise ValueError("convergence_threshold must be >= 0")
        if not 0.0 < float(self.relaxation_factor) <= 1.0:
            raise ValueError("relaxation_factor must be in (0, 1]")
        if str(self.initial_layout) not in INITIAL_LAYOUTS:
            raise ValueError(f"initial_layout must be one of {INITIAL_LAYOUTS}")
        if not float(self.scale) > 0.0:
            raise ValueError("scale must be > 0")
        if self.timeout_seconds is not None and not float(self.timeout_seconds) > 0.0:
            raise ValueError("timeout_seconds must be > 0 or None")


class SegmentationResolution(Enum):
    """Preview presets mapping to a target panel count."""

    LOW = "Low (5 panels)"
    MEDIUM = "Medium (8 panels)"
    HIGH = "High (15 panels)"

    @property
    def target_panel_count(self) -> int:
        return _RESOLUTION_PANEL_COUNTS[self]


_RESOLUTION_PANEL_COUNTS = {
    SegmentationResolution.LOW: 5,
    SegmentationResolution.MEDIUM: 8,
    SegmentationResolution.HIGH: 15,
}
