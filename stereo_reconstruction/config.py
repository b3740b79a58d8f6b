"""
Configuration containers for the reconstruction pipeline.

Every tunable of the pipeline lives here so nothing is hardcoded in the
algorithms. Sections can be built directly or loaded from a YAML document
whose top-level keys match the section names.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError


@dataclass(frozen=True)
class PatternConfig:
    """Checkerboard geometry: interior corners per row/column and square size in meters."""

    columns: int = 7
    rows: int = 5
    square_size: float = 0.02875

    def __post_init__(self):
        if self.columns < 2 or self.rows < 2:
            raise ConfigError(f"Pattern needs at least 2x2 interior corners, got {self.columns}x{self.rows}")
        if self.square_size <= 0:
            raise ConfigError(f"square_size must be positive, got {self.square_size}")


@dataclass(frozen=True)
class DetectionConfig:
    """Corner refinement and batch detection parameters."""

    subpixel_window: int = 11
    subpixel_iterations: int = 60
    subpixel_epsilon: float = 1e-6
    fast_check: bool = False
    num_workers: int = 1
    cache_dir: str | None = None

    def __post_init__(self):
        if self.subpixel_window < 1:
            raise ConfigError("subpixel_window must be >= 1")
        if self.subpixel_iterations < 1:
            raise ConfigError("subpixel_iterations must be >= 1")
        if self.subpixel_epsilon <= 0:
            raise ConfigError("subpixel_epsilon must be positive")
        if self.num_workers == 0 or self.num_workers < -1:
            raise ConfigError("num_workers must be -1 (all cores) or a positive count")


@dataclass(frozen=True)
class StereoCalibrationConfig:
    """Joint stereo optimization stop criteria."""

    max_iterations: int = 60
    epsilon: float = 1e-6
    # Warn when board orientations span less than this many degrees
    min_orientation_spread_deg: float = 10.0

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ConfigError("max_iterations must be >= 1")
        if self.epsilon <= 0:
            raise ConfigError("epsilon must be positive")


@dataclass(frozen=True)
class RectificationConfig:
    """Rectification convention: zero disparity at infinity and free scaling (0=crop, 1=keep all)."""

    zero_disparity: bool = True
    alpha: float = 0.0

    def __post_init__(self):
        if not (self.alpha == -1 or 0.0 <= self.alpha <= 1.0):
            raise ConfigError(f"alpha must be -1 or within [0, 1], got {self.alpha}")


PRE_FILTER_TYPES = ("xsobel", "normalized_response")
DENSE_METHODS = ("bm", "sgbm")


@dataclass(frozen=True)
class DenseMatcherConfig:
    """Block matching parameters (OpenCV StereoBM semantics)."""

    method: str = "bm"
    min_disparity: int = 0
    num_disparities: int = 192
    block_size: int = 25
    pre_filter_type: str = "xsobel"
    pre_filter_size: int = 9
    pre_filter_cap: int = 31
    texture_threshold: int = 20
    uniqueness_ratio: int = 15
    speckle_window_size: int = 100
    speckle_range: int = 32
    disp12_max_diff: int = -1

    def __post_init__(self):
        if self.method not in DENSE_METHODS:
            raise ConfigError(f"dense method must be one of {DENSE_METHODS}, got {self.method!r}")
        if self.min_disparity < 0:
            raise ConfigError(f"min_disparity must be non-negative, got {self.min_disparity}")
        if self.num_disparities <= 0 or self.num_disparities % 16 != 0:
            raise ConfigError(f"num_disparities must be a positive multiple of 16, got {self.num_disparities}")
        if self.block_size % 2 == 0 or not (5 <= self.block_size <= 255):
            raise ConfigError(f"block_size must be odd and within [5, 255], got {self.block_size}")
        if self.pre_filter_type not in PRE_FILTER_TYPES:
            raise ConfigError(f"pre_filter_type must be one of {PRE_FILTER_TYPES}, got {self.pre_filter_type!r}")
        if self.pre_filter_size % 2 == 0 or not (5 <= self.pre_filter_size <= 255):
            raise ConfigError(f"pre_filter_size must be odd and within [5, 255], got {self.pre_filter_size}")
        if not (1 <= self.pre_filter_cap <= 63):
            raise ConfigError(f"pre_filter_cap must be within [1, 63], got {self.pre_filter_cap}")
        if self.uniqueness_ratio < 0 or self.texture_threshold < 0:
            raise ConfigError("uniqueness_ratio and texture_threshold must be non-negative")
        if self.speckle_window_size < 0 or self.speckle_range < 0:
            raise ConfigError("speckle_window_size and speckle_range must be non-negative")

    @property
    def max_disparity(self) -> int:
        return self.min_disparity + self.num_disparities


@dataclass(frozen=True)
class SparseMatcherConfig:
    """AKAZE keypoints + Hamming matching with the epipolar (vertical) filter."""

    vertical_tolerance: float = 5.0
    akaze_threshold: float = 1e-4
    octaves: int = 8
    octave_layers: int = 4
    descriptor_size: int = 0
    descriptor_channels: int = 3

    def __post_init__(self):
        if self.vertical_tolerance <= 0:
            raise ConfigError(f"vertical_tolerance must be positive, got {self.vertical_tolerance}")
        if self.akaze_threshold <= 0:
            raise ConfigError("akaze_threshold must be positive")


@dataclass(frozen=True)
class TriangulationConfig:
    """Disparities at or below min_disparity are discarded (points at or behind infinity)."""

    min_disparity: float = 10.0

    def __post_init__(self):
        if self.min_disparity < 0:
            raise ConfigError(f"min_disparity must be non-negative, got {self.min_disparity}")


@dataclass(frozen=True)
class OutputConfig:
    """Point cloud file format: 'xyz' (three columns) or 'obj' (vertex lines)."""

    format: str = "xyz"

    def __post_init__(self):
        if self.format not in ("xyz", "obj"):
            raise ConfigError(f"output format must be 'xyz' or 'obj', got {self.format!r}")


_SECTIONS = {
    "pattern": PatternConfig,
    "detection": DetectionConfig,
    "calibration": StereoCalibrationConfig,
    "rectification": RectificationConfig,
    "dense": DenseMatcherConfig,
    "sparse": SparseMatcherConfig,
    "triangulation": TriangulationConfig,
    "output": OutputConfig,
}


def _build_section(name: str, cls: type, values: dict[str, Any] | None):
    values = values or {}
    if not isinstance(values, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in config section '{name}': {sorted(unknown)}")
    return cls(**values)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Complete configuration for calibration and reconstruction runs.

    Passed explicitly into every pipeline call; there is no module-level state.
    """

    pattern: PatternConfig = field(default_factory=PatternConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    calibration: StereoCalibrationConfig = field(default_factory=StereoCalibrationConfig)
    rectification: RectificationConfig = field(default_factory=RectificationConfig)
    dense: DenseMatcherConfig = field(default_factory=DenseMatcherConfig)
    sparse: SparseMatcherConfig = field(default_factory=SparseMatcherConfig)
    triangulation: TriangulationConfig = field(default_factory=TriangulationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PipelineConfig":
        """Build from a nested mapping; missing sections fall back to defaults."""
        data = data or {}
        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ConfigError(f"Unknown config sections: {sorted(unknown)}")
        return cls(**{name: _build_section(name, sc, data.get(name)) for name, sc in _SECTIONS.items()})

    @classmethod
    def from_yaml(cls, path: Path | str) -> "PipelineConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        try:
            with path.open() as f:
                data = yaml.safe_load(f)
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: {f.name: getattr(getattr(self, name), f.name) for f in fields(sc)} for name, sc in _SECTIONS.items()}

    def get(self, key: str, default: Any = None) -> Any:
        """Get nested config value using dot notation (e.g., 'dense.block_size')."""
        value: Any = self.to_dict()
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value
