"""
Stereo reconstruction package for a side-by-side two-camera rig.

This package provides modular tools for:
- Checkerboard detection and stereo calibration
- Rectification, dense and sparse correspondence
- Triangulation and point cloud export
"""

from .calibration import (
    StereoCalibrator,
    calibrate_camera,
    compute_stereo_errors,
    estimate_board_pose,
    orientation_spread_deg,
)
from .config import (
    DenseMatcherConfig,
    DetectionConfig,
    OutputConfig,
    PatternConfig,
    PipelineConfig,
    RectificationConfig,
    SparseMatcherConfig,
    StereoCalibrationConfig,
    TriangulationConfig,
)
from .data_structures import (
    CalibrationResult,
    CameraIndex,
    CameraIntrinsics,
    CornerSet,
    ImagePair,
    Pattern,
    Point3D,
    RectificationMap,
    RectifiedGeometry,
    SparseMatch,
    SparseMatchResult,
    StereoExtrinsics,
    StereoView,
)
from .detection import PatternDetector, detect_stereo_views, list_images
from .exceptions import (
    CalibrationError,
    ConfigError,
    DetectionMiss,
    InputError,
    LoadError,
    PointCloudWriteError,
    ShapeMismatchError,
    StereoReconstructionError,
)
from .io import load_calibration, save_calibration
from .logger import configure_logging, get_logger
from .matching import DenseMatcher, SparseMatcher, filter_by_vertical_offset, rectification_error
from .pipeline import (
    ReconstructionOutput,
    calibrate_from_directory,
    calibrate_views,
    detect_calibration_views,
    load_stereo_image,
    reconstruct,
    reconstruct_to_file,
    run_calibration,
)
from .pointcloud import read_point_cloud, write_point_cloud
from .rectification import RectificationEngine, crop_to_roi, rectify_pair
from .triangulation import Triangulator, iter_points

__all__ = [
    # Configuration
    "DenseMatcherConfig",
    "DetectionConfig",
    "OutputConfig",
    "PatternConfig",
    "PipelineConfig",
    "RectificationConfig",
    "SparseMatcherConfig",
    "StereoCalibrationConfig",
    "TriangulationConfig",
    # Data structures
    "CalibrationResult",
    "CameraIndex",
    "CameraIntrinsics",
    "CornerSet",
    "ImagePair",
    "Pattern",
    "Point3D",
    "RectificationMap",
    "RectifiedGeometry",
    "SparseMatch",
    "SparseMatchResult",
    "StereoExtrinsics",
    "StereoView",
    # Errors
    "CalibrationError",
    "ConfigError",
    "DetectionMiss",
    "InputError",
    "LoadError",
    "PointCloudWriteError",
    "ShapeMismatchError",
    "StereoReconstructionError",
    # Detection
    "PatternDetector",
    "detect_stereo_views",
    "list_images",
    # Calibration
    "StereoCalibrator",
    "calibrate_camera",
    "compute_stereo_errors",
    "estimate_board_pose",
    "orientation_spread_deg",
    # I/O
    "load_calibration",
    "save_calibration",
    # Rectification
    "RectificationEngine",
    "crop_to_roi",
    "rectify_pair",
    # Correspondence
    "DenseMatcher",
    "SparseMatcher",
    "filter_by_vertical_offset",
    "rectification_error",
    # Triangulation and output
    "Triangulator",
    "iter_points",
    "read_point_cloud",
    "write_point_cloud",
    # Pipeline
    "ReconstructionOutput",
    "calibrate_from_directory",
    "calibrate_views",
    "detect_calibration_views",
    "load_stereo_image",
    "reconstruct",
    "reconstruct_to_file",
    "run_calibration",
    # Logging
    "configure_logging",
    "get_logger",
]
