"""
End-to-end calibration and reconstruction entry points.

Each function takes everything it needs as arguments and returns its
outputs; callers (scripts, an interactive UI) re-invoke them whenever a
parameter changes instead of mutating shared pipeline state.
"""

from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from .calibration import StereoCalibrator, compute_stereo_errors
from .config import PipelineConfig
from .data_structures import CalibrationResult, ImagePair, RectifiedGeometry, SparseMatchResult, StereoView
from .detection import PatternDetector, detect_stereo_views, list_images
from .exceptions import CalibrationError, InputError
from .io import load_calibration, save_calibration
from .logger import get_logger
from .matching import DenseMatcher, SparseMatcher
from .pointcloud import write_point_cloud
from .rectification import RectificationEngine
from .triangulation import Triangulator

logger = get_logger(__name__)

METHODS = ("dense", "sparse")


@dataclass
class ReconstructionOutput:
    """
    Artifacts of one reconstruction run.

    Attributes:
        rectified: Rectified image pair
        geometry: Rectified focal length, principal point and baseline
        points: (N, 3) triangulated points in scan/match order
        disparity: Dense disparity map (dense method only)
        sparse: Sparse match result (sparse method only)
    """

    rectified: ImagePair
    geometry: RectifiedGeometry
    points: np.ndarray
    disparity: np.ndarray | None = None
    sparse: SparseMatchResult | None = None


def load_stereo_image(image_path: Path | str, grayscale: bool = True) -> ImagePair:
    """
    Read a side-by-side capture and split it into halves.

    Raises:
        InputError: If the image cannot be read or has odd width
    """
    flag = cv2.IMREAD_GRAYSCALE if grayscale else cv2.IMREAD_COLOR
    img = cv2.imread(str(image_path), flag)
    if img is None:
        raise InputError(f"Error reading stereo image: {image_path}", path=str(image_path))
    try:
        return ImagePair.from_side_by_side(img)
    except InputError as exc:
        raise InputError(f"{exc} ({image_path})", path=str(image_path)) from exc


def detect_calibration_views(
    image_dir: Path | str, config: PipelineConfig | None = None, progress: bool = True
) -> tuple[list[StereoView], tuple[int, int]]:
    """
    Detect the pattern in every capture of a directory.

    Returns:
        Tuple of (views, per-half image size)

    Raises:
        InputError: If the directory is missing or holds no images
        CalibrationError: If the pattern was found in no capture
    """
    config = config or PipelineConfig()
    image_paths = list_images(image_dir)
    if not image_paths:
        raise InputError(f"No images found in the directory {image_dir}", path=str(image_dir))
    logger.info(f"Found {len(image_paths)} calibration images in {image_dir}")

    detector = PatternDetector.from_config(config.pattern, config.detection)
    views, image_size = detect_stereo_views(image_paths, detector.pattern, config.detection, progress=progress)
    if not views or image_size is None:
        raise CalibrationError(f"No valid chessboard patterns were found in {len(image_paths)} images of {image_dir}")
    return views, image_size


def calibrate_views(
    views: list[StereoView], image_size: tuple[int, int], config: PipelineConfig | None = None
) -> CalibrationResult:
    """Calibrate the rig from detected views and log per-view reprojection errors."""
    config = config or PipelineConfig()
    result = StereoCalibrator(config.calibration).calibrate(views, image_size)
    errs_left, errs_right = compute_stereo_errors(views, result)
    for view, e_l, e_r in zip(views, errs_left, errs_right, strict=True):
        logger.debug(f"{view.source}: RMS L={e_l:.3f} px R={e_r:.3f} px")
    return result


def calibrate_from_directory(
    image_dir: Path | str, config: PipelineConfig | None = None, progress: bool = True
) -> CalibrationResult:
    """
    Detect the pattern in every capture of a directory and calibrate the rig.

    Raises:
        InputError: If the directory is missing or holds no images
        CalibrationError: If the pattern was found in no capture
    """
    views, image_size = detect_calibration_views(image_dir, config, progress=progress)
    return calibrate_views(views, image_size, config)


def run_calibration(
    image_dir: Path | str,
    output_path: Path | str,
    config: PipelineConfig | None = None,
    fmt: str | None = None,
    progress: bool = True,
) -> CalibrationResult:
    """Calibrate from a directory and persist the result."""
    result = calibrate_from_directory(image_dir, config, progress=progress)
    save_calibration(result, output_path, fmt=fmt)
    return result


def reconstruct(
    pair: ImagePair,
    calibration: CalibrationResult,
    config: PipelineConfig | None = None,
    method: str = "dense",
) -> ReconstructionOutput:
    """
    Rectify a pair, establish correspondences and triangulate them.

    Args:
        pair: Unrectified stereo pair captured by the calibrated rig
        calibration: Rig calibration
        config: Pipeline configuration
        method: 'dense' (block matching) or 'sparse' (keypoints)

    Raises:
        ShapeMismatchError: If the pair does not match the calibration image size
    """
    if method not in METHODS:
        raise ValueError(f"method must be one of {METHODS}, got {method!r}")
    config = config or PipelineConfig()

    engine = RectificationEngine(calibration, pair.image_size, config.rectification)
    rectified = engine.apply(pair)
    geometry = engine.geometry
    logger.info(
        f"Rectified {pair.image_size[0]}x{pair.image_size[1]} pair: f={geometry.focal_length:.2f} "
        f"cx={geometry.cx:.2f} cy={geometry.cy:.2f} baseline={geometry.baseline:.4f}"
    )
    triangulator = Triangulator(geometry, config.triangulation)

    if method == "dense":
        disparity = DenseMatcher(config.dense).compute(rectified.left, rectified.right)
        points = triangulator.triangulate_disparity(disparity)
        return ReconstructionOutput(rectified, geometry, points, disparity=disparity)

    sparse = SparseMatcher(config.sparse).match(rectified.left, rectified.right)
    points = triangulator.triangulate_matches(sparse.kept)
    return ReconstructionOutput(rectified, geometry, points, sparse=sparse)


def reconstruct_to_file(
    image_path: Path | str,
    calibration_path: Path | str,
    output_path: Path | str,
    config: PipelineConfig | None = None,
    method: str = "dense",
) -> ReconstructionOutput:
    """Load a side-by-side image and calibration, reconstruct, and write the point list."""
    config = config or PipelineConfig()
    calibration = load_calibration(calibration_path)
    pair = load_stereo_image(image_path)
    output = reconstruct(pair, calibration, config, method=method)
    write_point_cloud(output.points, output_path, fmt=config.output.format)
    return output
