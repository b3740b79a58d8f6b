"""
Checkerboard detection utilities for stereo calibration.

Provides single-image corner detection with sub-pixel refinement and batch
detection over a directory of side-by-side captures, with support for
parallel processing and caching.
"""

import hashlib
import multiprocessing as mp
from pathlib import Path
from typing import Any

import cv2
import numpy as np
from tqdm.auto import tqdm

from .config import DetectionConfig, PatternConfig
from .data_structures import CornerSet, ImagePair, Pattern, StereoView
from .exceptions import DetectionMiss, InputError
from .logger import get_logger

logger = get_logger(__name__)

IMAGE_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.bmp", "*.tif", "*.tiff")


def list_images(folder: str | Path) -> list[Path]:
    """List all image files in a folder, sorted by name."""
    folder_path = Path(folder)
    if not folder_path.is_dir():
        raise InputError(f"Calibration image directory not found: {folder_path}", path=str(folder_path))
    files: set[Path] = set()
    for e in IMAGE_EXTENSIONS:
        files.update(folder_path.glob(e))
    return sorted(files)


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def _canonical_order(corners: np.ndarray) -> np.ndarray:
    """Reverse a corner grid reported from its far end so index 0 is nearest the image origin."""
    if corners[0].sum() > corners[-1].sum():
        return corners[::-1].copy()
    return corners


class PatternDetector:
    """
    Locates checkerboard corners in one image half.

    Coarse localization is done by ``cv2.findChessboardCorners`` (which rejects
    quads that do not assemble into a consistent grid); the result is refined
    with ``cv2.cornerSubPix`` until the iteration cap or the movement epsilon
    is reached.
    """

    def __init__(self, pattern: Pattern, config: DetectionConfig | None = None):
        self.pattern = pattern
        self.config = config or DetectionConfig()

    @classmethod
    def from_config(cls, pattern_cfg: PatternConfig, detection_cfg: DetectionConfig) -> "PatternDetector":
        return cls(Pattern(pattern_cfg.columns, pattern_cfg.rows, pattern_cfg.square_size), detection_cfg)

    @property
    def criteria(self) -> tuple[int, int, float]:
        return (
            cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
            self.config.subpixel_iterations,
            self.config.subpixel_epsilon,
        )

    def detect(self, image: np.ndarray) -> CornerSet | None:
        """
        Detect the pattern in a single image.

        Args:
            image: Grayscale or BGR image

        Returns:
            CornerSet with exactly W*H in-bounds corners, or None when the
            pattern is not found
        """
        gray = _to_gray(image)
        flags = cv2.CALIB_CB_ADAPTIVE_THRESH | cv2.CALIB_CB_NORMALIZE_IMAGE
        if self.config.fast_check:
            flags |= cv2.CALIB_CB_FAST_CHECK

        found, corners = cv2.findChessboardCorners(gray, self.pattern.size, flags=flags)
        if not found or corners is None or len(corners) != self.pattern.num_corners:
            return None

        win = (self.config.subpixel_window, self.config.subpixel_window)
        corners = cv2.cornerSubPix(gray, corners.astype(np.float32), win, (-1, -1), self.criteria)
        pts = _canonical_order(corners.reshape(-1, 2))

        h, w = gray.shape[:2]
        in_bounds = (pts[:, 0] >= 0) & (pts[:, 0] <= w - 1) & (pts[:, 1] >= 0) & (pts[:, 1] <= h - 1)
        if not in_bounds.all():
            return None
        return CornerSet(points=pts, pattern_size=self.pattern.size)

    def detect_pair(self, pair: ImagePair, source: str | None = None) -> StereoView:
        """
        Detect the pattern in both halves of a pair.

        Raises:
            DetectionMiss: If either half has no complete pattern
        """
        left = self.detect(pair.left)
        if left is None:
            raise DetectionMiss(f"Pattern not found in left half of {source or 'pair'}", side="left", path=source)
        right = self.detect(pair.right)
        if right is None:
            raise DetectionMiss(f"Pattern not found in right half of {source or 'pair'}", side="right", path=source)
        return StereoView(object_points=self.pattern.object_points(), left=left, right=right, source=source)


def _detect_single_image(args: tuple[Any, ...]) -> dict[str, Any]:
    """
    Worker function for parallel pair detection.

    Args:
        args: Tuple of (image_path, img_idx, pattern, detection_config)

    Returns:
        Dictionary with detection results; failures carry a reason instead of raising
    """
    image_path, img_idx, pattern, config = args
    result: dict[str, Any] = {"img_idx": img_idx, "path": str(image_path), "view": None, "reason": None}

    img = cv2.imread(str(image_path), cv2.IMREAD_GRAYSCALE)
    if img is None:
        result["reason"] = f"Could not read image {image_path}"
        return result

    try:
        pair = ImagePair.from_side_by_side(img)
        result["image_size"] = pair.image_size
        result["view"] = PatternDetector(pattern, config).detect_pair(pair, source=str(image_path))
    except (DetectionMiss, InputError) as exc:
        result["reason"] = str(exc)
    return result


def detect_stereo_views(
    image_paths: list[str | Path],
    pattern: Pattern,
    config: DetectionConfig | None = None,
    progress: bool = True,
) -> tuple[list[StereoView], tuple[int, int] | None]:
    """
    Detect the pattern in every side-by-side calibration image.

    Captures that cannot be read, split, or that miss the pattern in either
    half are logged and skipped; they never abort the batch.

    Args:
        image_paths: Paths to side-by-side calibration images
        pattern: Checkerboard description
        config: Refinement, worker and cache settings
        progress: Show progress bar

    Returns:
        Tuple of (views, image_size):
        - views: Successful detections in input order
        - image_size: Per-half (width, height) of the first successful view, or None

    Raises:
        InputError: If successful captures disagree on image size
    """
    config = config or DetectionConfig()
    cache_dir = Path(config.cache_dir) if config.cache_dir else None

    if cache_dir is not None:
        from .cache import load_from_cache

        cache_key = _compute_detection_cache_key(image_paths, pattern, config)
        cached = load_from_cache(cache_dir, cache_key, "detection")
        if cached is not None:
            return cached["views"], cached["image_size"]

    args_list = [(path, idx, pattern, config) for idx, path in enumerate(image_paths)]
    num_workers = mp.cpu_count() if config.num_workers == -1 else config.num_workers

    if num_workers == 1:
        iterator = tqdm(args_list, desc="Detecting boards") if progress else args_list
        results = [_detect_single_image(args) for args in iterator]
    else:
        with mp.Pool(num_workers) as pool:
            iterator = pool.imap(_detect_single_image, args_list)
            if progress:
                iterator = tqdm(iterator, total=len(args_list), desc="Detecting boards")
            results = list(iterator)

    views = []
    image_size = None
    for result in sorted(results, key=lambda r: r["img_idx"]):
        if result["view"] is None:
            logger.warning(f"Skipping {result['path']}: {result['reason']}")
            continue
        if image_size is None:
            image_size = result["image_size"]
        elif result["image_size"] != image_size:
            raise InputError(
                f"Image {result['path']} has half size {result['image_size']}, expected {image_size}",
                path=result["path"],
            )
        views.append(result["view"])

    logger.info(f"Pattern found in {len(views)}/{len(image_paths)} stereo captures")

    if cache_dir is not None:
        from .cache import save_to_cache

        save_to_cache(cache_dir, cache_key, "detection", {"views": views, "image_size": image_size})

    return views, image_size


def _compute_detection_cache_key(image_paths: list[str | Path], pattern: Pattern, config: DetectionConfig) -> str:
    """Compute cache key for detection results based on image paths and parameters."""
    h = hashlib.md5()
    for path in sorted(str(p) for p in image_paths):
        h.update(path.encode())
        if Path(path).exists():
            h.update(str(Path(path).stat().st_mtime).encode())
    h.update(repr(pattern).encode())
    h.update(
        repr((config.subpixel_window, config.subpixel_iterations, config.subpixel_epsilon, config.fast_check)).encode()
    )
    return h.hexdigest()
