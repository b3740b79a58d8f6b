"""
Stereo correspondence between rectified views.

Provides two interchangeable strategies behind a ``match(left, right)`` call:

- DenseMatcher: bounded scanline block matching, one disparity per left pixel
  (NaN where no reliable match exists)
- SparseMatcher: AKAZE keypoints with binary descriptors, Hamming nearest
  neighbours, then the epipolar (vertical offset) gate
"""

import cv2
import numpy as np

from .config import DenseMatcherConfig, SparseMatcherConfig
from .data_structures import ImagePair, SparseMatch, SparseMatchResult
from .logger import get_logger

logger = get_logger(__name__)

_PRE_FILTERS = {
    "xsobel": cv2.STEREO_BM_PREFILTER_XSOBEL,
    "normalized_response": cv2.STEREO_BM_PREFILTER_NORMALIZED_RESPONSE,
}


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.dtype != np.uint8:
        image = cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    return image


# -------------------------
# Dense
# -------------------------


class DenseMatcher:
    """
    Dense disparity by block matching along rectified scanlines.

    For each left pixel the matcher scores blocks over the configured
    disparity window on the same right scanline. Pixels whose best score is
    not better than the runner-up by the uniqueness ratio, pixels in regions
    below the texture threshold, and small speckle regions are reported as
    "no match" (NaN).
    """

    def __init__(self, config: DenseMatcherConfig | None = None):
        self.config = config or DenseMatcherConfig()
        self._matcher = self._create_matcher()

    def _create_matcher(self):
        cfg = self.config
        if cfg.method == "sgbm":
            # P1/P2 smoothness penalties scale with the block area
            channels = 1
            return cv2.StereoSGBM_create(
                minDisparity=cfg.min_disparity,
                numDisparities=cfg.num_disparities,
                blockSize=cfg.block_size,
                P1=8 * channels * cfg.block_size**2,
                P2=32 * channels * cfg.block_size**2,
                disp12MaxDiff=cfg.disp12_max_diff,
                preFilterCap=cfg.pre_filter_cap,
                uniquenessRatio=cfg.uniqueness_ratio,
                speckleWindowSize=cfg.speckle_window_size,
                speckleRange=cfg.speckle_range,
                mode=cv2.STEREO_SGBM_MODE_SGBM,
            )

        matcher = cv2.StereoBM_create(numDisparities=cfg.num_disparities, blockSize=cfg.block_size)
        matcher.setMinDisparity(cfg.min_disparity)
        matcher.setPreFilterType(_PRE_FILTERS[cfg.pre_filter_type])
        matcher.setPreFilterSize(cfg.pre_filter_size)
        matcher.setPreFilterCap(cfg.pre_filter_cap)
        matcher.setTextureThreshold(cfg.texture_threshold)
        matcher.setUniquenessRatio(cfg.uniqueness_ratio)
        matcher.setSpeckleWindowSize(cfg.speckle_window_size)
        matcher.setSpeckleRange(cfg.speckle_range)
        matcher.setDisp12MaxDiff(cfg.disp12_max_diff)
        return matcher

    def compute(self, left: np.ndarray, right: np.ndarray) -> np.ndarray:
        """
        Compute disparity map from a rectified pair.

        Args:
            left: Left rectified image (BGR or grayscale)
            right: Right rectified image, same size

        Returns:
            float32 (H, W) disparity in pixels; NaN marks "no match". Every
            finite value lies within [min_disparity, min_disparity + num_disparities].
        """
        if left.shape[:2] != right.shape[:2]:
            raise ValueError(f"Rectified halves differ in size: {left.shape[:2]} vs {right.shape[:2]}")
        raw = self._matcher.compute(_to_gray(left), _to_gray(right))
        # OpenCV returns fixed-point disparities with 4 fractional bits
        disparity = raw.astype(np.float32) / 16.0

        lo = float(self.config.min_disparity)
        hi = float(self.config.max_disparity)
        invalid = (disparity < lo) | (disparity > hi)
        # StereoBM flags rejected pixels with min_disparity - 1
        invalid |= raw <= (self.config.min_disparity - 1) * 16
        disparity[invalid] = np.nan

        valid = int(np.count_nonzero(~invalid))
        logger.debug(f"Dense matching: {valid}/{disparity.size} pixels with a disparity")
        return disparity

    def match(self, left: np.ndarray, right: np.ndarray) -> np.ndarray:
        return self.compute(left, right)


# -------------------------
# Sparse
# -------------------------


def filter_by_vertical_offset(
    matches: list[SparseMatch], tolerance: float
) -> tuple[list[SparseMatch], list[SparseMatch]]:
    """
    Split matches by the rectified epipolar constraint.

    True matches lie on the same scanline after correct rectification, so a
    match is kept only when ``|v_left - v_right| < tolerance``.

    Returns:
        Tuple of (kept, discarded), each preserving input order
    """
    kept, discarded = [], []
    for m in matches:
        (kept if m.vertical_offset < tolerance else discarded).append(m)
    return kept, discarded


class SparseMatcher:
    """
    Keypoint correspondences between rectified views.

    Keypoints are detected independently in each image (AKAZE, binary MLDB
    descriptors), each left descriptor is matched to its nearest right
    descriptor by Hamming distance, and matches off the shared scanline are
    discarded.
    """

    def __init__(self, config: SparseMatcherConfig | None = None):
        self.config = config or SparseMatcherConfig()
        cfg = self.config
        self._detector = cv2.AKAZE_create(
            descriptor_type=cv2.AKAZE_DESCRIPTOR_MLDB,
            descriptor_size=cfg.descriptor_size,
            descriptor_channels=cfg.descriptor_channels,
            threshold=cfg.akaze_threshold,
            nOctaves=cfg.octaves,
            nOctaveLayers=cfg.octave_layers,
        )
        self._matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)

    def match(self, left: np.ndarray, right: np.ndarray) -> SparseMatchResult:
        """
        Match keypoints between a rectified pair.

        Returns:
            SparseMatchResult with kept and discarded matches; empty (not an
            error) when either image yields no keypoints
        """
        kp_left, des_left = self._detector.detectAndCompute(_to_gray(left), None)
        kp_right, des_right = self._detector.detectAndCompute(_to_gray(right), None)
        result = SparseMatchResult(num_keypoints_left=len(kp_left), num_keypoints_right=len(kp_right))

        if des_left is None or des_right is None or len(kp_left) == 0 or len(kp_right) == 0:
            logger.info("Sparse matching found no keypoints in one of the views")
            return result

        raw_matches = self._matcher.match(des_left, des_right)
        matches = [
            SparseMatch(
                left=(float(kp_left[m.queryIdx].pt[0]), float(kp_left[m.queryIdx].pt[1])),
                right=(float(kp_right[m.trainIdx].pt[0]), float(kp_right[m.trainIdx].pt[1])),
                distance=float(m.distance),
            )
            for m in raw_matches
        ]
        result.kept, result.discarded = filter_by_vertical_offset(matches, self.config.vertical_tolerance)
        logger.info(result.summary())
        return result


def rectification_error(pair: ImagePair, config: SparseMatcherConfig | None = None) -> dict[str, float]:
    """
    Vertical misalignment of a rectified pair measured on sparse matches.

    Uses every nearest-descriptor match (before the vertical gate) and reports
    robust statistics of their vertical offsets, so a badly rectified pair
    shows up as a large median offset.

    Returns:
        Dict with 'num_matches', 'median_offset', 'mean_offset', 'inlier_ratio'
    """
    result = SparseMatcher(config).match(pair.left, pair.right)
    offsets = result.vertical_offsets(include_discarded=True)
    if offsets.size == 0:
        return {"num_matches": 0, "median_offset": float("nan"), "mean_offset": float("nan"), "inlier_ratio": 0.0}
    return {
        "num_matches": int(offsets.size),
        "median_offset": float(np.median(offsets)),
        "mean_offset": float(np.mean(offsets)),
        "inlier_ratio": len(result.kept) / offsets.size,
    }
