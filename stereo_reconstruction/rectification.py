"""
Epipolar rectification of stereo pairs.

Derives per-camera undistort+rectify maps from a calibration so that
conjugate epipolar lines become the same scanline in both images, and
applies them to image pairs.
"""

import cv2
import numpy as np

from .config import RectificationConfig
from .data_structures import CalibrationResult, ImagePair, RectificationMap, RectifiedGeometry
from .exceptions import ShapeMismatchError
from .logger import get_logger

logger = get_logger(__name__)


class RectificationEngine:
    """
    Rectification maps for one (calibration, image size).

    The maps are computed once at construction; a new engine is needed for a
    different image size.

    Args:
        calibration: Stereo calibration of the rig
        image_size: Per-half image size (width, height) of the pairs to rectify
        config: Zero-disparity convention and free scaling parameter

    Raises:
        ShapeMismatchError: If the calibration records a different image size
    """

    def __init__(
        self,
        calibration: CalibrationResult,
        image_size: tuple[int, int],
        config: RectificationConfig | None = None,
    ):
        self.calibration = calibration
        self.image_size = (int(image_size[0]), int(image_size[1]))
        self.config = config or RectificationConfig()

        if calibration.image_size is not None and tuple(calibration.image_size) != self.image_size:
            raise ShapeMismatchError(
                "Calibration was computed for a different image size",
                expected=calibration.image_size,
                actual=self.image_size,
            )

        self.left_map, self.right_map, self.Q = self._compute_maps()

    def _compute_maps(self) -> tuple[RectificationMap, RectificationMap, np.ndarray]:
        cal = self.calibration
        K1, d1 = np.array(cal.left.K), np.array(cal.left.dist)
        K2, d2 = np.array(cal.right.K), np.array(cal.right.dist)
        rect_flags = cv2.CALIB_ZERO_DISPARITY if self.config.zero_disparity else 0

        R1, R2, P1, P2, Q, roi1, roi2 = cv2.stereoRectify(
            K1,
            d1,
            K2,
            d2,
            self.image_size,
            np.array(cal.extrinsics.R),
            np.array(cal.extrinsics.T),
            flags=rect_flags,
            alpha=self.config.alpha,
        )

        map1x, map1y = cv2.initUndistortRectifyMap(K1, d1, R1, P1, self.image_size, cv2.CV_32FC1)
        map2x, map2y = cv2.initUndistortRectifyMap(K2, d2, R2, P2, self.image_size, cv2.CV_32FC1)

        logger.debug(f"Rectification maps for {self.image_size[0]}x{self.image_size[1]}. ROIs: L={roi1}, R={roi2}")
        left = RectificationMap(map1x, map1y, R1, P1, tuple(int(v) for v in roi1), self.image_size)
        right = RectificationMap(map2x, map2y, R2, P2, tuple(int(v) for v in roi2), self.image_size)
        return left, right, Q

    @property
    def geometry(self) -> RectifiedGeometry:
        """Shared rectified focal length and principal point, with the calibration baseline."""
        P1 = self.left_map.P
        P2 = self.right_map.P
        return RectifiedGeometry(
            focal_length=float(P1[0, 0]),
            cx=float(P1[0, 2]),
            cy=float(P1[1, 2]),
            baseline=self.calibration.baseline,
            doffs=float(P1[0, 2] - P2[0, 2]),
            Q=self.Q,
        )

    def check_size(self, pair: ImagePair) -> None:
        """
        Raises:
            ShapeMismatchError: If the pair's halves differ from the size the maps were built for
        """
        if pair.image_size != self.image_size:
            raise ShapeMismatchError(
                "Stereo pair does not match the rectification maps", expected=self.image_size, actual=pair.image_size
            )

    def apply(self, pair: ImagePair) -> ImagePair:
        """Remap both halves with linear interpolation."""
        self.check_size(pair)
        rect_left = cv2.remap(pair.left, self.left_map.map_x, self.left_map.map_y, interpolation=cv2.INTER_LINEAR)
        rect_right = cv2.remap(pair.right, self.right_map.map_x, self.right_map.map_y, interpolation=cv2.INTER_LINEAR)
        return ImagePair(left=rect_left, right=rect_right)


def rectify_pair(
    calibration: CalibrationResult, pair: ImagePair, config: RectificationConfig | None = None
) -> tuple[ImagePair, RectifiedGeometry]:
    """Build maps for the pair's size and rectify it in one call."""
    engine = RectificationEngine(calibration, pair.image_size, config)
    return engine.apply(pair), engine.geometry


def crop_to_roi(image: np.ndarray, roi: tuple[int, int, int, int]) -> np.ndarray:
    """Crop a rectified image to its valid region; an all-zero ROI leaves it untouched."""
    x, y, w, h = roi
    if w <= 0 or h <= 0:
        return image
    return image[y : y + h, x : x + w]
