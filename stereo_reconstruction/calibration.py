"""
Intrinsic and stereo calibration algorithms.

The stereo solve follows two steps: a closed-form per-camera initial guess
from the homographies of all planar views, then one joint nonlinear
least-squares refinement of both camera models and the relative pose over
every view of both cameras.
"""

import math
import time

import cv2
import numpy as np

from .config import StereoCalibrationConfig
from .data_structures import CalibrationResult, CameraIntrinsics, CornerSet, StereoExtrinsics, StereoView
from .exceptions import CalibrationError
from .logger import get_logger

logger = get_logger(__name__)


# -------------------------
# Helper functions
# -------------------------


def _standardize_points(
    obj_list: list[np.ndarray], img_list: list[np.ndarray]
) -> tuple[list[np.ndarray], list[np.ndarray]]:
    """Standardize object and image point arrays to consistent dtypes."""
    o_list = [np.asarray(o, dtype=np.float32).reshape(-1, 3) for o in obj_list]
    i_list = [np.asarray(i, dtype=np.float32).reshape(-1, 1, 2) for i in img_list]
    return o_list, i_list


def _errors_with_model(
    K: np.ndarray,
    dist: np.ndarray,
    obj_list: list[np.ndarray],
    img_list: list[np.ndarray],
) -> np.ndarray:
    """Compute per-board RMS reprojection errors using given camera model."""
    errs = []
    for o, i in zip(obj_list, img_list, strict=True):
        ok, rvec, tvec = cv2.solvePnP(o, i.reshape(-1, 2), K, dist, flags=cv2.SOLVEPNP_ITERATIVE)
        if not ok:
            errs.append(math.inf)
            continue
        proj, _ = cv2.projectPoints(o, rvec, tvec, K, dist)
        e = np.linalg.norm(proj.reshape(-1, 2) - i.reshape(-1, 2), axis=1)
        errs.append(float(np.sqrt(np.mean(e * e))))
    return np.array(errs, dtype=np.float64)


def _pose_vectors(
    K: np.ndarray, dist: np.ndarray, obj_list: list[np.ndarray], img_list: list[np.ndarray]
) -> list[tuple[np.ndarray, np.ndarray]]:
    """Compute pose (rvec, tvec) for each board detection; failed solves are left out."""
    poses = []
    for o, i in zip(obj_list, img_list, strict=True):
        ok, rvec, tvec = cv2.solvePnP(o, i.reshape(-1, 2), K, dist, flags=cv2.SOLVEPNP_ITERATIVE)
        if ok:
            poses.append((rvec.reshape(3), tvec.reshape(3)))
    return poses


def orientation_spread_deg(poses: list[tuple[np.ndarray, np.ndarray]]) -> float:
    """Largest relative rotation angle between any two board poses, in degrees."""
    rotations = [cv2.Rodrigues(rvec.reshape(3, 1))[0] for rvec, _ in poses]
    spread = 0.0
    for a in range(len(rotations)):
        for b in range(a + 1, len(rotations)):
            R_rel = rotations[a].T @ rotations[b]
            val = float(np.clip((np.trace(R_rel) - 1.0) / 2.0, -1.0, 1.0))
            spread = max(spread, math.degrees(math.acos(val)))
    return spread


# -------------------------
# Single camera
# -------------------------


def calibrate_camera(
    object_points: list[np.ndarray],
    corner_sets: list[CornerSet],
    image_size: tuple[int, int],
    config: StereoCalibrationConfig | None = None,
) -> tuple[CameraIntrinsics, float]:
    """
    Calibrate one camera from planar views.

    Args:
        object_points: Board points per view
        corner_sets: Detected corners per view
        image_size: Image dimensions (width, height)
        config: Stop criteria

    Returns:
        Tuple of (intrinsics, rms reprojection error)

    Raises:
        CalibrationError: If no views are given
    """
    config = config or StereoCalibrationConfig()
    if not corner_sets:
        raise CalibrationError("Cannot calibrate camera: no views with a detected pattern")

    obj, img = _standardize_points(object_points, [c.points for c in corner_sets])
    criteria = (cv2.TERM_CRITERIA_MAX_ITER + cv2.TERM_CRITERIA_EPS, config.max_iterations, config.epsilon)
    rms, K, dist, _, _ = cv2.calibrateCamera(obj, img, image_size, None, None, criteria=criteria)
    return CameraIntrinsics(K=K, dist=np.asarray(dist).ravel()[:5]), float(rms)


def estimate_board_pose(
    object_points: np.ndarray, corners: CornerSet, intrinsics: CameraIntrinsics
) -> tuple[np.ndarray, np.ndarray] | None:
    """
    Pose of the board in the camera frame.

    Returns:
        (rvec, tvec) as (3,) arrays, or None if the PnP solve fails
    """
    ok, rvec, tvec = cv2.solvePnP(
        np.asarray(object_points, dtype=np.float32).reshape(-1, 3),
        corners.points,
        np.array(intrinsics.K),
        np.array(intrinsics.dist),
        flags=cv2.SOLVEPNP_ITERATIVE,
    )
    if not ok:
        return None
    return rvec.reshape(3), tvec.reshape(3)


# -------------------------
# Stereo
# -------------------------


class StereoCalibrator:
    """
    Solves joint intrinsics + extrinsics of the rig from detected views.

    Per-view board poses are nuisance parameters of the joint solve; only the
    two camera models and the relative pose are returned.
    """

    def __init__(self, config: StereoCalibrationConfig | None = None):
        self.config = config or StereoCalibrationConfig()

    @property
    def criteria(self) -> tuple[int, int, float]:
        return (cv2.TERM_CRITERIA_MAX_ITER + cv2.TERM_CRITERIA_EPS, self.config.max_iterations, self.config.epsilon)

    def initial_intrinsics(
        self, object_points: list[np.ndarray], corner_sets: list[CornerSet], image_size: tuple[int, int]
    ) -> CameraIntrinsics:
        """Closed-form camera matrix guess from the view homographies, zero distortion."""
        obj, img = _standardize_points(object_points, [c.points for c in corner_sets])
        K0 = cv2.initCameraMatrix2D(obj, img, image_size, 0)
        return CameraIntrinsics(K=K0, dist=np.zeros(5))

    def calibrate(self, views: list[StereoView], image_size: tuple[int, int]) -> CalibrationResult:
        """
        Perform stereo calibration.

        Args:
            views: Successfully detected (object points, left, right) triples
            image_size: Per-half image dimensions (width, height)

        Returns:
            Immutable CalibrationResult

        Raises:
            CalibrationError: If there are no views or the solver returns non-finite values
        """
        if not views:
            raise CalibrationError("Stereo calibration needs at least one valid pair; none were detected")

        t_start = time.time()
        objpoints = [v.object_points for v in views]
        left_guess = self.initial_intrinsics(objpoints, [v.left for v in views], image_size)
        right_guess = self.initial_intrinsics(objpoints, [v.right for v in views], image_size)
        logger.debug(f"Initial focal lengths: L={left_guess.focal_length:.2f} R={right_guess.focal_length:.2f}")

        obj, img_left = _standardize_points(objpoints, [v.left.points for v in views])
        _, img_right = _standardize_points(objpoints, [v.right.points for v in views])

        logger.info(f"Stereo calibration with {len(views)} board pairs...")
        rms, K1, d1, K2, d2, R, T, E, F = cv2.stereoCalibrate(
            obj,
            img_left,
            img_right,
            np.array(left_guess.K),
            np.array(left_guess.dist).reshape(1, 5),
            np.array(right_guess.K),
            np.array(right_guess.dist).reshape(1, 5),
            image_size,
            criteria=self.criteria,
            flags=cv2.CALIB_USE_INTRINSIC_GUESS,
        )

        if not all(np.all(np.isfinite(m)) for m in (K1, d1, K2, d2, R, T)) or not math.isfinite(rms):
            raise CalibrationError("Stereo calibration diverged: solver returned non-finite parameters")

        result = CalibrationResult(
            left=CameraIntrinsics(K=K1, dist=np.asarray(d1).ravel()[:5]),
            right=CameraIntrinsics(K=K2, dist=np.asarray(d2).ravel()[:5]),
            extrinsics=StereoExtrinsics(R=R, T=T, E=E, F=F),
            image_size=image_size,
            rms=float(rms),
        )

        logger.info(f"Stereo RMS: {rms:.4f} px, baseline: {result.baseline:.4f}")
        logger.debug(f"Stereo calibration took {time.time() - t_start:.2f} s")
        self.check_view_diversity(views, result)
        return result

    def check_view_diversity(self, views: list[StereoView], result: CalibrationResult) -> float:
        """
        Warn when the board orientations barely differ across views.

        Near-degenerate view sets still calibrate, but with poorly constrained
        focal length and distortion.

        Returns:
            Orientation spread in degrees as seen by the left camera
        """
        obj, img = _standardize_points([v.object_points for v in views], [v.left.points for v in views])
        poses = _pose_vectors(np.array(result.left.K), np.array(result.left.dist), obj, img)
        spread = orientation_spread_deg(poses)
        if len(views) < 3 or spread < self.config.min_orientation_spread_deg:
            logger.warning(
                f"Calibration views are nearly degenerate ({len(views)} views, orientation spread {spread:.1f} deg); "
                "capture the board at more varied angles for a reliable result"
            )
        return spread


def compute_stereo_errors(views: list[StereoView], result: CalibrationResult) -> tuple[np.ndarray, np.ndarray]:
    """
    Per-view RMS reprojection errors of both cameras under a calibration.

    Returns:
        Tuple of (left_errors, right_errors), one entry per view
    """
    objpoints = [v.object_points for v in views]
    obj, img_left = _standardize_points(objpoints, [v.left.points for v in views])
    _, img_right = _standardize_points(objpoints, [v.right.points for v in views])
    errs_left = _errors_with_model(np.array(result.left.K), np.array(result.left.dist), obj, img_left)
    errs_right = _errors_with_model(np.array(result.right.K), np.array(result.right.dist), obj, img_right)
    return errs_left, errs_right
