"""
Data structures for stereo calibration and reconstruction.

Provides type-safe containers for calibration data and results.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import NamedTuple

import numpy as np

from .exceptions import InputError


class CameraIndex(IntEnum):
    """Enum for camera indices in stereo rig."""

    LEFT = 0
    RIGHT = 1


def _readonly(arr, dtype=np.float64, shape: tuple[int, ...] | None = None) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    if shape is not None:
        out = out.reshape(shape)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class Pattern:
    """
    Planar checkerboard with ``columns`` x ``rows`` interior corners.

    Attributes:
        columns: Interior corners per row (W)
        rows: Interior corners per column (H)
        square_size: Metric edge length of one square
    """

    columns: int
    rows: int
    square_size: float

    @property
    def size(self) -> tuple[int, int]:
        """OpenCV pattern size (points per row, points per column)."""
        return (self.columns, self.rows)

    @property
    def num_corners(self) -> int:
        return self.columns * self.rows

    def object_points(self) -> np.ndarray:
        """Canonical (N, 3) float32 board points on z=0, row-major."""
        objp = np.zeros((self.num_corners, 3), np.float32)
        objp[:, :2] = np.mgrid[0 : self.columns, 0 : self.rows].T.reshape(-1, 2) * self.square_size
        return objp


@dataclass(frozen=True)
class CornerSet:
    """
    Sub-pixel checkerboard corners, index-aligned with ``Pattern.object_points()``.

    Attributes:
        points: (W*H, 2) float32 corner coordinates, row-major
        pattern_size: (W, H) the corners were detected for
    """

    points: np.ndarray
    pattern_size: tuple[int, int]

    def __post_init__(self):
        pts = np.asarray(self.points, dtype=np.float32).reshape(-1, 2)
        w, h = self.pattern_size
        if pts.shape[0] != w * h:
            raise ValueError(f"CornerSet expects {w * h} corners for pattern {w}x{h}, got {pts.shape[0]}")
        object.__setattr__(self, "points", pts)

    def __len__(self) -> int:
        return self.points.shape[0]

    def as_opencv(self) -> np.ndarray:
        """Corners shaped (N, 1, 2) as OpenCV calibration routines expect."""
        return self.points.reshape(-1, 1, 2)


@dataclass(frozen=True)
class ImagePair:
    """Left/right halves of one side-by-side capture."""

    left: np.ndarray
    right: np.ndarray

    def __post_init__(self):
        if self.left.shape != self.right.shape:
            raise InputError(f"Stereo halves differ in shape: left {self.left.shape}, right {self.right.shape}")

    @classmethod
    def from_side_by_side(cls, image: np.ndarray) -> "ImagePair":
        """Split a side-by-side capture at the exact horizontal midpoint."""
        if image is None or image.ndim < 2 or image.size == 0:
            raise InputError("Cannot split an empty image")
        width = image.shape[1]
        if width % 2 != 0:
            raise InputError(f"Side-by-side image width {width} is odd; halves would differ in size")
        half = width // 2
        return cls(left=image[:, :half], right=image[:, half:])

    @property
    def image_size(self) -> tuple[int, int]:
        """Per-half size as (width, height)."""
        return (self.left.shape[1], self.left.shape[0])


@dataclass(frozen=True)
class StereoView:
    """One successfully detected calibration capture."""

    object_points: np.ndarray
    left: CornerSet
    right: CornerSet
    source: str | None = None


@dataclass(frozen=True)
class CameraIntrinsics:
    """
    Single camera model.

    Attributes:
        K: Intrinsic camera matrix (3x3)
        dist: Distortion coefficients (k1, k2, p1, p2, k3)
    """

    K: np.ndarray
    dist: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "K", _readonly(self.K, shape=(3, 3)))
        object.__setattr__(self, "dist", _readonly(self.dist).ravel())

    @property
    def focal_length(self) -> float:
        return float(self.K[0, 0])

    @property
    def principal_point(self) -> tuple[float, float]:
        return (float(self.K[0, 2]), float(self.K[1, 2]))


@dataclass(frozen=True)
class StereoExtrinsics:
    """
    Pose of the right camera relative to the left one.

    Attributes:
        R: Rotation matrix from left to right camera (3x3)
        T: Translation vector from left to right camera (3x1)
        E: Essential matrix (3x3), optional
        F: Fundamental matrix (3x3), optional
    """

    R: np.ndarray
    T: np.ndarray
    E: np.ndarray | None = None
    F: np.ndarray | None = None

    def __post_init__(self):
        object.__setattr__(self, "R", _readonly(self.R, shape=(3, 3)))
        object.__setattr__(self, "T", _readonly(self.T, shape=(3, 1)))
        if self.E is not None:
            object.__setattr__(self, "E", _readonly(self.E, shape=(3, 3)))
        if self.F is not None:
            object.__setattr__(self, "F", _readonly(self.F, shape=(3, 3)))

    @property
    def baseline(self) -> float:
        """Distance between camera centers, in calibration units."""
        return float(np.linalg.norm(self.T))


@dataclass(frozen=True)
class CalibrationResult:
    """
    Immutable stereo rig calibration, shared read-only by every later run.

    Attributes:
        left: Left camera intrinsics
        right: Right camera intrinsics
        extrinsics: Right-relative-to-left pose
        image_size: Per-half (width, height) the rig was calibrated at, if known
        rms: RMS reprojection error of the joint optimization, if known
    """

    left: CameraIntrinsics
    right: CameraIntrinsics
    extrinsics: StereoExtrinsics
    image_size: tuple[int, int] | None = None
    rms: float | None = None

    def __post_init__(self):
        if self.image_size is not None:
            object.__setattr__(self, "image_size", (int(self.image_size[0]), int(self.image_size[1])))

    def get_camera(self, idx: CameraIndex) -> CameraIntrinsics:
        """Get camera by index."""
        return self.left if idx == CameraIndex.LEFT else self.right

    @property
    def baseline(self) -> float:
        return self.extrinsics.baseline


@dataclass(frozen=True)
class RectificationMap:
    """
    Per-camera undistort+rectify remap, valid for one (calibration, image size).

    Attributes:
        map_x, map_y: Float remap tables (H x W)
        R: Rectifying rotation (3x3)
        P: Projection matrix in the rectified frame (3x4)
        roi: Valid pixel region after rectification (x, y, w, h)
        image_size: (width, height) the map was built for
    """

    map_x: np.ndarray
    map_y: np.ndarray
    R: np.ndarray
    P: np.ndarray
    roi: tuple[int, int, int, int]
    image_size: tuple[int, int]


@dataclass(frozen=True)
class RectifiedGeometry:
    """
    Shared rectified intrinsics and baseline used for triangulation.

    Attributes:
        focal_length: Rectified focal length in pixels
        cx, cy: Left rectified principal point
        baseline: Distance between camera centers
        doffs: Left minus right rectified principal point x; zero under the
            zero-disparity convention
        Q: Disparity-to-depth matrix from stereoRectify, if known
    """

    focal_length: float
    cx: float
    cy: float
    baseline: float
    doffs: float = 0.0
    Q: np.ndarray | None = None


class Point3D(NamedTuple):
    """Triangulated point in the left rectified camera frame."""

    x: float
    y: float
    z: float


@dataclass(frozen=True)
class SparseMatch:
    """Correspondence between a left and a right rectified keypoint."""

    left: tuple[float, float]
    right: tuple[float, float]
    distance: float

    @property
    def vertical_offset(self) -> float:
        return abs(self.left[1] - self.right[1])

    @property
    def disparity(self) -> float:
        return self.left[0] - self.right[0]


@dataclass
class SparseMatchResult:
    """
    Output of sparse matching.

    Attributes:
        kept: Matches passing the vertical (epipolar) filter
        discarded: Matches rejected by the filter, kept for diagnostics
        num_keypoints_left: Keypoints detected in the left image
        num_keypoints_right: Keypoints detected in the right image
    """

    kept: list[SparseMatch] = field(default_factory=list)
    discarded: list[SparseMatch] = field(default_factory=list)
    num_keypoints_left: int = 0
    num_keypoints_right: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.kept

    def vertical_offsets(self, include_discarded: bool = False) -> np.ndarray:
        matches = self.kept + self.discarded if include_discarded else self.kept
        return np.array([m.vertical_offset for m in matches], dtype=np.float64)

    def summary(self) -> str:
        """Generate human-readable summary."""
        total = len(self.kept) + len(self.discarded)
        return (
            f"Sparse matching: keypoints L={self.num_keypoints_left} R={self.num_keypoints_right}, "
            f"matches kept {len(self.kept)}/{total}"
        )
