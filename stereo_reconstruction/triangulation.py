"""
Triangulation of rectified correspondences into metric 3D points.

For a rectified pair with shared focal length f, principal point (cx, cy)
and baseline B, a left pixel (u, v) with disparity d maps to

    Z = f * B / (d - doffs),  X = (u - cx) * Z / f,  Y = (v - cy) * Z / f

in the left rectified camera frame, where doffs is the difference of the
rectified principal points (zero when rectified with zero disparity at
infinity).
"""

from collections.abc import Iterable, Iterator

import numpy as np

from .config import TriangulationConfig
from .data_structures import Point3D, RectifiedGeometry, SparseMatch
from .logger import get_logger

logger = get_logger(__name__)


class Triangulator:
    """
    Back-projects disparities using rectified geometry.

    Disparities are first corrected by ``geometry.doffs``; entries whose
    corrected disparity is NaN or at/below ``min_disparity`` are skipped:
    near-zero or negative disparities put the point at or behind infinity.
    """

    def __init__(self, geometry: RectifiedGeometry, config: TriangulationConfig | None = None):
        if geometry.focal_length <= 0 or geometry.baseline <= 0:
            raise ValueError(
                f"Triangulation needs positive focal length and baseline, got f={geometry.focal_length}, "
                f"B={geometry.baseline}"
            )
        self.geometry = geometry
        self.config = config or TriangulationConfig()

    def _back_project(self, u: np.ndarray, v: np.ndarray, d: np.ndarray) -> np.ndarray:
        g = self.geometry
        z = g.focal_length * g.baseline / d
        x = (u - g.cx) * z / g.focal_length
        y = (v - g.cy) * z / g.focal_length
        return np.column_stack([x, y, z]).astype(np.float64)

    def triangulate_disparity(self, disparity: np.ndarray) -> np.ndarray:
        """
        Triangulate a dense disparity map.

        Args:
            disparity: (H, W) disparity of the left rectified image, NaN = no match

        Returns:
            (N, 3) float64 points in row-major scan order of their pixels
        """
        disparity = np.asarray(disparity, dtype=np.float64) - self.geometry.doffs
        with np.errstate(invalid="ignore"):
            valid = np.isfinite(disparity) & (disparity > self.config.min_disparity)
        # np.nonzero walks the mask in C (row-major) order
        vs, us = np.nonzero(valid)
        points = self._back_project(us.astype(np.float64), vs.astype(np.float64), disparity[vs, us])
        logger.debug(f"Triangulated {len(points)}/{disparity.size} pixels")
        return points

    def triangulate_matches(self, matches: Iterable[SparseMatch]) -> np.ndarray:
        """
        Triangulate sparse correspondences using the left keypoint and u_left - u_right.

        Returns:
            (N, 3) float64 points, in match order
        """
        matches = list(matches)
        if not matches:
            return np.empty((0, 3), dtype=np.float64)
        uv = np.array([m.left for m in matches], dtype=np.float64)
        d = np.array([m.disparity for m in matches], dtype=np.float64) - self.geometry.doffs
        valid = np.isfinite(d) & (d > self.config.min_disparity)
        points = self._back_project(uv[valid, 0], uv[valid, 1], d[valid])
        logger.debug(f"Triangulated {len(points)}/{len(matches)} sparse matches")
        return points

    def triangulate_point(self, u: float, v: float, disparity: float) -> Point3D | None:
        """Triangulate one left pixel; None when the disparity is rejected."""
        disparity = disparity - self.geometry.doffs
        if not np.isfinite(disparity) or disparity <= self.config.min_disparity:
            return None
        x, y, z = self._back_project(np.array([u]), np.array([v]), np.array([disparity]))[0]
        return Point3D(float(x), float(y), float(z))


def iter_points(points: np.ndarray) -> Iterator[Point3D]:
    """Yield rows of an (N, 3) array as Point3D, preserving order."""
    for x, y, z in np.asarray(points, dtype=np.float64).reshape(-1, 3):
        yield Point3D(float(x), float(y), float(z))
