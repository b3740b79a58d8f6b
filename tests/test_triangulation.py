"""Tests for disparity triangulation."""

import numpy as np
import pytest

from stereo_reconstruction.config import TriangulationConfig
from stereo_reconstruction.data_structures import Point3D, RectifiedGeometry, SparseMatch
from stereo_reconstruction.triangulation import Triangulator, iter_points


@pytest.fixture
def triangulator():
    geometry = RectifiedGeometry(focal_length=800.0, cx=320.0, cy=240.0, baseline=0.1)
    return Triangulator(geometry, TriangulationConfig(min_disparity=10.0))


def test_principal_point_depth(triangulator):
    """f=800, B=0.1 and d=40 at the principal point gives (0, 0, 2)."""
    point = triangulator.triangulate_point(320.0, 240.0, 40.0)
    assert point == Point3D(0.0, 0.0, pytest.approx(2.0))


def test_off_axis_point(triangulator):
    x, y, z = triangulator.triangulate_point(420.0, 140.0, 80.0)
    assert z == pytest.approx(1.0)
    assert x == pytest.approx(0.125)
    assert y == pytest.approx(-0.125)


def test_small_or_missing_disparity_rejected(triangulator):
    assert triangulator.triangulate_point(0.0, 0.0, 10.0) is None
    assert triangulator.triangulate_point(0.0, 0.0, -5.0) is None
    assert triangulator.triangulate_point(0.0, 0.0, float("nan")) is None


def test_dense_map_row_major_order(triangulator):
    disparity = np.full((3, 4), np.nan, dtype=np.float32)
    disparity[0, 3] = 40.0
    disparity[1, 0] = 20.0
    disparity[2, 2] = 5.0  # below the minimum
    disparity[2, 1] = 80.0
    points = triangulator.triangulate_disparity(disparity)

    assert points.shape == (3, 3)
    np.testing.assert_allclose(points[:, 2], [2.0, 4.0, 1.0])
    assert points[0, 0] == pytest.approx((3 - 320) * 2.0 / 800)


def test_matches_in_order(triangulator):
    matches = [
        SparseMatch((360.0, 240.0), (320.0, 240.0), 3.0),
        SparseMatch((100.0, 100.0), (95.0, 100.0), 1.0),
        SparseMatch((330.0, 250.0), (250.0, 251.0), 2.0),
    ]
    points = triangulator.triangulate_matches(matches)
    np.testing.assert_allclose(points[:, 2], [2.0, 1.0])
    assert triangulator.triangulate_matches([]).shape == (0, 3)


def test_invalid_geometry():
    with pytest.raises(ValueError):
        Triangulator(RectifiedGeometry(focal_length=800.0, cx=0.0, cy=0.0, baseline=0.0))


def test_iter_points():
    pts = list(iter_points(np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])))
    assert pts == [Point3D(1.0, 2.0, 3.0), Point3D(4.0, 5.0, 6.0)]


def test_principal_point_offset_corrected():
    """A non-zero doffs is removed before depth and the minimum disparity gate."""
    geometry = RectifiedGeometry(focal_length=800.0, cx=320.0, cy=240.0, baseline=0.1, doffs=50.0)
    triangulator = Triangulator(geometry, TriangulationConfig(min_disparity=10.0))
    point = triangulator.triangulate_point(320.0, 240.0, 90.0)
    assert point.z == pytest.approx(2.0)
    # 55 - 50 = 5 falls under the gate
    assert triangulator.triangulate_point(320.0, 240.0, 55.0) is None

    disparity = np.array([[90.0, 55.0]], dtype=np.float32)
    np.testing.assert_allclose(triangulator.triangulate_disparity(disparity)[:, 2], [2.0])
