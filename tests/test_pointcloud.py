"""Tests for point cloud export."""

import numpy as np
import pytest

from stereo_reconstruction.data_structures import Point3D
from stereo_reconstruction.exceptions import PointCloudWriteError
from stereo_reconstruction.pointcloud import read_point_cloud, write_point_cloud


def test_xyz_lines(tmp_path):
    path = tmp_path / "cloud.xyz"
    count = write_point_cloud(np.array([[0.0, 0.0, 2.0], [0.5, -0.25, 1.0]]), path)
    assert count == 2
    assert path.read_text().splitlines() == ["0.0 0.0 2.0", "0.5 -0.25 1.0"]


def test_obj_vertices(tmp_path):
    path = tmp_path / "cloud.obj"
    write_point_cloud([Point3D(1.0, 2.0, 3.0)], path, fmt="obj")
    assert path.read_text() == "v 1.0 2.0 3.0\n"
    np.testing.assert_array_equal(read_point_cloud(path), [[1.0, 2.0, 3.0]])


def test_order_and_precision_preserved(tmp_path):
    rng = np.random.default_rng(3)
    points = rng.normal(size=(50, 3))
    path = tmp_path / "cloud.xyz"
    write_point_cloud(points, path)
    np.testing.assert_array_equal(read_point_cloud(path), points)


def test_empty_cloud(tmp_path):
    path = tmp_path / "empty.xyz"
    assert write_point_cloud(np.empty((0, 3)), path) == 0
    assert path.read_text() == ""


def test_unwritable_destination(tmp_path):
    with pytest.raises(PointCloudWriteError):
        write_point_cloud(np.zeros((1, 3)), tmp_path / "missing_dir" / "cloud.xyz")


def test_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        write_point_cloud(np.zeros((1, 3)), tmp_path / "cloud.ply", fmt="ply")
