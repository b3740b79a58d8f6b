"""Tests for calibration persistence in every supported format."""

import numpy as np
import pytest
import yaml

from stereo_reconstruction.io import load_calibration, save_calibration
from stereo_reconstruction.data_structures import CalibrationResult, CameraIntrinsics, StereoExtrinsics
from stereo_reconstruction.exceptions import LoadError


@pytest.fixture
def full_calibration():
    left = CameraIntrinsics(
        K=[[812.123456789, 0.0, 321.5], [0.0, 810.987654321, 239.25], [0.0, 0.0, 1.0]],
        dist=[-0.12, 0.034, 0.0012, -0.0007, 0.0101],
    )
    right = CameraIntrinsics(
        K=[[805.5, 0.0, 318.75], [0.0, 806.25, 241.125], [0.0, 0.0, 1.0]],
        dist=[-0.11, 0.029, -0.0003, 0.0009, 0.0087],
    )
    R = np.array([[0.9998, -0.0175, 0.0052], [0.0175, 0.9998, 0.0011], [-0.0052, -0.0010, 1.0]])
    T = np.array([-0.1203, 0.0011, -0.0024])
    E = np.arange(9, dtype=np.float64).reshape(3, 3) * 0.01
    F = np.arange(9, dtype=np.float64).reshape(3, 3) * 1e-6
    return CalibrationResult(left, right, StereoExtrinsics(R=R, T=T, E=E, F=F), image_size=(640, 480), rms=0.31)


def _assert_same(a: CalibrationResult, b: CalibrationResult):
    for x, y in (
        (a.left.K, b.left.K),
        (a.left.dist, b.left.dist),
        (a.right.K, b.right.K),
        (a.right.dist, b.right.dist),
        (a.extrinsics.R, b.extrinsics.R),
        (a.extrinsics.T, b.extrinsics.T),
        (a.extrinsics.E, b.extrinsics.E),
        (a.extrinsics.F, b.extrinsics.F),
    ):
        np.testing.assert_allclose(x, y, rtol=0, atol=1e-9)
    assert b.image_size == a.image_size
    assert b.rms == pytest.approx(a.rms)


@pytest.mark.parametrize(
    "filename,fmt",
    [
        ("calib.yaml", None),
        ("calib.json", None),
        ("calib.npz", None),
        ("calib.xml", None),
        ("calib_cv.yaml", "opencv"),
    ],
)
def test_round_trip(tmp_path, full_calibration, filename, fmt):
    """Saved matrices load back unchanged."""
    path = save_calibration(full_calibration, tmp_path / filename, fmt=fmt)
    loaded = load_calibration(path)
    _assert_same(full_calibration, loaded)


def test_yaml_uses_flat_keys(tmp_path, full_calibration):
    path = save_calibration(full_calibration, tmp_path / "calib.yaml")
    data = yaml.safe_load(path.read_text())
    for key in ("LEFT_K", "LEFT_D", "RIGHT_K", "RIGHT_D", "R", "T", "E", "F"):
        assert key in data


def test_missing_required_key(tmp_path, full_calibration):
    path = save_calibration(full_calibration, tmp_path / "calib.yaml")
    data = yaml.safe_load(path.read_text())
    del data["T"]
    path.write_text(yaml.safe_dump(data))

    with pytest.raises(LoadError) as exc_info:
        load_calibration(path)
    assert exc_info.value.key == "T"
    assert "'T'" in str(exc_info.value)


def test_missing_file(tmp_path):
    with pytest.raises(LoadError):
        load_calibration(tmp_path / "absent.yaml")


def test_malformed_matrix(tmp_path, full_calibration):
    path = save_calibration(full_calibration, tmp_path / "calib.json")
    path.write_text(path.read_text().replace('"R": [', '"R": [[1.0], ', 1))
    with pytest.raises(LoadError):
        load_calibration(path)


def test_optional_keys_may_be_absent(tmp_path):
    cam = CameraIntrinsics(K=np.eye(3), dist=np.zeros(5))
    result = CalibrationResult(cam, cam, StereoExtrinsics(R=np.eye(3), T=[-0.1, 0.0, 0.0]))
    loaded = load_calibration(save_calibration(result, tmp_path / "calib.yaml"))
    assert loaded.extrinsics.E is None
    assert loaded.image_size is None
    assert loaded.rms is None


def test_unknown_extension(tmp_path, full_calibration):
    with pytest.raises(ValueError):
        save_calibration(full_calibration, tmp_path / "calib.txt")


def test_corrupt_npz(tmp_path):
    path = tmp_path / "calib.npz"
    path.write_bytes(b"PK\x03\x04garbage")
    with pytest.raises(LoadError) as exc_info:
        load_calibration(path)
    assert exc_info.value.path == str(path)


@pytest.mark.parametrize(
    "key,value",
    [
        ("IMAGE_SIZE", [640]),
        ("IMAGE_SIZE", [640, -480]),
        ("IMAGE_SIZE", "wide"),
        ("RMS", "low"),
        ("RMS", [0.1, 0.2]),
    ],
)
def test_malformed_optional_values(tmp_path, full_calibration, key, value):
    """Broken optional entries fail with a LoadError naming the key."""
    path = save_calibration(full_calibration, tmp_path / "calib.yaml")
    data = yaml.safe_load(path.read_text())
    data[key] = value
    path.write_text(yaml.safe_dump(data))

    with pytest.raises(LoadError) as exc_info:
        load_calibration(path)
    assert exc_info.value.key == key
