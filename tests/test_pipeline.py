"""End-to-end tests of the calibration and reconstruction entry points."""

import cv2
import numpy as np
import pytest
from conftest import IMAGE_SIZE, random_texture, render_board

from stereo_reconstruction.config import PipelineConfig
from stereo_reconstruction.data_structures import ImagePair
from stereo_reconstruction.exceptions import CalibrationError, InputError, ShapeMismatchError
from stereo_reconstruction.io import save_calibration
from stereo_reconstruction.pipeline import (
    calibrate_from_directory,
    calibrate_views,
    detect_calibration_views,
    load_stereo_image,
    reconstruct,
    reconstruct_to_file,
)
from stereo_reconstruction.pointcloud import read_point_cloud

SHIFT = 24


@pytest.fixture
def shifted_pair():
    left = random_texture(IMAGE_SIZE[1], IMAGE_SIZE[0], seed=5)
    return ImagePair(left, np.roll(left, -SHIFT, axis=1))


def test_calibration_without_boards_fails(tmp_path, log_records):
    """Zero detected pairs is fatal; each miss is still logged first."""
    blank = np.full((200, 600), 255, dtype=np.uint8)
    for i in range(3):
        cv2.imwrite(str(tmp_path / f"blank_{i}.png"), blank)

    with pytest.raises(CalibrationError):
        calibrate_from_directory(tmp_path, PipelineConfig(), progress=False)
    warnings = [r for r in log_records if r["level"].name == "WARNING"]
    assert len(warnings) == 3


def test_calibration_empty_directory(tmp_path):
    with pytest.raises(InputError):
        calibrate_from_directory(tmp_path, progress=False)


def test_load_stereo_image(tmp_path):
    img, _ = render_board()
    path = tmp_path / "pair.png"
    cv2.imwrite(str(path), cv2.hconcat([img, img]))
    pair = load_stereo_image(path)
    assert pair.image_size == (img.shape[1], img.shape[0])

    with pytest.raises(InputError):
        load_stereo_image(tmp_path / "missing.png")


def test_load_stereo_image_odd_width(tmp_path):
    path = tmp_path / "odd.png"
    cv2.imwrite(str(path), np.zeros((10, 21), dtype=np.uint8))
    with pytest.raises(InputError):
        load_stereo_image(path)


def test_dense_reconstruction(shifted_pair, calibration):
    output = reconstruct(shifted_pair, calibration, PipelineConfig(), method="dense")
    assert output.disparity is not None
    assert output.sparse is None
    assert output.points.ndim == 2 and output.points.shape[1] == 3
    assert len(output.points) > 0
    assert np.all(output.points[:, 2] > 0)
    # Z = f * B / d; the shift survives rectification of an ideal rig
    assert np.median(output.points[:, 2]) == pytest.approx(
        output.geometry.focal_length * output.geometry.baseline / SHIFT, rel=0.1
    )


def test_sparse_reconstruction(calibration):
    from conftest import shapes_image

    left = shapes_image(IMAGE_SIZE[1], IMAGE_SIZE[0])
    pair = ImagePair(left, np.roll(left, -SHIFT, axis=1))
    output = reconstruct(pair, calibration, PipelineConfig(), method="sparse")
    assert output.sparse is not None
    assert output.disparity is None
    assert len(output.points) <= len(output.sparse.kept)
    assert np.all(output.points[:, 2] > 0)


def test_reconstruction_size_mismatch(calibration):
    small = random_texture(240, 320)
    with pytest.raises(ShapeMismatchError):
        reconstruct(ImagePair(small, small.copy()), calibration)


def test_unknown_method(shifted_pair, calibration):
    with pytest.raises(ValueError):
        reconstruct(shifted_pair, calibration, method="stereo")


def test_reconstruct_to_file(tmp_path, shifted_pair, calibration):
    image_path = tmp_path / "capture.png"
    cv2.imwrite(str(image_path), cv2.hconcat([shifted_pair.left, shifted_pair.right]))
    calib_path = save_calibration(calibration, tmp_path / "calib.yaml")
    config = PipelineConfig.from_dict({"output": {"format": "obj"}})

    output = reconstruct_to_file(image_path, calib_path, tmp_path / "cloud.obj", config)
    first_line = (tmp_path / "cloud.obj").read_text().splitlines()[0]
    assert first_line.startswith("v ")
    np.testing.assert_allclose(read_point_cloud(tmp_path / "cloud.obj"), output.points)


def test_detected_views_are_returned(tmp_path):
    """Detection output is handed back so it can be reused without a second pass."""
    img, _ = render_board()
    cv2.imwrite(str(tmp_path / "pair.png"), cv2.hconcat([img, img]))
    views, image_size = detect_calibration_views(tmp_path, PipelineConfig(), progress=False)
    assert len(views) == 1
    assert image_size == (img.shape[1], img.shape[0])


def test_calibrate_views(stereo_views):
    result = calibrate_views(stereo_views, IMAGE_SIZE, PipelineConfig())
    assert result.baseline == pytest.approx(0.1, abs=1e-3)
