"""Tests for checkerboard detection on synthetic boards."""

from pathlib import Path

import cv2
import numpy as np
import pytest
from conftest import PATTERN, render_board

from stereo_reconstruction.config import DetectionConfig
from stereo_reconstruction.data_structures import ImagePair
from stereo_reconstruction.detection import PatternDetector, detect_stereo_views, list_images
from stereo_reconstruction.exceptions import DetectionMiss, InputError


@pytest.fixture
def detector():
    return PatternDetector(PATTERN, DetectionConfig())


def _sorted_grid(points: np.ndarray) -> np.ndarray:
    order = np.lexsort((np.round(points[:, 0]), np.round(points[:, 1])))
    return points[order]


def test_detects_full_grid(detector):
    """All 35 corners are found, in bounds and at sub-pixel accuracy."""
    img, expected = render_board()
    corners = detector.detect(img)
    assert corners is not None
    assert len(corners) == PATTERN.num_corners

    h, w = img.shape
    pts = corners.points
    assert np.all((pts[:, 0] >= 0) & (pts[:, 0] <= w - 1))
    assert np.all((pts[:, 1] >= 0) & (pts[:, 1] <= h - 1))
    np.testing.assert_allclose(_sorted_grid(pts), _sorted_grid(expected), atol=0.5)
    # First corner is the grid end nearest the image origin
    assert pts[0].sum() <= pts[-1].sum()


def test_detection_is_deterministic(detector):
    img, _ = render_board()
    first = detector.detect(img)
    second = detector.detect(img)
    np.testing.assert_array_equal(first.points, second.points)


def test_blank_image_has_no_pattern(detector):
    assert detector.detect(np.full((300, 400), 255, dtype=np.uint8)) is None


def test_detect_pair_reports_missing_side(detector):
    img, _ = render_board()
    blank = np.full_like(img, 255)
    view = detector.detect_pair(ImagePair(img, img.copy()), source="both")
    assert view.object_points.shape == (35, 3)

    with pytest.raises(DetectionMiss) as exc_info:
        detector.detect_pair(ImagePair(img, blank), source="capture.png")
    assert exc_info.value.side == "right"
    assert exc_info.value.path == "capture.png"


def test_batch_skips_missing_boards(tmp_path, log_records):
    """A capture without the board is logged and skipped; the batch continues."""
    img, _ = render_board()
    good = cv2.hconcat([img, img])
    bad = cv2.hconcat([img, np.full_like(img, 255)])
    cv2.imwrite(str(tmp_path / "a_good.png"), good)
    cv2.imwrite(str(tmp_path / "b_bad.png"), bad)
    cv2.imwrite(str(tmp_path / "c_good.png"), good)

    views, image_size = detect_stereo_views(list_images(tmp_path), PATTERN, DetectionConfig(), progress=False)
    assert len(views) == 2
    assert image_size == (img.shape[1], img.shape[0])
    assert [Path(v.source).name for v in views] == ["a_good.png", "c_good.png"]
    warnings = [r for r in log_records if r["level"].name == "WARNING"]
    assert any("b_bad.png" in r["message"] for r in warnings)


def test_batch_uses_cache(tmp_path):
    img, _ = render_board()
    images = tmp_path / "images"
    images.mkdir()
    cv2.imwrite(str(images / "pair.png"), cv2.hconcat([img, img]))
    config = DetectionConfig(cache_dir=str(tmp_path / "cache"))

    views, _ = detect_stereo_views(list_images(images), PATTERN, config, progress=False)
    assert len(list((tmp_path / "cache").glob("detection_*.pkl"))) == 1
    cached, _ = detect_stereo_views(list_images(images), PATTERN, config, progress=False)
    np.testing.assert_array_equal(views[0].left.points, cached[0].left.points)


def test_list_images_missing_directory(tmp_path):
    with pytest.raises(InputError):
        list_images(tmp_path / "missing")
