"""Shared fixtures: log capture, synthetic boards and a known stereo rig."""

import cv2
import matplotlib
import numpy as np
import pytest
from loguru import logger

matplotlib.use("Agg")

from stereo_reconstruction.data_structures import (  # noqa: E402
    CalibrationResult,
    CameraIntrinsics,
    CornerSet,
    Pattern,
    StereoExtrinsics,
    StereoView,
)

PATTERN = Pattern(columns=7, rows=5, square_size=0.02875)
K_TRUE = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]])
IMAGE_SIZE = (640, 480)
BASELINE = 0.1

# Board orientations (Rodrigues vectors) used for synthetic calibration views
RVECS = [
    (0.3, 0.0, 0.0),
    (-0.3, 0.0, 0.0),
    (0.0, 0.3, 0.0),
    (0.0, -0.3, 0.0),
    (0.2, 0.2, 0.1),
    (-0.2, 0.25, -0.1),
    (0.1, -0.3, 0.2),
    (0.0, 0.0, 0.3),
]


@pytest.fixture
def log_records():
    """Collect loguru records emitted during a test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


def render_board(square: int = 40, margin: int = 60, cols: int = 7, rows: int = 5) -> tuple[np.ndarray, np.ndarray]:
    """
    Draw an axis-aligned checkerboard with ``cols`` x ``rows`` interior corners.

    Returns:
        (image, corners) where corners are the true interior corner positions, row-major
    """
    w = (cols + 1) * square + 2 * margin
    h = (rows + 1) * square + 2 * margin
    img = np.full((h, w), 255, dtype=np.uint8)
    for r in range(rows + 1):
        for c in range(cols + 1):
            if (r + c) % 2 == 0:
                y0, x0 = margin + r * square, margin + c * square
                img[y0 : y0 + square, x0 : x0 + square] = 0
    img = cv2.GaussianBlur(img, (3, 3), 0)
    xs = margin + square * (np.arange(cols) + 1)
    ys = margin + square * (np.arange(rows) + 1)
    corners = np.array([(x, y) for y in ys for x in xs], dtype=np.float64) - 0.5
    return img, corners


def random_texture(height: int = 240, width: int = 320, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    img = rng.integers(0, 256, size=(height, width), dtype=np.uint8)
    return cv2.GaussianBlur(img, (3, 3), 0)


def shapes_image(height: int = 300, width: int = 400, seed: int = 1) -> np.ndarray:
    """Grayscale canvas with random filled rectangles and circles."""
    rng = np.random.default_rng(seed)
    img = np.full((height, width), 128, dtype=np.uint8)
    for _ in range(60):
        color = int(rng.integers(0, 256))
        x, y = int(rng.integers(0, width)), int(rng.integers(0, height))
        if rng.random() < 0.5:
            cv2.rectangle(img, (x, y), (x + int(rng.integers(8, 40)), y + int(rng.integers(8, 40))), color, -1)
        else:
            cv2.circle(img, (x, y), int(rng.integers(5, 25)), color, -1)
    return img


def project_views(n_views: int | None = None) -> list[StereoView]:
    """Corners of the board seen by an ideal rig (right camera 0.1 to the right of the left one)."""
    objp = PATTERN.object_points()
    board_center = objp.mean(axis=0)
    T = np.array([-BASELINE, 0.0, 0.0])
    views = []
    for i, rvec in enumerate(RVECS[:n_views]):
        rvec = np.array(rvec, dtype=np.float64)
        R, _ = cv2.Rodrigues(rvec)
        # Keep the board center on the optical axis at 0.6 m
        tvec = np.array([0.0, 0.0, 0.6]) - R @ board_center
        left, _ = cv2.projectPoints(objp, rvec, tvec, K_TRUE, np.zeros(5))
        right, _ = cv2.projectPoints(objp, rvec, tvec + T, K_TRUE, np.zeros(5))
        views.append(
            StereoView(
                object_points=objp,
                left=CornerSet(left.reshape(-1, 2), PATTERN.size),
                right=CornerSet(right.reshape(-1, 2), PATTERN.size),
                source=f"view_{i}",
            )
        )
    return views


def ideal_calibration(image_size: tuple[int, int] | None = IMAGE_SIZE) -> CalibrationResult:
    cam = CameraIntrinsics(K=K_TRUE, dist=np.zeros(5))
    return CalibrationResult(
        left=cam,
        right=cam,
        extrinsics=StereoExtrinsics(R=np.eye(3), T=np.array([-BASELINE, 0.0, 0.0])),
        image_size=image_size,
        rms=0.1,
    )


@pytest.fixture
def calibration() -> CalibrationResult:
    return ideal_calibration()


@pytest.fixture
def stereo_views() -> list[StereoView]:
    return project_views()
