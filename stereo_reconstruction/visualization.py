"""
Diagnostic plots for calibration and reconstruction runs.

Every function supports display and file saving modes ('show', 'save', 'both').
"""

from pathlib import Path

import cv2
import matplotlib.patches as patches
import matplotlib.pyplot as plt
import numpy as np

from .data_structures import ImagePair, SparseMatchResult, StereoView
from .logger import get_logger

logger = get_logger(__name__)


def _handle_figure_output(fig: plt.Figure, output_path: Path | str | None, mode: str) -> None:
    """Handle figure display or saving based on mode."""
    if mode not in ("show", "save", "both"):
        plt.close(fig)
        raise ValueError(f"mode must be 'show', 'save' or 'both', got {mode!r}")
    if mode in ("save", "both") and output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        logger.debug(f"Saved figure to {output_path}")
    if mode in ("show", "both"):
        plt.show()
    else:
        plt.close(fig)


def _to_rgb(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def plot_rectification_preview(
    rectified: ImagePair,
    roi_left: tuple[int, int, int, int] | None = None,
    roi_right: tuple[int, int, int, int] | None = None,
    n_guides: int = 10,
    output_path: Path | str | None = None,
    mode: str = "save",
    figsize: tuple[float, float] = (16, 7),
) -> None:
    """
    Visualize a rectified stereo pair with horizontal epipolar guides.

    Corresponding features should sit on the same guide line in both halves.

    Args:
        rectified: Rectified pair
        roi_left, roi_right: Valid ROI tuples (x, y, w, h)
        n_guides: Number of horizontal guide lines
        output_path: Path to save figure
        mode: 'show', 'save', or 'both'
        figsize: Figure size
    """
    h = rectified.left.shape[0]
    ys = np.linspace(0, h - 1, num=max(2, n_guides), dtype=int)

    fig, ax = plt.subplots(1, 2, figsize=figsize)
    for axis, img, title, roi in (
        (ax[0], rectified.left, "Rectified Left", roi_left),
        (ax[1], rectified.right, "Rectified Right", roi_right),
    ):
        axis.imshow(_to_rgb(img))
        axis.set_title(title)
        axis.axis("off")
        for y in ys:
            axis.axhline(y=y, color="lime", linewidth=0.5, alpha=0.5)
        if roi is not None:
            x, y, w_roi, h_roi = roi
            axis.add_patch(patches.Rectangle((x, y), w_roi, h_roi, linewidth=2, edgecolor="red", facecolor="none"))

    plt.tight_layout()
    _handle_figure_output(fig, output_path, mode)


def plot_disparity(
    disparity: np.ndarray,
    max_disparity: float | None = None,
    output_path: Path | str | None = None,
    mode: str = "save",
    figsize: tuple[float, float] = (10, 6),
) -> None:
    """
    Show a dense disparity map; pixels without a match are left blank.

    Args:
        disparity: (H, W) disparity, NaN = no match
        max_disparity: Upper bound of the colour scale (defaults to the data max)
        output_path: Path to save figure
        mode: 'show', 'save', or 'both'
        figsize: Figure size
    """
    valid = np.isfinite(disparity)
    vmax = max_disparity if max_disparity is not None else (float(np.nanmax(disparity)) if valid.any() else 1.0)

    fig, ax = plt.subplots(figsize=figsize)
    im = ax.imshow(np.ma.masked_invalid(disparity), cmap="jet", vmin=0, vmax=vmax)
    ax.set_title(f"Disparity ({100.0 * valid.mean():.1f}% of pixels matched)")
    ax.axis("off")
    plt.colorbar(im, ax=ax, label="Disparity (px)")
    plt.tight_layout()
    _handle_figure_output(fig, output_path, mode)


def plot_sparse_matches(
    rectified: ImagePair,
    result: SparseMatchResult,
    show_discarded: bool = True,
    output_path: Path | str | None = None,
    mode: str = "save",
    figsize: tuple[float, float] = (16, 7),
) -> None:
    """
    Draw sparse correspondences across the concatenated rectified pair.

    Kept matches are drawn in green, matches rejected by the vertical
    filter in red.
    """
    left = _to_rgb(rectified.left)
    right = _to_rgb(rectified.right)
    offset = left.shape[1]
    canvas = np.hstack([left, right])

    fig, ax = plt.subplots(figsize=figsize)
    ax.imshow(canvas)
    groups = [(result.kept, "lime")]
    if show_discarded:
        groups.append((result.discarded, "red"))
    for matches, color in groups:
        for m in matches:
            ax.plot([m.left[0], m.right[0] + offset], [m.left[1], m.right[1]], color=color, linewidth=0.5, alpha=0.6)
    ax.set_title(f"Sparse matches: {len(result.kept)} kept, {len(result.discarded)} discarded")
    ax.axis("off")
    plt.tight_layout()
    _handle_figure_output(fig, output_path, mode)


def plot_corner_coverage(
    views: list[StereoView],
    image_size: tuple[int, int],
    output_path: Path | str | None = None,
    mode: str = "save",
    figsize: tuple[int, int] = (8, 6),
) -> None:
    """
    Scatter all detected corners from both cameras in one overlay plot.

    Left points are drawn in blue, right points in red. Poor coverage of the
    image corners is the usual cause of unstable distortion estimates.
    """
    if not views:
        logger.warning("No views provided for corner coverage plot")
        return

    w, h = image_size
    pts_left = np.vstack([v.left.points for v in views])
    pts_right = np.vstack([v.right.points for v in views])

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(pts_left[:, 0], pts_left[:, 1], s=6, c="tab:blue", alpha=0.6, label="Left")
    ax.scatter(pts_right[:, 0], pts_right[:, 1], s=6, c="tab:red", alpha=0.6, label="Right")
    ax.set_xlim(0, w)
    ax.set_ylim(h, 0)
    ax.set_aspect("equal")
    ax.set_title(f"Detected corners ({len(views)} views)")
    ax.set_xlabel("X (pixels)")
    ax.set_ylabel("Y (pixels)")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper right")
    plt.tight_layout()
    _handle_figure_output(fig, output_path, mode)

    for name, pts in (("Left", pts_left), ("Right", pts_right)):
        logger.info(
            f"{name} coverage: X {(pts[:, 0].max() - pts[:, 0].min()) / w * 100:.1f}%, "
            f"Y {(pts[:, 1].max() - pts[:, 1].min()) / h * 100:.1f}%"
        )
