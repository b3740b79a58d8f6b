"""Point cloud export: one point per line, whitespace-separated coordinates."""

from collections.abc import Iterable
from pathlib import Path

import numpy as np

from .data_structures import Point3D
from .exceptions import PointCloudWriteError
from .logger import get_logger

logger = get_logger(__name__)


def write_point_cloud(
    points: np.ndarray | Iterable[Point3D],
    output_path: Path | str,
    fmt: str = "xyz",
) -> int:
    """
    Write 3D points to a text file.

    Args:
        points: (N, 3) array or iterable of Point3D, written in order
        output_path: Destination file
        fmt: 'xyz' for "X Y Z" lines, 'obj' for OBJ vertex lines "v X Y Z"

    Returns:
        Number of points written

    Raises:
        PointCloudWriteError: If the destination cannot be opened or written
        ValueError: If the format is unknown
    """
    if fmt not in ("xyz", "obj"):
        raise ValueError(f"Unsupported point cloud format: {fmt}. Use 'xyz' or 'obj'.")
    prefix = "v " if fmt == "obj" else ""
    output_path = Path(output_path)

    if not isinstance(points, np.ndarray):
        points = np.array([tuple(p) for p in points], dtype=np.float64)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

    try:
        with output_path.open("w") as f:
            for x, y, z in points.tolist():
                f.write(f"{prefix}{x!r} {y!r} {z!r}\n")
    except OSError as exc:
        raise PointCloudWriteError(f"Could not write point cloud to {output_path}: {exc}") from exc

    logger.info(f"Wrote {len(points)} points to {output_path}")
    return len(points)


def read_point_cloud(input_path: Path | str) -> np.ndarray:
    """Read a file written by ``write_point_cloud`` back into an (N, 3) array."""
    rows = []
    with Path(input_path).open() as f:
        for line in f:
            parts = line.split()
            if not parts:
                continue
            if parts[0] == "v":
                parts = parts[1:]
            rows.append([float(v) for v in parts[:3]])
    return np.array(rows, dtype=np.float64).reshape(-1, 3)
