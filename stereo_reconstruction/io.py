"""
I/O utilities for saving and loading calibration results.

Supports YAML, JSON, and NPZ formats with human-readable output, plus OpenCV
FileStorage documents (``%YAML:1.0`` / XML) as written by OpenCV tools.
Every format uses the same flat key set:

    LEFT_K, LEFT_D, RIGHT_K, RIGHT_D, R, T   (required)
    E, F, IMAGE_SIZE, RMS                    (optional)
"""

import json
import zipfile
from pathlib import Path
from typing import Any

import cv2
import numpy as np
import yaml

from .data_structures import CalibrationResult, CameraIntrinsics, StereoExtrinsics
from .exceptions import LoadError
from .logger import get_logger

logger = get_logger(__name__)

REQUIRED_KEYS = ("LEFT_K", "LEFT_D", "RIGHT_K", "RIGHT_D", "R", "T")
OPTIONAL_MATRIX_KEYS = ("E", "F")
FORMATS = ("yaml", "json", "npz", "opencv")

_SHAPES = {"LEFT_K": (3, 3), "RIGHT_K": (3, 3), "R": (3, 3), "T": (3, 1), "E": (3, 3), "F": (3, 3)}
_DIST_LENGTHS = (4, 5, 8, 12, 14)


def _numpy_to_python(obj):
    """Convert numpy types to Python native types for JSON/YAML serialization."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_numpy_to_python(item) for item in obj]
    return obj


def _to_record(result: CalibrationResult) -> dict[str, Any]:
    ext = result.extrinsics
    record: dict[str, Any] = {
        "LEFT_K": result.left.K,
        "LEFT_D": result.left.dist,
        "RIGHT_K": result.right.K,
        "RIGHT_D": result.right.dist,
        "R": ext.R,
        "T": ext.T,
    }
    if ext.E is not None:
        record["E"] = ext.E
    if ext.F is not None:
        record["F"] = ext.F
    if result.image_size is not None:
        record["IMAGE_SIZE"] = np.array(result.image_size, dtype=np.int64)
    if result.rms is not None:
        record["RMS"] = float(result.rms)
    return record


def _infer_format(path: Path) -> str:
    ext = path.suffix.lower()
    if ext in (".yaml", ".yml"):
        return "yaml"
    if ext == ".json":
        return "json"
    if ext == ".npz":
        return "npz"
    if ext == ".xml":
        return "opencv"
    raise ValueError(f"Cannot determine format from extension: {ext}")


def save_calibration(result: CalibrationResult, output_path: Path | str, fmt: str | None = None) -> Path:
    """
    Save stereo calibration results to file.

    Args:
        result: Calibration to persist
        output_path: Path to output file
        fmt: 'yaml', 'json', 'npz' or 'opencv' (inferred from the extension if None)

    Returns:
        Path that was written

    Raises:
        ValueError: If format is not supported
    """
    output_path = Path(output_path)
    fmt = fmt or _infer_format(output_path)
    if fmt not in FORMATS:
        raise ValueError(f"Unsupported format: {fmt}. Use one of {FORMATS}.")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    record = _to_record(result)

    if fmt == "yaml":
        with output_path.open("w") as f:
            yaml.safe_dump(_numpy_to_python(record), f, default_flow_style=None, sort_keys=False)
    elif fmt == "json":
        with output_path.open("w") as f:
            json.dump(_numpy_to_python(record), f, indent=2)
    elif fmt == "npz":
        np.savez_compressed(output_path, **{k: np.asarray(v) for k, v in record.items()})
        # numpy appends .npz when missing
        if output_path.suffix != ".npz":
            output_path = output_path.with_name(output_path.name + ".npz")
    else:
        fs = cv2.FileStorage(str(output_path), cv2.FILE_STORAGE_WRITE)
        if not fs.isOpened():
            raise OSError(f"Error opening file for writing: {output_path}")
        try:
            for key, value in record.items():
                if key == "RMS":
                    fs.write(key, float(value))
                elif key == "IMAGE_SIZE":
                    fs.write(key, np.asarray(value, dtype=np.int32).reshape(1, 2))
                else:
                    fs.write(key, np.array(value, dtype=np.float64))
        finally:
            fs.release()

    logger.info(f"Calibration saved to {output_path}")
    return output_path


def _read_mapping(path: Path, fmt: str) -> dict[str, Any]:
    """Read a calibration document into a flat key -> value mapping."""
    if fmt == "yaml":
        with path.open() as f:
            data = yaml.safe_load(f)
    elif fmt == "json":
        with path.open() as f:
            data = json.load(f)
    elif fmt == "npz":
        with np.load(path) as arrays:
            data = {k: arrays[k] for k in arrays.files}
    else:
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
        if not fs.isOpened():
            raise LoadError(f"Could not open calibration file: {path}", path=str(path))
        data = {}
        try:
            for key in REQUIRED_KEYS + OPTIONAL_MATRIX_KEYS + ("IMAGE_SIZE",):
                node = fs.getNode(key)
                if not node.empty():
                    mat = node.mat()
                    if mat is not None:
                        data[key] = mat
            rms_node = fs.getNode("RMS")
            if not rms_node.empty():
                data["RMS"] = rms_node.real()
        finally:
            fs.release()
    if not isinstance(data, dict):
        raise LoadError(f"Calibration file {path} does not contain a key-value document", path=str(path))
    return data


def _matrix(data: dict[str, Any], key: str, path: Path) -> np.ndarray:
    try:
        arr = np.asarray(data[key], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise LoadError(f"Key '{key}' in {path} is not numeric: {exc}", path=str(path), key=key) from exc
    if key in ("LEFT_D", "RIGHT_D"):
        if arr.size not in _DIST_LENGTHS:
            raise LoadError(f"Key '{key}' in {path} has {arr.size} coefficients", path=str(path), key=key)
        return arr.ravel()
    shape = _SHAPES[key]
    if arr.size != shape[0] * shape[1]:
        raise LoadError(f"Key '{key}' in {path} must be {shape[0]}x{shape[1]}, got shape {arr.shape}", path=str(path), key=key)
    return arr.reshape(shape)


def _image_size(data: dict[str, Any], path: Path) -> tuple[int, int]:
    try:
        size = np.asarray(data["IMAGE_SIZE"], dtype=np.float64).ravel()
    except (TypeError, ValueError) as exc:
        raise LoadError(f"Key 'IMAGE_SIZE' in {path} is not numeric: {exc}", path=str(path), key="IMAGE_SIZE") from exc
    if size.size != 2 or not np.all(np.isfinite(size)) or np.any(size <= 0) or np.any(size != np.round(size)):
        raise LoadError(
            f"Key 'IMAGE_SIZE' in {path} must be two positive integers, got {size.tolist()}",
            path=str(path),
            key="IMAGE_SIZE",
        )
    return (int(size[0]), int(size[1]))


def _rms(data: dict[str, Any], path: Path) -> float:
    try:
        value = np.asarray(data["RMS"], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise LoadError(f"Key 'RMS' in {path} is not numeric: {exc}", path=str(path), key="RMS") from exc
    if value.size != 1 or not np.isfinite(value).all():
        raise LoadError(f"Key 'RMS' in {path} must be a finite scalar", path=str(path), key="RMS")
    return float(value.ravel()[0])


def _is_opencv_document(path: Path) -> bool:
    with path.open("rb") as f:
        head = f.read(16)
    return head.startswith(b"%YAML") or head.lstrip().startswith(b"<?xml")


def load_calibration(input_path: Path | str, fmt: str | None = None) -> CalibrationResult:
    """
    Load stereo calibration results from file.

    Args:
        input_path: Path to calibration file
        fmt: 'yaml', 'json', 'npz' or 'opencv' (auto-detected if None)

    Returns:
        CalibrationResult with loaded calibration data

    Raises:
        LoadError: If the file is unreadable, malformed, or misses a required key
    """
    input_path = Path(input_path)
    if not input_path.is_file():
        raise LoadError(f"Calibration file not found: {input_path}", path=str(input_path))

    try:
        if fmt is None:
            fmt = _infer_format(input_path)
            if fmt == "yaml" and _is_opencv_document(input_path):
                fmt = "opencv"
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported format: {fmt}")
        data = _read_mapping(input_path, fmt)
    except LoadError:
        raise
    except (OSError, ValueError, zipfile.BadZipFile, yaml.YAMLError) as exc:
        raise LoadError(f"Could not read calibration file {input_path}: {exc}", path=str(input_path)) from exc

    for key in REQUIRED_KEYS:
        if key not in data or data[key] is None:
            raise LoadError(f"Calibration file {input_path} is missing required key '{key}'", path=str(input_path), key=key)

    optional = {k: _matrix(data, k, input_path) for k in OPTIONAL_MATRIX_KEYS if data.get(k) is not None}
    image_size = _image_size(data, input_path) if data.get("IMAGE_SIZE") is not None else None
    rms = _rms(data, input_path) if data.get("RMS") is not None else None

    result = CalibrationResult(
        left=CameraIntrinsics(K=_matrix(data, "LEFT_K", input_path), dist=_matrix(data, "LEFT_D", input_path)),
        right=CameraIntrinsics(K=_matrix(data, "RIGHT_K", input_path), dist=_matrix(data, "RIGHT_D", input_path)),
        extrinsics=StereoExtrinsics(
            R=_matrix(data, "R", input_path),
            T=_matrix(data, "T", input_path),
            E=optional.get("E"),
            F=optional.get("F"),
        ),
        image_size=image_size,
        rms=rms,
    )
    logger.info(f"Calibration loaded from {input_path}")
    return result
