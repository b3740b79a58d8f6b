"""
Exception hierarchy for the stereo reconstruction pipeline.

Recoverable conditions (a board not found in one capture) are kept apart from
fatal ones (no usable views, calibration/image size mismatch) so callers can
recover locally from the former and surface the latter.
"""

from __future__ import annotations


class StereoReconstructionError(Exception):
    """Base exception for all stereo reconstruction errors."""

    pass


class ConfigError(StereoReconstructionError):
    """Raised when a configuration value is missing or out of range."""

    pass


class InputError(StereoReconstructionError):
    """Raised for unreadable images/files or side-by-side images that cannot be split."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class DetectionMiss(StereoReconstructionError):
    """Raised when the calibration pattern is not found in one half of a pair.

    This is recoverable: batch detection logs it and drops the pair.
    """

    def __init__(self, message: str, side: str | None = None, path: str | None = None):
        self.side = side
        self.path = path
        super().__init__(message)


class CalibrationError(StereoReconstructionError):
    """Raised when stereo calibration cannot produce a result."""

    pass


class LoadError(StereoReconstructionError):
    """Raised when a calibration document is unreadable or incomplete."""

    def __init__(self, message: str, path: str | None = None, key: str | None = None):
        self.path = path
        self.key = key
        super().__init__(message)


class ShapeMismatchError(StereoReconstructionError):
    """Raised when an image size does not match the size a map or calibration was built for."""

    def __init__(self, message: str, expected: tuple[int, int], actual: tuple[int, int]):
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(f"{message} (expected {self.expected[0]}x{self.expected[1]}, got {self.actual[0]}x{self.actual[1]})")


class PointCloudWriteError(StereoReconstructionError, OSError):
    """Raised when the point cloud destination cannot be written."""

    pass
