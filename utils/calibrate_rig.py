import argparse
import sys
from pathlib import Path

from stereo_reconstruction import (
    PipelineConfig,
    StereoReconstructionError,
    calibrate_views,
    configure_logging,
    detect_calibration_views,
    get_logger,
    save_calibration,
)
from stereo_reconstruction.visualization import plot_corner_coverage

logger = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(description="Calibrate a side-by-side stereo rig from checkerboard captures")
    p.add_argument("--images", required=True, help="Folder of side-by-side checkerboard captures")
    p.add_argument("--out", required=True, help="Output calibration file (.yaml, .json, .npz or .xml)")
    p.add_argument("--config", default=None, help="Optional pipeline YAML config")
    p.add_argument("--format", default=None, choices=["yaml", "json", "npz", "opencv"])
    p.add_argument("--coverage-plot", default=None, help="Save a corner coverage plot to this path")
    p.add_argument("--no-progress", action="store_true", help="Hide the detection progress bar")
    p.add_argument("--log-level", default="INFO")
    p.add_argument("--log-dir", default=None, help="Also write rotating log files here")
    return p.parse_args()


def main() -> None:
    """Main entry point."""
    args = parse_args()
    configure_logging(args.log_level, args.log_dir)
    try:
        config = PipelineConfig.from_yaml(args.config) if args.config else PipelineConfig()
        views, image_size = detect_calibration_views(args.images, config, progress=not args.no_progress)
        result = calibrate_views(views, image_size, config)
        save_calibration(result, args.out, fmt=args.format)
    except StereoReconstructionError as e:
        logger.error(f"Calibration failed: {e}")
        sys.exit(1)

    if args.coverage_plot:
        plot_corner_coverage(views, image_size, output_path=Path(args.coverage_plot))

    logger.info(f"RMS {result.rms:.4f} px, baseline {result.baseline:.4f}; saved to {args.out}")


if __name__ == "__main__":
    main()
