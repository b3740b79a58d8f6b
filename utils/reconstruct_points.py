import argparse
import sys
from pathlib import Path

from stereo_reconstruction import (
    PipelineConfig,
    StereoReconstructionError,
    configure_logging,
    get_logger,
    reconstruct_to_file,
)
from stereo_reconstruction.visualization import plot_disparity, plot_rectification_preview, plot_sparse_matches

logger = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(description="Reconstruct a point cloud from one side-by-side stereo capture")
    p.add_argument("--image", required=True, help="Side-by-side stereo image")
    p.add_argument("--calib", required=True, help="Stereo calibration file")
    p.add_argument("--out", required=True, help="Output point list (.xyz or .obj)")
    p.add_argument("--method", default="dense", choices=["dense", "sparse"])
    p.add_argument("--config", default=None, help="Optional pipeline YAML config")
    p.add_argument("--plots", default=None, help="Directory for diagnostic plots")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args()


def main() -> None:
    """Main entry point."""
    args = parse_args()
    configure_logging(args.log_level)
    try:
        config = PipelineConfig.from_yaml(args.config) if args.config else PipelineConfig()
        output = reconstruct_to_file(args.image, args.calib, args.out, config, method=args.method)
    except StereoReconstructionError as e:
        logger.error(f"Reconstruction failed: {e}")
        sys.exit(1)

    if args.plots:
        plots = Path(args.plots)
        plot_rectification_preview(output.rectified, output_path=plots / "rectified.png")
        if output.disparity is not None:
            plot_disparity(output.disparity, config.dense.max_disparity, output_path=plots / "disparity.png")
        if output.sparse is not None:
            plot_sparse_matches(output.rectified, output.sparse, output_path=plots / "matches.png")

    logger.info(f"{len(output.points)} points written to {args.out}")


if __name__ == "__main__":
    main()
