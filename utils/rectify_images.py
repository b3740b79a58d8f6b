import argparse
import sys
from pathlib import Path

import cv2

from stereo_reconstruction import (
    ImagePair,
    PipelineConfig,
    RectificationEngine,
    StereoReconstructionError,
    configure_logging,
    crop_to_roi,
    get_logger,
    list_images,
    load_calibration,
    rectification_error,
)

logger = get_logger(__name__)


def rectify_folder(
    calib_path: str,
    image_dir: str,
    out_dir: str,
    config: PipelineConfig,
    crop: bool = True,
    report_error: bool = False,
) -> int:
    """Rectify every side-by-side capture of a folder and write it back side by side."""
    calibration = load_calibration(calib_path)
    images = list_images(image_dir)
    if not images:
        raise RuntimeError(f"No images found in {image_dir}")

    Path(out_dir).mkdir(parents=True, exist_ok=True)
    engine: RectificationEngine | None = None
    written = 0

    for path in images:
        img = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if img is None:
            logger.warning(f"Skipping {path}: failed to read image")
            continue
        try:
            pair = ImagePair.from_side_by_side(img)
        except StereoReconstructionError as exc:
            logger.warning(f"Skipping {path}: {exc}")
            continue

        # Maps depend only on the image size, so reuse them while it stays the same
        if engine is None or engine.image_size != pair.image_size:
            engine = RectificationEngine(calibration, pair.image_size, config.rectification)
        rectified = engine.apply(pair)

        if report_error:
            stats = rectification_error(rectified, config.sparse)
            logger.info(
                f"{path.name}: {stats['num_matches']} matches, median vertical offset {stats['median_offset']:.2f} px"
            )

        rect_left, rect_right = rectified.left, rectified.right
        if crop:
            rect_left = crop_to_roi(rect_left, engine.left_map.roi)
            rect_right = crop_to_roi(rect_right, engine.right_map.roi)
            # Side by side output needs equal heights
            h = min(rect_left.shape[0], rect_right.shape[0])
            rect_left, rect_right = rect_left[:h], rect_right[:h]

        out_path = Path(out_dir) / f"{path.stem}_rect.png"
        cv2.imwrite(str(out_path), cv2.hconcat([rect_left, rect_right]))
        written += 1

    logger.info(f"Saved {written} rectified pairs to '{out_dir}'")
    return written


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(description="Rectify a folder of side-by-side stereo captures")
    p.add_argument("--calib", required=True, help="Path to stereo calibration file (yaml, json, npz or OpenCV)")
    p.add_argument("--images", required=True, help="Folder of side-by-side images")
    p.add_argument("--out", required=True, help="Output folder for rectified side-by-side images")
    p.add_argument("--config", default=None, help="Optional pipeline YAML config")
    p.add_argument(
        "--no-crop",
        action="store_true",
        help="Do not crop to ROI (keep full rectified images)",
    )
    p.add_argument("--report-error", action="store_true", help="Log vertical misalignment of sparse matches")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args()


def main() -> None:
    """Main entry point."""
    args = parse_args()
    configure_logging(args.log_level)
    try:
        config = PipelineConfig.from_yaml(args.config) if args.config else PipelineConfig()
        rectify_folder(
            calib_path=args.calib,
            image_dir=args.images,
            out_dir=args.out,
            config=config,
            crop=not args.no_crop,
            report_error=args.report_error,
        )
    except (StereoReconstructionError, RuntimeError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
