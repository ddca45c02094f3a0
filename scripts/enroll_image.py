#!/usr/bin/env python3
"""Enroll a person from a still image.

Landmarks are found with the SCRFD detector, so no manual keypoints are
needed. Pass --keypoints to skip detection and use your own four points
(left eye, right eye, nose, mouth center).

Usage:
    python scripts/enroll_image.py --image alice.jpg --name Alice
    python scripts/enroll_image.py --image bob.png --name Bob \\
        --keypoints 210,180 290,182 250,230 251,280
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import cv2

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from faceid.config import Config
from faceid.detector_scrfd import SCRFDDetector
from faceid.errors import FaceIdError
from faceid.interfaces import KeypointSet
from faceid.logging_config import get_logger, setup_logging
from faceid.services import create_identity_service

logger = get_logger(__name__)


def parse_point(text: str) -> tuple[float, float]:
    """Parse an ``x,y`` command-line point."""
    try:
        x, y = text.split(",")
        return float(x), float(y)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Expected x,y but got '{text}'") from e


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Enroll a face from an image file",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--image", type=str, required=True, help="Path to input image file")
    parser.add_argument("--name", type=str, required=True, help="Identity name to enroll")

    parser.add_argument(
        "--keypoints",
        type=parse_point,
        nargs=4,
        default=None,
        metavar="X,Y",
        help="Manual landmarks: left eye, right eye, nose, mouth center",
    )

    parser.add_argument(
        "--save-aligned",
        type=str,
        default=None,
        help="Also write the aligned 112x112 crop to this path",
    )

    return parser.parse_args()


def print_section(title: str) -> None:
    """Print a section divider."""
    print()
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


def main() -> int:
    """Main function."""
    args = parse_args()

    config = Config.from_env()
    setup_logging(config.log_level, force=True)

    print_section("Face Enrollment - Static Image")

    image_path = Path(args.image)
    frame = cv2.imread(str(image_path))
    if frame is None:
        logger.error(f"Could not read image: {image_path}")
        return 1

    print(f"Input image:   {image_path}")
    print(f"Name:          {args.name}")
    print(f"Store:         {config.db_path}")

    try:
        if args.keypoints is not None:
            keypoints = KeypointSet.from_points(args.keypoints)
        else:
            print_section("Step 1: Detecting Landmarks")
            keypoints = SCRFDDetector(config).detect(frame)
        print(f"Keypoints:     {keypoints}")

        print_section("Step 2: Enrolling")
        service = create_identity_service(config)

        if args.save_aligned:
            aligned = service.aligner.align(frame, keypoints)
            cv2.imwrite(args.save_aligned, aligned)
            print(f"Aligned crop:  {args.save_aligned}")

        name = service.enroll(frame, keypoints, args.name)

    except FaceIdError as e:
        logger.error(f"Enrollment failed: {e}")
        return 1

    print(f"Enrolled '{name}' ({len(service.store)} identities in store)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
