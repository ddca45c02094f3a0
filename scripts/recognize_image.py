#!/usr/bin/env python3
"""Identify the face in a still image against the enrolled identities.

Usage:
    python scripts/recognize_image.py --image photo.jpg
    python scripts/recognize_image.py --image photo.jpg --threshold 0.6 --topk 3
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
from faceid.logging_config import get_logger, setup_logging
from faceid.services import create_identity_service

logger = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Face recognition on static images",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--image", type=str, required=True, help="Path to input image file")

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Match threshold, squared L2 distance (overrides .env THRESH value)",
    )

    parser.add_argument(
        "--topk",
        type=int,
        default=3,
        help="Number of nearest identities to print",
    )

    return parser.parse_args()


def main() -> int:
    """Main function."""
    args = parse_args()

    config = Config.from_env()
    setup_logging(config.log_level, force=True)

    frame = cv2.imread(args.image)
    if frame is None:
        logger.error(f"Could not read image: {args.image}")
        return 1

    service = create_identity_service(config)
    if args.threshold is not None:
        service.set_threshold(args.threshold)

    try:
        keypoints = SCRFDDetector(config).detect(frame)
        embedding = service.embed_face(frame, keypoints)
        neighbors = service.store.search(embedding, limit=max(args.topk, 1))
        name = service.matcher.match_best(embedding, service.threshold)
    except FaceIdError as e:
        logger.error(f"Recognition failed: {e}")
        return 1

    print(f"Enrolled identities: {len(service.store)}")
    for rank, (candidate, distance) in enumerate(neighbors, start=1):
        marker = "<=" if distance <= service.threshold else "> "
        print(f"  {rank}. {candidate:<24} distance={distance:.4f} {marker} {service.threshold:.4f}")

    print()
    print(f"Result: {name if name is not None else 'unknown'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
