"""Canonical face alignment by similarity warp.

This module warps a source image through a similarity transform into a
fixed-size canonical face crop (112x112 by default) used as embedding model
input.
"""

from __future__ import annotations

import cv2
import numpy as np

from faceid.interfaces import KeypointSet, SimilarityTransform
from faceid.logging_config import get_logger
from faceid.transform import REFERENCE_TEMPLATE, estimate_similarity

logger = get_logger(__name__)


# Fill for destination pixels whose source falls outside the image (BGR white)
BORDER_VALUE = (255, 255, 255)

# Bicubic sampling
INTERPOLATION = cv2.INTER_CUBIC


class CanonicalAligner:
    """Aligner producing fixed-size canonical face crops.

    Every destination pixel is mapped through the inverse of the transform
    into source coordinates (``cv2.warpAffine`` does the inversion), sampled
    bicubically, and filled with constant white when it lands outside the
    source image. Output is always ``[size, size, 3]`` uint8 and is
    byte-identical for identical inputs.

    Attributes:
        reference: Target landmark positions in the output image
        output_size: Output image size as (width, height)

    Example:
        >>> aligner = CanonicalAligner()
        >>> aligned = aligner.align(frame, keypoints)
        >>> assert aligned.shape == (112, 112, 3)
    """

    def __init__(
        self,
        reference: KeypointSet | None = None,
        output_size: tuple[int, int] = (112, 112),
    ):
        """Initialize canonical aligner.

        Args:
            reference: Target landmark positions. If None, uses the standard
                       112x112 reference template.
            output_size: Output image size as (width, height).
        """
        width, height = output_size
        if width < 1 or height < 1:
            raise ValueError(f"output_size must be positive, got {output_size}")

        self.output_size = (int(width), int(height))
        self.reference = reference if reference is not None else REFERENCE_TEMPLATE

        logger.debug(f"Initialized CanonicalAligner with output_size={self.output_size}")

    @staticmethod
    def _to_bgr(image: np.ndarray) -> np.ndarray:
        """Coerce grayscale / BGRA uint8 input to 3-channel BGR."""
        if image is None or image.size == 0:
            raise ValueError("Cannot align an empty image")

        if image.dtype != np.uint8:
            image = np.clip(image, 0, 255).astype(np.uint8)

        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if image.ndim == 3 and image.shape[2] == 1:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if image.ndim == 3 and image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        if image.ndim == 3 and image.shape[2] == 3:
            return image

        raise ValueError(f"Unsupported image shape {image.shape}")

    def resample(self, image: np.ndarray, tform: SimilarityTransform) -> np.ndarray:
        """Warp an image through a transform into the canonical frame.

        Args:
            image: Source image, BGR [H, W, 3], BGRA [H, W, 4] or grayscale [H, W]
            tform: Transform from source pixel coordinates to output coordinates

        Returns:
            Aligned image, shape [height, width, 3], dtype uint8.

        Raises:
            ValueError: If the image is empty or has an unsupported shape.
        """
        src = np.ascontiguousarray(self._to_bgr(image))

        return cv2.warpAffine(
            src,
            tform.matrix,
            self.output_size,
            flags=INTERPOLATION,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=BORDER_VALUE,
        )

    def align(self, image: np.ndarray, keypoints: KeypointSet) -> np.ndarray:
        """Estimate the landmark transform and resample in one step.

        Args:
            image: Source image in BGR format
            keypoints: Four landmarks in source pixel coordinates

        Returns:
            Aligned face crop, shape [height, width, 3], dtype uint8.

        Raises:
            DegenerateInputError: If the keypoints are coincident.
            ValueError: If the image is empty or has an unsupported shape.

        Example:
            >>> aligned = aligner.align(frame, KeypointSet.from_points(kps))
            >>> cv2.imwrite("aligned_face.png", aligned)
        """
        tform = estimate_similarity(keypoints, self.reference)
        return self.resample(image, tform)

    def __repr__(self) -> str:
        """String representation of aligner."""
        return f"CanonicalAligner(output_size={self.output_size})"
