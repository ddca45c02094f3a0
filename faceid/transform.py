"""Closed-form similarity transform estimation from landmark correspondences.

Fits the least-squares similarity transform (uniform scale, rotation,
translation) mapping four source landmarks onto the canonical reference
template. This is the 2D restriction of the Umeyama / Kabsch solution and has
no iterative or randomized step, so identical inputs always give identical
matrices.
"""

from __future__ import annotations

import numpy as np

from faceid.errors import DegenerateInputError
from faceid.interfaces import KeypointSet, SimilarityTransform
from faceid.logging_config import get_logger

logger = get_logger(__name__)


# Canonical landmark positions for a 112x112 aligned face
# Order: left_eye, right_eye, nose, mouth_center
# Eyes and nose follow the ArcFace template; mouth center is the midpoint of
# the ArcFace mouth corners
REFERENCE_TEMPLATE = KeypointSet(
    np.array(
        [
            [38.2946, 51.6963],  # left eye
            [73.5318, 51.5014],  # right eye
            [56.0252, 71.7366],  # nose tip
            [56.1396, 92.2048],  # mouth center
        ],
        dtype=np.float64,
    )
)

# Minimum total squared spread of the source points
DEGENERATE_EPS = 1e-12


def estimate_similarity(
    src: KeypointSet,
    ref: KeypointSet = REFERENCE_TEMPLATE,
) -> SimilarityTransform:
    """Estimate the similarity transform mapping ``src`` onto ``ref``.

    Correspondence is positional: ``src.points[i]`` is matched with
    ``ref.points[i]``.

    Args:
        src: Detected landmarks in source-image pixel coordinates
        ref: Target landmarks (defaults to the 112x112 reference template)

    Returns:
        SimilarityTransform minimizing the sum of squared residuals. Exact
        when ``ref`` is already a similarity image of ``src``.

    Raises:
        DegenerateInputError: If the source points are (numerically) coincident.

    Example:
        >>> tform = estimate_similarity(keypoints)
        >>> aligned_pts = tform.apply(keypoints.points)
    """
    src_pts = src.points
    dst_pts = ref.points

    src_mean = src_pts.mean(axis=0)
    dst_mean = dst_pts.mean(axis=0)

    s = src_pts - src_mean
    d = dst_pts - dst_mean

    denom = float(np.sum(s * s))
    if denom < DEGENERATE_EPS:
        logger.warning(f"Degenerate keypoints, spread={denom:.3e}: {src}")
        raise DegenerateInputError(
            "Source keypoints carry no spatial variance; cannot fit a transform"
        )

    # a = s*cos(theta), b = s*sin(theta)
    a = float(np.sum(s[:, 0] * d[:, 0] + s[:, 1] * d[:, 1])) / denom
    b = float(np.sum(s[:, 0] * d[:, 1] - s[:, 1] * d[:, 0])) / denom

    tx = float(dst_mean[0] - (a * src_mean[0] - b * src_mean[1]))
    ty = float(dst_mean[1] - (b * src_mean[0] + a * src_mean[1]))

    tform = SimilarityTransform(a=a, b=b, tx=tx, ty=ty)
    logger.debug(f"Estimated {tform}")
    return tform


def apply_transform(tform: SimilarityTransform, points: KeypointSet) -> KeypointSet:
    """Map a keypoint set through a transform.

    Example:
        >>> moved = apply_transform(tform, keypoints)
        >>> estimate_similarity(keypoints, moved)  # recovers tform
    """
    return KeypointSet(tform.apply(points.points))


def residual_error(tform: SimilarityTransform, src: KeypointSet, ref: KeypointSet) -> float:
    """Root-mean-square distance between mapped ``src`` and ``ref``, in pixels."""
    diff = tform.apply(src.points) - ref.points
    return float(np.sqrt(np.mean(np.sum(diff * diff, axis=1))))
