"""Utility functions for the face identity pipeline.

This module provides embedding normalization and image payload decoding
shared by the service and the HTTP layer.
"""

from __future__ import annotations

import base64
import binascii
import re

import cv2
import numpy as np

from faceid.errors import ImageDecodeError
from faceid.logging_config import get_logger

logger = get_logger(__name__)

# "data:image/png;base64," style prefix sent by browsers
_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def l2_normalize(vec: np.ndarray, eps: float = 1e-10) -> np.ndarray:
    """L2-normalize a vector.

    Every element is divided by ``sqrt(sum(v_i^2)) + eps``. An all-zero
    vector comes back as an all-zero vector.

    Args:
        vec: Vector to normalize, shape [D]
        eps: Small constant to avoid division by zero

    Returns:
        Normalized float32 vector with the same shape.

    Example:
        >>> normalized = l2_normalize(raw_embedding)
        >>> assert abs(np.linalg.norm(normalized) - 1.0) < 1e-6
    """
    vec = np.asarray(vec, dtype=np.float64)
    norm = np.sqrt(np.sum(vec * vec)) + eps
    return (vec / norm).astype(np.float32)


def decode_image(payload: str | bytes) -> np.ndarray:
    """Decode a base64 (optionally data-URL prefixed) image into BGR pixels.

    Args:
        payload: Base64 text such as ``"data:image/jpeg;base64,/9j/..."``,
                 or raw encoded image bytes.

    Returns:
        Decoded image in BGR format, shape [H, W, 3], dtype uint8.

    Raises:
        ImageDecodeError: If the payload is not valid base64 or not an image.

    Example:
        >>> frame = decode_image(body["image"])
        >>> frame.shape
        (480, 640, 3)
    """
    if isinstance(payload, str):
        text = _DATA_URL_PREFIX.sub("", payload.strip())
        if not text:
            raise ImageDecodeError("Image payload is empty")
        try:
            data = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ImageDecodeError(f"Image payload is not valid base64: {e}") from e
    else:
        data = bytes(payload)

    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None

    if image is None:
        raise ImageDecodeError("Image payload could not be decoded")

    logger.debug(f"Decoded image {image.shape[1]}x{image.shape[0]} ({len(data)} bytes)")
    return image
