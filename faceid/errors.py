"""Error taxonomy for the face identity pipeline.

Every failure raised by this package derives from :class:`FaceIdError` so that
callers (the HTTP layer, scripts) can translate them in one place. Errors that
describe bad caller input also derive from ``ValueError``.
"""

from __future__ import annotations


class FaceIdError(Exception):
    """Base class for all face identity errors."""


class DegenerateInputError(FaceIdError, ValueError):
    """Source keypoints carry no spatial variance; no transform can be fit."""


class InvalidKeypointsError(FaceIdError, ValueError):
    """Keypoints are malformed or not finite."""


class InsufficientKeypointsError(InvalidKeypointsError):
    """Fewer than 4 keypoints were supplied."""


class InvalidNameError(FaceIdError, ValueError):
    """Identity name is empty or whitespace only."""


class ImageDecodeError(FaceIdError, ValueError):
    """Image payload could not be decoded."""


class NoFaceDetectedError(FaceIdError):
    """The keypoint detector found no face in the image."""


class ModelLoadError(FaceIdError):
    """The embedding model could not be loaded."""


class ModelInferenceError(FaceIdError):
    """The embedding model failed on a single request."""


class NotFoundError(FaceIdError):
    """No identity exists under the requested name."""

    def __init__(self, name: str):
        super().__init__(f"Identity '{name}' not found")
        self.name = name


class DuplicateNameError(FaceIdError):
    """An identity with the requested name already exists."""

    def __init__(self, name: str):
        super().__init__(f"Identity '{name}' already exists")
        self.name = name


class StorageError(FaceIdError):
    """The persistent backend is unavailable or its data is unreadable."""
