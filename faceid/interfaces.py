"""Core interfaces and data structures for the face identity pipeline.

This module defines the data classes passed between pipeline stages and the
Protocols for the external collaborators (keypoint detector, embedding model,
persistent storage). Concrete implementations live in their own modules and
can be swapped for stubs in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from faceid.errors import InsufficientKeypointsError, InvalidKeypointsError

NUM_KEYPOINTS = 4

PointLike = Union[Sequence[float], Mapping[str, float]]


@dataclass(frozen=True)
class KeypointSet:
    """Four facial landmarks with fixed roles.

    Attributes:
        points: Landmark coordinates, shape [4, 2], float64.
                Order: left_eye, right_eye, nose, mouth_center
    """

    points: np.ndarray

    def __post_init__(self) -> None:
        """Validate and freeze the point array."""
        try:
            points = np.asarray(self.points, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidKeypointsError(f"Keypoints must be numbers: {e}") from e

        if points.ndim != 2 or points.shape[1] != 2:
            raise InvalidKeypointsError(f"Keypoints must have shape (N, 2), got {points.shape}")

        if points.shape[0] < NUM_KEYPOINTS:
            raise InsufficientKeypointsError(
                f"At least {NUM_KEYPOINTS} keypoints are required, got {points.shape[0]}"
            )

        if points.shape[0] > NUM_KEYPOINTS:
            points = points[:NUM_KEYPOINTS]

        if not np.all(np.isfinite(points)):
            raise InvalidKeypointsError("Keypoints must be finite numbers")

        points = points.copy()
        points.flags.writeable = False
        object.__setattr__(self, "points", points)

    @classmethod
    def from_points(cls, points: Iterable[PointLike]) -> KeypointSet:
        """Build a keypoint set from ``[x, y]`` pairs or ``{"x": .., "y": ..}`` dicts.

        Extra points beyond the first four are ignored.

        Raises:
            InsufficientKeypointsError: If fewer than 4 points are given.
            InvalidKeypointsError: If a point is malformed.
        """
        coords = []
        for point in points:
            try:
                if isinstance(point, Mapping):
                    x, y = point["x"], point["y"]
                else:
                    x, y = point
                coords.append((float(x), float(y)))
            except KeyError as e:
                raise InvalidKeypointsError(f"Keypoint is missing coordinate {e}") from e
            except (TypeError, ValueError) as e:
                raise InvalidKeypointsError(f"Malformed keypoint {point!r}: {e}") from e

        if len(coords) < NUM_KEYPOINTS:
            raise InsufficientKeypointsError(
                f"At least {NUM_KEYPOINTS} keypoints are required, got {len(coords)}"
            )

        return cls(np.array(coords, dtype=np.float64))

    def __len__(self) -> int:
        return NUM_KEYPOINTS

    def __repr__(self) -> str:
        pts = ", ".join(f"({x:.1f}, {y:.1f})" for x, y in self.points)
        return f"KeypointSet([{pts}])"


@dataclass(frozen=True)
class SimilarityTransform:
    """2D similarity transform (uniform scale + rotation + translation).

    The 2x3 matrix is ``[[a, -b, tx], [b, a, ty]]`` where
    ``a = s*cos(theta)`` and ``b = s*sin(theta)``.
    """

    a: float
    b: float
    tx: float
    ty: float

    @property
    def matrix(self) -> np.ndarray:
        """2x3 float64 affine matrix, as accepted by ``cv2.warpAffine``."""
        return np.array(
            [[self.a, -self.b, self.tx], [self.b, self.a, self.ty]],
            dtype=np.float64,
        )

    @property
    def scale(self) -> float:
        return float(np.hypot(self.a, self.b))

    @property
    def rotation(self) -> float:
        """Rotation angle in radians."""
        return float(np.arctan2(self.b, self.a))

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Map points of shape [N, 2] through the transform."""
        points = np.asarray(points, dtype=np.float64)
        x, y = points[:, 0], points[:, 1]
        return np.stack(
            [self.a * x - self.b * y + self.tx, self.b * x + self.a * y + self.ty],
            axis=1,
        )

    def inverse(self) -> SimilarityTransform:
        """Return the transform mapping destination points back to the source.

        Raises:
            ZeroDivisionError: If the transform has zero scale.
        """
        det = self.a * self.a + self.b * self.b
        if det == 0.0:
            raise ZeroDivisionError("Cannot invert a zero-scale transform")
        ia = self.a / det
        ib = -self.b / det
        return SimilarityTransform(
            a=ia,
            b=ib,
            tx=-(ia * self.tx - ib * self.ty),
            ty=-(ib * self.tx + ia * self.ty),
        )

    def __repr__(self) -> str:
        return (
            f"SimilarityTransform(scale={self.scale:.4f}, "
            f"rotation={np.degrees(self.rotation):.2f}deg, "
            f"t=({self.tx:.2f}, {self.ty:.2f}))"
        )


@dataclass(frozen=True)
class IdentityRecord:
    """A named identity and its L2-normalized embedding.

    Attributes:
        name: Primary key, non-empty
        embedding: Embedding vector, shape [D], dtype float32
    """

    name: str
    embedding: np.ndarray

    def __repr__(self) -> str:
        return f"IdentityRecord(name='{self.name}', dim={self.embedding.shape[0]})"


@runtime_checkable
class KeypointDetector(Protocol):
    """Protocol for facial landmark detection.

    A KeypointDetector finds the most prominent face in an image and returns
    its four landmarks in absolute pixel coordinates.
    """

    def detect(self, frame_bgr: np.ndarray) -> KeypointSet:
        """Detect the landmarks of the most prominent face.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            KeypointSet for the highest-scoring face.

        Raises:
            NoFaceDetectedError: If no face is found.
        """
        ...


@runtime_checkable
class EmbeddingModel(Protocol):
    """Protocol for the face embedding model.

    The model is treated as an opaque function from a canonical face crop to
    a raw (not necessarily normalized) feature vector.
    """

    def infer(self, face_bgr_112: np.ndarray) -> np.ndarray:
        """Compute a raw embedding for an aligned face crop.

        Args:
            face_bgr_112: Aligned face crop in BGR format, shape [112, 112, 3], uint8

        Returns:
            Raw embedding vector, shape [512], dtype float32.

        Raises:
            ModelLoadError: If the model could not be loaded.
            ModelInferenceError: If inference fails for this input.
        """
        ...


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for durable identity storage.

    The backend persists complete snapshots; the IdentityStore decides what
    goes into them and serializes calls to ``save``.
    """

    def load(self) -> List[IdentityRecord]:
        """Load all persisted records in insertion order.

        Raises:
            StorageError: If the backend is unavailable or corrupt.
        """
        ...

    def save(self, records: Sequence[IdentityRecord]) -> None:
        """Persist the given records, replacing what was stored before.

        Must leave the previous snapshot intact on failure.

        Raises:
            StorageError: If the snapshot could not be written.
        """
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...
