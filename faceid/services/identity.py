"""Identity service: enrollment and recognition from landmarked face images.

This module provides the service that the HTTP layer and scripts call. It
combines alignment, embedding and matching into the enroll / recognize
workflows and exposes the store's rename / delete / list operations.

Workflow:
    keypoints -> similarity transform -> 112x112 crop -> raw embedding
    -> L2 normalization -> store (enroll) or matcher (recognize)
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Union

import numpy as np

from faceid.aligner import CanonicalAligner
from faceid.config import Config, get_config
from faceid.embedder import create_embedding_model
from faceid.errors import InvalidNameError
from faceid.interfaces import EmbeddingModel, KeypointSet, PointLike, StorageBackend
from faceid.logging_config import get_logger
from faceid.matcher import IdentityMatcher
from faceid.store import IdentityStore, NpzStorageBackend
from faceid.utils import l2_normalize

logger = get_logger(__name__)

KeypointsInput = Union[KeypointSet, np.ndarray, Iterable[PointLike]]


def clean_name(name: Optional[str]) -> str:
    """Trim a user-supplied identity name.

    Raises:
        InvalidNameError: If the name is missing or blank.
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidNameError("Identity name must be a non-empty string")
    return name.strip()


def as_keypoints(keypoints: KeypointsInput) -> KeypointSet:
    """Coerce arrays and ``[{x, y}, ...]`` payloads to a KeypointSet.

    Raises:
        InsufficientKeypointsError: If fewer than 4 points are given.
        ValueError: If the points are malformed.
    """
    if isinstance(keypoints, KeypointSet):
        return keypoints
    if isinstance(keypoints, np.ndarray):
        return KeypointSet(keypoints)
    return KeypointSet.from_points(keypoints)


class IdentityService:
    """Service for enrolling and recognizing faces.

    Attributes:
        store: Identity store (shared, thread-safe)
        embedder: Embedding model (typically lazily loaded)
        aligner: Canonical aligner
        matcher: Threshold policy over the store
        threshold: Maximum squared Euclidean distance for a positive match

    Example:
        >>> service = IdentityService(store, embedder, threshold=0.8)
        >>> service.enroll(frame, keypoints, "alice")
        >>> service.recognize(other_frame, other_keypoints)
        'alice'
    """

    def __init__(
        self,
        store: IdentityStore,
        embedder: EmbeddingModel,
        aligner: Optional[CanonicalAligner] = None,
        matcher: Optional[IdentityMatcher] = None,
        threshold: float = 0.8,
    ):
        """Initialize identity service.

        Args:
            store: Identity store instance
            embedder: Embedding model instance
            aligner: Canonical aligner (default: 112x112 reference template)
            matcher: Matcher over ``store`` (default: built from ``store``)
            threshold: Squared-distance threshold for positive identification

        Raises:
            ValueError: If threshold is negative or NaN.
        """
        if not threshold >= 0.0:
            raise ValueError(f"Threshold must be >= 0, got {threshold}")

        self.store = store
        self.embedder = embedder
        self.aligner = aligner if aligner is not None else CanonicalAligner()
        self.matcher = matcher if matcher is not None else IdentityMatcher(store)
        self.threshold = threshold

        logger.info(f"Initialized IdentityService with threshold={threshold:.3f}")

    def embed_face(self, image: np.ndarray, keypoints: KeypointsInput) -> np.ndarray:
        """Align a face and compute its unit-length embedding.

        Args:
            image: Source image in BGR format
            keypoints: Four landmarks (left eye, right eye, nose, mouth center)

        Returns:
            L2-normalized embedding, shape [D], dtype float32.

        Raises:
            InsufficientKeypointsError: If fewer than 4 keypoints are given.
            DegenerateInputError: If the keypoints are coincident.
            ModelLoadError: If the embedding model cannot be loaded.
            ModelInferenceError: If inference fails.
        """
        kps = as_keypoints(keypoints)
        aligned = self.aligner.align(image, kps)
        raw = self.embedder.infer(aligned)
        return l2_normalize(raw)

    def enroll(self, image: np.ndarray, keypoints: KeypointsInput, name: str) -> str:
        """Enroll a face under a new name.

        Input is validated before any model work, and the record only becomes
        visible once it has been persisted.

        Returns:
            The stored (trimmed) name.

        Raises:
            InvalidNameError: If the name is blank.
            DuplicateNameError: If the name is already enrolled.
            StorageError: If the record could not be persisted.
        """
        name = clean_name(name)
        kps = as_keypoints(keypoints)

        embedding = self.embed_face(image, kps)
        self.store.add(name, embedding)

        logger.info(f"Enrolled '{name}'")
        return name

    def recognize(self, image: np.ndarray, keypoints: KeypointsInput) -> Optional[str]:
        """Identify a face.

        Returns:
            The matched name, or None if no enrolled identity is within the
            threshold.
        """
        embedding = self.embed_face(image, keypoints)
        name = self.matcher.match_best(embedding, self.threshold)

        logger.info(f"Recognition result: {name if name is not None else 'unknown'}")
        return name

    def rename(self, name: str, new_name: str) -> str:
        """Rename an identity. Returns the stored (trimmed) new name.

        Raises:
            InvalidNameError: If new_name is blank.
            NotFoundError: If name is not enrolled.
            DuplicateNameError: If new_name is taken.
        """
        new_name = clean_name(new_name)
        self.store.rename(name, new_name)
        return new_name

    def delete(self, name: str) -> bool:
        """Delete an identity; unknown names are ignored."""
        return self.store.delete(name)

    def list_names(self) -> List[str]:
        """All enrolled names."""
        return self.store.list_names()

    def set_threshold(self, threshold: float) -> None:
        """Update recognition threshold.

        Raises:
            ValueError: If threshold is negative or NaN.
        """
        if not threshold >= 0.0:
            raise ValueError(f"Threshold must be >= 0, got {threshold}")

        old_threshold = self.threshold
        self.threshold = threshold

        logger.info(f"Updated recognition threshold: {old_threshold:.3f} -> {threshold:.3f}")

    def __repr__(self) -> str:
        """String representation."""
        return f"IdentityService(threshold={self.threshold:.3f}, store={self.store!r})"


def create_identity_service(
    config: Optional[Config] = None,
    *,
    embedder: Optional[EmbeddingModel] = None,
    backend: Optional[StorageBackend] = None,
) -> IdentityService:
    """Wire up an IdentityService from configuration.

    Args:
        config: Configuration object. If None, loads from .env
        embedder: Embedding model override (default: lazily loaded ArcFace)
        backend: Storage backend override (default: ``.npz`` file at DB_PATH)

    Returns:
        Service whose store and model both load on first use.

    Example:
        >>> service = create_identity_service()
        >>> service.list_names()
    """
    if config is None:
        config = get_config()

    if backend is None:
        backend = NpzStorageBackend(config.db_path, dimension=config.embedding_dim)

    if embedder is None:
        embedder = create_embedding_model(config)

    store = IdentityStore(backend, dimension=config.embedding_dim)
    aligner = CanonicalAligner(output_size=(config.aligned_size, config.aligned_size))

    return IdentityService(
        store=store,
        embedder=embedder,
        aligner=aligner,
        threshold=config.thresh,
    )


__all__ = [
    "IdentityService",
    "as_keypoints",
    "clean_name",
    "create_identity_service",
]
