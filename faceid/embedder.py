"""ArcFace embedding model and its lazy, thread-safe loader.

This module wraps InsightFace's ArcFace recognition model behind the
:class:`~faceid.interfaces.EmbeddingModel` protocol. Model loading is slow, so
the service holds a :class:`LazyEmbeddingModel` that loads on first use and
guarantees a single load even when the first requests arrive concurrently.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

import numpy as np

from faceid.config import Config
from faceid.errors import ModelInferenceError, ModelLoadError
from faceid.interfaces import EmbeddingModel
from faceid.logging_config import get_logger

logger = get_logger(__name__)


class ArcFaceEmbedder:
    """ArcFace embedder returning raw 512-D face features.

    Uses the recognition model of an InsightFace model pack. Normalization is
    left to the caller (see :func:`faceid.utils.l2_normalize`).

    Attributes:
        app: InsightFace FaceAnalysis instance
        ctx_id: Compute context (-1=CPU, 0+=GPU)
        embedding_dim: Dimension of output embeddings (512 for ArcFace)
        input_size: Expected aligned face edge length

    Example:
        >>> embedder = ArcFaceEmbedder(config)
        >>> raw = embedder.infer(aligned)
        >>> assert raw.shape == (512,)
    """

    def __init__(self, config: Config):
        """Load the ArcFace recognition model.

        Args:
            config: Configuration object with model settings.

        Raises:
            ModelLoadError: If model initialization fails.
        """
        self.ctx_id = config.ctx_id
        self.embedding_dim = config.embedding_dim
        self.input_size = config.aligned_size

        logger.info(
            f"Loading ArcFace model (model_pack={config.model_pack}, "
            f"device={'GPU:' + str(config.ctx_id) if config.ctx_id >= 0 else 'CPU'})"
        )

        try:
            from insightface.app import FaceAnalysis

            # FaceAnalysis requires the detection module to be present even
            # though faces arrive pre-aligned
            self.app = FaceAnalysis(
                name=config.model_pack,
                allowed_modules=["detection", "recognition"],
                providers=(
                    ["CUDAExecutionProvider", "CPUExecutionProvider"]
                    if config.ctx_id >= 0
                    else ["CPUExecutionProvider"]
                ),
            )
            self.app.prepare(ctx_id=config.ctx_id, det_size=(640, 640))
            self.rec_model = self.app.models["recognition"]

        except Exception as e:
            logger.error(f"Failed to load ArcFace model: {e}", exc_info=True)
            raise ModelLoadError(f"ArcFace model initialization failed: {e}") from e

        logger.info("ArcFace model loaded")

    def infer(self, face_bgr_112: np.ndarray) -> np.ndarray:
        """Extract a raw embedding from an aligned face crop.

        Args:
            face_bgr_112: Aligned face crop in BGR format, shape [112, 112, 3], uint8.

        Returns:
            Raw embedding vector, shape [512], dtype float32.

        Raises:
            ModelInferenceError: If the input is malformed or inference fails.
        """
        expected = (self.input_size, self.input_size, 3)
        if face_bgr_112.shape != expected or face_bgr_112.dtype != np.uint8:
            raise ModelInferenceError(
                f"Expected uint8 face of shape {expected}, "
                f"got {face_bgr_112.dtype} {face_bgr_112.shape}"
            )

        try:
            # get_feat handles BGR->RGB swap and mean/std scaling itself
            embedding = self.rec_model.get_feat(face_bgr_112)
            embedding = np.asarray(embedding, dtype=np.float32).flatten()
        except Exception as e:
            logger.error(f"ArcFace inference failed: {e}")
            raise ModelInferenceError(f"Embedding extraction failed: {e}") from e

        if embedding.shape[0] != self.embedding_dim:
            raise ModelInferenceError(
                f"Unexpected embedding dimension {embedding.shape[0]}, "
                f"expected {self.embedding_dim}"
            )

        return embedding

    def __repr__(self) -> str:
        """String representation of embedder."""
        device = "GPU" if self.ctx_id >= 0 else "CPU"
        return f"ArcFaceEmbedder(dim={self.embedding_dim}, device={device})"


class LazyEmbeddingModel:
    """Embedding model that is built on first use, exactly once.

    The first ``infer`` call runs ``factory`` under a lock; concurrent first
    callers wait for that single load and then share the instance. Later
    calls only read the already-published model and never block. If the
    factory fails, the error is raised as :class:`ModelLoadError` and the next
    call tries again.

    Example:
        >>> model = LazyEmbeddingModel(lambda: ArcFaceEmbedder(config))
        >>> raw = model.infer(aligned)   # loads here
        >>> raw = model.infer(aligned)   # reuses the loaded model
    """

    def __init__(self, factory: Callable[[], EmbeddingModel]):
        self._factory = factory
        self._model: Optional[EmbeddingModel] = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def get(self) -> EmbeddingModel:
        """Return the model, loading it if this is the first call.

        Raises:
            ModelLoadError: If the factory fails.
        """
        model = self._model
        if model is not None:
            return model

        with self._lock:
            if self._model is None:
                try:
                    self._model = self._factory()
                except ModelLoadError:
                    raise
                except Exception as e:
                    logger.error(f"Embedding model load failed: {e}", exc_info=True)
                    raise ModelLoadError(f"Embedding model load failed: {e}") from e
                logger.info(f"Embedding model ready: {self._model!r}")
            return self._model

    def infer(self, face_bgr_112: np.ndarray) -> np.ndarray:
        """Compute a raw embedding, loading the model first if needed."""
        return self.get().infer(face_bgr_112)

    def __repr__(self) -> str:
        state = "loaded" if self.is_loaded else "not loaded"
        return f"LazyEmbeddingModel({state})"


def create_embedding_model(config: Config) -> LazyEmbeddingModel:
    """Create the lazily-loaded ArcFace model for a configuration."""
    return LazyEmbeddingModel(lambda: ArcFaceEmbedder(config))
