"""Shared fixtures and collaborator stubs for the test suite."""

from __future__ import annotations

import base64
import hashlib

import cv2
import numpy as np
import pytest

from faceid.services import IdentityService
from faceid.store import IdentityStore, InMemoryStorageBackend

DIM = 512


class HashEmbedder:
    """Deterministic stand-in for the embedding model.

    Identical aligned crops give identical raw vectors; different crops give
    unrelated (nearly orthogonal) vectors.
    """

    def __init__(self, dimension: int = DIM):
        self.dimension = dimension
        self.calls = 0

    def infer(self, face_bgr_112: np.ndarray) -> np.ndarray:
        self.calls += 1
        seed = int.from_bytes(hashlib.sha256(face_bgr_112.tobytes()).digest()[:8], "little")
        rng = np.random.default_rng(seed)
        return (rng.standard_normal(self.dimension) * 7.0).astype(np.float32)


def to_data_url(image: np.ndarray) -> str:
    """Encode a BGR image as a PNG data URL, as a browser would send it."""
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return "data:image/png;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")


def unit(index: int, dimension: int = DIM) -> np.ndarray:
    """Standard basis vector e_index."""
    vec = np.zeros(dimension, dtype=np.float32)
    vec[index] = 1.0
    return vec


@pytest.fixture
def backend():
    """Empty in-memory storage backend."""
    return InMemoryStorageBackend()


@pytest.fixture
def store(backend):
    """Identity store over an in-memory backend."""
    return IdentityStore(backend, dimension=DIM)


@pytest.fixture
def embedder():
    """Deterministic hash-based embedder."""
    return HashEmbedder()


@pytest.fixture
def service(store, embedder):
    """Identity service over the in-memory store and hash embedder."""
    return IdentityService(store=store, embedder=embedder, threshold=0.8)


@pytest.fixture
def face_keypoints():
    """Plausible landmarks for a face in a 200x200 image."""
    return np.array([[70.0, 90.0], [130.0, 90.0], [100.0, 120.0], [100.0, 150.0]])


@pytest.fixture
def face_image():
    """Random 200x200 BGR image standing in for a photo."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def other_face_image():
    """A second, unrelated 200x200 BGR image."""
    rng = np.random.default_rng(7)
    image = rng.integers(0, 256, (200, 200, 3), dtype=np.uint8)
    cv2.circle(image, (100, 100), 30, (0, 0, 255), -1)
    return image
