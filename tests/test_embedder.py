"""Unit tests for the lazy embedding model loader."""

from __future__ import annotations

import threading
import time
from unittest.mock import Mock

import numpy as np
import pytest

from faceid.embedder import LazyEmbeddingModel
from faceid.errors import ModelLoadError


@pytest.fixture
def face():
    return np.zeros((112, 112, 3), dtype=np.uint8)


def make_model():
    model = Mock()
    model.infer.return_value = np.ones(512, dtype=np.float32)
    return model


def test_not_loaded_until_first_use(face):
    """Test that construction does not load the model."""
    factory = Mock(side_effect=make_model)
    lazy = LazyEmbeddingModel(factory)

    assert not lazy.is_loaded
    factory.assert_not_called()

    lazy.infer(face)

    assert lazy.is_loaded
    factory.assert_called_once()


def test_loaded_once_across_calls(face):
    """Test that repeated calls reuse the same instance."""
    factory = Mock(side_effect=make_model)
    lazy = LazyEmbeddingModel(factory)

    for _ in range(5):
        lazy.infer(face)

    factory.assert_called_once()
    assert lazy.get().infer.call_count == 5


def test_loaded_once_under_concurrency(face):
    """Test that concurrent first callers trigger exactly one load."""
    loads = []

    def slow_factory():
        loads.append(threading.get_ident())
        time.sleep(0.05)
        return make_model()

    lazy = LazyEmbeddingModel(slow_factory)
    barrier = threading.Barrier(8)
    models = []

    def worker():
        barrier.wait()
        models.append(lazy.get())
        lazy.infer(face)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(loads) == 1
    assert len(models) == 8
    assert all(m is models[0] for m in models)


def test_load_failure_is_model_load_error(face):
    """Test that factory failures surface as ModelLoadError."""
    lazy = LazyEmbeddingModel(Mock(side_effect=RuntimeError("no weights")))

    with pytest.raises(ModelLoadError, match="no weights"):
        lazy.infer(face)

    assert not lazy.is_loaded


def test_load_failure_can_be_retried(face):
    """Test that a later call retries a failed load."""
    factory = Mock(side_effect=[OSError("download interrupted"), make_model()])
    lazy = LazyEmbeddingModel(factory)

    with pytest.raises(ModelLoadError):
        lazy.infer(face)

    raw = lazy.infer(face)

    assert raw.shape == (512,)
    assert factory.call_count == 2


def test_model_load_error_passes_through(face):
    """Test that ModelLoadError from the factory is not re-wrapped."""
    original = ModelLoadError("bad model pack")
    lazy = LazyEmbeddingModel(Mock(side_effect=original))

    with pytest.raises(ModelLoadError) as exc_info:
        lazy.get()

    assert exc_info.value is original


def test_repr():
    lazy = LazyEmbeddingModel(make_model)

    assert repr(lazy) == "LazyEmbeddingModel(not loaded)"
    lazy.get()
    assert repr(lazy) == "LazyEmbeddingModel(loaded)"
