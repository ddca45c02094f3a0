"""Unit tests for the identity store and its storage backends."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from conftest import DIM, unit
from faceid.errors import DuplicateNameError, InvalidNameError, NotFoundError, StorageError
from faceid.interfaces import IdentityRecord
from faceid.store import IdentityStore, InMemoryStorageBackend, NpzStorageBackend
from faceid.utils import l2_normalize


@pytest.fixture
def sample_embeddings():
    """L2-normalized embeddings for three people."""
    rng = np.random.default_rng(42)

    embeddings = {}
    for i, name in enumerate(["Alice", "Bob", "Carol"]):
        embeddings[name] = l2_normalize(unit(i) + rng.standard_normal(DIM) * 0.01)
    return embeddings


@pytest.fixture
def populated_store(store, sample_embeddings):
    for name, emb in sample_embeddings.items():
        store.add(name, emb)
    return store


class FailingBackend(InMemoryStorageBackend):
    """Backend whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, records):
        if self.fail:
            raise StorageError("disk full")
        super().save(records)


def test_add_and_list(populated_store):
    """Test that names are listed in insertion order."""
    assert populated_store.list_names() == ["Alice", "Bob", "Carol"]
    assert len(populated_store) == 3
    assert "Bob" in populated_store
    assert "Dave" not in populated_store


def test_add_persists(store, backend):
    """Test that every add is written through to the backend."""
    store.add("Alice", unit(0))

    assert backend.save_count == 1
    assert [r.name for r in backend.load()] == ["Alice"]


def test_add_duplicate_rejected(populated_store, backend):
    """Test that an existing name cannot be added again."""
    saves = backend.save_count

    with pytest.raises(DuplicateNameError):
        populated_store.add("Alice", unit(5))

    assert populated_store.list_names() == ["Alice", "Bob", "Carol"]
    assert backend.save_count == saves


@pytest.mark.parametrize("name", ["", "   ", None])
def test_add_invalid_name(store, name):
    """Test that empty names are rejected."""
    with pytest.raises(InvalidNameError):
        store.add(name, unit(0))


def test_add_wrong_dimension(store):
    """Test that vectors of the wrong length are rejected."""
    with pytest.raises(ValueError):
        store.add("Alice", np.ones(128, dtype=np.float32))


def test_add_accepts_row_vector(store):
    """Test that a [1, D] embedding is accepted."""
    store.add("Alice", unit(0)[np.newaxis, :])

    assert store.get("Alice").embedding.shape == (DIM,)


def test_get_returns_copy(populated_store, sample_embeddings):
    """Test that get returns the stored embedding, detached from the store."""
    record = populated_store.get("Alice")

    np.testing.assert_array_equal(record.embedding, sample_embeddings["Alice"])
    record.embedding[:] = 0.0
    np.testing.assert_array_equal(
        populated_store.get("Alice").embedding, sample_embeddings["Alice"]
    )
    assert populated_store.get("Dave") is None


def test_delete(populated_store):
    """Test deleting an identity."""
    assert populated_store.delete("Bob") is True

    assert populated_store.list_names() == ["Alice", "Carol"]
    assert populated_store.search(unit(1), limit=3)[0][0] != "Bob"


def test_delete_is_idempotent(populated_store, backend):
    """Test that deleting an absent name is a no-op."""
    populated_store.delete("Bob")
    saves = backend.save_count

    assert populated_store.delete("Bob") is False
    assert populated_store.delete("Nobody") is False
    assert populated_store.list_names() == ["Alice", "Carol"]
    assert backend.save_count == saves


def test_rename(populated_store, sample_embeddings):
    """Test that rename keeps the embedding under the new name."""
    populated_store.rename("Alice", "Alicia")

    assert "Alice" not in populated_store
    np.testing.assert_array_equal(
        populated_store.get("Alicia").embedding, sample_embeddings["Alice"]
    )
    assert populated_store.search(sample_embeddings["Alice"])[0][0] == "Alicia"


def test_rename_keeps_position(populated_store):
    """Test that a renamed record keeps its insertion position."""
    populated_store.rename("Bob", "Robert")

    assert populated_store.list_names() == ["Alice", "Robert", "Carol"]


def test_rename_not_found(populated_store):
    """Test renaming an unknown identity."""
    with pytest.raises(NotFoundError):
        populated_store.rename("Dave", "David")


def test_rename_to_existing_name(populated_store, backend):
    """Test that rename cannot overwrite another identity."""
    saves = backend.save_count

    with pytest.raises(DuplicateNameError):
        populated_store.rename("Alice", "Bob")

    assert populated_store.list_names() == ["Alice", "Bob", "Carol"]
    assert backend.save_count == saves


def test_rename_to_same_name(populated_store, backend):
    """Test that renaming to the same name is a successful no-op."""
    saves = backend.save_count

    populated_store.rename("Alice", "Alice")

    assert populated_store.list_names() == ["Alice", "Bob", "Carol"]
    assert backend.save_count == saves


def test_rename_to_empty_name(populated_store):
    """Test that the new name must be non-empty."""
    with pytest.raises(InvalidNameError):
        populated_store.rename("Alice", " ")


def test_search_ordering(populated_store, sample_embeddings):
    """Test that results are ascending by distance."""
    results = populated_store.search(sample_embeddings["Bob"], limit=3)

    assert [name for name, _ in results][0] == "Bob"
    assert results[0][1] == pytest.approx(0.0, abs=1e-5)
    distances = [d for _, d in results]
    assert distances == sorted(distances)
    assert len(results) == 3


def test_search_distances_are_squared_l2(populated_store, sample_embeddings):
    """Test that reported distances are squared Euclidean distances."""
    query = sample_embeddings["Alice"]

    for name, distance in populated_store.search(query, limit=3):
        expected = float(np.sum((sample_embeddings[name] - query) ** 2))
        assert distance == pytest.approx(expected, abs=1e-5)
        assert distance >= 0.0


def test_search_limit(populated_store, sample_embeddings):
    """Test that limit caps the number of results."""
    assert len(populated_store.search(sample_embeddings["Alice"], limit=1)) == 1
    assert len(populated_store.search(sample_embeddings["Alice"], limit=2)) == 2
    assert len(populated_store.search(sample_embeddings["Alice"], limit=10)) == 3


@pytest.mark.parametrize("limit", [0, -1, 1.5, True])
def test_search_invalid_limit(populated_store, limit):
    """Test that limit must be a positive integer."""
    with pytest.raises(ValueError):
        populated_store.search(unit(0), limit=limit)


def test_search_ties_keep_insertion_order(store):
    """Test that equidistant identities come back in insertion order."""
    for name, index in [("Zed", 3), ("Amy", 1), ("Max", 2)]:
        store.add(name, unit(index))

    results = store.search(unit(0), limit=3)

    assert [name for name, _ in results] == ["Zed", "Amy", "Max"]
    assert all(d == pytest.approx(2.0) for _, d in results)


def test_search_empty_store(store):
    """Test that searching an empty store returns nothing."""
    assert store.search(unit(0), limit=5) == []


def test_search_wrong_dimension(populated_store):
    """Test that a malformed query is rejected."""
    with pytest.raises(ValueError):
        populated_store.search(np.ones(10, dtype=np.float32))


def test_failed_save_leaves_store_unchanged():
    """Test that a persistence failure does not change visible state."""
    backend = FailingBackend()
    store = IdentityStore(backend, dimension=DIM)
    store.add("Alice", unit(0))
    store.add("Bob", unit(1))
    backend.fail = True

    with pytest.raises(StorageError):
        store.add("Carol", unit(2))
    with pytest.raises(StorageError):
        store.rename("Alice", "Alicia")
    with pytest.raises(StorageError):
        store.delete("Bob")

    assert store.list_names() == ["Alice", "Bob"]
    assert store.search(unit(0))[0][0] == "Alice"


def test_lazy_open_and_close(backend):
    """Test that the store loads on first access and reloads after close."""
    backend.save([IdentityRecord(name="Alice", embedding=unit(0))])
    store = IdentityStore(backend, dimension=DIM)

    assert not store.is_open
    assert store.list_names() == ["Alice"]
    assert store.is_open

    store.close()
    assert not store.is_open
    assert "Alice" in store


def test_open_is_idempotent(store):
    """Test that open() twice keeps the same contents."""
    store.open()
    store.add("Alice", unit(0))
    store.open()

    assert store.list_names() == ["Alice"]


def test_load_dimension_mismatch():
    """Test that stored vectors of the wrong length are reported."""
    backend = InMemoryStorageBackend(
        [IdentityRecord(name="Alice", embedding=np.ones(128, dtype=np.float32))]
    )
    store = IdentityStore(backend, dimension=DIM)

    with pytest.raises(StorageError):
        store.open()


def test_load_skips_duplicate_records():
    """Test that a backend holding a name twice keeps the first record."""
    backend = InMemoryStorageBackend(
        [
            IdentityRecord(name="Alice", embedding=unit(0)),
            IdentityRecord(name="Alice", embedding=unit(1)),
        ]
    )
    store = IdentityStore(backend, dimension=DIM)

    assert store.list_names() == ["Alice"]
    np.testing.assert_array_equal(store.get("Alice").embedding, unit(0))


def test_concurrent_readers_during_renames(store):
    """Test that readers never see both or neither name during renames."""
    store.add("Alice", unit(0))
    store.add("Bob", unit(1))

    stop = threading.Event()
    errors = []

    def reader():
        while not stop.is_set():
            names = store.list_names()
            if len(names) != 2 or "Bob" not in names:
                errors.append(names)
            if ("Alice" in names) == ("Alicia" in names):
                errors.append(names)
            top = store.search(unit(0))[0][0]
            if top not in ("Alice", "Alicia"):
                errors.append(top)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()

    try:
        for _ in range(200):
            store.rename("Alice", "Alicia")
            store.rename("Alicia", "Alice")
    finally:
        stop.set()
        for thread in readers:
            thread.join()

    assert errors == []
    assert store.list_names() == ["Alice", "Bob"]


def test_concurrent_adds_are_all_kept(store):
    """Test that parallel writers neither lose nor duplicate records."""

    def writer(offset):
        for i in range(10):
            store.add(f"person-{offset}-{i}", unit(offset * 10 + i))

    threads = [threading.Thread(target=writer, args=(k,)) for k in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store) == 40
    assert len(set(store.list_names())) == 40


def test_repr(store):
    """Test string representation before and after opening."""
    assert "not open" in repr(store)

    store.add("Alice", unit(0))

    assert repr(store) == f"IdentityStore(dim={DIM}, identities=1)"


def test_npz_persistence_across_reopen(tmp_path, sample_embeddings):
    """Test that records survive a new store over the same file."""
    path = tmp_path / "identities.npz"
    store = IdentityStore(NpzStorageBackend(path, dimension=DIM), dimension=DIM)
    for name, emb in sample_embeddings.items():
        store.add(name, emb)
    store.rename("Bob", "Robert")
    store.delete("Carol")
    store.close()

    reopened = IdentityStore(NpzStorageBackend(path, dimension=DIM), dimension=DIM)

    assert reopened.list_names() == ["Alice", "Robert"]
    np.testing.assert_array_equal(
        reopened.get("Robert").embedding, sample_embeddings["Bob"]
    )


def test_npz_missing_file_is_empty(tmp_path):
    """Test that a missing file loads as an empty store."""
    backend = NpzStorageBackend(tmp_path / "nested" / "identities.npz", dimension=DIM)

    assert backend.load() == []


def test_npz_save_creates_directory(tmp_path):
    """Test that saving creates the parent directory and leaves no temp files."""
    path = tmp_path / "nested" / "identities.npz"
    backend = NpzStorageBackend(path, dimension=DIM)

    backend.save([IdentityRecord(name="Alice", embedding=unit(0))])

    assert path.exists()
    assert [p.name for p in path.parent.iterdir()] == ["identities.npz"]


def test_npz_empty_round_trip(tmp_path):
    """Test that saving no records gives an empty but valid file."""
    backend = NpzStorageBackend(tmp_path / "identities.npz", dimension=DIM)

    backend.save([])

    assert backend.load() == []


def test_npz_corrupt_file(tmp_path):
    """Test that an unreadable file raises StorageError."""
    path = tmp_path / "identities.npz"
    path.write_bytes(b"this is not a zip archive")
    store = IdentityStore(NpzStorageBackend(path, dimension=DIM), dimension=DIM)

    with pytest.raises(StorageError):
        store.open()


def test_npz_missing_arrays(tmp_path):
    """Test that a file without the expected arrays raises StorageError."""
    path = tmp_path / "identities.npz"
    np.savez(path, something=np.zeros(3))

    with pytest.raises(StorageError):
        NpzStorageBackend(path, dimension=DIM).load()
