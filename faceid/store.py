"""Identity store with FAISS nearest-neighbor search.

This module holds the named identity records (name -> embedding), enforces
name uniqueness, persists every change through a storage backend, and serves
brute-force nearest-neighbor queries over a FAISS flat L2 index.

Concurrency model: mutations (add, delete, rename) are serialized by a writer
lock. Each mutation builds a new immutable snapshot, persists it, then
publishes it with a single reference assignment. Readers grab the current
snapshot without locking, so they always see either the state before or the
state after a mutation, never a mix.
"""

from __future__ import annotations

import os
import tempfile
import threading
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

import faiss
import numpy as np

from faceid.errors import DuplicateNameError, InvalidNameError, NotFoundError, StorageError
from faceid.interfaces import IdentityRecord, StorageBackend
from faceid.logging_config import get_logger

logger = get_logger(__name__)


def _readonly(matrix: np.ndarray) -> np.ndarray:
    matrix = np.ascontiguousarray(matrix, dtype=np.float32)
    matrix.flags.writeable = False
    return matrix


def _build_index(embeddings: np.ndarray) -> faiss.IndexFlatL2:
    # IndexFlatL2 reports squared Euclidean distances
    index = faiss.IndexFlatL2(embeddings.shape[1])
    if embeddings.shape[0] > 0:
        index.add(np.ascontiguousarray(embeddings, dtype=np.float32))
    return index


@dataclass(frozen=True)
class _Snapshot:
    """Immutable view of the store contents.

    Row ``i`` of ``embeddings`` (and of the FAISS index) belongs to
    ``names[i]``; row order is insertion order.
    """

    names: Tuple[str, ...]
    embeddings: np.ndarray
    index: faiss.IndexFlatL2
    positions: Mapping[str, int] = field(repr=False)

    @classmethod
    def build(cls, names: Sequence[str], embeddings: np.ndarray) -> _Snapshot:
        embeddings = _readonly(embeddings)
        return cls(
            names=tuple(names),
            embeddings=embeddings,
            index=_build_index(embeddings),
            positions=MappingProxyType({name: i for i, name in enumerate(names)}),
        )

    def with_added(self, name: str, embedding: np.ndarray) -> _Snapshot:
        return _Snapshot.build(
            self.names + (name,),
            np.vstack([self.embeddings, embedding[np.newaxis, :]]),
        )

    def without(self, name: str) -> _Snapshot:
        row = self.positions[name]
        return _Snapshot.build(
            self.names[:row] + self.names[row + 1 :],
            np.delete(self.embeddings, row, axis=0),
        )

    def renamed(self, old_name: str, new_name: str) -> _Snapshot:
        # Rows do not move, so the embedding matrix and index are shared
        row = self.positions[old_name]
        names = self.names[:row] + (new_name,) + self.names[row + 1 :]
        return _Snapshot(
            names=names,
            embeddings=self.embeddings,
            index=self.index,
            positions=MappingProxyType({n: i for i, n in enumerate(names)}),
        )

    def records(self) -> List[IdentityRecord]:
        return [
            IdentityRecord(name=name, embedding=self.embeddings[i])
            for i, name in enumerate(self.names)
        ]


class IdentityStore:
    """Thread-safe store of unique named face embeddings.

    The store opens lazily on first access (or explicitly via ``open()``),
    loading all records from its backend. Every mutation is written through to
    the backend before it becomes visible; if the write fails the store is
    left unchanged.

    Distances are squared Euclidean (``||q - e||^2``), which for unit vectors
    equals ``2 - 2 * cosine_similarity``.

    Attributes:
        backend: Durable storage for the records
        dimension: Embedding dimension (512 for ArcFace)

    Example:
        >>> store = IdentityStore(NpzStorageBackend("data/identities.npz"))
        >>> store.add("alice", alice_embedding)
        >>> store.rename("alice", "Alice")
        >>> store.search(query_embedding, limit=3)
        [('Alice', 0.12), ('bob', 1.53), ('carol', 1.87)]
    """

    def __init__(self, backend: StorageBackend, dimension: int = 512):
        """Initialize identity store.

        Args:
            backend: Storage backend to load from and persist to
            dimension: Embedding dimension (default: 512 for ArcFace)
        """
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")

        self.backend = backend
        self.dimension = dimension
        self._snapshot: Optional[_Snapshot] = None
        self._write_lock = threading.Lock()

        logger.debug(f"Initialized IdentityStore with dimension={dimension}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._snapshot is not None

    def open(self) -> None:
        """Load records from the backend. No-op if already open.

        Raises:
            StorageError: If the backend cannot be read or holds vectors of
                the wrong dimension.
        """
        self._current()

    def close(self) -> None:
        """Drop the in-memory state and close the backend.

        A later access re-opens the store from the backend.
        """
        with self._write_lock:
            if self._snapshot is None:
                return
            self._snapshot = None
            self.backend.close()
        logger.info("Identity store closed")

    def _load_locked(self) -> _Snapshot:
        records = self.backend.load()

        names: List[str] = []
        vectors: List[np.ndarray] = []
        seen = set()

        for record in records:
            vector = np.asarray(record.embedding, dtype=np.float32).reshape(-1)
            if vector.shape[0] != self.dimension:
                raise StorageError(
                    f"Stored embedding for '{record.name}' has dimension "
                    f"{vector.shape[0]}, expected {self.dimension}"
                )
            if record.name in seen:
                logger.warning(f"Ignoring duplicate stored record '{record.name}'")
                continue
            seen.add(record.name)
            names.append(record.name)
            vectors.append(vector)

        matrix = (
            np.stack(vectors, axis=0)
            if vectors
            else np.zeros((0, self.dimension), dtype=np.float32)
        )
        snapshot = _Snapshot.build(names, matrix)

        logger.info(f"Identity store opened with {len(names)} identities")
        return snapshot

    def _current_locked(self) -> _Snapshot:
        """Return the published snapshot, loading it first. Caller holds the write lock."""
        if self._snapshot is None:
            self._snapshot = self._load_locked()
        return self._snapshot

    def _current(self) -> _Snapshot:
        """Return the published snapshot, opening the store on first access."""
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        with self._write_lock:
            return self._current_locked()

    def _commit_locked(self, snapshot: _Snapshot) -> None:
        """Persist then publish a new snapshot. Caller holds the write lock."""
        self.backend.save(snapshot.records())
        self._snapshot = snapshot

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_name(name: str) -> None:
        if not isinstance(name, str) or not name.strip():
            raise InvalidNameError("Identity name must be a non-empty string")

    def _as_vector(self, embedding: np.ndarray) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float32)
        if vector.ndim == 2 and vector.shape[0] == 1:
            vector = vector[0]

        if vector.shape != (self.dimension,):
            raise ValueError(
                f"Expected embedding shape [{self.dimension}], got {vector.shape}"
            )
        if not np.all(np.isfinite(vector)):
            raise ValueError("Embedding contains non-finite values")

        return vector

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, name: str, embedding: np.ndarray) -> None:
        """Insert a new identity.

        Args:
            name: Unique identity name
            embedding: L2-normalized embedding, shape [D]

        Raises:
            InvalidNameError: If name is empty.
            ValueError: If the embedding has the wrong shape.
            DuplicateNameError: If the name is already enrolled.
            StorageError: If the change could not be persisted.
        """
        self._check_name(name)
        vector = self._as_vector(embedding)

        with self._write_lock:
            snapshot = self._current_locked()
            if name in snapshot.positions:
                logger.warning(f"Rejected duplicate identity '{name}'")
                raise DuplicateNameError(name)

            self._commit_locked(snapshot.with_added(name, vector))

        logger.info(f"Added identity '{name}'")

    def delete(self, name: str) -> bool:
        """Remove an identity if present.

        Deleting an unknown name is a no-op.

        Returns:
            True if a record was removed, False if the name was absent.

        Raises:
            StorageError: If the change could not be persisted.
        """
        with self._write_lock:
            snapshot = self._current_locked()
            if name not in snapshot.positions:
                logger.debug(f"Delete of unknown identity '{name}' ignored")
                return False

            self._commit_locked(snapshot.without(name))

        logger.info(f"Deleted identity '{name}'")
        return True

    def rename(self, old_name: str, new_name: str) -> None:
        """Atomically rename an identity, keeping its embedding.

        Readers observe either the old name or the new name, never both and
        never neither. The record keeps its insertion position.

        Raises:
            InvalidNameError: If new_name is empty.
            NotFoundError: If old_name is not enrolled.
            DuplicateNameError: If new_name is enrolled and differs from old_name.
            StorageError: If the change could not be persisted.
        """
        self._check_name(new_name)

        with self._write_lock:
            snapshot = self._current_locked()

            if old_name not in snapshot.positions:
                raise NotFoundError(old_name)

            if new_name == old_name:
                return

            if new_name in snapshot.positions:
                logger.warning(f"Rename '{old_name}' -> '{new_name}' rejected: name taken")
                raise DuplicateNameError(new_name)

            self._commit_locked(snapshot.renamed(old_name, new_name))

        logger.info(f"Renamed identity '{old_name}' -> '{new_name}'")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_names(self) -> List[str]:
        """All enrolled names, in insertion order."""
        return list(self._current().names)

    def get(self, name: str) -> Optional[IdentityRecord]:
        """Return the record for a name, or None if absent."""
        snapshot = self._current()
        row = snapshot.positions.get(name)
        if row is None:
            return None
        return IdentityRecord(name=name, embedding=snapshot.embeddings[row].copy())

    def search(self, query: np.ndarray, limit: int = 1) -> List[Tuple[str, float]]:
        """Find the enrolled identities closest to a query embedding.

        Args:
            query: Query embedding, shape [D] or [1, D]
            limit: Maximum number of results (>= 1)

        Returns:
            Up to ``limit`` ``(name, squared_distance)`` pairs, ascending by
            distance; equal distances keep insertion order. Empty if the
            store is empty.

        Raises:
            ValueError: If limit < 1 or the query has the wrong shape.

        Example:
            >>> for name, dist in store.search(query, limit=3):
            ...     print(f"{name}: {dist:.3f}")
        """
        if isinstance(limit, bool) or int(limit) != limit or limit < 1:
            raise ValueError(f"limit must be an integer >= 1, got {limit}")

        vector = self._as_vector(query)
        snapshot = self._current()

        total = snapshot.index.ntotal
        if total == 0:
            return []

        # Rank every row so ties can be ordered by insertion position
        distances, rows = snapshot.index.search(vector[np.newaxis, :], total)
        distances = np.maximum(distances[0], 0.0)
        rows = rows[0]

        order = np.lexsort((rows, distances))[: int(limit)]
        results = [(snapshot.names[rows[i]], float(distances[i])) for i in order]

        logger.debug(f"Search results (limit={limit}): {results}")
        return results

    def __len__(self) -> int:
        return len(self._current().names)

    def __contains__(self, name: object) -> bool:
        return name in self._current().positions

    def __repr__(self) -> str:
        """String representation of store."""
        snapshot = self._snapshot
        if snapshot is None:
            return f"IdentityStore(dim={self.dimension}, not open)"
        return f"IdentityStore(dim={self.dimension}, identities={len(snapshot.names)})"


class InMemoryStorageBackend:
    """Storage backend keeping records in process memory.

    Useful for tests and throwaway deployments; nothing survives a restart
    unless the same backend object is reused.
    """

    def __init__(self, records: Optional[Sequence[IdentityRecord]] = None):
        self._records: List[IdentityRecord] = list(records or [])
        self.save_count = 0

    def load(self) -> List[IdentityRecord]:
        return [
            IdentityRecord(name=r.name, embedding=np.array(r.embedding, dtype=np.float32))
            for r in self._records
        ]

    def save(self, records: Sequence[IdentityRecord]) -> None:
        self._records = [
            IdentityRecord(name=r.name, embedding=np.array(r.embedding, dtype=np.float32))
            for r in records
        ]
        self.save_count += 1

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"InMemoryStorageBackend(records={len(self._records)})"


class NpzStorageBackend:
    """Storage backend persisting all records to a single ``.npz`` file.

    The file holds two arrays: ``names`` (unicode) and ``vectors``
    (float32, [N, D]). Saves write a temporary file in the same directory and
    atomically ``os.replace`` it over the old one, so a crash mid-write leaves
    the previous snapshot intact.

    Example:
        >>> backend = NpzStorageBackend("data/identities.npz")
        >>> store = IdentityStore(backend)
    """

    def __init__(self, path: str | Path, dimension: int = 512):
        self.path = Path(path)
        self.dimension = dimension

    def load(self) -> List[IdentityRecord]:
        """Load records; a missing file means an empty store.

        Raises:
            StorageError: If the file cannot be read or is malformed.
        """
        if not self.path.exists():
            logger.info(f"No identity file at {self.path}, starting empty")
            return []

        try:
            with np.load(self.path, allow_pickle=False) as data:
                names = [str(n) for n in data["names"].tolist()]
                vectors = np.asarray(data["vectors"], dtype=np.float32)
        except (OSError, ValueError, KeyError, zipfile.BadZipFile) as e:
            logger.error(f"Failed to read identity file {self.path}: {e}")
            raise StorageError(f"Cannot read identity file {self.path}: {e}") from e

        if vectors.ndim != 2 or vectors.shape[0] != len(names):
            raise StorageError(
                f"Identity file {self.path} is inconsistent: {len(names)} names, "
                f"vectors of shape {vectors.shape}"
            )

        logger.debug(f"Loaded {len(names)} records from {self.path}")
        return [IdentityRecord(name=n, embedding=vectors[i]) for i, n in enumerate(names)]

    def save(self, records: Sequence[IdentityRecord]) -> None:
        """Atomically replace the identity file with ``records``.

        Raises:
            StorageError: If the file could not be written.
        """
        names = np.array([r.name for r in records], dtype=str)
        vectors = (
            np.stack([np.asarray(r.embedding, dtype=np.float32) for r in records])
            if records
            else np.zeros((0, self.dimension), dtype=np.float32)
        )

        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as f:
                np.savez(f, names=names, vectors=vectors)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            logger.error(f"Failed to write identity file {self.path}: {e}")
            raise StorageError(f"Cannot write identity file {self.path}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logger.debug(f"Saved {len(records)} records to {self.path}")

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"NpzStorageBackend(path={self.path})"
