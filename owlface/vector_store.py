"""
In-Memory Similarity Store

This module keeps every known face embedding in memory and answers
nearest-neighbour queries over them. It provides:
- Append-only insertion of (identifier, origin, embedding) records
- Exact cosine similarity search with threshold and top-K cut-off
- Bulk seeding from the durable store at startup

Search is a full linear scan, computed as one vectorized matrix-vector
product over all rows. There is no approximate index, so the records returned
for a given threshold/limit are always the exact ones.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from owlface.config import DEFAULT_LIMIT, DEFAULT_THRESHOLD, STORE_LOCK_TIMEOUT
from owlface.exceptions import EmbeddingDimensionError, LockContentionError

logger = logging.getLogger(__name__)

Vector = Union[np.ndarray, Sequence[float]]


@dataclass(frozen=True)
class EmbeddingRecord:
    """A stored face embedding."""
    identifier: uuid.UUID
    origin: str
    embedding: np.ndarray


@dataclass(frozen=True)
class QueryResult:
    """A single search hit."""
    identifier: uuid.UUID
    origin: str
    similarity: float


def cosine_similarity(a: Vector, b: Vector) -> float:
    """
    Cosine similarity of two vectors.

    Only the first min(len(a), len(b)) elements are compared. Returns 0.0
    when either compared slice has zero norm.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    width = min(a.size, b.size)
    a, b = a[:width], b[:width]

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


class SimilarityStore:
    """
    Append-only in-memory store of face embeddings.

    Rows live in a preallocated float32 matrix that doubles when full.
    Inserts take the lock exclusively. Queries take the lock only to grab a
    snapshot (row view, count, metadata lists) and score outside it; rows
    below the snapshot count are never rewritten, so concurrent queries see
    a consistent view and any insert that completed before the query started.
    """

    def __init__(
        self,
        dimension: Optional[int] = None,
        initial_capacity: int = 1024,
        lock_timeout: Optional[float] = STORE_LOCK_TIMEOUT
    ):
        """
        Args:
            dimension: Fixed embedding width, or None to take it from the
                first inserted record
            initial_capacity: Rows preallocated on first insert
            lock_timeout: Seconds to wait for the lock, None to wait forever
        """
        self._lock = threading.Lock()
        self._lock_timeout = -1 if lock_timeout is None else lock_timeout
        self._dimension = dimension
        self._initial_capacity = max(1, initial_capacity)

        self._matrix: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None
        self._identifiers: List[uuid.UUID] = []
        self._origins: List[str] = []
        self._count = 0

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self._lock_timeout):
            logger.error("Failed to lock embeddings store")
            raise LockContentionError(
                f"Embeddings store lock not acquired within {self._lock_timeout}s"
            )
        try:
            yield
        finally:
            self._lock.release()

    @property
    def dimension(self) -> Optional[int]:
        """Embedding width, None until fixed."""
        return self._dimension

    def __len__(self) -> int:
        return self._count

    def is_empty(self) -> bool:
        return self._count == 0

    @staticmethod
    def _as_vector(embedding: Vector) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float32)
        if vector.ndim != 1 or vector.size == 0:
            raise EmbeddingDimensionError(
                f"Embedding must be a non-empty 1-D vector, got shape {vector.shape}"
            )
        return vector

    def _check_dimension(self, vector: np.ndarray):
        if self._dimension is not None and vector.size != self._dimension:
            raise EmbeddingDimensionError(
                f"Embedding has {vector.size} values, store expects {self._dimension}"
            )

    def validate(self, embedding: Vector) -> np.ndarray:
        """
        Check that an embedding can be inserted, without inserting it.

        Returns:
            The embedding as a float32 vector

        Raises:
            EmbeddingDimensionError: On shape or dimension mismatch
        """
        vector = self._as_vector(embedding)
        self._check_dimension(vector)
        return vector

    def _ensure_capacity(self, required: int):
        if self._matrix is None:
            capacity = max(self._initial_capacity, required)
            self._matrix = np.empty((capacity, self._dimension), dtype=np.float32)
            self._norms = np.empty(capacity, dtype=np.float32)
            return

        capacity = self._matrix.shape[0]
        if required <= capacity:
            return

        while capacity < required:
            capacity *= 2

        # Fresh buffers; snapshots keep referencing the old ones
        matrix = np.empty((capacity, self._dimension), dtype=np.float32)
        norms = np.empty(capacity, dtype=np.float32)
        matrix[:self._count] = self._matrix[:self._count]
        norms[:self._count] = self._norms[:self._count]
        self._matrix = matrix
        self._norms = norms
        logger.debug(f"Embeddings store grown to {capacity} rows")

    def insert(self, identifier: uuid.UUID, origin: str, embedding: Vector) -> EmbeddingRecord:
        """
        Append a record. Identifiers are not deduplicated.

        Raises:
            EmbeddingDimensionError: If the embedding width does not match
            LockContentionError: If the store cannot be locked
        """
        vector = self._as_vector(embedding)

        with self._locked():
            if self._dimension is None:
                self._dimension = vector.size
            self._check_dimension(vector)

            self._ensure_capacity(self._count + 1)
            row = self._count
            self._matrix[row] = vector
            self._norms[row] = np.linalg.norm(vector)
            self._identifiers.append(identifier)
            self._origins.append(origin)
            self._count = row + 1

        return EmbeddingRecord(identifier=identifier, origin=origin, embedding=vector)

    def load(self, records: Iterable[EmbeddingRecord]) -> int:
        """
        Seed the store with existing records.

        Records whose embedding width does not match are skipped.

        Returns:
            Number of records loaded
        """
        loaded = 0
        for record in records:
            try:
                self.insert(record.identifier, record.origin, record.embedding)
            except EmbeddingDimensionError as e:
                logger.warning(f"Skipping stored embedding for {record.identifier}: {e}")
                continue
            loaded += 1
        return loaded

    def query(
        self,
        vector: Vector,
        threshold: float = DEFAULT_THRESHOLD,
        limit: int = DEFAULT_LIMIT
    ) -> List[QueryResult]:
        """
        Find the stored embeddings most similar to a vector.

        Args:
            vector: Query embedding; a different width is compared on the
                common prefix
            threshold: Minimum cosine similarity to keep
            limit: Maximum number of results

        Returns:
            Results sorted by similarity, highest first; exact ties keep
            insertion order
        """
        if limit <= 0:
            return []

        query = np.asarray(vector, dtype=np.float32).ravel()

        with self._locked():
            count = self._count
            if count == 0:
                return []
            matrix = self._matrix[:count]
            norms = self._norms[:count]
            identifiers = self._identifiers
            origins = self._origins

        scores = self._score(matrix, norms, query)

        candidates = np.flatnonzero(scores >= threshold)
        order = candidates[np.argsort(-scores[candidates], kind="stable")][:limit]

        return [
            QueryResult(
                identifier=identifiers[i],
                origin=origins[i],
                similarity=float(scores[i])
            )
            for i in order
        ]

    @staticmethod
    def _score(matrix: np.ndarray, norms: np.ndarray, query: np.ndarray) -> np.ndarray:
        """Cosine similarity of the query against every row."""
        width = min(matrix.shape[1], query.size)
        if width != matrix.shape[1]:
            matrix = matrix[:, :width]
            norms = np.linalg.norm(matrix, axis=1)
        query = query[:width]

        # Scores are compared against the threshold at the precision returned
        dots = (matrix @ query).astype(np.float64)
        denominator = norms.astype(np.float64) * float(np.linalg.norm(query))

        scores = np.zeros(dots.shape, dtype=np.float64)
        np.divide(dots, denominator, out=scores, where=denominator > 0)
        return scores
