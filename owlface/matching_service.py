"""
Face Matching Service

Orchestrates the two use cases of the service:
- register: image -> embedding -> durable write -> in-memory store
- search: image -> embedding -> ranked similarity query

CPU-bound steps (decode, resize, inference, scan) run on a dedicated thread
pool so they never block the event loop serving requests.
"""
import asyncio
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from owlface.config import DEFAULT_LIMIT, DEFAULT_THRESHOLD, INFERENCE_WORKERS, MODEL_INPUT_SIZE
from owlface.embedding_service import EmbeddingExtractor
from owlface.exceptions import LockContentionError
from owlface.image_processing import normalize
from owlface.vector_store import EmbeddingRecord, QueryResult, SimilarityStore

logger = logging.getLogger(__name__)


class MatchingService:
    """
    Registers and searches faces.

    The similarity store and the persistence collaborator are injected;
    persistence must provide async insert_record(identifier, origin,
    embedding) and load_all_records().
    """

    def __init__(
        self,
        extractor: EmbeddingExtractor,
        store: SimilarityStore,
        persistence,
        executor: Optional[ThreadPoolExecutor] = None,
        input_size: Tuple[int, int] = MODEL_INPUT_SIZE,
        default_threshold: float = DEFAULT_THRESHOLD,
        default_limit: int = DEFAULT_LIMIT
    ):
        self.extractor = extractor
        self.store = store
        self.persistence = persistence
        self.input_size = input_size
        self.default_threshold = default_threshold
        self.default_limit = default_limit

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=INFERENCE_WORKERS,
            thread_name_prefix="inference"
        )

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _embed_sync(self, image_bytes: bytes) -> np.ndarray:
        tensor = normalize(image_bytes, self.input_size)
        return self.extractor.extract(tensor)

    async def embed(self, image_bytes: bytes) -> np.ndarray:
        """Normalize an encoded image and compute its embedding."""
        embedding = await self._run(self._embed_sync, image_bytes)
        logger.debug(f"Embedding calculated (first 5 values): {embedding[:5].tolist()}")
        return embedding

    async def register(self, identifier: uuid.UUID, origin: str, image_bytes: bytes) -> EmbeddingRecord:
        """
        Register a face under an identifier.

        The embedding is written durably first; the in-memory store is only
        updated once that write has succeeded.

        Raises:
            DecodeError, TensorBuildError, InferenceError, EmptyOutputError:
                From the embedding pipeline
            EmbeddingDimensionError: If the model width does not match the store
            PersistenceError: If the durable write fails (store untouched)
            LockContentionError: If the store cannot be locked after the write
        """
        embedding = await self.embed(image_bytes)
        embedding = self.store.validate(embedding)

        await self.persistence.insert_record(identifier, origin, embedding)

        try:
            record = await self._run(self.store.insert, identifier, origin, embedding)
        except LockContentionError:
            logger.error(f"Target {identifier} stored in database but not added to memory")
            raise

        logger.info(f"Registered target {identifier} (origin: '{origin}'), "
                    f"total embeddings in memory: {len(self.store)}")
        return record

    async def search(
        self,
        image_bytes: bytes,
        threshold: Optional[float] = None,
        limit: Optional[int] = None
    ) -> List[QueryResult]:
        """
        Find registered faces similar to an image.

        Args:
            image_bytes: Encoded query image
            threshold: Minimum cosine similarity, defaults to the service default
            limit: Maximum results, defaults to the service default

        Returns:
            Results sorted by similarity, highest first
        """
        threshold = self.default_threshold if threshold is None else threshold
        limit = self.default_limit if limit is None else limit

        start_time = time.time()
        embedding = await self.embed(image_bytes)
        results = await self._run(self.store.query, embedding, threshold, limit)

        processing_time = (time.time() - start_time) * 1000
        logger.info(
            f"Found {len(results)} similar embeddings (threshold={threshold}, limit={limit}) "
            f"in {processing_time:.1f}ms"
        )
        return results

    async def load_records(self) -> int:
        """Seed the in-memory store from persistence."""
        records = await self.persistence.load_all_records()
        loaded = self.store.load(records)

        if loaded:
            logger.info(f"Loaded {loaded} embeddings into memory")
        else:
            logger.info("No existing embeddings found in database")
        if loaded < len(records):
            logger.warning(f"Skipped {len(records) - loaded} embeddings with a mismatched dimension")
        return loaded

    def close(self):
        """Release the worker pool if this service created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)
