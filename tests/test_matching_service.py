import asyncio
import threading
import uuid

import numpy as np
import pytest

from conftest import FakePersistence, FakeSession, make_image_bytes
from owlface.embedding_service import EmbeddingExtractor
from owlface.exceptions import (
    DecodeError,
    EmbeddingDimensionError,
    InferenceError,
    PersistenceError
)
from owlface.matching_service import MatchingService
from owlface.vector_store import EmbeddingRecord, SimilarityStore

RED = make_image_bytes(color=(255, 0, 0))
ORANGE = make_image_bytes(color=(255, 128, 0))
BLUE = make_image_bytes(color=(0, 0, 255))


def test_register_persists_then_inserts(service, persistence):
    target = uuid.uuid4()

    record = asyncio.run(service.register(target, "camera-01", RED))

    assert record.identifier == target
    assert len(service.store) == 1
    assert [r.identifier for r in persistence.records] == [target]
    assert np.allclose(persistence.records[0].embedding, record.embedding)
    # BGR channel means of a pure red image
    assert np.allclose(record.embedding, [-127.5 / 128, -127.5 / 128, 127.5 / 128])


def test_failed_durable_write_leaves_store_untouched(service, persistence):
    asyncio.run(service.register(uuid.uuid4(), "camera-01", RED))
    persistence.fail = True

    with pytest.raises(PersistenceError):
        asyncio.run(service.register(uuid.uuid4(), "camera-01", BLUE))

    assert len(service.store) == 1


def test_dimension_mismatch_is_rejected_before_durable_write(fake_session, persistence):
    matching_service = MatchingService(
        extractor=EmbeddingExtractor(fake_session),
        store=SimilarityStore(dimension=512),
        persistence=persistence
    )
    try:
        with pytest.raises(EmbeddingDimensionError):
            asyncio.run(matching_service.register(uuid.uuid4(), "camera-01", RED))
    finally:
        matching_service.close()

    assert persistence.records == []
    assert matching_service.store.is_empty()


def test_search_returns_ranked_matches_above_threshold(service):
    red, orange, blue = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    async def scenario():
        await service.register(blue, "lobby", BLUE)
        await service.register(orange, "lobby", ORANGE)
        await service.register(red, "gate", RED)
        return await service.search(RED, threshold=0.7, limit=10)

    results = asyncio.run(scenario())

    assert [r.identifier for r in results] == [red, orange]
    assert results[0].origin == "gate"
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert 0.7 <= results[1].similarity < 0.9


def test_search_uses_service_defaults(fake_session, persistence):
    matching_service = MatchingService(
        extractor=EmbeddingExtractor(fake_session),
        store=SimilarityStore(dimension=3),
        persistence=persistence,
        default_threshold=-1.0,
        default_limit=2
    )

    async def scenario():
        for image in (RED, ORANGE, BLUE):
            await matching_service.register(uuid.uuid4(), "x", image)
        return await matching_service.search(BLUE)

    try:
        results = asyncio.run(scenario())
    finally:
        matching_service.close()

    assert len(results) == 2


def test_search_on_empty_store_returns_nothing(service):
    assert asyncio.run(service.search(RED)) == []


def test_search_with_bad_image_raises_decode_error(service):
    with pytest.raises(DecodeError):
        asyncio.run(service.search(b"garbage"))


def test_inference_failure_propagates_without_store_change(persistence):
    matching_service = MatchingService(
        extractor=EmbeddingExtractor(FakeSession(error=RuntimeError("boom"))),
        store=SimilarityStore(dimension=3),
        persistence=persistence
    )
    try:
        with pytest.raises(InferenceError):
            asyncio.run(matching_service.register(uuid.uuid4(), "x", RED))
    finally:
        matching_service.close()

    assert persistence.records == []


def test_load_records_seeds_store_and_skips_bad_rows(fake_session):
    known = uuid.uuid4()
    persistence = FakePersistence(records=[
        EmbeddingRecord(known, "seed", np.array([-1.0, -1.0, 1.0], dtype=np.float32)),
        EmbeddingRecord(uuid.uuid4(), "legacy", np.ones(5, dtype=np.float32)),
    ])
    matching_service = MatchingService(
        extractor=EmbeddingExtractor(fake_session),
        store=SimilarityStore(dimension=3),
        persistence=persistence
    )

    async def scenario():
        loaded = await matching_service.load_records()
        return loaded, await matching_service.search(RED, threshold=0.99, limit=1)

    try:
        loaded, results = asyncio.run(scenario())
    finally:
        matching_service.close()

    assert loaded == 1
    assert [r.identifier for r in results] == [known]


def test_concurrent_registrations_are_all_visible(service, persistence):
    ids = [uuid.uuid4() for _ in range(12)]

    async def scenario():
        await asyncio.gather(*(service.register(i, "burst", RED) for i in ids))
        return await service.search(RED, threshold=0.99, limit=100)

    results = asyncio.run(scenario())

    assert len(service.store) == 12
    assert len(persistence.records) == 12
    assert {r.identifier for r in results} == set(ids)


def test_store_insert_runs_off_the_event_loop_thread(service):
    seen = []
    insert = service.store.insert

    def recording_insert(*args):
        seen.append(threading.current_thread().name)
        return insert(*args)

    service.store.insert = recording_insert

    asyncio.run(service.register(uuid.uuid4(), "camera-01", RED))

    assert len(seen) == 1
    assert seen[0].startswith("inference")
    assert seen[0] != threading.main_thread().name
