import base64
import threading
from io import BytesIO
from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image

from owlface.embedding_service import EmbeddingExtractor
from owlface.exceptions import PersistenceError
from owlface.matching_service import MatchingService
from owlface.vector_store import EmbeddingRecord, SimilarityStore


def make_image_bytes(color=(127, 127, 128), size=(64, 48), fmt="PNG", mode="RGB"):
    """Encode a solid-colour image."""
    image = Image.new(mode, size, color)
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class FakeSession:
    """
    Stands in for an onnxruntime.InferenceSession.

    The embedding is the per-channel mean of the input tensor, so solid
    colours map to fixed 3-d directions (red -> (-1, -1, 1) in BGR order).
    """

    def __init__(self, input_name="data", outputs=None, error=None):
        self.input_name = input_name
        self._outputs = outputs
        self._error = error
        self.calls = []
        self._calls_lock = threading.Lock()

    def get_inputs(self):
        return [SimpleNamespace(name=self.input_name, shape=[1, 3, 112, 112])]

    def run(self, output_names, feed):
        with self._calls_lock:
            self.calls.append(feed)
        if self._error is not None:
            raise self._error
        if self._outputs is not None:
            return self._outputs
        tensor = feed[self.input_name]
        return [tensor.mean(axis=(2, 3)).astype(np.float32)]


class FakePersistence:
    """In-memory persistence collaborator."""

    def __init__(self, records=None, fail=False):
        self.records = list(records or [])
        self.fail = fail

    async def insert_record(self, identifier, origin, embedding):
        if self.fail:
            raise PersistenceError("database unavailable")
        self.records.append(
            EmbeddingRecord(identifier=identifier, origin=origin, embedding=np.asarray(embedding))
        )

    async def load_all_records(self):
        if self.fail:
            raise PersistenceError("database unavailable")
        return list(self.records)

    async def count(self):
        if self.fail:
            raise PersistenceError("database unavailable")
        return len(self.records)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def service(fake_session, persistence):
    matching_service = MatchingService(
        extractor=EmbeddingExtractor(fake_session),
        store=SimilarityStore(dimension=3),
        persistence=persistence
    )
    yield matching_service
    matching_service.close()
