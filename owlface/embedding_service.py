"""
Face Embedding Service using ONNX Runtime

This module wraps the ArcFace ONNX model:
- Loading the model artifact into an inference session
- Running a forward pass on a normalized image tensor
- Flattening the output into a plain embedding vector
"""
import contextlib
import logging
import threading
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import onnxruntime as ort

from owlface.config import MODEL_INPUT_SIZE
from owlface.exceptions import EmptyOutputError, InferenceError, ModelLoadError

logger = logging.getLogger(__name__)


def load_model(model_path: Union[str, Path], intra_op_threads: int = 0) -> ort.InferenceSession:
    """
    Load an ONNX model into an inference session.

    The session is expensive to build and safe to share between threads,
    so it should be created once at startup.

    Args:
        model_path: Path to the .onnx artifact
        intra_op_threads: Threads per operator, 0 for the runtime default

    Returns:
        Ready-to-run InferenceSession

    Raises:
        ModelLoadError: If the file is missing or cannot be loaded
    """
    model_path = Path(model_path)
    if not model_path.is_file():
        raise ModelLoadError(f"Model file not found: {model_path}")

    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    if intra_op_threads > 0:
        options.intra_op_num_threads = intra_op_threads

    logger.info(f"Loading ONNX model from {model_path}...")
    try:
        session = ort.InferenceSession(
            str(model_path),
            sess_options=options,
            providers=["CPUExecutionProvider"]
        )
    except Exception as e:
        raise ModelLoadError(f"Failed to load model {model_path}: {e}") from e

    logger.info(f"ONNX model loaded successfully ({model_path.name})")
    return session


class EmbeddingExtractor:
    """
    Turns model input tensors into face embeddings.

    Wraps a single long-lived inference session shared by every request.
    InferenceSession.run is reentrant, so calls run concurrently unless
    serialize_calls is set, in which case they queue on one lock.
    """

    def __init__(self, session, serialize_calls: bool = False):
        self._session = session
        self._lock = threading.Lock() if serialize_calls else None

        inputs = session.get_inputs()
        if not inputs:
            raise ModelLoadError("Model declares no inputs")
        self.input_name = inputs[0].name

    def _guard(self):
        return self._lock if self._lock is not None else contextlib.nullcontext()

    def extract(self, tensor: np.ndarray) -> np.ndarray:
        """
        Run the model on one tensor.

        Args:
            tensor: float32 array of shape (1, 3, H, W)

        Returns:
            1-D float32 embedding

        Raises:
            InferenceError: If the session rejects the input or fails
            EmptyOutputError: If no output tensor is produced
        """
        feed = {self.input_name: np.ascontiguousarray(tensor, dtype=np.float32)}

        try:
            with self._guard():
                outputs = self._session.run(None, feed)
        except Exception as e:
            logger.error(f"ONNX inference failed: {e}")
            raise InferenceError(f"Inference failed: {e}") from e

        if not outputs:
            logger.error("ONNX output is empty")
            raise EmptyOutputError("Model produced no output")

        embedding = np.asarray(outputs[0], dtype=np.float32).ravel()
        if embedding.size == 0:
            logger.error("ONNX output tensor is empty")
            raise EmptyOutputError("Model produced an empty output tensor")

        return embedding

    def warmup(self, size: Tuple[int, int] = MODEL_INPUT_SIZE) -> int:
        """Run a dummy inference and return the embedding width."""
        width, height = size
        dummy = np.zeros((1, 3, height, width), dtype=np.float32)
        dimension = self.extract(dummy).size
        logger.info(f"Model warmed up, embedding dimension {dimension}")
        return dimension
