"""
Error taxonomy for the matching pipeline.

Every failure raised by the core derives from FaceMatchError. The API layer
maps the concrete kinds to HTTP status codes; the core never deals in codes.
"""


class FaceMatchError(Exception):
    """Base class for all matching pipeline errors."""


class DecodeError(FaceMatchError):
    """The payload is not a decodable image (client error)."""


class TensorBuildError(FaceMatchError):
    """The decoded image could not be turned into a model tensor."""


class InferenceError(FaceMatchError):
    """The embedding model rejected the input or failed while running."""


class EmptyOutputError(FaceMatchError):
    """The embedding model produced no output tensor."""


class EmbeddingDimensionError(FaceMatchError, ValueError):
    """An embedding does not have the store's dimension."""


class PersistenceError(FaceMatchError):
    """A durable read or write failed."""


class LockContentionError(FaceMatchError):
    """The shared similarity store could not be locked in time."""


class ModelLoadError(FaceMatchError):
    """The model artifact could not be loaded."""
