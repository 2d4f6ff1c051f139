"""
Image normalization for the ArcFace embedding model

Turns encoded image bytes into the fixed-shape tensor the model expects:
- Decode (JPEG, PNG, WebP, BMP, ...) and convert to RGB
- Resize to 112x112 with a bilinear filter
- Planar BGR layout, values scaled to roughly [-1, 1]
"""
import base64
import binascii
import logging
from io import BytesIO
from typing import Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from owlface.config import MODEL_INPUT_SIZE
from owlface.exceptions import DecodeError, TensorBuildError

logger = logging.getLogger(__name__)

PIXEL_MEAN = 127.5
PIXEL_SCALE = 128.0

# Single-channel integer modes Pillow uses for 16-bit images
SIXTEEN_BIT_MODES = {"I", "I;16", "I;16L", "I;16B", "I;16N"}


def decode_base64_image(payload: str) -> bytes:
    """
    Decode a base64 image payload.

    Accepts plain base64 or a data URL ("data:image/png;base64,...").

    Raises:
        DecodeError: If the payload is not valid base64 or is empty
    """
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]

    try:
        image_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.error(f"Failed to decode base64 image: {e}")
        raise DecodeError(f"Invalid base64 image payload: {e}") from e

    if not image_bytes:
        raise DecodeError("Empty image payload")

    logger.debug(f"Base64 decoded ({len(image_bytes)} bytes)")
    return image_bytes


def _to_eight_bit(image: Image.Image) -> Image.Image:
    """Scale a 16-bit single-channel image down to 8-bit grayscale."""
    pixels = np.clip(np.asarray(image, dtype=np.int64), 0, 65535)
    return Image.fromarray((pixels >> 8).astype(np.uint8), mode="L")


def load_image(image_bytes: bytes) -> Image.Image:
    """
    Decode image bytes into an RGB Pillow image.

    Raises:
        DecodeError: If the bytes are not a decodable image
    """
    if not image_bytes:
        raise DecodeError("Empty image payload")

    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()

        if image.mode in SIXTEEN_BIT_MODES:
            image = _to_eight_bit(image)

        # Convert to RGB (handles PNG with alpha, grayscale, palette, etc.)
        if image.mode != "RGB":
            image = image.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.error(f"Failed to load image from bytes: {e}")
        raise DecodeError(f"Failed to decode image: {e}") from e

    logger.debug(f"Image loaded with size {image.size}")
    return image


def to_tensor(image: Image.Image, size: Tuple[int, int] = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Resize an RGB image and lay it out as a normalized BGR tensor.

    Args:
        image: RGB Pillow image of any size
        size: Target (width, height)

    Returns:
        float32 array of shape (1, 3, height, width)

    Raises:
        TensorBuildError: If the tensor cannot be built
    """
    width, height = size
    resized = image.resize((width, height), Image.Resampling.BILINEAR)

    try:
        pixels = np.asarray(resized, dtype=np.float32)
        # HWC RGB -> CHW BGR
        planar = pixels[:, :, ::-1].transpose(2, 0, 1)
        tensor = ((planar - PIXEL_MEAN) / PIXEL_SCALE)[np.newaxis, ...]
    except (ValueError, IndexError) as e:
        raise TensorBuildError(f"Failed to build input tensor: {e}") from e

    if tensor.shape != (1, 3, height, width):
        raise TensorBuildError(
            f"Unexpected tensor shape {tensor.shape}, expected {(1, 3, height, width)}"
        )

    return np.ascontiguousarray(tensor, dtype=np.float32)


def normalize(image_bytes: bytes, size: Tuple[int, int] = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Complete pipeline: encoded bytes -> model input tensor.

    Args:
        image_bytes: Raw encoded image bytes
        size: Model input (width, height)

    Returns:
        float32 array of shape (1, 3, height, width)
    """
    tensor = to_tensor(load_image(image_bytes), size)
    logger.debug(f"Image preprocessed to tensor {tensor.shape}")
    return tensor
