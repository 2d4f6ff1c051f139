import base64
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from conftest import make_image_bytes
from owlface.exceptions import DecodeError
from owlface.image_processing import decode_base64_image, normalize


def test_normalize_returns_model_shaped_float_tensor():
    tensor = normalize(make_image_bytes(size=(640, 480)))

    assert tensor.shape == (1, 3, 112, 112)
    assert tensor.dtype == np.float32
    assert tensor.flags["C_CONTIGUOUS"]


def test_mid_gray_image_normalizes_near_zero():
    tensor = normalize(make_image_bytes(color=(127, 127, 128)))

    assert np.abs(tensor).max() < 0.01


def test_channels_are_in_bgr_order():
    tensor = normalize(make_image_bytes(color=(255, 0, 0)))

    blue, green, red = tensor[0]
    assert np.allclose(red, (255 - 127.5) / 128.0)
    assert np.allclose(green, -127.5 / 128.0)
    assert np.allclose(blue, -127.5 / 128.0)


def test_values_stay_within_unit_range():
    rng = np.random.default_rng(0)
    noise = Image.fromarray(rng.integers(0, 256, size=(90, 70, 3), dtype=np.uint8))
    buffer = BytesIO()
    noise.save(buffer, format="PNG")

    tensor = normalize(buffer.getvalue())
    assert tensor.min() >= -1.0
    assert tensor.max() <= 1.0


@pytest.mark.parametrize("fmt,mode,color", [
    ("JPEG", "RGB", (10, 200, 30)),
    ("PNG", "RGBA", (10, 200, 30, 128)),
    ("PNG", "L", 90),
    ("BMP", "RGB", (1, 2, 3)),
    ("GIF", "P", 5),
    ("PNG", "I;16", 128 * 257),
])
def test_common_formats_and_modes_are_accepted(fmt, mode, color):
    tensor = normalize(make_image_bytes(color=color, fmt=fmt, mode=mode))
    assert tensor.shape == (1, 3, 112, 112)



def test_sixteen_bit_grayscale_is_scaled_not_clipped():
    tensor = normalize(make_image_bytes(color=128 * 257, mode="I;16"))
    assert np.allclose(tensor, 0.5 / 128, atol=1e-6)

def test_custom_input_size():
    tensor = normalize(make_image_bytes(), size=(64, 32))
    assert tensor.shape == (1, 3, 32, 64)


@pytest.mark.parametrize("payload", [b"", b"not an image", make_image_bytes()[:40]])
def test_undecodable_bytes_raise_decode_error(payload):
    with pytest.raises(DecodeError):
        normalize(payload)


def test_decode_base64_image_round_trip():
    data = make_image_bytes()
    encoded = base64.b64encode(data).decode("ascii")

    assert decode_base64_image(encoded) == data
    assert decode_base64_image("data:image/png;base64," + encoded) == data


@pytest.mark.parametrize("payload", ["", "***not base64***", "abc"])
def test_decode_base64_image_rejects_invalid_payloads(payload):
    with pytest.raises(DecodeError):
        decode_base64_image(payload)
