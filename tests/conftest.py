import io
import random

import httpx
import pytest
from PIL import Image

from img2prompt.models import ImageFile


def encode_image(size=(64, 48), fmt="PNG", color=(200, 30, 30), mode="RGB", **save_kwargs) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def noisy_jpeg(side: int = 1400, seed: int = 7) -> bytes:
    """Random noise compresses badly, so this lands well above 1 MB."""
    pixels = random.Random(seed).randbytes(side * side * 3)
    buffer = io.BytesIO()
    Image.frombytes("RGB", (side, side), pixels).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def mock_async_client(handler):
    """Factory standing in for ``httpx.AsyncClient`` that routes every request to ``handler``."""
    return lambda **kwargs: httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def png_image() -> ImageFile:
    return ImageFile(name="red.png", data=encode_image(), mime_type="image/png")


@pytest.fixture
def big_jpeg() -> ImageFile:
    return ImageFile(name="noise.jpg", data=noisy_jpeg(), mime_type="image/jpeg")
