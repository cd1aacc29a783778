"""
Pytest configuration and fixtures for sharpei tests
"""

import io

import cv2
import numpy as np
import pytest
from PIL import Image, ImageCms

from core import errors
from core.enums import Interpretation
from core.image.handle import ImageHandle
from services import transform_service


@pytest.fixture(autouse=True)
def clean_state():
    """Start every test with an empty error buffer and profile cache"""
    errors.error_clear()
    transform_service.clear_profile_cache()
    yield
    errors.error_clear()


@pytest.fixture
def test_image():
    """Create a test image for testing"""
    image = np.zeros((48, 64, 3), dtype=np.uint8)
    # Add some content
    cv2.rectangle(image, (8, 8), (30, 30), (255, 255, 255), -1)
    cv2.circle(image, (45, 30), 10, (200, 60, 20), -1)
    return image


@pytest.fixture
def gray_image():
    """Horizontal gradient, one band"""
    row = np.linspace(0, 255, 40).astype(np.uint8)
    return np.tile(row, (30, 1))


@pytest.fixture
def srgb_profile():
    """ICC bytes of a generated sRGB profile"""
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


@pytest.fixture
def encode():
    """Encode a pixel array with Pillow"""

    def _encode(array, format="PNG", **kwargs):
        buffer = io.BytesIO()
        Image.fromarray(array).save(buffer, format=format, **kwargs)
        return buffer.getvalue()

    return _encode


@pytest.fixture
def png_bytes(test_image, encode):
    return encode(test_image, "PNG")


@pytest.fixture
def jpeg_bytes(test_image, encode):
    return encode(test_image, "JPEG", quality=95)


@pytest.fixture
def rotated_jpeg_bytes(encode):
    """JPEG with EXIF orientation 6 (rotate 90 clockwise to display)"""
    image = np.zeros((20, 40, 3), dtype=np.uint8)
    image[:, :20] = (255, 0, 0)
    exif = Image.Exif()
    exif[0x0112] = 6
    exif[0x010F] = "TestCam"
    return encode(image, "JPEG", quality=95, exif=exif.tobytes())


@pytest.fixture
def handle(test_image):
    """Image handle over the test image"""
    h = ImageHandle(test_image.copy(), Interpretation.sRGB)
    yield h
    h.unref()
