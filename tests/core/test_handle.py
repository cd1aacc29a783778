"""
Tests for image handles and profile blobs
"""

import numpy as np
import pytest

from core.enums import BandFormat, Coding, Interpretation
from core.errors import ImageError
from core.image.handle import ImageHandle, ProfileBlob


class TestImageHandle:
    """Test ImageHandle header, lifecycle and pixel sharing"""

    def test_header(self, handle):
        """Test header fields follow the pixel array"""
        assert handle.width == 64
        assert handle.height == 48
        assert handle.bands == 3
        assert handle.format == BandFormat.UCHAR
        assert handle.coding == Coding.NONE
        assert handle.interpretation == Interpretation.sRGB

    def test_two_dimensional_array_gets_one_band(self, gray_image):
        """Test a 2-D array becomes a single-band image"""
        h = ImageHandle(gray_image, Interpretation.B_W)
        assert h.bands == 1
        assert h.pixels.shape == (30, 40, 1)

    def test_unsupported_dtype(self):
        """Test complex pixels are rejected"""
        with pytest.raises(ImageError):
            ImageHandle(np.zeros((2, 2), dtype=np.complex64), Interpretation.B_W)

    def test_pixels_read_only(self, handle):
        """Test the pixels view cannot be written"""
        with pytest.raises(ValueError):
            handle.pixels[0, 0, 0] = 1

    def test_copy_shares_until_write(self, handle):
        """Test copies see identical pixels and diverge on write"""
        twin = handle.copy()
        assert np.shares_memory(twin.pixels, handle.pixels)

        twin.put_pixel(0, 0, [1, 2, 3])
        assert twin.get_pixel(0, 0) == [1, 2, 3]
        assert handle.get_pixel(0, 0) == [0, 0, 0]
        assert not np.shares_memory(twin.pixels, handle.pixels)
        twin.unref()

    def test_original_write_does_not_show_in_copy(self, handle):
        """Test writes to the source after copy stay private"""
        twin = handle.copy()
        handle.put_pixel(1, 1, [9, 9, 9])
        assert twin.get_pixel(1, 1) == [0, 0, 0]
        twin.unref()

    def test_copy_metadata_independent(self, handle):
        """Test removing a field from a copy keeps it on the source"""
        handle.set("exif-ifd0-Make", "TestCam")
        twin = handle.copy()
        assert twin.remove("exif-ifd0-Make")
        assert handle.get("exif-ifd0-Make") == "TestCam"
        twin.unref()

    def test_put_pixel_out_of_range(self, handle):
        """Test writes outside the image fail"""
        with pytest.raises(ImageError):
            handle.put_pixel(64, 0, [0, 0, 0])

    def test_unref_releases(self, test_image):
        """Test the last unref releases the handle"""
        h = ImageHandle(test_image, Interpretation.sRGB)
        h.ref()
        h.unref()
        assert not h.released
        h.unref()
        assert h.released

        with pytest.raises(ImageError):
            h.width
        # Extra unrefs are ignored
        h.unref()

    def test_released_copy_keeps_source_alive(self, handle):
        """Test releasing a copy leaves the source usable"""
        twin = handle.copy()
        twin.unref()
        assert handle.width == 64


class TestImageFields:
    """Test metadata access on handles"""

    def test_header_fields_listed_first(self, handle):
        """Test header field names precede metadata names"""
        handle.set("loader", "pngload_buffer")
        fields = handle.get_fields()
        assert fields[:3] == ["width", "height", "bands"]
        assert fields[-1] == "loader"

    def test_get_typeof(self, handle):
        """Test typeof for header, blob and missing fields"""
        handle.set_blob_copy("icc-profile-data", b"abc")
        assert handle.get_typeof("width") is int
        assert handle.get_typeof("icc-profile-data") is bytes
        assert handle.get_typeof("missing") is None

    def test_get_as_string(self, handle):
        """Test string forms of blobs and enums"""
        handle.set_blob_copy("exif-data", b"\x00" * 10)
        assert handle.get_as_string("exif-data") == "10 bytes of binary data"
        assert handle.get_as_string("interpretation") == "sRGB"
        assert handle.get_as_string("width") == "64"

    def test_get_missing(self, handle):
        """Test reading an absent field fails"""
        with pytest.raises(ImageError):
            handle.get("missing")

    def test_header_fields_read_only(self, handle):
        """Test header fields cannot be set or removed"""
        with pytest.raises(ImageError):
            handle.set("width", 10)
        assert handle.remove("width") is False
        assert handle.width == 64

    def test_remove(self, handle):
        """Test removing present and absent fields"""
        handle.set("orientation", 6)
        assert handle.remove("orientation") is True
        assert "orientation" not in handle.get_fields()
        assert handle.remove("orientation") is False

    def test_set_blob_copy_copies(self, handle):
        """Test the stored blob does not follow the caller's buffer"""
        data = bytearray(b"abc")
        handle.set_blob_copy("xmp-data", data)
        data[0] = ord("z")
        assert handle.get("xmp-data") == b"abc"


class TestProfileBlob:
    """Test ProfileBlob reference counting"""

    def test_data_and_length(self):
        """Test blob contents"""
        blob = ProfileBlob(b"1234", name="test")
        assert blob.data == b"1234"
        assert blob.length == 4
        assert len(blob) == 4

    def test_release(self):
        """Test the blob is released after the last unref"""
        blob = ProfileBlob(b"1234")
        blob.ref()
        blob.unref()
        assert blob.data == b"1234"
        blob.unref()
        with pytest.raises(ImageError):
            blob.data
