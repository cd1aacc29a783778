"""
Tests for the flat image function surface
"""

import io
import struct

import numpy as np
import pytest
from PIL import Image

from core import errors, shim
from core.enums import Intent, Interpretation
from core.image.handle import ImageHandle, ProfileBlob


@pytest.fixture
def decoded(png_bytes):
    """Handle decoded through the flat surface"""
    h = shim.image_new_from_buffer(png_bytes, len(png_bytes), "")
    assert h is not None
    yield h
    shim.object_unref(h)


class TestLifecycle:
    """Test init, shutdown and concurrency"""

    def test_init(self):
        """Test init succeeds and runs single-threaded"""
        assert shim.init("sharpei") == shim.SUCCESS
        assert shim.concurrency_get() == 1

    def test_shutdown_clears_errors(self):
        """Test shutdown empties the error buffer"""
        errors.record("test", "boom")
        shim.shutdown()
        assert errors.error_buffer() == ""

    def test_object_unref_none(self):
        """Test releasing nothing is a no-op"""
        shim.object_unref(None)


class TestDecode:
    """Test image_new_from_buffer"""

    def test_decode(self, decoded):
        """Test a decoded handle has the source geometry"""
        assert (decoded.width, decoded.height, decoded.bands) == (64, 48, 3)

    def test_length_prefix(self, png_bytes):
        """Test only the first length bytes are read"""
        padded = png_bytes + b"\x00" * 100
        h = shim.image_new_from_buffer(padded, len(png_bytes), "")
        assert h is not None
        assert h.width == 64

    def test_failure_sets_error(self):
        """Test a bad buffer returns None and fills the error buffer"""
        assert shim.image_new_from_buffer(b"garbage", 7, "") is None
        assert "image_new_from_buffer" in errors.error_buffer()

    def test_empty(self):
        """Test an empty buffer fails"""
        assert shim.image_new_from_buffer(b"", 0, "") is None
        assert errors.error_buffer() != ""

    def test_length_past_end(self, png_bytes):
        """Test a length past the buffer fails"""
        assert shim.image_new_from_buffer(png_bytes, len(png_bytes) + 1, "") is None

    @pytest.mark.parametrize("option_string", ["[page=0", "[nonsense=1]", "[shrink=x]"])
    def test_malformed_options(self, png_bytes, option_string):
        """Test malformed option strings fail without raising"""
        assert shim.image_new_from_buffer(png_bytes, len(png_bytes), option_string) is None
        assert errors.error_buffer() != ""

    def test_options(self, png_bytes):
        """Test options reach the loader"""
        h = shim.image_new_from_buffer(png_bytes, len(png_bytes), "[shrink=4]")
        assert (h.width, h.height) == (16, 12)

    def test_decoded_is_writable(self, decoded, test_image):
        """Test pixels of a decoded image can be written"""
        decoded.put_pixel(0, 0, [1, 2, 3])
        assert decoded.get_pixel(0, 0) == [1, 2, 3]
        assert decoded.get_pixel(1, 0) == test_image[0, 1].tolist()

    @pytest.mark.parametrize("format", ["PNG", "TIFF"])
    @pytest.mark.parametrize("cut", [4, 8, 16, 0.25, 0.5])
    def test_truncated(self, test_image, encode, format, cut):
        """Test truncated PNG and TIFF buffers fail without raising"""
        data = encode(test_image, format)
        length = int(len(data) * cut) if isinstance(cut, float) else cut
        assert shim.image_new_from_buffer(data[:length], length, "") is None
        assert "image_new_from_buffer" in errors.error_buffer()

    def test_tiff_without_dimensions(self):
        """Test a TIFF whose only IFD entry is the compression tag fails"""
        header = b"II*\x00" + struct.pack("<I", 8)
        ifd = struct.pack("<H", 1) + struct.pack("<HHII", 0x0103, 3, 1, 1) + struct.pack("<I", 0)
        data = header + ifd
        assert shim.image_new_from_buffer(data, len(data), "") is None
        assert "image_new_from_buffer" in errors.error_buffer()

    @pytest.mark.parametrize("format", ["PNG", "TIFF"])
    def test_mutated_headers(self, test_image, encode, format):
        """Test buffers with damaged header bytes never raise"""
        data = encode(test_image, format)
        rng = np.random.default_rng(7)
        for _ in range(50):
            damaged = bytearray(data)
            for offset in rng.integers(0, 128, size=3):
                damaged[offset] = int(rng.integers(0, 256))
            h = shim.image_new_from_buffer(bytes(damaged), len(damaged), "")
            if h is not None:
                assert isinstance(h, ImageHandle)
                shim.object_unref(h)


class TestEncoders:
    """Test the *save_buffer functions"""

    @pytest.mark.parametrize(
        "call,format",
        [
            (lambda h: shim.jpegsave_buffer(h, 90), "JPEG"),
            (lambda h: shim.pngsave_buffer(h, 6), "PNG"),
            (lambda h: shim.webpsave_buffer(h, 80, 0), "WEBP"),
            (lambda h: shim.tiffsave_buffer(h), "TIFF"),
        ],
    )
    def test_encode(self, decoded, call, format):
        """Test each encoder returns a readable buffer and its size"""
        status, data, size = call(decoded)
        assert status == shim.SUCCESS
        assert size == len(data) > 0
        assert Image.open(io.BytesIO(data)).format == format

    def test_png_round_trip(self, decoded, test_image):
        """Test decode then PNG encode then decode is lossless"""
        _, data, size = shim.pngsave_buffer(decoded, 9)
        again = shim.image_new_from_buffer(data, size, "")
        assert np.array_equal(again.pixels, test_image)

    def test_failure(self, decoded):
        """Test an out of range parameter fails with an error message"""
        status, data, size = shim.jpegsave_buffer(decoded, 200)
        assert status != shim.SUCCESS
        assert data is None and size == 0
        assert "jpegsave_buffer" in errors.error_buffer()

    def test_released_handle(self, test_image):
        """Test encoding a released handle fails"""
        h = ImageHandle(test_image, Interpretation.sRGB)
        shim.object_unref(h)
        status, _, _ = shim.pngsave_buffer(h, 6)
        assert status != shim.SUCCESS

    def test_not_a_handle(self):
        """Test passing something that is not a handle fails"""
        status, _, _ = shim.tiffsave_buffer("not a handle")
        assert status != shim.SUCCESS


class TestOperations:
    """Test resize, ICC, copy and autorot"""

    def test_resize_identity(self, decoded, test_image):
        """Test a 1.0 resize keeps pixels"""
        status, out = shim.resize(decoded, 1.0, 1.0)
        assert status == shim.SUCCESS
        assert np.array_equal(out.pixels, test_image)
        shim.object_unref(out)

    def test_resize_failure(self, decoded):
        """Test a zero scale fails"""
        status, out = shim.resize(decoded, 0.0, 1.0)
        assert status != shim.SUCCESS
        assert out is None
        assert "resize" in errors.error_buffer()

    def test_icc_round_trip(self, decoded, srgb_profile, test_image):
        """Test import then export stays within tolerance"""
        decoded.set_blob_copy("icc-profile-data", srgb_profile)

        status, lab = shim.icc_import(decoded, Intent.RELATIVE)
        assert status == shim.SUCCESS
        assert lab.interpretation == Interpretation.LAB

        status, out = shim.icc_export(lab, Intent.RELATIVE, 8)
        assert status == shim.SUCCESS
        diff = np.abs(out.pixels.astype(np.int32) - test_image.astype(np.int32))
        assert diff.mean() < 2.0

    def test_icc_import_without_profile(self, decoded):
        """Test import with no embedded profile fails"""
        status, out = shim.icc_import(decoded, Intent.RELATIVE)
        assert status != shim.SUCCESS
        assert "icc_import" in errors.error_buffer()

    def test_copy_independent(self, decoded):
        """Test fields removed from a copy stay on the source"""
        decoded.set("exif-ifd0-Make", "TestCam")
        status, twin = shim.copy(decoded)
        assert status == shim.SUCCESS

        assert shim.image_remove(twin, "exif-ifd0-Make") == 1
        assert "exif-ifd0-Make" in shim.image_get_fields(decoded)
        assert "exif-ifd0-Make" not in shim.image_get_fields(twin)

    def test_autorot(self, rotated_jpeg_bytes):
        """Test autorot applies the EXIF orientation"""
        h = shim.image_new_from_buffer(rotated_jpeg_bytes, len(rotated_jpeg_bytes), "")
        status, out = shim.autorot(h)
        assert status == shim.SUCCESS
        assert (out.width, out.height) == (20, 40)
        assert "orientation" not in shim.image_get_fields(out)


class TestProfiles:
    """Test profile_load"""

    def test_srgb(self):
        """Test the built-in profile is returned as a blob"""
        status, blob = shim.profile_load("srgb")
        assert status == shim.SUCCESS
        assert isinstance(blob, ProfileBlob)
        shim.object_unref(blob)

    def test_none(self):
        """Test the none profile succeeds with no blob"""
        assert shim.profile_load("none") == (shim.SUCCESS, None)

    def test_missing(self, tmp_path):
        """Test a missing file fails"""
        status, blob = shim.profile_load(str(tmp_path / "nope.icc"))
        assert status != shim.SUCCESS
        assert blob is None
        assert "profile_load" in errors.error_buffer()


class TestFields:
    """Test image_get_fields and image_remove"""

    def test_get_fields(self, rotated_jpeg_bytes):
        """Test decoded metadata is listed after header fields"""
        h = shim.image_new_from_buffer(rotated_jpeg_bytes, len(rotated_jpeg_bytes), "")
        fields = shim.image_get_fields(h)
        assert fields[0] == "width"
        assert "orientation" in fields
        assert "exif-data" in fields

    def test_remove(self, rotated_jpeg_bytes):
        """Test removing present, absent and header fields"""
        h = shim.image_new_from_buffer(rotated_jpeg_bytes, len(rotated_jpeg_bytes), "")
        assert shim.image_remove(h, "orientation") == 1
        assert shim.image_remove(h, "orientation") == 0
        assert shim.image_remove(h, "width") == 0
        assert "orientation" not in shim.image_get_fields(h)

    def test_get_fields_on_bad_handle(self):
        """Test listing fields of a non-handle gives an empty list"""
        assert shim.image_get_fields(None) == []
