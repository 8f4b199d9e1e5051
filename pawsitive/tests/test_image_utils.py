"""Tests for scan image decoding."""

import base64
from io import BytesIO

import pytest
from PIL import Image

from pawsitive.errors import InvalidPayload
from pawsitive.image_utils import decode_scan_image, strip_data_url, to_png_base64


def _encode(img, fmt):
    buf = BytesIO()
    img.save(buf, format=fmt)
    return base64.b64encode(buf.getvalue()).decode("ascii")


class TestDecodeScanImage:

    @pytest.mark.parametrize("fmt,mime", [
        ("PNG", "image/png"),
        ("JPEG", "image/jpeg"),
        ("GIF", "image/gif"),
        ("BMP", "image/bmp"),
    ])
    def test_supported_formats(self, fmt, mime):
        image = decode_scan_image(_encode(Image.new("RGB", (8, 8), "white"), fmt))
        assert image.format == fmt
        assert image.mime_type == mime

    def test_data_url_prefix(self, png_base64):
        image = decode_scan_image(f"data:image/png;base64,{png_base64}")
        assert image.descriptor.startswith("image:image/png:")
        assert len(image.descriptor.split(":")[-1]) == 12

    def test_unsupported_format(self):
        data = _encode(Image.new("RGB", (8, 8)), "TIFF")
        with pytest.raises(InvalidPayload) as exc_info:
            decode_scan_image(data)
        assert "Unsupported image format" in exc_info.value.user_message

    def test_too_large(self, png_base64):
        with pytest.raises(InvalidPayload) as exc_info:
            decode_scan_image(png_base64, max_size=10)
        assert "too large" in exc_info.value.user_message

    @pytest.mark.parametrize("value", [None, "", "data:image/png;base64", "!!!not-base64!!!"])
    def test_unreadable(self, value):
        with pytest.raises(InvalidPayload):
            decode_scan_image(value)


def test_strip_data_url():
    assert strip_data_url("  abc  ") == "abc"
    assert strip_data_url("data:image/jpeg;base64,/9j/4A") == "/9j/4A"


def test_to_png_flattens_transparency(png_base64):
    png = to_png_base64(decode_scan_image(png_base64))
    img = Image.open(BytesIO(base64.b64decode(png)))
    assert img.format == "PNG"
    assert img.mode == "RGB"
