"""Image handling for photo scans.

Validates uploaded images, normalises them to PNG for the vision model, and
builds the short descriptor stored in scan history instead of raw bytes.
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from pawsitive.config import MAX_IMAGE_SIZE, SUPPORTED_IMAGE_FORMATS
from pawsitive.errors import InvalidPayload

__all__ = ["ScanImage", "decode_scan_image", "to_png_base64", "strip_data_url"]


@dataclass
class ScanImage:
    """A decoded, verified scan image."""

    data: bytes
    format: str
    mime_type: str
    digest: str

    @property
    def descriptor(self) -> str:
        """History-safe reference, e.g. ``image:image/png:3fa9c1d2e4b5``."""
        return f"image:{self.mime_type}:{self.digest[:12]}"


def strip_data_url(value: str) -> str:
    """Return the base64 part of a ``data:<mime>;base64,...`` URL."""
    clean = value.strip()
    if clean.startswith("data:"):
        # Format: data:image/jpeg;base64,/9j/4AAQ...
        try:
            _, clean = clean.split(",", 1)
        except ValueError:
            return ""
    return clean.strip()


def decode_scan_image(image_base64: Optional[str], max_size: int = MAX_IMAGE_SIZE) -> ScanImage:
    """Decode and verify a base64 scan image.

    Raises:
        InvalidPayload: empty, not base64, too large, or not a supported format
    """
    if not image_base64 or not isinstance(image_base64, str):
        raise InvalidPayload("Image payload is empty")

    clean = strip_data_url(image_base64)
    if not clean:
        raise InvalidPayload("Image payload is empty")

    try:
        decoded = base64.b64decode(clean, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayload(f"Image payload is not valid base64: {e}") from e

    if len(decoded) > max_size:
        size_mb = len(decoded) / (1024 * 1024)
        raise InvalidPayload(
            f"Image too large ({size_mb:.1f}MB)",
            user_message=f"Image too large ({size_mb:.1f}MB). Please use an image smaller than "
                         f"{max_size / (1024 * 1024):.0f}MB.",
        )

    try:
        with Image.open(BytesIO(decoded)) as img:
            img.verify()
            fmt = (img.format or "").upper()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidPayload(f"Image could not be decoded: {e}") from e

    if fmt not in SUPPORTED_IMAGE_FORMATS:
        raise InvalidPayload(
            f"Unsupported image format: {fmt or 'unknown'}",
            user_message="Unsupported image format. Use a PNG, JPEG, WEBP, GIF or BMP photo.",
        )

    return ScanImage(
        data=decoded,
        format=fmt,
        mime_type=SUPPORTED_IMAGE_FORMATS[fmt],
        digest=hashlib.sha256(decoded).hexdigest(),
    )


def to_png_base64(image: ScanImage) -> str:
    """Convert a verified scan image to base64 PNG for the vision model."""
    # verify() leaves the image unusable, so reopen from bytes
    img = Image.open(BytesIO(image.data))

    # Flatten transparency onto white
    if img.mode in ("RGBA", "LA", "P"):
        if img.mode == "P":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")

    output = BytesIO()
    img.save(output, format="PNG")
    return base64.b64encode(output.getvalue()).decode("utf-8")
