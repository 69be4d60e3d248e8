"""Image payload helpers built on Pillow.

Images travel through the service as :class:`ImagePayload` values: raw bytes
plus a MIME type.  Browsers and the remote model exchange them as data URLs
(``data:image/png;base64,...``), so this module also owns the conversion in
both directions.

Post-processing lives here too:

- :func:`resize_to_match` fits a secondary reference image to the primary
  image's aspect ratio before it is sent alongside a two-step generation.
- :func:`embed_watermark` stamps the fixed watermark text onto final images.
"""

from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from bananamart.core.errors import ValidationError

DATA_URL_PATTERN = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)

# MIME type -> file extension used when storing images.
EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}

_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
    "arial.ttf",
]


@dataclass(frozen=True)
class ImagePayload:
    """Raw image bytes with their MIME type."""

    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_data_url(cls, data_url: str) -> ImagePayload:
        """Decode a ``data:image/...;base64,`` URL.

        Raises:
            ValidationError: If the URL is not a base64 image data URL.
        """
        match = DATA_URL_PATTERN.match(data_url.strip()) if data_url else None
        if not match:
            raise ValidationError("Invalid image format")
        try:
            data = base64.b64decode(match.group(2), validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Invalid image data") from e
        return cls(data=data, mime_type=match.group(1))

    @classmethod
    def from_image(cls, image: Image.Image, format: str = "PNG") -> ImagePayload:
        buffer = io.BytesIO()
        image.save(buffer, format=format)
        return cls(data=buffer.getvalue(), mime_type=f"image/{format.lower()}")

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @property
    def extension(self) -> str:
        return EXTENSIONS.get(self.mime_type.lower(), "png")

    def open(self) -> Image.Image:
        """Open the payload with Pillow.

        Raises:
            ValidationError: If the bytes are not a readable image.
        """
        try:
            image = Image.open(io.BytesIO(self.data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ValidationError("Could not read image data") from e
        return image


def resize_to_match(secondary: ImagePayload, primary: ImagePayload) -> ImagePayload:
    """Crop and scale *secondary* to the size of *primary*.

    The secondary image is center-cropped to the primary image's aspect
    ratio and then resized to the primary's pixel dimensions, so the model
    receives two images with the same framing.

    Returns:
        A PNG payload with the primary image's dimensions.
    """
    target_size = primary.open().size
    source = secondary.open().convert("RGBA")
    fitted = ImageOps.fit(source, target_size, method=Image.Resampling.LANCZOS)
    return ImagePayload.from_image(fitted)


def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for path in _FONT_CANDIDATES:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default()


def embed_watermark(image: ImagePayload, text: str) -> ImagePayload:
    """Overlay *text* in the bottom-right corner of *image*.

    The font size scales with the image width.  The text is drawn white at
    partial opacity over a faint dark shadow so it stays legible on both
    light and dark content.

    Returns:
        A PNG payload with the watermark applied.
    """
    base = image.open().convert("RGBA")
    if not text:
        return ImagePayload.from_image(base)

    width, height = base.size
    font = _load_font(max(12, width // 30))

    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    text_width, text_height = right - left, bottom - top

    margin = max(8, width // 60)
    x = width - text_width - margin - left
    y = height - text_height - margin - top

    draw.text((x + 1, y + 1), text, font=font, fill=(0, 0, 0, 90))
    draw.text((x, y), text, font=font, fill=(255, 255, 255, 160))

    return ImagePayload.from_image(Image.alpha_composite(base, overlay))
