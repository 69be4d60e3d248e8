"""Parser for the remote model's markdown-embedded responses.

The generation endpoint answers with free-form text.  When it produced an
image, the text contains a markdown image reference pointing either at an
http(s) URL or at an inline base64 data URI::

    Here is your figurine! ![image](https://cdn.example.com/result.png)
    ![image](data:image/png;base64,iVBORw0KGgo...) Done.

:func:`parse_response` turns that text into one of two variants:

- :class:`TextOnly` when no image reference is present
- :class:`ImageWithCaption` when one is, tagged with :class:`ImageSourceKind`

The URL form is checked first; the inline form is only tried when no URL
reference matched.  The caption is the text with the image reference removed
and surrounding whitespace trimmed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

HTTP_IMAGE_PATTERN = re.compile(r"!\[[^\]]*\]\((https?://[^\s)]+)\)")
INLINE_IMAGE_PATTERN = re.compile(r"!\[[^\]]*\]\((data:image/[^;]+;base64,[^)]+)\)")


class ImageSourceKind(str, Enum):
    HTTP = "http"
    INLINE = "inline"


@dataclass(frozen=True)
class GeneratedContent:
    """Result of one generation as shown to the caller.

    Attributes:
        image_url: Primary result (data URL, http URL, or server URL).
        text: Caption accompanying the image, or the whole reply.
        secondary_image_url: Intermediate image of a two-step generation.
    """

    image_url: str | None = None
    text: str | None = None
    secondary_image_url: str | None = None


@dataclass(frozen=True)
class TextOnly:
    text: str

    def to_content(self) -> GeneratedContent:
        return GeneratedContent(image_url=None, text=self.text)


@dataclass(frozen=True)
class ImageWithCaption:
    kind: ImageSourceKind
    data: str
    caption: str

    def to_content(self) -> GeneratedContent:
        return GeneratedContent(image_url=self.data, text=self.caption)


ParsedResponse = TextOnly | ImageWithCaption


def parse_response(content: str) -> ParsedResponse:
    """Split a model reply into image reference and caption."""
    for kind, pattern in (
        (ImageSourceKind.HTTP, HTTP_IMAGE_PATTERN),
        (ImageSourceKind.INLINE, INLINE_IMAGE_PATTERN),
    ):
        match = pattern.search(content)
        if match:
            caption = pattern.sub("", content, count=1).strip()
            return ImageWithCaption(kind=kind, data=match.group(1), caption=caption)

    return TextOnly(text=content)
