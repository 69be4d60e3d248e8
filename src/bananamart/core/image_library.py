"""On-disk storage of generated images.

Generated images live as plain files in a single directory.  There is no
metadata database: a user's history is rebuilt purely from filenames, which
follow this convention::

    <phone>-<step>-<sanitizedTitle>-<timestampMillis>.<ext>

- ``phone`` is the account key
- ``step`` is ``single`` or ``two-step``
- ``sanitizedTitle`` is the transformation title with every character
  outside ``[a-zA-Z0-9]`` replaced by ``-``
- ``timestampMillis`` is the save time in epoch milliseconds

Because the sanitized title may itself contain ``-``, parsing anchors on
the phone (first field), the known step names, and the timestamp (last
field); everything in between is the title.  The original title cannot be
recovered exactly when sanitization replaced characters.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path

from bananamart.core.errors import StorageError

logger = logging.getLogger(__name__)

STEPS = ("two-step", "single")
HISTORY_TYPES = {"single": "single-result", "two-step": "final-result"}
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")

_TITLE_UNSAFE = re.compile(r"[^a-zA-Z0-9]")
_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_title(title: str | None) -> str:
    """Replace every non-alphanumeric character with ``-``."""
    if not title:
        return "generated"
    return _TITLE_UNSAFE.sub("-", title)


def build_filename(
    phone: str,
    step: str,
    title: str | None,
    extension: str = "png",
    timestamp_ms: int | None = None,
) -> str:
    """Build a stored filename following the history convention."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{phone}-{step}-{sanitize_title(title)}-{timestamp_ms}.{extension}"


@dataclass(frozen=True)
class HistoryEntry:
    filename: str
    phone: str
    step: str
    title: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "imageUrl": f"/api/images/{self.filename}",
            "filename": self.filename,
            "type": HISTORY_TYPES.get(self.step, self.step),
            "step": self.step,
            "title": self.title,
            "timestamp": self.timestamp,
        }


def parse_filename(filename: str) -> HistoryEntry | None:
    """Recover phone, step, title and timestamp from a stored filename.

    Returns:
        The parsed entry, or ``None`` if the name does not follow the
        convention.
    """
    stem, dot, extension = filename.rpartition(".")
    if not dot or f".{extension.lower()}" not in IMAGE_EXTENSIONS:
        return None

    phone, sep, rest = stem.partition("-")
    if not sep:
        return None

    step = next((s for s in STEPS if rest.startswith(f"{s}-")), None)
    if step is None:
        return None

    title, sep, timestamp = rest[len(step) + 1 :].rpartition("-")
    if not sep or not title or not timestamp.isdigit():
        return None

    return HistoryEntry(
        filename=filename,
        phone=phone,
        step=step,
        title=title,
        timestamp=int(timestamp),
    )


class ImageLibrary:
    """File-backed image store rooted at *images_dir*."""

    def __init__(self, images_dir: Path) -> None:
        self.images_dir = Path(images_dir)
        self.images_dir.mkdir(parents=True, exist_ok=True)

    def safe_filename(self, phone: str, requested: str) -> str:
        """Normalise a client-supplied filename.

        Directory components and unsafe characters are stripped, and the
        phone prefix is enforced so the file shows up in the owner's history.
        """
        name = _FILENAME_UNSAFE.sub("-", Path(requested).name)
        if not name.startswith(f"{phone}-"):
            name = f"{phone}-{name}"
        return name

    def save(self, filename: str, data: bytes) -> Path:
        """Write image bytes to the library.

        Raises:
            StorageError: The write failed.
        """
        path = self.images_dir / filename
        try:
            path.write_bytes(data)
        except OSError as e:
            logger.exception(f"Failed to save image {path}")
            raise StorageError("Failed to save image") from e

        logger.info(f"Image saved: {path} ({len(data)} bytes)")
        return path

    def delete(self, filename: str) -> None:
        path = self.images_dir / filename
        if path.exists():
            path.unlink()

    def resolve(self, filename: str) -> Path | None:
        """Return the path of a servable image, or ``None``.

        ``None`` is returned for names with a non-image extension, names
        escaping the library directory, and files that do not exist.
        """
        if not filename.lower().endswith(IMAGE_EXTENSIONS):
            return None

        base = self.images_dir.resolve()
        try:
            path = (base / filename).resolve()
        except (OSError, ValueError):
            return None

        if path.parent != base:
            logger.warning(f"Rejected image path outside library: {filename}")
            return None
        if not path.is_file():
            return None
        return path

    def history(self, phone: str) -> list[HistoryEntry]:
        """List a user's images, newest first."""
        entries = []
        for path in self.images_dir.iterdir():
            if not path.is_file():
                continue
            entry = parse_filename(path.name)
            if entry is not None and entry.phone == phone:
                entries.append(entry)

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries
