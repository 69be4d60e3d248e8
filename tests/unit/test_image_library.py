"""Unit tests for the on-disk image library and the filename convention."""

from __future__ import annotations

import pytest

from bananamart.core.errors import StorageError
from bananamart.core.image_library import (
    ImageLibrary,
    build_filename,
    parse_filename,
    sanitize_title,
)

PHONE = "13800138000"
OTHER = "15912345678"


class TestFilenameConvention:
    """Build and parse stored image filenames."""

    def test_sanitize_title(self):
        """Non-alphanumerics become hyphens; empty titles become "generated"."""
        assert sanitize_title("Line Art Coloring!") == "Line-Art-Coloring-"
        assert sanitize_title(None) == "generated"
        assert sanitize_title("") == "generated"

    def test_build_filename(self):
        """Filenames follow phone-step-title-timestamp.ext."""
        name = build_filename(PHONE, "single", "Figurine", "png", timestamp_ms=1700000000000)
        assert name == f"{PHONE}-single-Figurine-1700000000000.png"

    def test_build_filename_uses_current_time(self):
        """Without a timestamp the current time is used."""
        name = build_filename(PHONE, "single", "Figurine")
        assert parse_filename(name).timestamp > 1_600_000_000_000

    def test_parse_two_step_with_hyphenated_title(self):
        """Hyphens in the step and title should parse correctly."""
        entry = parse_filename(f"{PHONE}-two-step-Line-Art-Coloring-1700000000000.png")
        assert entry.phone == PHONE
        assert entry.step == "two-step"
        assert entry.title == "Line-Art-Coloring"
        assert entry.timestamp == 1700000000000

    @pytest.mark.parametrize(
        "name",
        [
            "notes.txt",
            f"{PHONE}.png",
            f"{PHONE}-triple-Title-1700000000000.png",
            f"{PHONE}-single-Title-yesterday.png",
            f"{PHONE}-single-1700000000000.png",
            f"{PHONE}-single-Title-1700000000000.gif",
        ],
    )
    def test_parse_rejects_foreign_names(self, name):
        """Names outside the convention should be ignored."""
        assert parse_filename(name) is None

    def test_history_entry_dict(self):
        """History entries should serialise with the image URL and type."""
        entry = parse_filename(f"{PHONE}-two-step-Sketch-1700000000000.webp")
        data = entry.to_dict()
        assert data["imageUrl"] == f"/api/images/{PHONE}-two-step-Sketch-1700000000000.webp"
        assert data["type"] == "final-result"
        assert data["timestamp"] == 1700000000000


class TestImageLibrary:
    """Test ImageLibrary file access and history."""

    def test_save_and_resolve(self, library: ImageLibrary):
        """A saved image should resolve to its path."""
        path = library.save(f"{PHONE}-single-A-1.png", b"png-bytes")
        assert path.read_bytes() == b"png-bytes"
        assert library.resolve(f"{PHONE}-single-A-1.png") == path.resolve()

    def test_resolve_missing(self, library: ImageLibrary):
        """Missing files should not resolve."""
        assert library.resolve("missing.png") is None

    def test_resolve_rejects_non_images(self, library: ImageLibrary):
        """Non-image extensions should not resolve."""
        (library.images_dir / "users.json").write_text("{}", encoding="utf-8")
        assert library.resolve("users.json") is None

    def test_resolve_rejects_traversal(self, library: ImageLibrary):
        """Paths escaping the library should not resolve."""
        outside = library.images_dir.parent / "secret.png"
        outside.write_bytes(b"x")
        assert library.resolve("../secret.png") is None

    def test_delete(self, library: ImageLibrary):
        """Deleting is idempotent."""
        library.save("a.png", b"x")
        library.delete("a.png")
        library.delete("a.png")
        assert library.resolve("a.png") is None

    def test_save_failure_raises_storage_error(self, library: ImageLibrary):
        """Write failures should raise StorageError."""
        with pytest.raises(StorageError):
            library.save("missing-dir/a.png", b"x")

    def test_safe_filename_enforces_phone_prefix(self, library: ImageLibrary):
        """Client filenames are flattened and phone-prefixed."""
        assert library.safe_filename(PHONE, "my pic.png") == f"{PHONE}-my-pic.png"
        assert library.safe_filename(PHONE, f"{PHONE}-x.png") == f"{PHONE}-x.png"
        assert library.safe_filename(PHONE, "../../etc/passwd") == f"{PHONE}-passwd"

    def test_history_is_per_user_newest_first(self, library: ImageLibrary):
        """History is filtered by phone and sorted newest first."""
        library.save(build_filename(PHONE, "single", "A", timestamp_ms=1000), b"a")
        library.save(build_filename(PHONE, "two-step", "B C", timestamp_ms=3000), b"b")
        library.save(build_filename(OTHER, "single", "A", timestamp_ms=2000), b"c")
        library.save("stray.png", b"d")

        entries = library.history(PHONE)
        assert [e.timestamp for e in entries] == [3000, 1000]
        assert entries[0].title == "B-C"
        assert [e.phone for e in library.history(OTHER)] == [OTHER]

    def test_history_empty(self, library: ImageLibrary):
        """A user without images has an empty history."""
        assert library.history(PHONE) == []
