"""Tests for jarutils archive helpers."""

import hashlib
import zipfile
from pathlib import Path

import pytest

from jarutils import (
    content_fingerprint,
    file_fingerprint,
    is_archive,
    is_native_library,
    transform_archive,
)


def make_zip(path: Path, entries, dirs=(), date_time=(2020, 1, 1, 0, 0, 0)):
    """Write entries (name, bytes) in the given order."""
    with zipfile.ZipFile(path, "w") as zout:
        for name in dirs:
            zout.writestr(zipfile.ZipInfo(name, date_time), b"")
        for name, payload in entries:
            zout.writestr(zipfile.ZipInfo(name, date_time), payload)
    return path


class TestContentFingerprint:
    """Tests for content_fingerprint()."""

    def test_order_independent(self, tmp_path):
        """Reordering entries does not change the fingerprint."""
        a = make_zip(tmp_path / "a.jar", [("x", b"1"), ("y", b"2")])
        b = make_zip(tmp_path / "b.jar", [("y", b"2"), ("x", b"1")])
        assert content_fingerprint(a) == content_fingerprint(b)

    def test_metadata_ignored(self, tmp_path):
        """Timestamps do not affect the fingerprint."""
        a = make_zip(tmp_path / "a.jar", [("x", b"1")])
        b = make_zip(
            tmp_path / "b.jar", [("x", b"1")], date_time=(2023, 6, 1, 12, 0, 0)
        )
        assert content_fingerprint(a) == content_fingerprint(b)

    def test_one_byte_change(self, tmp_path):
        """Changing a single payload byte changes the fingerprint."""
        a = make_zip(tmp_path / "a.jar", [("x", b"abc")])
        b = make_zip(tmp_path / "b.jar", [("x", b"abd")])
        assert content_fingerprint(a) != content_fingerprint(b)

    def test_rename_changes_fingerprint(self, tmp_path):
        """Renaming an entry changes the fingerprint."""
        a = make_zip(tmp_path / "a.jar", [("x", b"1")])
        b = make_zip(tmp_path / "b.jar", [("z", b"1")])
        assert content_fingerprint(a) != content_fingerprint(b)

    def test_directories_ignored(self, tmp_path):
        """Directory entries do not contribute."""
        a = make_zip(tmp_path / "a.jar", [("pkg/x", b"1")])
        b = make_zip(tmp_path / "b.jar", [("pkg/x", b"1")], dirs=["pkg/"])
        assert content_fingerprint(a) == content_fingerprint(b)

    def test_known_digest(self, tmp_path):
        """Names and payloads are hashed in ascending name order."""
        archive = make_zip(tmp_path / "a.jar", [("b", b"2"), ("a", b"1")])
        expected = hashlib.md5(b"a" + b"1" + b"b" + b"2").hexdigest()
        assert content_fingerprint(archive) == expected

    def test_empty_archive(self, tmp_path):
        """An archive with no entries hashes to the empty md5."""
        archive = make_zip(tmp_path / "empty.jar", [])
        assert content_fingerprint(archive) == hashlib.md5().hexdigest()

    def test_duplicate_names_last_wins(self, tmp_path):
        """For duplicated names only the last payload counts."""
        archive = tmp_path / "dup.jar"
        with pytest.warns(UserWarning):
            make_zip(archive, [("x", b"first"), ("x", b"second")])
        single = make_zip(tmp_path / "single.jar", [("x", b"second")])
        assert content_fingerprint(archive) == content_fingerprint(single)

    def test_not_an_archive(self, tmp_path):
        """A non-zip file is rejected."""
        path = tmp_path / "plain.txt"
        path.write_text("hello")
        with pytest.raises(zipfile.BadZipFile):
            content_fingerprint(path)


class TestFileFingerprint:
    """Tests for file_fingerprint()."""

    def test_archive_uses_content_fingerprint(self, tmp_path):
        archive = make_zip(tmp_path / "a.jar", [("x", b"1")])
        assert file_fingerprint(archive) == content_fingerprint(archive)

    def test_plain_file_md5(self, tmp_path):
        path = tmp_path / "app.cfg"
        path.write_bytes(b"key=value")
        assert file_fingerprint(path) == hashlib.md5(b"key=value").hexdigest()


class TestArchiveHelpers:
    """Tests for is_archive(), is_native_library() and transform_archive()."""

    def test_is_archive(self, tmp_path):
        archive = make_zip(tmp_path / "a.jar", [("x", b"1")])
        text = tmp_path / "a.txt"
        text.write_text("no")
        assert is_archive(archive)
        assert not is_archive(text)
        assert not is_archive(tmp_path / "missing.jar")
        assert not is_archive(tmp_path)

    def test_native_library_by_suffix(self, tmp_path):
        lib = tmp_path / "libfoo.dylib"
        lib.write_bytes(b"not really mach-o")
        assert is_native_library(lib)

    def test_plain_file_not_native(self, tmp_path):
        path = tmp_path / "README"
        path.write_bytes(b"plain text, long enough to read a header")
        assert not is_native_library(path)

    def test_macho_header_detected(self, tmp_path):
        """A Mach-O magic number marks a file as native."""
        path = tmp_path / "libnative"
        path.write_bytes(bytes.fromhex("cffaedfe") + b"\x00" * 60)
        assert is_native_library(path)

    def test_transform_archive(self, tmp_path):
        """Payloads are rewritten while names and order are kept."""
        source = make_zip(
            tmp_path / "in.jar", [("b.txt", b"b"), ("a.txt", b"a")], dirs=["d/"]
        )
        target = tmp_path / "out.jar"
        transform_archive(source, target, lambda info, data: data.upper())

        with zipfile.ZipFile(target) as zin:
            assert zin.namelist() == ["d/", "b.txt", "a.txt"]
            assert zin.read("b.txt") == b"B"
            assert zin.read("a.txt") == b"A"
        assert not (tmp_path / "out.jar.tmp").exists()

    def test_transform_archive_in_place(self, tmp_path):
        """Source and target may be the same file."""
        archive = make_zip(tmp_path / "in.jar", [("x", b"1")])
        transform_archive(archive, archive, lambda info, data: data + b"2")
        with zipfile.ZipFile(archive) as zin:
            assert zin.read("x") == b"12"
