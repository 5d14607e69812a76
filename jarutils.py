#!/usr/bin/env python3
"""jarutils.py

Functional helpers for jar/zip archives staged by nativepack

- content_fingerprint() hashes archive entries independent of their order
- file_fingerprint() hashes any staged input for change detection
- transform_archive() rewrites an archive entry by entry
- is_native_library() detects Mach-O payloads (requires macholib)

"""
import hashlib
import shutil
import zipfile
from pathlib import Path
from typing import Callable, Union

from macholib.util import is_platform_file


Pathlike = Union[Path, str]

NATIVE_LIBRARY_SUFFIXES = (".dylib", ".jnilib")

READ_CHUNK_SIZE = 1024 * 1024


def is_archive(path: Pathlike) -> bool:
    """True if path is a regular file holding a zip (jar) archive."""
    path = Path(path)
    return path.is_file() and zipfile.is_zipfile(path)


def content_fingerprint(archive: Pathlike) -> str:
    """Order-independent digest of an archive's entries.

    Directory entries are skipped; for duplicated names the last entry wins.
    Each name and its payload are fed, in ascending name order, into a single
    md5 digest, so timestamps, permissions and physical ordering are ignored.

    :param      archive:  path to a zip or jar file
    :type       archive:  Path | str
    :returns:   lowercase hexadecimal digest
    :rtype:     str
    """
    entries: dict[str, bytes] = {}
    with zipfile.ZipFile(archive) as zin:
        for info in zin.infolist():
            if info.is_dir():
                continue
            entries[info.filename] = zin.read(info)

    md5 = hashlib.md5()
    for name in sorted(entries):
        md5.update(name.encode("utf-8"))
        md5.update(entries[name])
    return md5.hexdigest()


def file_fingerprint(path: Pathlike) -> str:
    """Fingerprint of a staged input: content hash for archives, md5 otherwise."""
    if is_archive(path):
        return content_fingerprint(path)
    md5 = hashlib.md5()
    with open(path, "rb") as fin:
        for chunk in iter(lambda: fin.read(READ_CHUNK_SIZE), b""):
            md5.update(chunk)
    return md5.hexdigest()


def is_native_library(path: Pathlike) -> bool:
    """True for .dylib/.jnilib names or any file with a Mach-O header."""
    path = Path(path)
    if path.name.endswith(NATIVE_LIBRARY_SUFFIXES):
        return True
    return is_platform_file(str(path))


def transform_archive(
    source: Pathlike,
    target: Pathlike,
    transform: Callable[[zipfile.ZipInfo, bytes], bytes],
) -> None:
    """Copy an archive, passing each file entry's payload through transform.

    Entry order, names and metadata are preserved; directory entries are
    copied as is. The target is replaced if it exists.
    """
    source = Path(source)
    target = Path(target)
    tmp_target = target.with_name(target.name + ".tmp")
    with zipfile.ZipFile(source) as zin, zipfile.ZipFile(
        tmp_target, "w"
    ) as zout:
        for info in zin.infolist():
            payload = zin.read(info)
            if not info.is_dir():
                payload = transform(info, payload)
            zout.writestr(info, payload)
    shutil.move(str(tmp_target), str(target))
