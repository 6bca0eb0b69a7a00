"""Shared helpers for building package archives in memory."""

import io
import tarfile

import pytest
import zstandard as zstd


def build_tar(files, dirs=(), compression=None, symlinks=None):
    """
    Build a tar archive in memory.

    Args:
        files: Mapping of entry path -> bytes
        dirs: Directory entries to add before the files
        compression: None, "gz", "xz" or "zst"
        symlinks: Mapping of entry path -> link target
    """
    buf = io.BytesIO()
    mode = "w" if compression in (None, "zst") else f"w:{compression}"
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for name in dirs:
            info = tarfile.TarInfo(name.rstrip('/'))
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
    payload = buf.getvalue()
    if compression == "zst":
        payload = zstd.ZstdCompressor().compress(payload)
    return payload


@pytest.fixture
def make_tar():
    return build_tar
