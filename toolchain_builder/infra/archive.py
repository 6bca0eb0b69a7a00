"""
Archive codec for package payloads.

Package files are compressed tar archives held in memory. Two operations
are offered: list every entry path, and extract one entry by path. Each
extraction reopens the payload; a single-pass streaming extraction would
need a different codec interface.

Supported containers:
- tar.zst (pacman/MSYS2 default), decompressed with zstandard
- tar.xz, tar.gz, tar.bz2 and plain tar through tarfile
"""

import io
import logging
import tarfile
from typing import Iterator, List, Tuple

import zstandard as zstd

from ..errors import ArchiveError

logger = logging.getLogger(__name__)

ZSTD_MAGIC = b'\x28\xb5\x2f\xfd'


def _decompress(payload: bytes) -> io.BytesIO:
    """Return a seekable tar stream for the payload."""
    if payload[:4] == ZSTD_MAGIC:
        try:
            dctx = zstd.ZstdDecompressor()
            with dctx.stream_reader(io.BytesIO(payload)) as reader:
                return io.BytesIO(reader.read())
        except zstd.ZstdError as e:
            raise ArchiveError(f"Corrupt zstd stream: {e}") from e
    return io.BytesIO(payload)


def _open(payload: bytes) -> tarfile.TarFile:
    if not payload:
        raise ArchiveError("Empty archive")
    try:
        return tarfile.open(fileobj=_decompress(payload), mode="r:*")
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ArchiveError(f"Unreadable archive: {e}") from e


def entry_name(member: tarfile.TarInfo) -> str:
    """Archive path of a member; directories keep a trailing slash."""
    if member.isdir() and not member.name.endswith('/'):
        return member.name + '/'
    return member.name


def list_entries(payload: bytes) -> List[str]:
    """
    List every entry path in a package archive.

    Raises:
        ArchiveError: If the payload is not a readable archive
    """
    with _open(payload) as tar:
        try:
            return [entry_name(member) for member in tar.getmembers()]
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ArchiveError(f"Unreadable archive: {e}") from e


def iter_files(payload: bytes) -> Iterator[Tuple[str, bytes]]:
    """
    Yield (path, contents) for every regular file in a single pass.

    Used for repository databases, where every member is read anyway.
    """
    with _open(payload) as tar:
        try:
            for member in tar:
                if not member.isfile():
                    continue
                handle = tar.extractfile(member)
                if handle is None:
                    continue
                with handle:
                    yield member.name, handle.read()
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ArchiveError(f"Unreadable archive: {e}") from e


def extract_entry(payload: bytes, path: str) -> bytes:
    """
    Extract the contents of one entry.

    Hard and symbolic links resolve to the contents of the file they
    point at. Dangling links and special members (devices, fifos) have
    no content and are rejected.

    Raises:
        ArchiveError: If the payload is malformed, the entry is missing or
            it has no file contents
    """
    with _open(payload) as tar:
        try:
            member = tar.getmember(path.rstrip('/'))
        except KeyError:
            raise ArchiveError(f"No such entry: {path}")
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ArchiveError(f"Unreadable archive: {e}") from e

        if not (member.isfile() or member.islnk() or member.issym()):
            raise ArchiveError(f"Not a regular file: {path}")
        try:
            handle = tar.extractfile(member)
            if handle is None:
                raise ArchiveError(f"No content for entry: {path}")
            with handle:
                return handle.read()
        except (tarfile.TarError, EOFError, OSError, KeyError) as e:
            raise ArchiveError(f"Failed to read {path}: {e}") from e
