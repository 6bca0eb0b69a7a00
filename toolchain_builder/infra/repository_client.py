"""
Package repository client for toolchain-builder.

Talks to a pacman-style package repository (Arch Linux, MSYS2):
- Downloads the sync database (<repo>/<arch>/<name>.db) and parses the
  per-package "desc" records into PackageMetadata
- Streams package archives for the fetch service

Repository layout:
    http://repo.msys2.org/mingw/x86_64/mingw64.db
    http://repo.msys2.org/mingw/x86_64/mingw-w64-x86_64-zlib-1.3-1-any.pkg.tar.zst
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

import requests

from ..domain import DependencyReference, PackageMetadata
from ..errors import ArchiveError, DownloadFailure, IndexLoadError
from ..progress import ProgressSink
from . import archive

logger = logging.getLogger(__name__)

# Chunk size for streaming downloads
CHUNK_SIZE = 64 * 1024

USER_AGENT = 'toolchain-builder'


def parse_desc(text: str) -> Dict[str, List[str]]:
    """
    Parse a pacman "desc" record.

    The format is a sequence of sections, each a ``%FIELD%`` header line
    followed by one value per line and terminated by a blank line:

        %NAME%
        mingw-w64-x86_64-gcc

        %DEPENDS%
        mingw-w64-x86_64-binutils
        mingw-w64-x86_64-zlib>=1.2

    Returns:
        Mapping of field name (without percent signs) to its value lines
    """
    fields: Dict[str, List[str]] = {}
    current: Optional[str] = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            current = None
            continue
        if current is None and len(line) > 2 and line.startswith('%') and line.endswith('%'):
            current = line[1:-1]
            fields.setdefault(current, [])
        elif current is not None:
            fields[current].append(line)

    return fields


def package_from_desc(text: str) -> Optional[PackageMetadata]:
    """Build PackageMetadata from a desc record; None if it has no name."""
    fields = parse_desc(text)
    names = fields.get('NAME')
    if not names:
        return None

    def first(key: str) -> Optional[str]:
        values = fields.get(key)
        return values[0] if values else None

    csize = first('CSIZE')
    return PackageMetadata(
        name=names[0],
        version=first('VERSION') or "",
        depends=tuple(DependencyReference.parse(dep) for dep in fields.get('DEPENDS', [])),
        filename=first('FILENAME'),
        csize=int(csize) if csize and csize.isdigit() else None,
        provides=tuple(DependencyReference.parse(p).name for p in fields.get('PROVIDES', [])),
        description=first('DESC'),
        arch=first('ARCH'),
    )


@dataclass
class PackageIndex:
    """
    In-memory package index, read-only once loaded.

    Example:
        index = PackageIndex.from_packages(packages)
        gcc = index.lookup("mingw-w64-x86_64-gcc")
    """
    packages: Dict[str, PackageMetadata] = field(default_factory=dict)
    providers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_packages(cls, packages) -> 'PackageIndex':
        index = cls()
        for package in packages:
            index.packages[package.name] = package
        for package in index.packages.values():
            for provided in package.provides:
                # First provider wins; real names always beat provides
                if provided not in index.packages:
                    index.providers.setdefault(provided, package.name)
        return index

    def root(self, name: str) -> Optional[PackageMetadata]:
        """Exact-name lookup."""
        return self.packages.get(name)

    def lookup(self, name: str) -> Optional[PackageMetadata]:
        """Look up by name, falling back to a package that provides it."""
        package = self.packages.get(name)
        if package is not None:
            return package
        provider = self.providers.get(name)
        if provider is not None:
            return self.packages[provider]
        return None

    def __len__(self) -> int:
        return len(self.packages)

    def __iter__(self) -> Iterator[PackageMetadata]:
        return iter(self.packages.values())


class DownloadStream:
    """
    A package download in progress.

    `total` is the declared length (Content-Length, else the size from the
    index, else None). Iterating yields byte chunks until exhausted.
    """

    def __init__(self, package: str, response: requests.Response, total: Optional[int]):
        self.package = package
        self.response = response
        self.total = total

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self.response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            raise DownloadFailure(self.package, e) from e
        finally:
            self.response.close()

    def close(self) -> None:
        self.response.close()


def _content_length(response: requests.Response) -> Optional[int]:
    value = response.headers.get('Content-Length')
    if value and value.isdigit():
        return int(value)
    return None


class RepositoryClient:
    """
    Client for a pacman-style package repository.

    Example:
        client = RepositoryClient("http://repo.msys2.org/mingw", "mingw64", "x86_64")
        index = client.load()
        stream = client.open_package(index.root("mingw-w64-x86_64-zlib"))
    """

    def __init__(
        self,
        base_url: str,
        name: str,
        arch: str = "x86_64",
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = 30,
    ):
        """
        Initialize RepositoryClient.

        Args:
            base_url: Repository base URL; the architecture is appended
            name: Repository name, used for the database file name
            arch: Architecture directory
            session: requests session (a new one is created if None)
            timeout: Timeout for the database download. Package downloads
                have no timeout.
        """
        self.base_url = base_url
        self.name = name
        self.arch = arch
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': USER_AGENT})

    @property
    def repository_url(self) -> str:
        return self.base_url.rstrip('/') + '/' + self.arch

    @property
    def database_url(self) -> str:
        return f"{self.repository_url}/{self.name}.db"

    def package_url(self, package: PackageMetadata) -> str:
        filename = package.filename or f"{package.name}-{package.version}.pkg.tar.zst"
        return f"{self.repository_url}/{filename}"

    def _fetch_database(self, progress: ProgressSink) -> bytes:
        url = self.database_url
        logger.info(f"Loading repository {self.name} from {url}")
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
            buf = bytearray()
            with response:
                response.raise_for_status()
                total = _content_length(response)
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    buf.extend(chunk)
                    progress.index_progress(len(buf), total)
            return bytes(buf)
        except requests.RequestException as e:
            raise IndexLoadError(url, e) from e

    def load(self, progress: Optional[ProgressSink] = None) -> PackageIndex:
        """
        Download and parse the repository database.

        Raises:
            IndexLoadError: On transport errors or a malformed database
        """
        progress = progress or ProgressSink()
        payload = self._fetch_database(progress)

        packages = []
        try:
            for member, content in archive.iter_files(payload):
                if not member.endswith('/desc') and member != 'desc':
                    continue
                package = package_from_desc(content.decode('utf-8', errors='replace'))
                if package is None:
                    logger.debug(f"Skipping desc without %NAME%: {member}")
                    continue
                packages.append(package)
        except ArchiveError as e:
            raise IndexLoadError(self.database_url, e) from e

        index = PackageIndex.from_packages(packages)
        logger.info(f"Repository {self.name} loaded: {len(index)} packages")
        return index

    def open_package(self, package: PackageMetadata) -> DownloadStream:
        """
        Start a streaming download of a package archive.

        Raises:
            DownloadFailure: If the request fails or returns an error status
        """
        url = self.package_url(package)
        logger.debug(f"Downloading {package.name} from {url}")
        try:
            response = self.session.get(url, stream=True, timeout=None)
        except requests.RequestException as e:
            raise DownloadFailure(package.name, e) from e
        try:
            response.raise_for_status()
        except requests.RequestException as e:
            # Release the pooled connection held by the streamed response
            response.close()
            raise DownloadFailure(package.name, e) from e
        return DownloadStream(package.name, response, _content_length(response) or package.csize)
