"""
Infrastructure layer for toolchain-builder.

Contains abstractions for external systems:
- RepositoryClient: Package repository database and package downloads
- archive: Listing and extracting entries of package archives
- OutputWriter: Writing extracted files to the output tree

These provide clean interfaces that can be mocked for testing.
"""

from .repository_client import (
    RepositoryClient,
    PackageIndex,
    DownloadStream,
    parse_desc,
    package_from_desc,
)
from .output_writer import OutputWriter, write_file
from . import archive

__all__ = [
    'RepositoryClient',
    'PackageIndex',
    'DownloadStream',
    'parse_desc',
    'package_from_desc',
    'OutputWriter',
    'write_file',
    'archive',
]
