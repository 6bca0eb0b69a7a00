"""
toolchain-builder - Fetch a package and its dependencies and extract them.

toolchain-builder resolves a package against a pacman-style repository
(MSYS2 by default), downloads it together with everything it depends on,
and extracts a filtered subset of each archive into one output tree.

Quick Start:
    import toolchain_builder

    builder = toolchain_builder.ToolchainBuilder()

    # Resolve dependencies only
    closure = builder.resolve("mingw-w64-x86_64-gcc")

    # Fetch and extract, skipping documentation
    summary = builder.build(
        "mingw-w64-x86_64-gcc",
        output="./toolchain",
        exclude=["^mingw64/share/doc/"],
    )

Lower-level pieces:
    resolve(root, lookup)            Dependency closure from any lookup callable
    PathFilter / should_extract      Entry filtering
    FetchService                     Bounded-concurrency fetch and extract
    RepositoryClient                 Repository database and downloads
"""

__version__ = "0.3.0"

# High-level API
from .api import ToolchainBuilder, create

# Domain objects
from .domain import (
    DependencyReference,
    PackageMetadata,
    DependencyClosure,
    PackageResult,
    RunSummary,
)

# Core operations
from .resolver import resolve
from .path_filter import PathFilter, FilterRule, RuleKind, should_extract
from .services import FetchService, FetchOptions

# Infrastructure
from .infra import RepositoryClient, PackageIndex, OutputWriter

# Errors
from .errors import (
    ToolchainBuilderError,
    MissingDependency,
    DownloadFailure,
    ExtractionFailure,
    FilesystemFailure,
    IndexLoadError,
    ConfigError,
)

# Configuration
from .config import load_config

__all__ = [
    "__version__",
    "ToolchainBuilder",
    "create",
    "DependencyReference",
    "PackageMetadata",
    "DependencyClosure",
    "PackageResult",
    "RunSummary",
    "resolve",
    "PathFilter",
    "FilterRule",
    "RuleKind",
    "should_extract",
    "FetchService",
    "FetchOptions",
    "RepositoryClient",
    "PackageIndex",
    "OutputWriter",
    "ToolchainBuilderError",
    "MissingDependency",
    "DownloadFailure",
    "ExtractionFailure",
    "FilesystemFailure",
    "IndexLoadError",
    "ConfigError",
    "load_config",
]
