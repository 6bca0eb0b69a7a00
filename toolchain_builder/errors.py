"""
Error types for toolchain-builder.

Every fatal condition of a run maps to one of these exceptions. They all
derive from CommandError so the CLI can turn them into exit codes, and
each carries the package name (and entry path where one applies) so a
failure can be diagnosed from the message alone.
"""

from typing import Optional

from .exit_codes import (
    CommandError,
    CONFIG_ERROR,
    DATA_ERROR,
    DEPENDENCY_ERROR,
    FILESYSTEM_ERROR,
    NETWORK_ERROR,
)


class ToolchainBuilderError(CommandError):
    """Base class for all toolchain-builder errors."""


class ConfigError(ToolchainBuilderError):
    """Raised when there's a configuration error."""
    def __init__(self, message: str):
        super().__init__(message, CONFIG_ERROR)


class MissingDependency(ToolchainBuilderError):
    """A package (or the root itself) has no entry in the repository index."""
    def __init__(self, name: str, required_by: Optional[str] = None):
        if required_by:
            message = f"Package {name} not found (required by {required_by})"
        else:
            message = f"Package {name} not found"
        super().__init__(message, DEPENDENCY_ERROR)
        self.name = name
        self.required_by = required_by


class IndexLoadError(ToolchainBuilderError):
    """The repository database could not be downloaded or parsed."""
    def __init__(self, url: str, cause: BaseException):
        super().__init__(f"Failed to load repository database {url}: {cause}", NETWORK_ERROR)
        self.url = url
        self.cause = cause


class DownloadFailure(ToolchainBuilderError):
    """Transport error while fetching a package payload."""
    def __init__(self, package: str, cause: BaseException):
        super().__init__(f"Failed to download {package}: {cause}", NETWORK_ERROR)
        self.package = package
        self.cause = cause


class ArchiveError(Exception):
    """Raised by the archive codec on malformed payloads or missing entries."""


class ExtractionFailure(ToolchainBuilderError):
    """The archive codec could not list or extract an entry of a package."""
    def __init__(self, package: str, entry: Optional[str], cause: BaseException):
        if entry:
            message = f"Failed to extract {entry} from {package}: {cause}"
        else:
            message = f"Failed to read archive of {package}: {cause}"
        super().__init__(message, DATA_ERROR)
        self.package = package
        self.entry = entry
        self.cause = cause


class FilesystemFailure(ToolchainBuilderError):
    """Directory creation or file write error."""
    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"Failed to write {path}: {cause}", FILESYSTEM_ERROR)
        self.path = path
        self.cause = cause
