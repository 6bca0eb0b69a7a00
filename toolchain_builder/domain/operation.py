"""
Run result domain objects for toolchain-builder.

PackageResult records what happened to one package during a run;
RunSummary aggregates them for the whole run.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PackageResult:
    """Outcome of fetching and extracting a single package."""
    name: str
    version: str = ""
    bytes_downloaded: int = 0
    entries_total: int = 0
    files_written: int = 0
    files_skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'version': self.version,
            'bytes_downloaded': self.bytes_downloaded,
            'entries_total': self.entries_total,
            'files_written': self.files_written,
            'files_skipped': self.files_skipped,
        }


@dataclass
class RunSummary:
    """
    Summary of a fetch-extract run.

    A failed run still produces a summary: packages that completed before
    the failure are listed, and `not_started` counts the jobs that were
    never admitted.
    """
    output: str
    parallelism: int
    packages: List[PackageResult] = field(default_factory=list)
    not_started: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def files_written(self) -> int:
        return sum(p.files_written for p in self.packages)

    @property
    def files_skipped(self) -> int:
        return sum(p.files_skipped for p in self.packages)

    @property
    def bytes_downloaded(self) -> int:
        return sum(p.bytes_downloaded for p in self.packages)

    def add_package(self, result: PackageResult) -> None:
        self.packages.append(result)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'summary',
            'output': self.output,
            'parallelism': self.parallelism,
            'packages': len(self.packages),
            'files_written': self.files_written,
            'files_skipped': self.files_skipped,
            'bytes_downloaded': self.bytes_downloaded,
            'not_started': self.not_started,
            'success': self.success,
            'error': self.error,
        }
