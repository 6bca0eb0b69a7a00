"""
Fetch-extract service for toolchain-builder.

Downloads every package of a dependency closure and writes the filtered
subset of each archive into the output tree, with at most `parallelism`
packages in flight.

Failure policy is fail-fast: the first error becomes the result of the
run, no further packages are admitted, and packages already in flight
are left to finish. Nothing is retried and files already written stay.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..domain import DependencyClosure, PackageMetadata, PackageResult, RunSummary
from ..errors import ArchiveError, DownloadFailure, ExtractionFailure, ToolchainBuilderError
from ..infra import archive
from ..infra.output_writer import OutputWriter
from ..path_filter import PathFilter
from ..progress import ProgressSink

logger = logging.getLogger(__name__)

# Returned by a job that was never admitted because the run had already failed
_NOT_STARTED = object()


@dataclass
class FetchOptions:
    """Options for a fetch-extract run."""
    output: Path
    parallelism: int = field(default_factory=lambda: os.cpu_count() or 1)
    path_filter: PathFilter = field(default_factory=PathFilter)


class _RunState:
    """Shared state of one run: the set-once error slot and the stop flag."""

    def __init__(self):
        self._lock = threading.Lock()
        self.stopped = threading.Event()
        self.error: Optional[BaseException] = None

    def admit(self) -> bool:
        """True while jobs may still start; False once the run has failed."""
        with self._lock:
            return not self.stopped.is_set()

    def fail(self, error: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = error
            self.stopped.set()


@dataclass
class ExtractionTask:
    """
    One package job: download, list, filter, extract and write.

    Created by FetchService per package and discarded when done.
    """
    package: PackageMetadata
    downloader: Any
    codec: Any
    writer: OutputWriter
    path_filter: PathFilter
    progress: ProgressSink

    @property
    def name(self) -> str:
        return self.package.name

    def download(self) -> bytes:
        """Fetch the whole archive into memory, reporting each chunk."""
        try:
            stream = self.downloader.open_package(self.package)
            total = getattr(stream, 'total', None)
            buf = bytearray()
            for chunk in stream:
                buf.extend(chunk)
                self.progress.download_progress(self.name, len(buf), total)
        except ToolchainBuilderError:
            raise
        except OSError as e:
            # requests.RequestException is an OSError subclass
            raise DownloadFailure(self.name, e) from e
        self.progress.download_done(self.name)
        return bytes(buf)

    def extract(self, payload: bytes, result: PackageResult) -> None:
        """List the archive and write every entry the filter accepts."""
        try:
            entries = self.codec.list_entries(payload)
        except ArchiveError as e:
            raise ExtractionFailure(self.name, None, e) from e

        result.entries_total = len(entries)
        for processed, entry in enumerate(entries, start=1):
            self.progress.extract_progress(self.name, processed, len(entries))
            if not self.path_filter.should_extract(entry):
                result.files_skipped += 1
                continue
            try:
                self.writer.destination(entry)
                data = self.codec.extract_entry(payload, entry)
            except (ArchiveError, ValueError) as e:
                raise ExtractionFailure(self.name, entry, e) from e
            self.writer.write(entry, data)
            result.files_written += 1
        self.progress.extract_done(self.name)

    def run(self) -> PackageResult:
        result = PackageResult(name=self.name, version=self.package.version)
        payload = self.download()
        result.bytes_downloaded = len(payload)
        self.extract(payload, result)
        logger.debug(
            f"{self.name}: {result.files_written} files written, "
            f"{result.files_skipped} skipped"
        )
        return result


class FetchService:
    """
    Service for fetching and extracting a dependency closure.

    Example:
        service = FetchService(client, progress=reporter)
        options = FetchOptions(output=Path("./out"), parallelism=4)
        summary = service.run(closure, options)
        print(f"Wrote {summary.files_written} files")

    `last_result` keeps the summary of the latest run, including runs
    that raised.
    """

    def __init__(
        self,
        downloader: Any,
        progress: Optional[ProgressSink] = None,
        codec: Any = None,
    ):
        """
        Initialize FetchService.

        Args:
            downloader: Object with open_package(package) returning an
                iterable of byte chunks with an optional `total` attribute
            progress: Progress sink (events are dropped if None)
            codec: Object with list_entries(payload) and
                extract_entry(payload, path); defaults to the archive module
        """
        self.downloader = downloader
        self.progress = progress or ProgressSink()
        self.codec = codec or archive
        self.last_result: Optional[RunSummary] = None

    def _job(self, task: ExtractionTask, state: _RunState):
        if not state.admit():
            return _NOT_STARTED
        try:
            return task.run()
        except Exception as e:
            logger.debug(f"{task.name} failed: {e}")
            state.fail(e)
            return None

    def run(self, closure: DependencyClosure, options: FetchOptions) -> RunSummary:
        """
        Fetch and extract every package in the closure.

        Returns only after every started job has finished.

        Raises:
            DownloadFailure, ExtractionFailure, FilesystemFailure: The first
                error raised by any package job
        """
        if options.parallelism < 1:
            raise ValueError(f"parallelism must be positive, got {options.parallelism}")

        writer = OutputWriter(options.output)
        writer.ensure_root()

        summary = RunSummary(output=str(options.output), parallelism=options.parallelism)
        self.last_result = summary
        state = _RunState()

        logger.info(
            f"Fetching {len(closure)} packages into {options.output} "
            f"(parallelism {options.parallelism})"
        )

        with ThreadPoolExecutor(max_workers=options.parallelism) as executor:
            futures = []
            for package in closure:
                task = ExtractionTask(
                    package=package,
                    downloader=self.downloader,
                    codec=self.codec,
                    writer=writer,
                    path_filter=options.path_filter,
                    progress=self.progress,
                )
                futures.append(executor.submit(self._job, task, state))

            for future in as_completed(futures):
                if future.cancelled():
                    summary.not_started += 1
                    continue
                outcome = future.result()
                if outcome is _NOT_STARTED:
                    summary.not_started += 1
                elif outcome is not None:
                    summary.add_package(outcome)
                if state.stopped.is_set():
                    # Drop queued jobs; in-flight ones run to completion
                    for pending in futures:
                        pending.cancel()

        if state.error is not None:
            summary.error = str(state.error)
            raise state.error

        logger.info(
            f"Extracted {summary.files_written} files from {len(summary.packages)} packages"
        )
        return summary
