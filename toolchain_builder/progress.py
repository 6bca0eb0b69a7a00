"""
Progress reporting utilities for toolchain-builder.

Progress is purely observational: the resolver and the fetch service call
the event methods of a ProgressSink that is handed to them explicitly.
Sinks are called from worker threads and must tolerate concurrent calls.

Reporting goes to stderr so stdout stays clean for data.
"""

import logging
import os
import sys
import threading
import time
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class LogLevel(Enum):
    """Log levels for progress messages."""
    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    SUCCESS = 4


class ProgressSink:
    """
    Receiver of progress events. The base class ignores everything.

    Events:
        closure_visit(name)                      package inspected by the resolver
        index_progress(bytes_read, total)        repository database download
        download_progress(name, bytes_read, total)
        download_done(name)
        extract_progress(name, processed, total)
        extract_done(name)
    """

    def closure_visit(self, name: str) -> None:
        pass

    def index_progress(self, bytes_read: int, total: Optional[int]) -> None:
        pass

    def download_progress(self, name: str, bytes_read: int, total: Optional[int]) -> None:
        pass

    def download_done(self, name: str) -> None:
        pass

    def extract_progress(self, name: str, processed: int, total: int) -> None:
        pass

    def extract_done(self, name: str) -> None:
        pass

    def close(self) -> None:
        pass


class ProgressReporter(ProgressSink):
    """Line-oriented progress on stderr, keeping stdout clean for data."""

    def __init__(self, enabled: Optional[bool] = None, force_tty: bool = False,
                 use_colors: Optional[bool] = None, stream=None):
        """
        Initialize progress reporter.

        Args:
            enabled: Explicitly enable/disable progress. None = auto-detect
            force_tty: Treat stderr as TTY even if it's not (for testing)
            use_colors: Use ANSI colors in output
            stream: Output stream (defaults to sys.stderr)
        """
        self.stream = stream or sys.stderr
        is_tty = hasattr(self.stream, 'isatty') and self.stream.isatty()

        if enabled is None:
            # Auto-detect: show progress if stderr is a terminal
            self.enabled = is_tty or force_tty
        else:
            self.enabled = enabled

        if use_colors is None:
            self.use_colors = is_tty and os.environ.get('NO_COLOR') is None
        else:
            self.use_colors = use_colors

        self.min_update_interval = 0.1  # Don't update more than 10x per second
        self._last_update: Dict[str, float] = {}
        self._lock = threading.Lock()

        self.colors = {
            'reset': '\033[0m',
            'dim': '\033[2m',
            'red': '\033[31m',
            'green': '\033[32m',
            'yellow': '\033[33m',
            'cyan': '\033[36m',
        }

    def _colorize(self, text: str, color: str) -> str:
        """Add color to text if colors are enabled."""
        if self.use_colors and color in self.colors:
            return f"{self.colors[color]}{text}{self.colors['reset']}"
        return text

    def _emit(self, message: str) -> None:
        with self._lock:
            print(message, file=self.stream, flush=True)

    def _throttled(self, key: str) -> bool:
        """True if an update for `key` was emitted too recently."""
        now = time.monotonic()
        with self._lock:
            last = self._last_update.get(key, 0.0)
            if now - last < self.min_update_interval:
                return True
            self._last_update[key] = now
            return False

    def __call__(self, message: str, force: bool = False, level: LogLevel = LogLevel.INFO):
        """
        Output progress message to stderr if enabled.

        Args:
            message: Progress message to display
            force: Force output even if disabled
            level: Log level for the message
        """
        if not (force or self.enabled):
            return
        if level == LogLevel.ERROR:
            message = self._colorize(f"✗ {message}", 'red')
        elif level == LogLevel.WARNING:
            message = self._colorize(f"⚠ {message}", 'yellow')
        elif level == LogLevel.SUCCESS:
            message = self._colorize(f"✓ {message}", 'green')
        elif level == LogLevel.DEBUG:
            message = self._colorize(f"  {message}", 'dim')
        self._emit(message)

    def error(self, message: str):
        """Always output errors to stderr."""
        self._emit(self._colorize(f"ERROR: {message}", 'red'))

    def warning(self, message: str):
        """Output warnings to stderr if enabled."""
        if self.enabled:
            self._emit(self._colorize(f"WARNING: {message}", 'yellow'))

    def closure_visit(self, name: str) -> None:
        self(f"Indexing {name}", level=LogLevel.DEBUG)

    def index_progress(self, bytes_read: int, total: Optional[int]) -> None:
        if not self.enabled or self._throttled('<index>'):
            return
        self(f"Loading repository: {_format_amount(bytes_read, total)}")

    def download_progress(self, name: str, bytes_read: int, total: Optional[int]) -> None:
        if not self.enabled or self._throttled(f"download:{name}"):
            return
        self(f"  Downloading {name}: {_format_amount(bytes_read, total)}")

    def download_done(self, name: str) -> None:
        self(f"Package {name} downloaded", level=LogLevel.SUCCESS)

    def extract_progress(self, name: str, processed: int, total: int) -> None:
        if not self.enabled or (processed < total and self._throttled(f"extract:{name}")):
            return
        self(f"  Extracting {name}: [{processed}/{total}]")

    def extract_done(self, name: str) -> None:
        self(f"Package {name} extracted", level=LogLevel.SUCCESS)


class LoggingProgressSink(ProgressSink):
    """Sends completion events to the logger; per-chunk events are dropped."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def closure_visit(self, name: str) -> None:
        self.log.debug(f"Indexing {name}")

    def download_done(self, name: str) -> None:
        self.log.info(f"Package {name} downloaded")

    def extract_done(self, name: str) -> None:
        self.log.info(f"Package {name} extracted")


class RichProgressSink(ProgressSink):
    """
    One rich progress bar per package download and extraction.

    rich's Progress is thread-safe; the lock only guards the task-id map.
    """

    def __init__(self, console=None):
        from rich.progress import (
            Progress, SpinnerColumn, TextColumn, BarColumn,
            DownloadColumn, TimeRemainingColumn,
        )
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
        self._tasks: Dict[str, int] = {}
        self._lock = threading.Lock()
        self.progress.start()

    def _task(self, key: str, description: str, total: Optional[int]):
        with self._lock:
            task_id = self._tasks.get(key)
            if task_id is None:
                task_id = self.progress.add_task(description, total=total)
                self._tasks[key] = task_id
            return task_id

    def _finish(self, key: str, message: str) -> None:
        with self._lock:
            task_id = self._tasks.pop(key, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
        self.progress.console.print(message)

    def index_progress(self, bytes_read: int, total: Optional[int]) -> None:
        task_id = self._task('<index>', "Loading repository", total)
        self.progress.update(task_id, completed=bytes_read, total=total)

    def download_progress(self, name: str, bytes_read: int, total: Optional[int]) -> None:
        task_id = self._task(f"download:{name}", f"Downloading {name}", total)
        self.progress.update(task_id, completed=bytes_read, total=total)

    def download_done(self, name: str) -> None:
        self._finish(f"download:{name}", f"[green]✓[/green] Package {name} downloaded")

    def extract_progress(self, name: str, processed: int, total: int) -> None:
        task_id = self._task(f"extract:{name}", f"Extracting {name}", total)
        self.progress.update(task_id, completed=processed, total=total)

    def extract_done(self, name: str) -> None:
        self._finish(f"extract:{name}", f"[green]✓[/green] Package {name} extracted")

    def close(self) -> None:
        self.progress.stop()


def _format_amount(done: int, total: Optional[int]) -> str:
    """Render a byte count against an optional total."""
    if total:
        percent = min(100, int(100 * done / total))
        return f"{done}/{total} bytes ({percent}%)"
    return f"{done} bytes"


# Global progress reporter instance
_progress = None


def get_progress(enabled: Optional[bool] = None) -> ProgressReporter:
    """
    Get the global progress reporter.

    Args:
        enabled: Override auto-detection of progress display

    Returns:
        ProgressReporter instance
    """
    global _progress
    if _progress is None or enabled is not None:
        _progress = ProgressReporter(enabled)
    return _progress


# Environment variable override
if os.environ.get('TOOLCHAIN_BUILDER_PROGRESS') == '0':
    _progress = ProgressReporter(enabled=False)
elif os.environ.get('TOOLCHAIN_BUILDER_PROGRESS') == '1':
    _progress = ProgressReporter(enabled=True)
