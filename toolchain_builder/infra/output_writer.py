"""
Output writer for extracted files.

Writes entry bytes under the output root, creating parent directories on
demand. Many workers write concurrently: directory creation tolerates
"already exists", and distinct destination paths never conflict, so no
lock is held around the filesystem calls. Writes are not atomic; a crash
mid-write can leave a partial file.
"""

import logging
import threading
from pathlib import Path
from typing import Union

from ..errors import FilesystemFailure

logger = logging.getLogger(__name__)


def write_file(destination: Union[str, Path], data: bytes) -> None:
    """
    Write `data` to `destination`, replacing any previous content.

    Raises:
        FilesystemFailure: If a directory or the file can't be written
    """
    destination = Path(destination)
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(destination, 'wb') as f:
            f.write(data)
            f.flush()
    except OSError as e:
        raise FilesystemFailure(str(destination), e) from e


class OutputWriter:
    """
    Writes extracted entries below an output root.

    Example:
        writer = OutputWriter(Path("./out"))
        writer.ensure_root()
        writer.write("mingw64/bin/gcc.exe", data)
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._lock = threading.Lock()
        self.files_written = 0
        self.bytes_written = 0

    def ensure_root(self) -> None:
        """Create the output directory and its parents."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemFailure(str(self.root), e) from e

    def destination(self, entry: str) -> Path:
        """
        Output path for an archive entry.

        Raises:
            ValueError: If the entry would land outside the output root
        """
        relative = Path(entry)
        if relative.is_absolute() or '..' in relative.parts:
            raise ValueError(f"Entry path escapes output directory: {entry}")
        return self.root / relative

    def write(self, entry: str, data: bytes) -> Path:
        """Write an entry's bytes and return the destination path."""
        path = self.destination(entry)
        write_file(path, data)
        with self._lock:
            self.files_written += 1
            self.bytes_written += len(data)
        return path
