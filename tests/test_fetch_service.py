"""
Tests for the fetch-extract service.

Tests cover:
- Filtered extraction of every package in a closure
- The parallelism bound
- Fail-fast on download, extraction and filesystem errors
- Progress events
"""

import threading
import time

import pytest

from toolchain_builder.domain import DependencyClosure, PackageMetadata
from toolchain_builder.errors import (
    DownloadFailure,
    ExtractionFailure,
    FilesystemFailure,
)
from toolchain_builder.infra import archive
from toolchain_builder.path_filter import PathFilter
from toolchain_builder.progress import ProgressSink
from toolchain_builder.services import FetchOptions, FetchService


def closure_of(*names):
    packages = {name: PackageMetadata(name=name, version="1.0-1") for name in names}
    return DependencyClosure(root=names[0], packages=packages)


class FakeStream:
    def __init__(self, payload, total, delay=0.0, chunk_size=7):
        self.payload = payload
        self.total = total
        self.delay = delay
        self.chunk_size = chunk_size

    def __iter__(self):
        if self.delay:
            time.sleep(self.delay)
        for i in range(0, len(self.payload), self.chunk_size):
            yield self.payload[i:i + self.chunk_size]


class JobTracker(ProgressSink):
    """Counts packages between the start of their download and the end of their extraction."""

    def __init__(self):
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def started(self, name):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def extract_done(self, name):
        with self._lock:
            self.active -= 1


class FakeDownloader:
    """Serves payloads from memory, optionally reporting job starts to a tracker."""

    def __init__(self, payloads, fail=(), delay=0.0, tracker=None):
        self.payloads = payloads
        self.fail = set(fail)
        self.delay = delay
        self.tracker = tracker
        self.opened = []
        self._lock = threading.Lock()

    def open_package(self, package):
        with self._lock:
            self.opened.append(package.name)
        if self.tracker is not None:
            self.tracker.started(package.name)
        if package.name in self.fail:
            raise ConnectionError(f"connection reset while fetching {package.name}")
        payload = self.payloads[package.name]
        return FakeStream(payload, len(payload), delay=self.delay)


class SlowCodec:
    """The archive codec with a pause before every entry extraction."""

    def __init__(self, delay):
        self.delay = delay

    def list_entries(self, payload):
        return archive.list_entries(payload)

    def extract_entry(self, payload, path):
        time.sleep(self.delay)
        return archive.extract_entry(payload, path)


class RecordingSink(ProgressSink):
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def _record(self, *event):
        with self._lock:
            self.events.append(event)

    def download_progress(self, name, bytes_read, total):
        self._record('download_progress', name, bytes_read, total)

    def download_done(self, name):
        self._record('download_done', name)

    def extract_progress(self, name, processed, total):
        self._record('extract_progress', name, processed, total)

    def extract_done(self, name):
        self._record('extract_done', name)


@pytest.fixture
def payloads(make_tar):
    return {
        "zlib": make_tar({
            ".PKGINFO": b"pkgname = zlib",
            "mingw64/bin/zlib1.dll": b"zlib dll",
            "mingw64/share/doc/zlib/README": b"docs",
        }, dirs=["mingw64/", "mingw64/bin/"], compression="zst"),
        "gcc": make_tar({
            ".MTREE": b"mtree",
            "mingw64/bin/gcc.exe": b"gcc binary",
            "mingw64/share/doc/gcc/README": b"gcc docs",
        }, compression="zst"),
    }


class TestFetchService:
    """Happy-path extraction."""

    def test_extracts_filtered_files(self, tmp_path, payloads):
        service = FetchService(FakeDownloader(payloads))
        options = FetchOptions(
            output=tmp_path / "out",
            parallelism=2,
            path_filter=PathFilter.from_patterns(exclude=["^mingw64/share/doc/"]),
        )

        summary = service.run(closure_of("gcc", "zlib"), options)

        out = tmp_path / "out"
        assert (out / "mingw64" / "bin" / "gcc.exe").read_bytes() == b"gcc binary"
        assert (out / "mingw64" / "bin" / "zlib1.dll").read_bytes() == b"zlib dll"
        assert not (out / "mingw64" / "share").exists()
        assert not (out / ".PKGINFO").exists()
        assert not (out / ".MTREE").exists()

        assert summary.success
        assert summary.files_written == 2
        assert len(summary.packages) == 2
        assert summary.not_started == 0
        assert service.last_result is summary

    def test_include_rules(self, tmp_path, payloads):
        service = FetchService(FakeDownloader(payloads))
        options = FetchOptions(
            output=tmp_path,
            parallelism=1,
            path_filter=PathFilter.from_patterns(include=[r"\.dll$"]),
        )
        summary = service.run(closure_of("gcc", "zlib"), options)
        assert (tmp_path / "mingw64" / "bin" / "zlib1.dll").exists()
        assert not (tmp_path / "mingw64" / "bin" / "gcc.exe").exists()
        assert summary.files_written == 1

    def test_creates_output_root(self, tmp_path, payloads):
        output = tmp_path / "a" / "b" / "c"
        FetchService(FakeDownloader(payloads)).run(
            closure_of("zlib"), FetchOptions(output=output, parallelism=1)
        )
        assert output.is_dir()

    def test_rerun_overwrites(self, tmp_path, payloads):
        service = FetchService(FakeDownloader(payloads))
        options = FetchOptions(output=tmp_path, parallelism=1)
        target = tmp_path / "mingw64" / "bin" / "gcc.exe"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"stale content that is longer")
        service.run(closure_of("gcc"), options)
        assert target.read_bytes() == b"gcc binary"

    def test_symlinks_are_written_with_target_contents(self, tmp_path, make_tar):
        payloads = {"zlib": make_tar(
            {"usr/lib/libz.so.1.3": b"shared object", "usr/include/zlib.h": b"header"},
            symlinks={"usr/lib/libz.so": "libz.so.1.3"},
        )}

        summary = FetchService(FakeDownloader(payloads)).run(
            closure_of("zlib"), FetchOptions(output=tmp_path, parallelism=1)
        )

        assert summary.success
        assert summary.files_written == 3
        assert (tmp_path / "usr" / "lib" / "libz.so").read_bytes() == b"shared object"
        assert (tmp_path / "usr" / "include" / "zlib.h").read_bytes() == b"header"

    def test_rejects_invalid_parallelism(self, tmp_path, payloads):
        with pytest.raises(ValueError):
            FetchService(FakeDownloader(payloads)).run(
                closure_of("zlib"), FetchOptions(output=tmp_path, parallelism=0)
            )


class TestConcurrency:
    """
    The number of packages in flight never exceeds the bound.

    A package counts as in flight from the start of its download until its
    last entry is written.
    """

    def run_tracked(self, tmp_path, make_tar, count, parallelism):
        names = [f"pkg{i}" for i in range(count)]
        payloads = {
            name: make_tar({f"{name}/a": b"a", f"{name}/b": b"b"}) for name in names
        }
        tracker = JobTracker()
        downloader = FakeDownloader(payloads, delay=0.02, tracker=tracker)
        service = FetchService(downloader, progress=tracker, codec=SlowCodec(0.02))

        summary = service.run(
            closure_of(*names), FetchOptions(output=tmp_path, parallelism=parallelism)
        )
        return names, downloader, tracker, summary

    @pytest.mark.parametrize("parallelism", [1, 2, 3])
    def test_bound_respected(self, tmp_path, make_tar, parallelism):
        names, downloader, tracker, summary = self.run_tracked(tmp_path, make_tar, 5, parallelism)

        assert tracker.max_active <= parallelism
        assert tracker.active == 0
        assert sorted(downloader.opened) == sorted(names)
        assert summary.files_written == 10

    def test_two_slots_five_packages(self, tmp_path, make_tar):
        _, _, tracker, summary = self.run_tracked(tmp_path, make_tar, 5, 2)

        assert tracker.max_active == 2
        assert len(summary.packages) == 5


class TestFailFast:
    """The first error ends admission and becomes the result."""

    def test_download_failure_sequential(self, tmp_path, make_tar):
        names = ["bad", "b", "c", "d"]
        payloads = {name: make_tar({f"{name}/file": b"x"}) for name in names}
        downloader = FakeDownloader(payloads, fail={"bad"})
        service = FetchService(downloader)

        with pytest.raises(DownloadFailure) as exc_info:
            service.run(closure_of(*names), FetchOptions(output=tmp_path, parallelism=1))

        assert exc_info.value.package == "bad"
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert downloader.opened == ["bad"]
        assert service.last_result.not_started == 3
        assert service.last_result.error is not None

    def test_no_job_admitted_after_failure(self, tmp_path, make_tar):
        names = ["bad", "slow", "q1", "q2", "q3"]
        payloads = {name: make_tar({f"{name}/file": b"x"}) for name in names}
        class SlowDownloader(FakeDownloader):
            def open_package(self, package):
                if package.name == "slow":
                    time.sleep(0.1)
                return super().open_package(package)

        slow = SlowDownloader(payloads, fail={"bad"})
        service = FetchService(slow)

        with pytest.raises(DownloadFailure) as exc_info:
            service.run(closure_of(*names), FetchOptions(output=tmp_path, parallelism=2))

        assert exc_info.value.package == "bad"
        assert "bad" in slow.opened
        assert not {"q1", "q2", "q3"} & set(slow.opened)
        assert service.last_result.not_started >= 3

    def test_earlier_files_are_kept(self, tmp_path, make_tar):
        payloads = {
            "good": make_tar({"good/file.txt": b"kept"}),
            "bad": make_tar({}),
        }
        downloader = FakeDownloader(payloads, fail={"bad"})

        with pytest.raises(DownloadFailure):
            FetchService(downloader).run(
                closure_of("good", "bad"), FetchOptions(output=tmp_path, parallelism=1)
            )

        assert (tmp_path / "good" / "file.txt").read_bytes() == b"kept"

    def test_malformed_archive(self, tmp_path):
        downloader = FakeDownloader({"broken": b"definitely not a tar archive" * 30})
        with pytest.raises(ExtractionFailure) as exc_info:
            FetchService(downloader).run(closure_of("broken"), FetchOptions(output=tmp_path, parallelism=1))
        assert exc_info.value.package == "broken"
        assert exc_info.value.entry is None

    def test_entry_extraction_failure_names_entry(self, tmp_path, make_tar):
        payloads = {"pkg": make_tar({"pkg/a.txt": b"a"})}

        class ListsGhostEntry:
            def list_entries(self, payload):
                return ["pkg/a.txt", "pkg/ghost.txt"]

            def extract_entry(self, payload, path):
                return archive.extract_entry(payload, path)

        service = FetchService(FakeDownloader(payloads), codec=ListsGhostEntry())
        with pytest.raises(ExtractionFailure) as exc_info:
            service.run(closure_of("pkg"), FetchOptions(output=tmp_path, parallelism=1))
        assert exc_info.value.package == "pkg"
        assert exc_info.value.entry == "pkg/ghost.txt"
        assert "pkg/ghost.txt" in str(exc_info.value)

    def test_escaping_entry_rejected(self, tmp_path, make_tar):
        payloads = {"evil": make_tar({"evil/../../outside.txt": b"nope"})}
        with pytest.raises(ExtractionFailure) as exc_info:
            FetchService(FakeDownloader(payloads)).run(
                closure_of("evil"), FetchOptions(output=tmp_path / "out", parallelism=1)
            )
        assert exc_info.value.entry == "evil/../../outside.txt"
        assert not (tmp_path / "outside.txt").exists()

    def test_filesystem_failure(self, tmp_path, make_tar):
        payloads = {"pkg": make_tar({"mingw64/bin/tool.exe": b"x"})}
        (tmp_path / "mingw64").write_text("a file where a directory should be")

        with pytest.raises(FilesystemFailure) as exc_info:
            FetchService(FakeDownloader(payloads)).run(
                closure_of("pkg"), FetchOptions(output=tmp_path, parallelism=1)
            )
        assert "mingw64" in exc_info.value.path


class TestProgressEvents:
    """Progress events emitted per package."""

    def test_events(self, tmp_path, payloads):
        sink = RecordingSink()
        FetchService(FakeDownloader(payloads), progress=sink).run(
            closure_of("zlib"), FetchOptions(output=tmp_path, parallelism=1)
        )

        downloads = [e for e in sink.events if e[0] == 'download_progress']
        assert downloads[-1] == ('download_progress', 'zlib', len(payloads['zlib']), len(payloads['zlib']))
        assert ('download_done', 'zlib') in sink.events
        assert ('extract_done', 'zlib') in sink.events

        extracts = [e for e in sink.events if e[0] == 'extract_progress']
        assert extracts[-1][2] == extracts[-1][3] == 5

        kinds = [e[0] for e in sink.events]
        assert kinds.index('download_done') < kinds.index('extract_progress')
