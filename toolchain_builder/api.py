"""
High-level Python API for toolchain-builder.

Example:
    import toolchain_builder

    builder = toolchain_builder.ToolchainBuilder()

    # See what would be fetched
    closure = builder.resolve("mingw-w64-x86_64-gcc")
    for package in closure:
        print(package.name, package.version)

    # Fetch and extract into ./toolchain, skipping documentation
    summary = builder.build(
        "mingw-w64-x86_64-gcc",
        output="./toolchain",
        exclude=["^mingw64/share/(doc|man|info)/"],
    )
    print(summary.files_written)
"""

import logging
from typing import Any, Dict, Optional, Sequence

from .config import RunConfig, build_run_config, load_config
from .domain import DependencyClosure, RunSummary
from .infra import PackageIndex, RepositoryClient
from .path_filter import PathFilter
from .progress import ProgressSink
from .resolver import resolve
from .services import FetchOptions, FetchService

logger = logging.getLogger(__name__)


class ToolchainBuilder:
    """
    High-level API for toolchain-builder.

    The repository index is loaded lazily on first use and reused for
    later calls on the same instance.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        progress: Optional[ProgressSink] = None,
        client: Optional[RepositoryClient] = None,
        repository_url: Optional[str] = None,
        repository_name: Optional[str] = None,
        architecture: Optional[str] = None,
    ):
        """
        Initialize ToolchainBuilder.

        Args:
            config: Configuration dict (loads default if None)
            progress: Progress sink for all events
            client: RepositoryClient (built from config if None)
            repository_url: Override repository base URL
            repository_name: Override repository name
            architecture: Override architecture
        """
        self.config = config or load_config()
        self.progress = progress or ProgressSink()
        self.repository_url = repository_url
        self.repository_name = repository_name
        self.architecture = architecture
        self._client = client
        self._index: Optional[PackageIndex] = None

    def run_config(self, package: str, **overrides) -> RunConfig:
        """Validated settings for `package`, with overrides applied."""
        overrides.setdefault('repository_url', self.repository_url)
        overrides.setdefault('repository_name', self.repository_name)
        overrides.setdefault('architecture', self.architecture)
        return build_run_config(self.config, package, **overrides)

    @property
    def client(self) -> RepositoryClient:
        if self._client is None:
            repo_cfg = self.config.get('repository', {})
            self._client = RepositoryClient(
                base_url=self.repository_url or repo_cfg.get('url', ''),
                name=self.repository_name or repo_cfg.get('name', ''),
                arch=self.architecture or repo_cfg.get('arch', 'x86_64'),
                timeout=repo_cfg.get('timeout_seconds'),
            )
        return self._client

    def load_index(self) -> PackageIndex:
        """Download and parse the repository database (once)."""
        if self._index is None:
            self._index = self.client.load(progress=self.progress)
        return self._index

    def resolve(self, package: str) -> DependencyClosure:
        """Resolve the dependency closure of `package`."""
        index = self.load_index()
        return resolve(package, index.lookup, progress=self.progress)

    def build(
        self,
        package: str,
        output: Optional[str] = None,
        parallelism: Optional[int] = None,
        exclude: Sequence[str] = (),
        include: Sequence[str] = (),
    ) -> RunSummary:
        """
        Resolve `package` and extract its closure into `output`.

        Raises:
            ConfigError: On invalid settings or patterns
            MissingDependency: If resolution fails (before any download)
            DownloadFailure, ExtractionFailure, FilesystemFailure: First
                error of the fetch-extract run
        """
        run_config = self.run_config(
            package,
            output=output,
            parallelism=parallelism,
            exclude=exclude,
            include=include,
        )
        path_filter = PathFilter.from_patterns(
            exclude=run_config.exclude,
            include=run_config.include,
        )
        closure = self.resolve(run_config.package)
        logger.info(f"{run_config.package}: {len(closure)} packages to fetch")

        service = FetchService(self.client, progress=self.progress)
        options = FetchOptions(
            output=run_config.output,
            parallelism=run_config.parallelism,
            path_filter=path_filter,
        )
        return service.run(closure, options)


def create(**kwargs) -> ToolchainBuilder:
    """Convenience constructor: ``toolchain_builder.create(architecture="i686")``."""
    return ToolchainBuilder(**kwargs)
