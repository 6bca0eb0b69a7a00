"""
Dependency closure resolution for toolchain-builder.

Turns a root package name plus an index lookup into the full set of
packages to fetch. Resolution runs once, before any package download.
"""

import logging
from typing import Callable, Dict, Optional

from .domain import DependencyClosure, PackageMetadata
from .errors import MissingDependency
from .progress import ProgressSink

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Optional[PackageMetadata]]


def resolve(
    root: str,
    lookup: Lookup,
    progress: Optional[ProgressSink] = None,
) -> DependencyClosure:
    """
    Compute the dependency closure of `root`.

    Fixed-point expansion: each pass scans every package already in the
    closure and stages the dependencies that are neither in the closure
    nor already staged. Staged packages are merged after the pass; a
    pass that stages nothing ends the loop. Cycles (including a package
    depending on itself) terminate because membership is checked before
    staging.

    Args:
        root: Name of the package to resolve
        lookup: name -> PackageMetadata, or None if the index lacks it
        progress: Receives a closure_visit event per inspected package

    Returns:
        DependencyClosure containing root and every reachable package once

    Raises:
        MissingDependency: If root or any reachable dependency is unknown.
            No partial closure is returned.
    """
    progress = progress or ProgressSink()

    root_package = lookup(root)
    if root_package is None:
        raise MissingDependency(root)

    closure: Dict[str, PackageMetadata] = {root_package.name: root_package}
    # Names already inspected; their dependencies are all in the closure
    scanned = set()

    while True:
        staged: Dict[str, PackageMetadata] = {}
        for package in closure.values():
            progress.closure_visit(package.name)
            if package.name in scanned:
                continue
            for dependency in package.depends:
                name = dependency.name
                if name in closure or name in staged:
                    continue
                resolved = lookup(name)
                if resolved is None:
                    raise MissingDependency(name, required_by=package.name)
                # A lookup through "provides" can return a package already present
                if resolved.name in closure or resolved.name in staged:
                    continue
                staged[resolved.name] = resolved
            scanned.add(package.name)

        if not staged:
            break
        logger.debug(f"Resolved {len(staged)} new dependencies: {', '.join(sorted(staged))}")
        closure.update(staged)

    logger.debug(f"Dependency closure of {root}: {len(closure)} packages")
    return DependencyClosure(root=root_package.name, packages=closure)
