"""
Domain layer for toolchain-builder.

Contains pure domain objects with no I/O or side effects:
- PackageMetadata: A package as described by the repository index
- DependencyReference: A declared dependency of a package
- DependencyClosure: The resolved set of packages for one run
- PackageResult / RunSummary: Outcomes of a fetch-extract run
"""

from .package import DependencyReference, PackageMetadata, DependencyClosure
from .operation import PackageResult, RunSummary

__all__ = [
    'DependencyReference',
    'PackageMetadata',
    'DependencyClosure',
    'PackageResult',
    'RunSummary',
]
