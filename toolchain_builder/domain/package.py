"""
Package domain objects for toolchain-builder.

PackageMetadata is what the repository index knows about one package.
DependencyClosure is the resolved set of packages a run will fetch.
Both are immutable once built.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

# Version constraint operators, longest first so ">=" wins over ">"
_CONSTRAINT_RE = re.compile(r'^(?P<name>[^<>=]+?)\s*(?P<op><=|>=|<|>|=)\s*(?P<version>.+)$')


@dataclass(frozen=True)
class DependencyReference:
    """A dependency as declared by a package, e.g. ``zlib>=1.2``."""
    name: str
    operator: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> 'DependencyReference':
        """
        Parse a pacman-style dependency string.

        Only the name takes part in resolution; the constraint is kept
        so it can be reported.
        """
        text = text.strip()
        match = _CONSTRAINT_RE.match(text)
        if match:
            return cls(
                name=match.group('name').strip(),
                operator=match.group('op'),
                version=match.group('version').strip(),
            )
        return cls(name=text)

    def __str__(self) -> str:
        if self.operator:
            return f"{self.name}{self.operator}{self.version}"
        return self.name


@dataclass(frozen=True)
class PackageMetadata:
    """Repository metadata for a single package."""
    name: str
    version: str = ""
    depends: Tuple[DependencyReference, ...] = ()
    filename: Optional[str] = None  # Archive location relative to the repository URL
    csize: Optional[int] = None     # Declared compressed archive size
    provides: Tuple[str, ...] = ()
    description: Optional[str] = None
    arch: Optional[str] = None

    @property
    def dependency_names(self) -> Tuple[str, ...]:
        return tuple(dep.name for dep in self.depends)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'version': self.version,
            'depends': [str(dep) for dep in self.depends],
            'filename': self.filename,
            'csize': self.csize,
            'provides': list(self.provides),
            'description': self.description,
            'arch': self.arch,
        }


@dataclass(frozen=True)
class DependencyClosure:
    """
    The root package plus everything it transitively depends on.

    Keyed by package name, so a name can never appear twice. Iteration
    follows discovery order with the root first.
    """
    root: str
    packages: Mapping[str, PackageMetadata] = field(default_factory=dict)

    def __post_init__(self):
        # Read-only view over a private copy
        object.__setattr__(self, 'packages', MappingProxyType(dict(self.packages)))

    def __iter__(self) -> Iterator[PackageMetadata]:
        return iter(self.packages.values())

    def __len__(self) -> int:
        return len(self.packages)

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    def __getitem__(self, name: str) -> PackageMetadata:
        return self.packages[name]

    @property
    def names(self) -> frozenset:
        return frozenset(self.packages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root': self.root,
            'packages': [pkg.to_dict() for pkg in self],
        }
