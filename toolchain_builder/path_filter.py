"""
Archive entry filtering for toolchain-builder.

Decides which entries of a package archive are written to disk:
- Directory entries (trailing "/") and hidden entries (leading ".") never are
- Exclude rules always win over include rules
- An empty include set means no include-based restriction
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Pattern, Sequence, Tuple

from .errors import ConfigError


class RuleKind(Enum):
    """Whether a rule selects or rejects entries."""
    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(frozen=True)
class FilterRule:
    """A compiled regex plus its kind."""
    pattern: Pattern
    kind: RuleKind

    @classmethod
    def compile(cls, expression: str, kind: RuleKind) -> 'FilterRule':
        try:
            return cls(pattern=re.compile(expression), kind=kind)
        except re.error as e:
            raise ConfigError(f"Invalid {kind.value} pattern {expression!r}: {e}") from e

    def matches(self, path: str) -> bool:
        return self.pattern.search(path) is not None


def compile_rules(expressions: Iterable[str], kind: RuleKind) -> Tuple[FilterRule, ...]:
    """Compile pattern strings into rules, keeping their order."""
    return tuple(FilterRule.compile(expr, kind) for expr in expressions)


def is_directory_or_hidden(path: str) -> bool:
    return path.endswith('/') or path.startswith('.')


def should_extract(
    path: str,
    exclude_rules: Sequence[FilterRule],
    include_rules: Sequence[FilterRule],
) -> bool:
    """
    Decide whether an archive entry is written to the output tree.

    Args:
        path: Entry path inside the archive
        exclude_rules: Rules rejecting matching paths
        include_rules: Rules a path must match (if any are given)

    Returns:
        True if the entry should be extracted
    """
    if is_directory_or_hidden(path):
        return False
    if any(rule.matches(path) for rule in exclude_rules):
        return False
    if include_rules and not any(rule.matches(path) for rule in include_rules):
        return False
    return True


@dataclass(frozen=True)
class PathFilter:
    """
    Read-only exclude/include rule sets shared by all workers of a run.

    Example:
        path_filter = PathFilter.from_patterns(exclude=["^mingw64/share/doc/"])
        path_filter.should_extract("mingw64/bin/gcc.exe")  # True
    """
    exclude: Tuple[FilterRule, ...] = ()
    include: Tuple[FilterRule, ...] = ()

    @classmethod
    def from_patterns(
        cls,
        exclude: Iterable[str] = (),
        include: Iterable[str] = (),
    ) -> 'PathFilter':
        return cls(
            exclude=compile_rules(exclude, RuleKind.EXCLUDE),
            include=compile_rules(include, RuleKind.INCLUDE),
        )

    def should_extract(self, path: str) -> bool:
        return should_extract(path, self.exclude, self.include)
