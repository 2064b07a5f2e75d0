"""Ignore patterns for file synchronization.

This module provides:
- IgnorePatterns: gitignore-style matching on common paths
- DEFAULT_IGNORE_PATTERNS: Items never synchronized
- IGNORE_FILE_NAME: Name of the ignore file in the local root

Three kinds of pattern are understood:

    build/        the folder ``build`` anywhere, and everything below it
    cache/**      anchored at the root, ``*`` also crosses folders
    *.log         matched against the whole path and against the name
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path

IGNORE_FILE_NAME = ".ftpsyncignore"

DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".git/**",
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    "*.tmp",
    "*.temp",
    "~*",
    "*.swp",
    "*.swo",
    "*.ftpsync-part",
    IGNORE_FILE_NAME,
]


class RuleKind(Enum):
    """How a pattern is applied."""

    FOLDER = auto()
    ANCHORED = auto()
    NAME = auto()


@dataclass(frozen=True)
class Rule:
    """A parsed ignore pattern."""

    kind: RuleKind
    glob: str

    @classmethod
    def parse(cls, pattern: str) -> Rule:
        if pattern.endswith("/"):
            return cls(RuleKind.FOLDER, pattern.rstrip("/"))
        if "**" in pattern:
            return cls(RuleKind.ANCHORED, pattern)
        return cls(RuleKind.NAME, pattern)

    def matches(self, path: str, parts: list[str], is_dir: bool) -> bool:
        if self.kind == RuleKind.FOLDER:
            if is_dir and fnmatch.fnmatch(path, self.glob):
                return True
            return any(fnmatch.fnmatch(part, self.glob) for part in parts[:-1])
        if self.kind == RuleKind.ANCHORED:
            return fnmatch.fnmatch(path, self.glob)
        return fnmatch.fnmatch(path, self.glob) or fnmatch.fnmatch(parts[-1], self.glob)


class IgnorePatterns:
    """Decides which items get synchronized."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        self._rules = [Rule.parse(p) for p in DEFAULT_IGNORE_PATTERNS]
        for pattern in patterns or []:
            self._rules.append(Rule.parse(pattern))

    def load_from_file(self, path: Path) -> None:
        """Append the patterns of an ignore file, if there is one.

        Blank lines and lines starting with ``#`` are skipped.
        """
        if not path.is_file():
            return
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                self._rules.append(Rule.parse(line))

    def should_ignore(self, path: Path, base_path: Path) -> bool:
        """Check if a local path below ``base_path`` is excluded.

        Symlinks are always excluded. Paths outside ``base_path`` are not.
        """
        if path.is_symlink():
            return True
        try:
            rel = path.relative_to(base_path)
        except ValueError:
            return False
        return self.matches(rel.as_posix(), is_dir=path.is_dir())

    def matches(self, rel_str: str, is_dir: bool = False) -> bool:
        """Check if a common path matches any rule. The root never does."""
        if rel_str in ("", "."):
            return False
        parts = rel_str.split("/")
        return any(rule.matches(rel_str, parts, is_dir) for rule in self._rules)

    def gets_synced(self, rel_str: str, is_dir: bool = False) -> bool:
        """Check if a common path takes part in synchronization."""
        return not self.matches(rel_str, is_dir=is_dir)
