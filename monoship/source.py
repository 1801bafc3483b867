"""Source tree snapshots.

This module handles:
- Opening a monorepo checkout as an immutable SourceTree
- Resolving the source revision from git
- Filtered, deterministic file walks and content hashing
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from monoship.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Directories never copied into a build environment
DEFAULT_EXCLUDES: tuple[str, ...] = (".git", "node_modules")

HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def matches_any(relative_path: str, patterns: Iterable[str]) -> bool:
    """Check whether a relative posix path matches any glob pattern.

    Patterns are matched from the right, so ``*.go`` matches Go files at
    any depth and ``apps/web/package.json`` matches that file wherever the
    ``apps`` directory sits.

    Args:
        relative_path: Path relative to the tree root, posix separators.
        patterns: Glob patterns.

    Returns:
        True if any pattern matches.
    """
    path = PurePosixPath(relative_path)
    return any(path.match(pattern) for pattern in patterns)


def resolve_git_revision(root: Path, timeout: int = 30) -> str:
    """Resolve the HEAD commit of a git checkout.

    Args:
        root: Checkout root.
        timeout: Command timeout in seconds.

    Returns:
        Full commit hash, or an empty string if ``root`` is not a git
        checkout or git is unavailable.
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=root,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("Could not resolve git revision for %s: %s", root, e)
        return ""
    return result.stdout.strip()


@dataclass(frozen=True)
class SourceTree:
    """Immutable snapshot of the monorepo at orchestration start.

    Attributes:
        root: Absolute path of the checkout root.
        revision: Revision identifier (commit hash), may be empty.
    """

    root: Path
    revision: str = ""

    @classmethod
    def open(cls, root: Path, revision: str | None = None) -> SourceTree:
        """Open a checkout as a source tree.

        Args:
            root: Checkout root directory.
            revision: Explicit revision; resolved from git when None.

        Returns:
            SourceTree instance.

        Raises:
            ConfigurationError: If ``root`` is not a directory.
        """
        root = Path(root).resolve()
        if not root.is_dir():
            raise ConfigurationError(f"Source directory does not exist: {root}")
        if revision is None:
            revision = resolve_git_revision(root)
        logger.info("Opened source tree %s (revision=%s)", root, revision[:7] or "-")
        return cls(root=root, revision=revision)

    def subtree(self, path: str | PurePosixPath) -> Path:
        """Resolve a path inside the tree.

        Args:
            path: Path relative to the root.

        Returns:
            Absolute path.

        Raises:
            ConfigurationError: If the path escapes the root or does not exist.
        """
        resolved = (self.root / str(path)).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise ConfigurationError(f"Path escapes source tree: {path}")
        if not resolved.exists():
            raise ConfigurationError(f"Path does not exist in source tree: {path}")
        return resolved

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the root as a posix string."""
        rel = path.resolve().relative_to(self.root).as_posix()
        return "" if rel == "." else rel

    def iter_files(
        self,
        include: Iterable[str] | None = None,
        exclude: Iterable[str] = DEFAULT_EXCLUDES,
    ) -> Iterator[str]:
        """Walk the tree in sorted order, yielding relative file paths.

        Args:
            include: Glob patterns a file must match; all files when None.
            exclude: Glob patterns pruning files and whole directories.

        Yields:
            Relative posix paths of matching files.
        """
        include = tuple(include) if include is not None else None
        exclude = tuple(exclude)
        yield from self._walk(self.root, include, exclude)

    def _walk(
        self,
        directory: Path,
        include: tuple[str, ...] | None,
        exclude: tuple[str, ...],
    ) -> Iterator[str]:
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            rel = entry.relative_to(self.root).as_posix()
            if matches_any(rel, exclude):
                continue
            if entry.is_dir() and not entry.is_symlink():
                yield from self._walk(entry, include, exclude)
            elif entry.is_file():
                if include is None or matches_any(rel, include):
                    yield rel

    def hash_files(
        self,
        include: Iterable[str] | None = None,
        exclude: Iterable[str] = DEFAULT_EXCLUDES,
    ) -> str:
        """Compute a SHA-256 digest over matching paths and contents.

        Args:
            include: Glob patterns a file must match; all files when None.
            exclude: Glob patterns to skip.

        Returns:
            SHA-256 hex digest.
        """
        sha256 = hashlib.sha256()
        for rel in self.iter_files(include, exclude):
            sha256.update(rel.encode("utf-8"))
            sha256.update(b"\0")
            with (self.root / rel).open("rb") as f:
                while chunk := f.read(HASH_CHUNK_SIZE):
                    sha256.update(chunk)
            sha256.update(b"\0")
        return sha256.hexdigest()


__all__ = [
    "DEFAULT_EXCLUDES",
    "SourceTree",
    "matches_any",
    "resolve_git_revision",
]
