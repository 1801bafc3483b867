"""Tests for source.py module.

Tests source tree snapshots, filtered walks and content hashing.
"""

import subprocess
from pathlib import Path

import pytest

from monoship.errors import ConfigurationError
from monoship.source import SourceTree, matches_any, resolve_git_revision


class TestMatchesAny:
    """Tests for matches_any function."""

    def test_basename_pattern_matches_any_depth(self) -> None:
        assert matches_any("services/api/main.go", ["*.go"])
        assert matches_any("main.go", ["*.go"])

    def test_directory_pattern(self) -> None:
        assert matches_any("apps/web/node_modules", ["node_modules"])
        assert not matches_any("apps/web/src", ["node_modules"])

    def test_no_patterns(self) -> None:
        assert not matches_any("a/b", [])


class TestSourceTree:
    """Tests for SourceTree."""

    def test_open_missing_dir(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            SourceTree.open(tmp_path / "missing")

    def test_open_explicit_revision(self, monorepo: Path) -> None:
        tree = SourceTree.open(monorepo, revision="abc")
        assert tree.revision == "abc"
        assert tree.root == monorepo.resolve()

    def test_open_without_git(self, monorepo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A checkout without git metadata should get an empty revision."""

        def fail(*args, **kwargs):
            raise subprocess.CalledProcessError(128, ["git"])

        monkeypatch.setattr(subprocess, "run", fail)
        assert SourceTree.open(monorepo).revision == ""

    def test_subtree(self, source: SourceTree) -> None:
        assert source.subtree("services/api") == source.root / "services" / "api"

    def test_subtree_escape(self, source: SourceTree) -> None:
        """Paths leaving the root should be rejected."""
        with pytest.raises(ConfigurationError, match="escapes"):
            source.subtree("../outside")

    def test_subtree_missing(self, source: SourceTree) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            source.subtree("services/missing")

    def test_relative(self, source: SourceTree) -> None:
        assert source.relative(source.root) == ""
        assert source.relative(source.root / "apps" / "web") == "apps/web"

    def test_iter_files_sorted_and_excludes(self, source: SourceTree) -> None:
        """Walk should be sorted and skip node_modules by default."""
        files = list(source.iter_files())
        assert files == sorted(files)
        assert "apps/web/package.json" in files
        assert not any("node_modules" in f for f in files)

    def test_iter_files_include(self, source: SourceTree) -> None:
        files = list(source.iter_files(include=["go.mod", "go.sum"]))
        assert files == [
            "services/api/go.mod",
            "services/api/go.sum",
            "services/worker/go.mod",
        ]

    def test_iter_files_custom_exclude(self, source: SourceTree) -> None:
        files = list(source.iter_files(exclude=["apps", "services"]))
        assert "tools/legacy/Dockerfile" in files
        assert not any(f.startswith(("apps/", "services/")) for f in files)


class TestHashFiles:
    """Tests for SourceTree.hash_files."""

    def test_stable(self, source: SourceTree) -> None:
        assert source.hash_files() == source.hash_files()

    def test_content_change(self, source: SourceTree) -> None:
        before = source.hash_files(include=["*.go"])
        (source.root / "services/api/main.go").write_text("package main\n// edit\n")
        assert source.hash_files(include=["*.go"]) != before

    def test_unrelated_change_keeps_filtered_hash(self, source: SourceTree) -> None:
        """Edits outside the include filter should not change the digest."""
        before = source.hash_files(include=["go.mod", "go.sum"])
        (source.root / "services/api/main.go").write_text("package main\n// edit\n")
        assert source.hash_files(include=["go.mod", "go.sum"]) == before


class TestResolveGitRevision:
    """Tests for resolve_git_revision function."""

    def test_not_a_checkout(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(*args, **kwargs):
            raise FileNotFoundError("git")

        monkeypatch.setattr(subprocess, "run", fail)
        assert resolve_git_revision(tmp_path) == ""
