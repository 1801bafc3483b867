"""Staged build environments.

A BuildEnvironment is a base image plus an ordered sequence of staged
mutations (copy a directory, mount a cache, set the working directory or
an environment variable, run a command). Staging operations never mutate
the receiver; each returns a new environment, so the result of every
staging call must be threaded forward.

Terminal operations (``file``, ``directory``, ``stdout``) hand the staged
chain to the build substrate for evaluation.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Union

from monoship.builds.cache import CacheVolume
from monoship.builds.models import Artifact, Image, canonical_digest
from monoship.source import DEFAULT_EXCLUDES, SourceTree
from monoship.types import ArtifactKind, Platform

if TYPE_CHECKING:
    from monoship.builds.substrate import Substrate


def _absolute(path: str) -> str:
    """Validate an in-environment path is absolute and normalize it."""
    if not path.startswith("/"):
        raise ValueError(f"Environment paths must be absolute, got '{path}'")
    return str(PurePosixPath(path))


@dataclass(frozen=True)
class CopyDirectory:
    """Copy a filtered source tree to ``path``."""

    path: str
    tree: SourceTree
    include: tuple[str, ...] | None = None
    exclude: tuple[str, ...] = DEFAULT_EXCLUDES

    def describe(self) -> dict[str, Any]:
        return {
            "op": "copy_directory",
            "path": self.path,
            "include": list(self.include) if self.include is not None else None,
            "exclude": list(self.exclude),
            "content": self.tree.hash_files(self.include, self.exclude),
        }


@dataclass(frozen=True)
class CopyArtifact:
    """Copy a previously extracted artifact to ``path``."""

    path: str
    artifact: Artifact

    def describe(self) -> dict[str, Any]:
        return {
            "op": "copy_artifact",
            "path": self.path,
            "kind": self.artifact.kind.value,
            "content": self.artifact.content_digest(),
        }


@dataclass(frozen=True)
class MountCache:
    """Mount a cache volume at ``path`` for every later command."""

    path: str
    volume: CacheVolume

    def describe(self) -> dict[str, Any]:
        return {"op": "mount_cache", "path": self.path, "cache": self.volume.cache_id}


@dataclass(frozen=True)
class Workdir:
    """Set the working directory."""

    path: str

    def describe(self) -> dict[str, Any]:
        return {"op": "workdir", "path": self.path}


@dataclass(frozen=True)
class SetEnv:
    """Set an environment variable."""

    key: str
    value: str

    def describe(self) -> dict[str, Any]:
        return {"op": "env", "key": self.key, "value": self.value}


@dataclass(frozen=True)
class Exec:
    """Run a command."""

    args: tuple[str, ...]

    def describe(self) -> dict[str, Any]:
        return {"op": "exec", "args": list(self.args)}


Step = Union[CopyDirectory, CopyArtifact, MountCache, Workdir, SetEnv, Exec]


@dataclass(frozen=True)
class BuildEnvironment:
    """Immutable staged execution context.

    Attributes:
        base_image: Image reference the environment starts from.
        platform: Target platform, or None for the substrate default.
        steps: Staged operations, in order.
        substrate: Substrate that evaluates terminal operations.
    """

    base_image: str
    platform: Platform | None = None
    steps: tuple[Step, ...] = ()
    substrate: Substrate | None = field(default=None, compare=False, repr=False)

    def _stage(self, step: Step) -> BuildEnvironment:
        return replace(self, steps=(*self.steps, step))

    # Staging operations

    def with_base_image(self, ref: str) -> BuildEnvironment:
        """Return a fresh environment on a different base image."""
        return replace(self, base_image=ref, steps=())

    def with_directory(
        self,
        path: str,
        tree: SourceTree,
        include: tuple[str, ...] | list[str] | None = None,
        exclude: tuple[str, ...] | list[str] = DEFAULT_EXCLUDES,
    ) -> BuildEnvironment:
        """Stage a copy of the (filtered) source tree to ``path``."""
        return self._stage(
            CopyDirectory(
                path=_absolute(path),
                tree=tree,
                include=tuple(include) if include is not None else None,
                exclude=tuple(exclude),
            )
        )

    def with_artifact(self, path: str, artifact: Artifact) -> BuildEnvironment:
        """Stage a copy of an extracted artifact to ``path``."""
        return self._stage(CopyArtifact(path=_absolute(path), artifact=artifact))

    def with_mounted_cache(self, path: str, volume: CacheVolume) -> BuildEnvironment:
        """Stage a cache mount for all later commands."""
        return self._stage(MountCache(path=_absolute(path), volume=volume))

    def with_workdir(self, path: str) -> BuildEnvironment:
        """Stage a working directory change."""
        return self._stage(Workdir(path=_absolute(path)))

    def with_env(self, key: str, value: str) -> BuildEnvironment:
        """Stage an environment variable."""
        if not key or "=" in key:
            raise ValueError(f"Invalid environment variable name: {key!r}")
        return self._stage(SetEnv(key=key, value=value))

    def with_exec(self, command: list[str] | tuple[str, ...]) -> BuildEnvironment:
        """Stage a command."""
        if not command:
            raise ValueError("Command must not be empty")
        return self._stage(Exec(args=tuple(command)))

    # Inspection

    @property
    def workdir(self) -> str:
        """Effective working directory after all staged steps."""
        current = "/"
        for step in self.steps:
            if isinstance(step, Workdir):
                current = step.path
        return current

    @property
    def mounted_caches(self) -> list[MountCache]:
        """Cache mounts staged so far."""
        return [s for s in self.steps if isinstance(s, MountCache)]

    def base_digest(self) -> str:
        """Digest of the base image and platform alone."""
        return canonical_digest(
            {
                "base_image": self.base_image,
                "platform": str(self.platform) if self.platform else None,
            }
        )

    def step_digests(self) -> list[str]:
        """Compute a chained digest per staged step.

        Each digest covers the base image and every step up to and
        including that step; copied trees are hashed by content. Two
        environments share a digest at index ``i`` exactly when the
        substrate can reuse the result of step ``i``.

        Returns:
            Hex digests aligned with ``steps``.
        """
        digests: list[str] = []
        previous = self.base_digest()
        for step in self.steps:
            payload = json.dumps(step.describe(), sort_keys=True, separators=(",", ":"))
            previous = hashlib.sha256(
                (previous + payload).encode("utf-8")
            ).hexdigest()
            digests.append(previous)
        return digests

    # Terminal operations

    def _require_substrate(self) -> Substrate:
        if self.substrate is None:
            raise RuntimeError("BuildEnvironment has no substrate to evaluate it")
        return self.substrate

    async def file(self, path: str, dest: Path) -> Artifact:
        """Evaluate the environment and extract a single file.

        Args:
            path: Absolute file path inside the environment.
            dest: Host directory to extract into.

        Returns:
            File artifact.

        Raises:
            BuildExecutionError: If a command fails or the path is missing.
        """
        substrate = self._require_substrate()
        return await substrate.export(self, _absolute(path), ArtifactKind.FILE, dest)

    async def directory(self, path: str, dest: Path) -> Artifact:
        """Evaluate the environment and extract a directory.

        Raises:
            BuildExecutionError: If a command fails or the path is missing.
        """
        substrate = self._require_substrate()
        return await substrate.export(
            self, _absolute(path), ArtifactKind.DIRECTORY, dest
        )

    async def stdout(self) -> str:
        """Evaluate the environment and return the last command's stdout.

        Raises:
            BuildExecutionError: If a command fails.
            ValueError: If no command is staged.
        """
        if not any(isinstance(s, Exec) for s in self.steps):
            raise ValueError("stdout() needs at least one staged command")
        return await self._require_substrate().stdout(self)

    def as_image(self, label: str, entrypoint: list[str] | tuple[str, ...]) -> Image:
        """Declare this environment as a runnable image.

        Args:
            label: Short name used for local references.
            entrypoint: Entrypoint command.

        Returns:
            Image specification; the substrate materializes it on load.
        """
        if not entrypoint:
            raise ValueError("Entrypoint must not be empty")
        return Image(
            label=label,
            entrypoint=tuple(entrypoint),
            environment=self,
            platform=self.platform,
        )


__all__ = [
    "BuildEnvironment",
    "CopyArtifact",
    "CopyDirectory",
    "Exec",
    "MountCache",
    "SetEnv",
    "Step",
    "Workdir",
]
