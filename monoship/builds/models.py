"""Build output models.

This module defines the values that flow downstream from a build:
- Artifact: a binary file or asset directory extracted from a build
- Image: a runnable container specification built from one artifact
  (or from a Dockerfile, for passthrough services)
- BuiltImage: an Image materialized in the substrate, ready to push
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from monoship.types import ArtifactKind, Platform

if TYPE_CHECKING:
    from monoship.builds.environment import BuildEnvironment

HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def canonical_digest(data: Any) -> str:
    """Hash data through its canonical JSON form (sorted keys, compact)."""
    canonical_json = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Artifact:
    """Terminal output of a project builder.

    Attributes:
        kind: File (single binary) or directory (asset tree).
        path: Host path the artifact was extracted to.
    """

    kind: ArtifactKind
    path: Path

    @property
    def name(self) -> str:
        """Basename of the artifact."""
        return self.path.name

    def content_digest(self) -> str:
        """Compute a SHA-256 digest over the artifact content.

        For directories the digest covers relative paths and file contents
        in sorted order.
        """
        if self.kind == ArtifactKind.FILE:
            return compute_file_hash(self.path)
        sha256 = hashlib.sha256()
        for file in sorted(p for p in self.path.rglob("*") if p.is_file()):
            sha256.update(file.relative_to(self.path).as_posix().encode("utf-8"))
            sha256.update(compute_file_hash(file).encode("ascii"))
        return sha256.hexdigest()


@dataclass(frozen=True)
class Image:
    """Specification of a runnable container image.

    Exactly one of ``environment`` (a staged build environment ending in
    the runtime filesystem) or ``dockerfile`` (passthrough build) is set.

    Attributes:
        label: Short human-readable name used for local references.
        entrypoint: Entrypoint command.
        environment: Staged runtime environment for packaged artifacts.
        dockerfile: Dockerfile path for passthrough images.
        context: Build context directory for passthrough images.
        platform: Target platform of the image.
    """

    label: str
    entrypoint: tuple[str, ...] = ()
    environment: BuildEnvironment | None = None
    dockerfile: Path | None = None
    context: Path | None = None
    platform: Platform | None = None

    def __post_init__(self) -> None:
        if (self.environment is None) == (self.dockerfile is None):
            raise ValueError("Image needs exactly one of environment or dockerfile")

    @property
    def is_passthrough(self) -> bool:
        """Whether the image is built from a Dockerfile."""
        return self.dockerfile is not None

    def describe(self) -> dict[str, Any]:
        """Return a JSON-serializable description of the image."""
        data: dict[str, Any] = {
            "label": self.label,
            "entrypoint": list(self.entrypoint),
            "platform": str(self.platform) if self.platform else None,
        }
        if self.environment is not None:
            digests = self.environment.step_digests()
            data["environment"] = (
                digests[-1] if digests else self.environment.base_digest()
            )
        else:
            data["dockerfile"] = str(self.dockerfile)
            data["dockerfile_digest"] = (
                compute_file_hash(self.dockerfile) if self.dockerfile.is_file() else None
            )
            data["context"] = str(self.context)
        return data

    def digest(self) -> str:
        """Deterministic digest of the image specification."""
        return canonical_digest(self.describe())


@dataclass(frozen=True)
class BuiltImage:
    """An image materialized in the build substrate.

    Attributes:
        image: The specification it was built from.
        reference: Local reference the substrate can tag and push.
    """

    image: Image
    reference: str


__all__ = [
    "Artifact",
    "BuiltImage",
    "Image",
    "canonical_digest",
    "compute_file_hash",
]
