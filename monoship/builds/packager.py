"""Image packaging for build artifacts.

Wraps an artifact into a minimal runtime image: a binary is copied to a
fixed path and declared as entrypoint; an asset directory becomes the
application root and working directory. Packaging is pure: the same
artifact and entrypoint always give an equal Image specification.
"""

from __future__ import annotations

from monoship.builds.environment import BuildEnvironment
from monoship.builds.models import Artifact, Image
from monoship.builds.substrate import Substrate
from monoship.types import ArtifactKind, Platform

BINARY_BASE_IMAGE = "alpine:3.20"
BINARY_DIR = "/bin"
ASSETS_BASE_IMAGE = "node:22-alpine"
APP_DIR = "/app"
DEFAULT_APP_ENTRYPOINT = ("npm", "run", "start")


class ImagePackager:
    """Packages artifacts into runtime images.

    Args:
        substrate: Substrate attached to the runtime environments.
        platform: Platform of the runtime images.
        binary_base_image: Base image for binary artifacts.
        assets_base_image: Base image for directory artifacts.
    """

    def __init__(
        self,
        substrate: Substrate | None = None,
        platform: Platform | None = None,
        binary_base_image: str = BINARY_BASE_IMAGE,
        assets_base_image: str = ASSETS_BASE_IMAGE,
    ) -> None:
        self.substrate = substrate
        self.platform = platform
        self.binary_base_image = binary_base_image
        self.assets_base_image = assets_base_image

    def package(
        self,
        artifact: Artifact,
        entrypoint: list[str] | tuple[str, ...] | None = None,
        label: str | None = None,
        platform: Platform | None = None,
    ) -> Image:
        """Wrap an artifact into a runtime image specification.

        Args:
            artifact: Binary file or asset directory.
            entrypoint: Entrypoint command; defaults to the binary path for
                files and ``npm run start`` for directories.
            label: Image label (defaults to the artifact name).
            platform: Runtime platform (defaults to the packager's).

        Returns:
            Image specification.
        """
        platform = platform or self.platform
        label = label or artifact.name

        if artifact.kind == ArtifactKind.FILE:
            binary = f"{BINARY_DIR}/{artifact.name}"
            env = BuildEnvironment(
                self.binary_base_image, platform=platform, substrate=self.substrate
            )
            env = env.with_artifact(binary, artifact)
            return env.as_image(label, entrypoint or (binary,))

        env = BuildEnvironment(
            self.assets_base_image, platform=platform, substrate=self.substrate
        )
        env = env.with_artifact(APP_DIR, artifact)
        env = env.with_workdir(APP_DIR)
        return env.as_image(label, entrypoint or DEFAULT_APP_ENTRYPOINT)


__all__ = ["ImagePackager"]
