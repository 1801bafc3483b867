"""Registry publishing.

Authenticates once per publish call and pushes a materialized image under
each release tag, in order. Pushing an image under a tag that already
exists overwrites it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pydantic import SecretStr

from monoship.builds.models import BuiltImage
from monoship.builds.substrate import Substrate
from monoship.config import Settings
from monoship.errors import ConfigurationError, PublishError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryCredential:
    """Opaque registry credential.

    Attributes:
        username: Login user.
        secret: Password or token.
    """

    username: str
    secret: SecretStr

    @classmethod
    def from_settings(cls, settings: Settings) -> RegistryCredential:
        """Build the credential from settings.

        Raises:
            ConfigurationError: If no registry password is configured.
        """
        if settings.registry_password is None:
            raise ConfigurationError(
                "No registry credential configured (set MONOSHIP_REGISTRY_PASSWORD)"
            )
        return cls(username=settings.registry_username, secret=settings.registry_password)


@dataclass(frozen=True)
class PublishedReference:
    """One pushed tag.

    Attributes:
        reference: Fully qualified reference ``registry/repository:tag``.
        tag: The tag.
        digest: Manifest digest reported by the registry, if any.
    """

    reference: str
    tag: str
    digest: str | None = None


def qualified_reference(registry: str, repository: str, tag: str) -> str:
    """Return ``registry/repository:tag``."""
    return f"{registry.rstrip('/')}/{repository}:{tag}"


class RegistryPublisher:
    """Pushes materialized images to a registry."""

    def __init__(self, substrate: Substrate) -> None:
        self.substrate = substrate

    async def publish(
        self,
        built: BuiltImage,
        registry: str,
        credential: RegistryCredential,
        repository: str,
        tags: list[str],
    ) -> list[PublishedReference]:
        """Authenticate and push ``built`` under every tag.

        Args:
            built: Image materialized in the substrate.
            registry: Registry endpoint.
            credential: Registry credential.
            repository: Repository name under the registry.
            tags: Tags to push, in order.

        Returns:
            One PublishedReference per tag.

        Raises:
            PublishError: If authentication or any push fails.
        """
        if not tags:
            raise PublishError(f"No tags to publish for {repository}")

        await self.substrate.login(registry, credential)

        published: list[PublishedReference] = []
        for tag in tags:
            reference = qualified_reference(registry, repository, tag)
            digest = await self.substrate.push(built, reference)
            logger.info("Pushed %s", reference)
            published.append(PublishedReference(reference=reference, tag=tag, digest=digest))
        return published


__all__ = [
    "PublishedReference",
    "RegistryCredential",
    "RegistryPublisher",
    "qualified_reference",
]
