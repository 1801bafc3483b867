"""Pydantic models for the service catalog.

A service descriptor statically describes one buildable unit of the
monorepo. Which optional fields are meaningful depends on the build
strategy kind; fields belonging to another kind are rejected.
"""

import re
from pathlib import PurePosixPath

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from monoship.types import BuildStrategy, Platform

SERVICE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]*$")
REPOSITORY_PATTERN = re.compile(r"^[a-z0-9]+(?:[._\-/][a-z0-9]+)*$")

# Fields only meaningful for one strategy kind
KIND_FIELDS: dict[BuildStrategy, tuple[str, ...]] = {
    BuildStrategy.COMPILED: ("main", "output", "build_flags"),
    BuildStrategy.BUNDLED: ("build_command", "output_dir"),
    BuildStrategy.PASSTHROUGH: ("dockerfile", "context"),
}


def _relative_path(value: str, field_name: str) -> str:
    path = PurePosixPath(value)
    if path.is_absolute() or ".." in path.parts:
        raise ValueError(f"{field_name} must be relative to the source root")
    return str(path)


class ServiceDescriptor(BaseModel):
    """Static description of one buildable service.

    Attributes:
        name: Unique service name.
        path: Subtree path within the source tree.
        kind: Build strategy kind.
        image: Target image repository name, e.g. ``team/api``.
        dockerfile: Dockerfile path (passthrough only).
        context: Build context directory (passthrough only, default root).
        build_command: Build command override (bundled only).
        output_dir: Build output directory in the package (bundled only).
        main: Entrypoint source file or package (compiled only).
        output: Binary name (compiled only, default service name).
        build_flags: Extra compiler flags (compiled only).
        entrypoint: Runtime entrypoint override.
        platform: Deployment platform override.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Unique service name")
    path: str = Field(description="Subtree path within the source tree")
    kind: BuildStrategy = Field(description="Build strategy kind")
    image: str = Field(description="Target image repository name")

    dockerfile: str | None = Field(default=None, description="Dockerfile path")
    context: str | None = Field(default=None, description="Docker build context")
    build_command: list[str] | None = Field(
        default=None, description="Bundled build command override"
    )
    output_dir: str | None = Field(default=None, description="Bundled output dir")
    main: str | None = Field(default=None, description="Compiled entrypoint source")
    output: str | None = Field(default=None, description="Compiled binary name")
    build_flags: list[str] | None = Field(default=None, description="Compiler flags")
    entrypoint: list[str] | None = Field(default=None, description="Entrypoint")
    platform: str | None = Field(default=None, description="Platform override")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name format."""
        if not SERVICE_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must contain only alphanumerics, dots, dashes and "
                f"underscores, got '{v}'"
            )
        return v

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        """Validate image is a repository name without tag or registry."""
        if not REPOSITORY_PATTERN.match(v):
            raise ValueError(f"image must be a lowercase repository name, got '{v}'")
        return v

    @field_validator("path", "dockerfile", "context", "output_dir")
    @classmethod
    def validate_relative(cls, v: str | None, info: ValidationInfo) -> str | None:
        """Validate paths stay relative to the source root."""
        if v is None:
            return v
        return _relative_path(v, info.field_name)

    @field_validator("build_command", "entrypoint")
    @classmethod
    def validate_command(cls, v: list[str] | None) -> list[str] | None:
        """Validate commands are non-empty."""
        if v is not None and not v:
            raise ValueError("command must not be empty")
        return v

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str | None) -> str | None:
        """Validate platform is of the form os/arch."""
        if v is not None:
            Platform.parse(v)
        return v

    @model_validator(mode="after")
    def validate_kind_fields(self) -> "ServiceDescriptor":
        """Reject fields that belong to another strategy kind."""
        for kind, fields in KIND_FIELDS.items():
            if kind == self.kind:
                continue
            misplaced = [f for f in fields if getattr(self, f) is not None]
            if misplaced:
                raise ValueError(
                    f"{', '.join(misplaced)} not allowed for kind "
                    f"'{self.kind.value}' (only for '{kind.value}')"
                )
        if self.kind == BuildStrategy.PASSTHROUGH and self.dockerfile is None:
            raise ValueError("dockerfile is required for kind 'passthrough'")
        if self.kind == BuildStrategy.PASSTHROUGH and self.entrypoint is not None:
            raise ValueError(
                "entrypoint not allowed for kind 'passthrough' "
                "(set ENTRYPOINT in the Dockerfile)"
            )
        return self


class ServiceCatalog(BaseModel):
    """Ordered list of service descriptors with unique names."""

    model_config = ConfigDict(extra="forbid")

    services: list[ServiceDescriptor] = Field(default_factory=list)

    @field_validator("services")
    @classmethod
    def validate_unique_names(
        cls, v: list[ServiceDescriptor]
    ) -> list[ServiceDescriptor]:
        """Validate service names are unique."""
        seen: set[str] = set()
        duplicates = []
        for service in v:
            if service.name in seen:
                duplicates.append(service.name)
            seen.add(service.name)
        if duplicates:
            raise ValueError(f"duplicate service names: {', '.join(duplicates)}")
        return v

    def get(self, name: str) -> ServiceDescriptor | None:
        """Return the descriptor with ``name``, or None."""
        for service in self.services:
            if service.name == name:
                return service
        return None

    def select(self, names: list[str]) -> "ServiceCatalog":
        """Return a catalog restricted to ``names``, keeping catalog order.

        Raises:
            KeyError: If a name is not in the catalog.
        """
        unknown = [n for n in names if self.get(n) is None]
        if unknown:
            raise KeyError(", ".join(unknown))
        wanted = set(names)
        return ServiceCatalog(services=[s for s in self.services if s.name in wanted])


__all__ = ["KIND_FIELDS", "ServiceCatalog", "ServiceDescriptor"]
