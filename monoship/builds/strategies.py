"""Project builders: one build strategy per service kind.

This module handles:
- Compiled services: Go binaries, cross-compiled for the deployment platform
- Bundled services: pnpm workspace packages built into an asset directory
- Passthrough services: images built straight from a Dockerfile

Each builder exposes ``preflight()`` (configuration checks, raised before
any environment is staged) and ``build()``. Compiled and bundled builders
also expose ``stage()``, which returns the staged environment without
evaluating it. Builders are selected by ``ServiceDescriptor.kind`` through
``get_builder()``.

Dependency manifests are always copied and resolved before the full
source, so that source edits do not invalidate the dependency layers.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

from monoship.builds.cache import (
    GO_BUILD_CACHE,
    GO_MOD_CACHE,
    PNPM_STORE,
    CacheRegistry,
    node_modules_key,
)
from monoship.builds.environment import BuildEnvironment
from monoship.builds.models import Artifact, Image
from monoship.builds.substrate import Substrate
from monoship.catalog.schema import ServiceDescriptor
from monoship.errors import ConfigurationError
from monoship.source import SourceTree
from monoship.types import BuildStrategy, Platform

logger = logging.getLogger(__name__)

# Compiled (Go) toolchain
GO_IMAGE = "golang:1.24"
GO_PROJECT_DIR = "/go/src"
GO_MOD_CACHE_DIR = "/go/pkg/mod"
GO_BUILD_CACHE_DIR = "/root/.cache/go-build"
GO_OUTPUT_DIR = "/out"
GO_MANIFESTS = ("go.mod", "go.sum", "go.work", "go.work.sum")
GO_SOURCES = ("*.go", *GO_MANIFESTS)

# Bundled (pnpm) toolchain
NODE_IMAGE = "node:22-alpine"
WORKSPACE_DIR = "/app"
PNPM_HOME = "/pnpm"
PNPM_STORE_DIR = "/pnpm/store"
PNPM_MANIFESTS = ("pnpm-lock.yaml", "pnpm-workspace.yaml", "package.json", ".npmrc")
DEFAULT_BUNDLED_OUTPUT = "dist"
DEFAULT_BUILD_COMMAND = ("pnpm", "run", "build")


@dataclass(frozen=True)
class BuildParameters:
    """Per-run inputs shared by all builders.

    Attributes:
        source: Source tree snapshot.
        caches: Cache registry.
        substrate: Substrate evaluating staged environments.
        platform: Deployment platform (descriptor overrides win).
        output_dir: Host directory artifacts are extracted into.
    """

    source: SourceTree
    caches: CacheRegistry
    substrate: Substrate
    platform: Platform
    output_dir: Path


class ProjectBuilder(Protocol):
    """Build strategy for one service kind."""

    kind: BuildStrategy

    def preflight(self, descriptor: ServiceDescriptor, source: SourceTree) -> None:
        """Check the descriptor against the source tree.

        Raises:
            ConfigurationError: If the service cannot be built as described.
        """
        ...

    async def build(
        self, descriptor: ServiceDescriptor, params: BuildParameters
    ) -> Artifact | Image:
        """Build the service into an artifact, or directly into an image."""
        ...


def _target_platform(descriptor: ServiceDescriptor, params: BuildParameters) -> Platform:
    if descriptor.platform:
        return Platform.parse(descriptor.platform)
    return params.platform


def _join(*parts: str) -> str:
    path = PurePosixPath(parts[0])
    for part in parts[1:]:
        if part and part != ".":
            path = path / part
    return str(path)


def find_module_root(source: SourceTree, path: str) -> str:
    """Find the nearest directory at or above ``path`` holding a go.mod.

    Args:
        source: Source tree.
        path: Service subtree path.

    Returns:
        Module root relative to the source root ("" for the root itself).

    Raises:
        ConfigurationError: If no go.mod is found up to the source root.
    """
    current = source.subtree(path)
    while True:
        if (current / "go.mod").is_file():
            return source.relative(current)
        if current == source.root:
            break
        current = current.parent
    raise ConfigurationError(f"No go.mod found for '{path}' up to the source root")


class CompiledBuilder:
    """Builds a Go binary, cross-compiled for the deployment platform."""

    kind = BuildStrategy.COMPILED

    def __init__(self, toolchain_image: str = GO_IMAGE) -> None:
        self.toolchain_image = toolchain_image

    @staticmethod
    def output_name(descriptor: ServiceDescriptor) -> str:
        """Binary name produced for a descriptor."""
        return descriptor.output or descriptor.name

    def preflight(self, descriptor: ServiceDescriptor, source: SourceTree) -> None:
        source.subtree(descriptor.path)
        find_module_root(source, descriptor.path)
        main = descriptor.main or "."
        if main.endswith(".go"):
            source.subtree(_join(descriptor.path, main))

    def stage(
        self, descriptor: ServiceDescriptor, params: BuildParameters
    ) -> BuildEnvironment:
        """Stage the compile environment without evaluating it."""
        platform = _target_platform(descriptor, params)
        module_root = find_module_root(params.source, descriptor.path)
        output = f"{GO_OUTPUT_DIR}/{self.output_name(descriptor)}"

        # Toolchain runs on the host platform; GOOS/GOARCH do the cross-compile
        env = BuildEnvironment(self.toolchain_image, substrate=params.substrate)
        env = env.with_mounted_cache(
            GO_MOD_CACHE_DIR, params.caches.volume(GO_MOD_CACHE)
        )
        env = env.with_directory(GO_PROJECT_DIR, params.source, include=GO_MANIFESTS)
        env = env.with_workdir(_join(GO_PROJECT_DIR, module_root))
        env = env.with_exec(["go", "mod", "download"])

        env = env.with_directory(GO_PROJECT_DIR, params.source, include=GO_SOURCES)
        env = env.with_mounted_cache(
            GO_BUILD_CACHE_DIR, params.caches.volume(GO_BUILD_CACHE)
        )
        env = env.with_env("CGO_ENABLED", "0")
        env = env.with_env("GOOS", platform.os)
        env = env.with_env("GOARCH", platform.arch)
        env = env.with_workdir(_join(GO_PROJECT_DIR, descriptor.path))
        env = env.with_exec(
            [
                "go",
                "build",
                *(descriptor.build_flags or []),
                "-o",
                output,
                descriptor.main or ".",
            ]
        )
        return env

    async def build(
        self, descriptor: ServiceDescriptor, params: BuildParameters
    ) -> Artifact:
        self.preflight(descriptor, params.source)
        env = self.stage(descriptor, params)
        logger.info(
            "Compiling %s for %s",
            descriptor.name,
            _target_platform(descriptor, params),
        )
        return await env.file(
            f"{GO_OUTPUT_DIR}/{self.output_name(descriptor)}", params.output_dir
        )


def read_package_scripts(package_json: Path) -> dict[str, str]:
    """Read the ``scripts`` table of a package.json.

    Raises:
        ConfigurationError: If the file is missing or not valid JSON.
    """
    try:
        with package_json.open(encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Package manifest not found: {package_json}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid package manifest {package_json}: {e}") from e
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return scripts if isinstance(scripts, dict) else {}


class BundledBuilder:
    """Builds one package of a pnpm workspace into an asset directory."""

    kind = BuildStrategy.BUNDLED

    def __init__(self, toolchain_image: str = NODE_IMAGE) -> None:
        self.toolchain_image = toolchain_image

    def preflight(self, descriptor: ServiceDescriptor, source: SourceTree) -> None:
        package_dir = source.subtree(descriptor.path)
        scripts = read_package_scripts(package_dir / "package.json")
        if descriptor.build_command is None and "build" not in scripts:
            raise ConfigurationError(
                f"Service '{descriptor.name}': package {descriptor.path} declares "
                "no build script and no build_command is configured"
            )

    def stage(
        self, descriptor: ServiceDescriptor, params: BuildParameters
    ) -> BuildEnvironment:
        """Stage the bundle environment without evaluating it."""
        install = ["pnpm", "install"]
        if (params.source.root / "pnpm-lock.yaml").is_file():
            install.append("--frozen-lockfile")

        env = BuildEnvironment(self.toolchain_image, substrate=params.substrate)
        env = env.with_env("PNPM_HOME", PNPM_HOME)
        env = env.with_env("npm_config_store_dir", PNPM_STORE_DIR)
        env = env.with_exec(["corepack", "enable"])
        env = env.with_mounted_cache(PNPM_STORE_DIR, params.caches.volume(PNPM_STORE))
        env = env.with_mounted_cache(
            f"{WORKSPACE_DIR}/node_modules",
            params.caches.volume(node_modules_key(descriptor.name)),
        )
        env = env.with_directory(WORKSPACE_DIR, params.source, include=PNPM_MANIFESTS)
        env = env.with_workdir(WORKSPACE_DIR)
        env = env.with_exec(install)

        env = env.with_directory(WORKSPACE_DIR, params.source)
        env = env.with_workdir(_join(WORKSPACE_DIR, descriptor.path))
        env = env.with_exec(list(descriptor.build_command or DEFAULT_BUILD_COMMAND))
        return env

    async def build(
        self, descriptor: ServiceDescriptor, params: BuildParameters
    ) -> Artifact:
        self.preflight(descriptor, params.source)
        env = self.stage(descriptor, params)
        output = _join(
            WORKSPACE_DIR,
            descriptor.path,
            descriptor.output_dir or DEFAULT_BUNDLED_OUTPUT,
        )
        logger.info("Bundling %s", descriptor.name)
        return await env.directory(output, params.output_dir)


class PassthroughBuilder:
    """Delegates to the substrate's Dockerfile build; produces an Image."""

    kind = BuildStrategy.PASSTHROUGH

    def preflight(self, descriptor: ServiceDescriptor, source: SourceTree) -> None:
        source.subtree(descriptor.path)
        if descriptor.dockerfile is None:
            raise ConfigurationError(
                f"Service '{descriptor.name}': dockerfile is required"
            )
        source.subtree(descriptor.dockerfile)
        source.subtree(descriptor.context or ".")

    async def build(
        self, descriptor: ServiceDescriptor, params: BuildParameters
    ) -> Image:
        self.preflight(descriptor, params.source)
        return Image(
            label=descriptor.name,
            dockerfile=params.source.subtree(descriptor.dockerfile or ""),
            context=params.source.subtree(descriptor.context or "."),
            platform=_target_platform(descriptor, params),
        )


BUILDERS: dict[BuildStrategy, ProjectBuilder] = {
    BuildStrategy.COMPILED: CompiledBuilder(),
    BuildStrategy.BUNDLED: BundledBuilder(),
    BuildStrategy.PASSTHROUGH: PassthroughBuilder(),
}


def get_builder(kind: BuildStrategy) -> ProjectBuilder:
    """Return the builder for a strategy kind.

    Raises:
        ConfigurationError: If no builder handles ``kind``.
    """
    try:
        return BUILDERS[kind]
    except KeyError:
        raise ConfigurationError(f"Unsupported build strategy: {kind}") from None


__all__ = [
    "BUILDERS",
    "BuildParameters",
    "BundledBuilder",
    "CompiledBuilder",
    "PassthroughBuilder",
    "ProjectBuilder",
    "find_module_root",
    "get_builder",
    "read_package_scripts",
]
