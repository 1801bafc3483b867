"""Shared fixtures for monoship tests.

Provides an in-memory substrate that records every call instead of
driving Docker, plus a small monorepo checkout with one service of each
build strategy.
"""

import asyncio
import hashlib
import json
from pathlib import Path

import pytest
from pydantic import SecretStr

from monoship.builds.cache import CacheRegistry
from monoship.builds.models import Artifact, BuiltImage, Image
from monoship.catalog.schema import ServiceCatalog, ServiceDescriptor
from monoship.errors import BuildExecutionError, PublishError
from monoship.publish import RegistryCredential
from monoship.release.orchestrator import ReleaseConfig
from monoship.source import SourceTree
from monoship.types import ArtifactKind

REVISION = "0123456789abcdef0123456789abcdef01234567"
RELEASE_DATE = "20250102"
REGISTRY = "registry.example.com"


class FakeSubstrate:
    """Substrate double that records calls and fails on request.

    Args:
        fail_exports: Environment paths whose export fails.
        fail_loads: Image labels whose materialization fails.
        fail_pushes: Reference substrings whose push fails.
        fail_login: Whether registry login fails.
        delay: Seconds each export sleeps, to overlap concurrent builds.
    """

    def __init__(
        self,
        fail_exports: set[str] | None = None,
        fail_loads: set[str] | None = None,
        fail_pushes: set[str] | None = None,
        fail_login: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.fail_exports = fail_exports or set()
        self.fail_loads = fail_loads or set()
        self.fail_pushes = fail_pushes or set()
        self.fail_login = fail_login
        self.delay = delay
        self.exports: list[tuple] = []
        self.stdouts: list = []
        self.loads: list[Image] = []
        self.logins: list[tuple[str, str]] = []
        self.pushes: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0

    async def export(self, env, path, kind, dest):
        self.exports.append((env, path, kind, dest))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if path in self.fail_exports:
            raise BuildExecutionError(
                f"Build of {path} failed with exit code 1",
                exit_code=1,
                output="compile error: undefined: foo",
            )

        name = path.rstrip("/").rsplit("/", 1)[-1]
        digest = env.step_digests()[-1]
        dest.mkdir(parents=True, exist_ok=True)
        if kind == ArtifactKind.FILE:
            target = dest / name
            target.write_text(f"binary {digest}", encoding="utf-8")
        else:
            target = dest / name
            target.mkdir(parents=True, exist_ok=True)
            (target / "index.js").write_text(f"// {digest}", encoding="utf-8")
        return Artifact(kind=kind, path=target)

    async def stdout(self, env):
        self.stdouts.append(env)
        return " ".join(env.steps[-1].args) + "\n"

    async def load(self, image):
        self.loads.append(image)
        if image.label in self.fail_loads:
            raise BuildExecutionError(f"Image build of {image.label} failed")
        return BuiltImage(image=image, reference=f"fake.local/{image.label}:{image.digest()[:12]}")

    async def login(self, registry, credential):
        self.logins.append((registry, credential.username))
        if self.fail_login:
            raise PublishError(f"Login to {registry} failed with exit code 1")

    async def push(self, built, reference):
        if any(marker in reference for marker in self.fail_pushes):
            raise PublishError(
                f"Push of {reference} failed with exit code 1", reference=reference
            )
        self.pushes.append((built.reference, reference))
        return "sha256:" + hashlib.sha256(built.reference.encode()).hexdigest()


def write_file(root: Path, rel: str, content: str) -> Path:
    """Write a file below ``root``, creating parents."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def monorepo(tmp_path: Path) -> Path:
    """Create a monorepo with Go, pnpm and Dockerfile services."""
    root = tmp_path / "repo"

    # Go services
    write_file(root, "services/api/go.mod", "module example.com/api\n\ngo 1.24\n")
    write_file(root, "services/api/go.sum", "")
    write_file(root, "services/api/main.go", "package main\n\nfunc main() {}\n")
    write_file(root, "services/worker/go.mod", "module example.com/worker\n\ngo 1.24\n")
    write_file(
        root, "services/worker/cmd/worker/main.go", "package main\n\nfunc main() {}\n"
    )

    # pnpm workspace
    write_file(root, "package.json", json.dumps({"name": "root", "private": True}))
    write_file(root, "pnpm-workspace.yaml", "packages:\n  - apps/*\n")
    write_file(root, "pnpm-lock.yaml", "lockfileVersion: '9.0'\n")
    write_file(
        root,
        "apps/web/package.json",
        json.dumps({"name": "web", "scripts": {"build": "vite build", "start": "node ."}}),
    )
    write_file(root, "apps/web/src/index.ts", "export {}\n")
    write_file(
        root,
        "apps/docs/package.json",
        json.dumps({"name": "docs", "scripts": {"start": "node ."}}),
    )
    write_file(root, "apps/web/node_modules/vite/index.js", "// installed\n")

    # Dockerfile-only service
    write_file(root, "tools/legacy/Dockerfile", "FROM alpine:3.20\n")

    return root


@pytest.fixture
def source(monorepo: Path) -> SourceTree:
    """Source tree over the sample monorepo with a fixed revision."""
    return SourceTree(root=monorepo.resolve(), revision=REVISION)


@pytest.fixture
def api_service() -> ServiceDescriptor:
    return ServiceDescriptor(name="api", path="services/api", kind="compiled", image="team/api")


@pytest.fixture
def worker_service() -> ServiceDescriptor:
    return ServiceDescriptor(
        name="worker",
        path="services/worker",
        kind="compiled",
        image="team/worker",
        main="./cmd/worker",
        build_flags=["-trimpath"],
    )


@pytest.fixture
def web_service() -> ServiceDescriptor:
    return ServiceDescriptor(name="web", path="apps/web", kind="bundled", image="team/web")


@pytest.fixture
def legacy_service() -> ServiceDescriptor:
    return ServiceDescriptor(
        name="legacy",
        path="tools/legacy",
        kind="passthrough",
        image="team/legacy",
        dockerfile="tools/legacy/Dockerfile",
    )


@pytest.fixture
def catalog(api_service, worker_service, web_service, legacy_service) -> ServiceCatalog:
    """Catalog with one service of every strategy (two compiled)."""
    return ServiceCatalog(
        services=[api_service, worker_service, web_service, legacy_service]
    )


@pytest.fixture
def substrate() -> FakeSubstrate:
    return FakeSubstrate()


@pytest.fixture
def caches() -> CacheRegistry:
    return CacheRegistry(namespace="test")


@pytest.fixture
def credential() -> RegistryCredential:
    return RegistryCredential(username="AWS", secret=SecretStr("s3cret"))


@pytest.fixture
def release_config(tmp_path: Path, credential: RegistryCredential) -> ReleaseConfig:
    """Release configuration with a fixed date and a test registry."""
    return ReleaseConfig(
        registry=REGISTRY,
        credential=credential,
        work_dir=tmp_path / "work",
        date_tag=RELEASE_DATE,
    )


@pytest.fixture
def make_substrate():
    """Factory for substrates configured to fail on request."""
    return FakeSubstrate
