"""Build substrate: evaluation of staged build environments.

The core only stages build environments; a Substrate evaluates them. The
``DockerSubstrate`` implementation renders a staged environment into a
BuildKit Dockerfile and drives the Docker CLI:

- source trees are staged (filtered) into named build contexts
- cache volumes become ``RUN --mount=type=cache`` mounts keyed by cache id,
  which BuildKit persists across runs
- file/directory extraction uses ``--output type=local``
- images are loaded into the local daemon, then tagged and pushed
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from pydantic import SecretStr

from monoship.builds.environment import (
    BuildEnvironment,
    CopyArtifact,
    CopyDirectory,
    Exec,
    MountCache,
    SetEnv,
    Workdir,
)
from monoship.builds.models import Artifact, BuiltImage, Image
from monoship.builds.runner import CommandLaunchError, CommandResult, run_command
from monoship.errors import BuildExecutionError, PublishError, tail
from monoship.types import ArtifactKind, Platform

logger = logging.getLogger(__name__)

BUILD_STAGE = "build"
EXPORT_STAGE = "export"
STDOUT_PATH = "/monoship-stdout"
LOCAL_REPOSITORY = "monoship.local"

DIGEST_PATTERN = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


class Credential(Protocol):
    """Registry credential as seen by the substrate."""

    username: str
    secret: SecretStr


class Substrate(Protocol):
    """Evaluates staged environments and talks to registries."""

    async def export(
        self,
        env: BuildEnvironment,
        path: str,
        kind: ArtifactKind,
        dest: Path,
    ) -> Artifact:
        """Evaluate ``env`` and extract ``path`` into ``dest``."""
        ...

    async def stdout(self, env: BuildEnvironment) -> str:
        """Evaluate ``env`` and return the stdout of its last command."""
        ...

    async def load(self, image: Image) -> BuiltImage:
        """Materialize an image specification."""
        ...

    async def login(self, registry: str, credential: Credential) -> None:
        """Authenticate against a registry."""
        ...

    async def push(self, built: BuiltImage, reference: str) -> str | None:
        """Push a materialized image under ``reference``; return its digest."""
        ...


@dataclass
class RenderedBuild:
    """A Dockerfile rendered from a staged environment.

    Attributes:
        dockerfile: Dockerfile text.
        contexts: Named build contexts and the steps that feed them.
    """

    dockerfile: str
    contexts: dict[str, CopyDirectory | CopyArtifact] = field(default_factory=dict)


def _platform_flag(platform: Platform | None) -> str:
    return f"--platform={platform} " if platform else ""


def render_environment(
    env: BuildEnvironment,
    entrypoint: tuple[str, ...] | None = None,
    export: tuple[str, ArtifactKind] | None = None,
    capture_stdout: bool = False,
) -> RenderedBuild:
    """Render a staged environment into a BuildKit Dockerfile.

    Args:
        env: Staged environment.
        entrypoint: Entrypoint to declare on the build stage.
        export: ``(path, kind)`` to copy into a scratch export stage.
        capture_stdout: Redirect the last command's stdout to a file and
            export it.

    Returns:
        RenderedBuild with the Dockerfile text and named contexts.
    """
    lines = [
        "# syntax=docker/dockerfile:1",
        f"FROM {_platform_flag(env.platform)}{env.base_image} AS {BUILD_STAGE}",
    ]
    contexts: dict[str, CopyDirectory | CopyArtifact] = {}
    mounts: list[str] = []

    last_exec = max(
        (i for i, s in enumerate(env.steps) if isinstance(s, Exec)), default=-1
    )

    for index, step in enumerate(env.steps):
        if isinstance(step, CopyDirectory):
            name = f"src{index}"
            contexts[name] = step
            lines.append(f"COPY --from={name} . {step.path}")
        elif isinstance(step, CopyArtifact):
            name = f"artifact{index}"
            contexts[name] = step
            if step.artifact.kind == ArtifactKind.FILE:
                lines.append(f"COPY --from={name} {step.artifact.name} {step.path}")
            else:
                lines.append(f"COPY --from={name} . {step.path}")
        elif isinstance(step, MountCache):
            mounts.append(
                f"--mount=type=cache,id={step.volume.cache_id},"
                f"target={step.path},sharing=shared"
            )
        elif isinstance(step, Workdir):
            lines.append(f"WORKDIR {step.path}")
        elif isinstance(step, SetEnv):
            lines.append(f"ENV {step.key}={json.dumps(step.value)}")
        elif isinstance(step, Exec):
            args = list(step.args)
            if capture_stdout and index == last_exec:
                args = ["sh", "-c", f'"$@" > {STDOUT_PATH}', "sh", *args]
            flags = " ".join(mounts)
            lines.append(f"RUN {flags + ' ' if flags else ''}{json.dumps(args)}")

    if entrypoint:
        lines.append(f"ENTRYPOINT {json.dumps(list(entrypoint))}")

    if capture_stdout:
        export = (STDOUT_PATH, ArtifactKind.FILE)

    if export is not None:
        path, kind = export
        lines.append(f"FROM scratch AS {EXPORT_STAGE}")
        if kind == ArtifactKind.FILE:
            name = path.rstrip("/").rsplit("/", 1)[-1]
            lines.append(f"COPY --from={BUILD_STAGE} {path} /{name}")
        else:
            lines.append(f"COPY --from={BUILD_STAGE} {path.rstrip('/')}/ /")

    return RenderedBuild(dockerfile="\n".join(lines) + "\n", contexts=contexts)


def stage_context(step: CopyDirectory | CopyArtifact, dest: Path) -> Path:
    """Materialize the host directory backing a named build context.

    Args:
        step: Copy step the context feeds.
        dest: Directory to stage filtered source trees into.

    Returns:
        Host directory to pass as the named context.
    """
    if isinstance(step, CopyArtifact):
        if step.artifact.kind == ArtifactKind.FILE:
            return step.artifact.path.parent
        return step.artifact.path

    dest.mkdir(parents=True, exist_ok=True)
    count = 0
    for rel in step.tree.iter_files(step.include, step.exclude):
        target = dest / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(step.tree.root / rel, target)
        count += 1
    logger.debug("Staged %d files from %s into %s", count, step.tree.root, dest)
    return dest


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9._-]+", "-", value.lower()).strip("-") or "image"


class DockerSubstrate:
    """Substrate backed by the Docker CLI and BuildKit.

    Args:
        work_dir: Scratch root for contexts, Dockerfiles and logs.
        docker_bin: Docker CLI executable.
        build_timeout: Timeout per build command in seconds.
        push_timeout: Timeout per push command in seconds.
    """

    def __init__(
        self,
        work_dir: Path,
        docker_bin: str = "docker",
        build_timeout: int | None = 3600,
        push_timeout: int | None = 900,
    ) -> None:
        self.work_dir = work_dir
        self.docker_bin = docker_bin
        self.build_timeout = build_timeout
        self.push_timeout = push_timeout

    def _scratch(self, operation: str) -> Path:
        scratch = self.work_dir / "scratch" / f"{operation}-{uuid.uuid4().hex[:12]}"
        scratch.mkdir(parents=True, exist_ok=True)
        return scratch

    def _stage(self, rendered: RenderedBuild, scratch: Path) -> list[str]:
        dockerfile = scratch / "Dockerfile"
        dockerfile.write_text(rendered.dockerfile, encoding="utf-8")
        (scratch / "context").mkdir(exist_ok=True)
        args = ["-f", str(dockerfile)]
        for name, step in rendered.contexts.items():
            host_dir = stage_context(step, scratch / "contexts" / name)
            args.extend(["--build-context", f"{name}={host_dir}"])
        return args

    async def _prepare(self, rendered: RenderedBuild, scratch: Path) -> list[str]:
        """Write the Dockerfile and stage contexts; return buildx arguments.

        Staging copies whole source trees, so it runs in a worker thread.
        """
        return await asyncio.to_thread(self._stage, rendered, scratch)

    async def _cleanup(self, scratch: Path) -> None:
        """Remove staged contexts, keeping the Dockerfile and logs."""
        await asyncio.to_thread(shutil.rmtree, scratch / "contexts", ignore_errors=True)

    async def _build(self, cmd: list[str], log_path: Path, what: str) -> CommandResult:
        try:
            result = await run_command(cmd, log_path, timeout=self.build_timeout)
        except CommandLaunchError as e:
            raise BuildExecutionError(
                f"{what}: {e}", log_path=log_path, code="build_failed"
            ) from e
        if not result.success:
            raise BuildExecutionError(
                f"{what} failed with exit code {result.exit_code}",
                exit_code=result.exit_code,
                output=tail(result.output),
                log_path=log_path,
            )
        return result

    async def export(
        self,
        env: BuildEnvironment,
        path: str,
        kind: ArtifactKind,
        dest: Path,
    ) -> Artifact:
        scratch = self._scratch("export")
        rendered = render_environment(env, export=(path, kind))
        name = path.rstrip("/").rsplit("/", 1)[-1]
        output_dir = dest if kind == ArtifactKind.FILE else dest / name
        if kind == ArtifactKind.DIRECTORY and output_dir.exists():
            await asyncio.to_thread(shutil.rmtree, output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        try:
            cmd = [self.docker_bin, "buildx", "build"]
            cmd.extend(await self._prepare(rendered, scratch))
            cmd.extend(
                [
                    "--target",
                    EXPORT_STAGE,
                    "--output",
                    f"type=local,dest={output_dir}",
                    str(scratch / "context"),
                ]
            )
            logger.info("Building %s from %s", path, env.base_image)
            await self._build(cmd, scratch / "build.log", f"Build of {path}")
        finally:
            await self._cleanup(scratch)

        extracted = output_dir / name if kind == ArtifactKind.FILE else output_dir
        if not extracted.exists():
            raise BuildExecutionError(
                f"Expected {kind.value} {path} was not produced",
                log_path=scratch / "build.log",
            )
        return Artifact(kind=kind, path=extracted)

    async def stdout(self, env: BuildEnvironment) -> str:
        scratch = self._scratch("stdout")
        rendered = render_environment(env, capture_stdout=True)
        try:
            cmd = [self.docker_bin, "buildx", "build"]
            cmd.extend(await self._prepare(rendered, scratch))
            cmd.extend(
                [
                    "--target",
                    EXPORT_STAGE,
                    "--output",
                    f"type=local,dest={scratch / 'out'}",
                    str(scratch / "context"),
                ]
            )
            await self._build(cmd, scratch / "build.log", "Command")
        finally:
            await self._cleanup(scratch)
        captured = scratch / "out" / STDOUT_PATH.lstrip("/")
        return captured.read_text(encoding="utf-8")

    async def load(self, image: Image) -> BuiltImage:
        scratch = self._scratch("image")
        digest = await asyncio.to_thread(image.digest)
        reference = f"{LOCAL_REPOSITORY}/{_slug(image.label)}:{digest[:16]}"
        cmd = [self.docker_bin, "buildx", "build", "--load", "-t", reference]
        if image.platform:
            cmd.extend(["--platform", str(image.platform)])

        try:
            if image.dockerfile is not None:
                context = image.context or image.dockerfile.parent
                cmd.extend(["-f", str(image.dockerfile), str(context)])
            elif image.environment is not None:
                rendered = render_environment(
                    image.environment, entrypoint=image.entrypoint
                )
                cmd.extend(await self._prepare(rendered, scratch))
                cmd.extend(["--target", BUILD_STAGE, str(scratch / "context")])

            logger.info("Building image %s", reference)
            await self._build(cmd, scratch / "build.log", f"Image build of {image.label}")
        finally:
            await self._cleanup(scratch)
        return BuiltImage(image=image, reference=reference)

    async def _registry_command(
        self,
        cmd: list[str],
        log_path: Path,
        what: str,
        reference: str | None = None,
        input_data: bytes | None = None,
    ) -> CommandResult:
        try:
            result = await run_command(
                cmd, log_path, timeout=self.push_timeout, input_data=input_data
            )
        except CommandLaunchError as e:
            raise PublishError(f"{what}: {e}", reference=reference, log_path=log_path) from e
        if not result.success:
            raise PublishError(
                f"{what} failed with exit code {result.exit_code}",
                reference=reference,
                output=tail(result.output),
                log_path=log_path,
            )
        return result

    async def login(self, registry: str, credential: Credential) -> None:
        scratch = self._scratch("login")
        cmd = [
            self.docker_bin,
            "login",
            registry,
            "--username",
            credential.username,
            "--password-stdin",
        ]
        await self._registry_command(
            cmd,
            scratch / "login.log",
            f"Login to {registry}",
            input_data=credential.secret.get_secret_value().encode("utf-8"),
        )
        logger.info("Authenticated to %s as %s", registry, credential.username)

    async def push(self, built: BuiltImage, reference: str) -> str | None:
        scratch = self._scratch("push")
        await self._registry_command(
            [self.docker_bin, "tag", built.reference, reference],
            scratch / "tag.log",
            f"Tagging {reference}",
            reference=reference,
        )
        result = await self._registry_command(
            [self.docker_bin, "push", reference],
            scratch / "push.log",
            f"Push of {reference}",
            reference=reference,
        )
        match = DIGEST_PATTERN.search(result.output)
        return match.group(1) if match else None


__all__ = [
    "Credential",
    "DockerSubstrate",
    "RenderedBuild",
    "Substrate",
    "render_environment",
    "stage_context",
]
