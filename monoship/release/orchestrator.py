"""Release orchestration across services.

The orchestrator validates the whole catalog up front, then runs one
asyncio task per service: build -> package -> tag -> publish. Tasks run
concurrently (bounded by a semaphore) and independently; errors are
resolved at the task boundary and turned into failed PublishResults, so
one failing service never affects its siblings.

The ``fail-fast`` policy reproduces the legacy all-or-nothing behavior:
the first failure cancels every sibling still in flight, and those are
reported as cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from monoship.builds.cache import CacheRegistry
from monoship.builds.models import Artifact, BuiltImage, Image
from monoship.builds.packager import ImagePackager
from monoship.builds.strategies import BUILDERS, BuildParameters, ProjectBuilder
from monoship.builds.substrate import Substrate
from monoship.catalog.schema import ServiceCatalog, ServiceDescriptor
from monoship.config import Settings
from monoship.errors import (
    CANCELLED,
    INTERNAL_ERROR,
    BuildExecutionError,
    ConfigurationError,
    MonoshipError,
    PublishError,
)
from monoship.publish import RegistryCredential, RegistryPublisher
from monoship.release.models import PublishResult, ReleaseReport, ServiceRelease
from monoship.source import SourceTree
from monoship.tags import ReleaseTags, compute_tags, today_tag
from monoship.types import FailurePolicy, Platform, ReleaseState

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[ServiceRelease], None]


def new_run_id(now: datetime | None = None) -> str:
    """Return a sortable, unique run identifier."""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class ReleaseConfig:
    """Construction configuration of one orchestration run.

    Attributes:
        registry: Registry endpoint images are pushed to.
        credential: Registry credential (required to publish).
        work_dir: Root for extracted artifacts and logs.
        platform: Default deployment platform.
        revision: Source revision override (source tree revision if None).
        date_tag: Release date override (today, UTC, if None).
        failure_policy: Isolate failures, or cancel siblings on failure.
        max_concurrent: Maximum services in flight.
    """

    registry: str
    credential: RegistryCredential | None
    work_dir: Path
    platform: Platform = Platform(os="linux", arch="arm64")
    revision: str | None = None
    date_tag: str | None = None
    failure_policy: FailurePolicy = FailurePolicy.ISOLATE
    max_concurrent: int = 4

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        credential: RegistryCredential | None = None,
    ) -> ReleaseConfig:
        """Build a run configuration from settings.

        The credential is left unset when no registry password is
        configured; preflight reports it before a release starts.
        """
        if credential is None and settings.registry_password is not None:
            credential = RegistryCredential.from_settings(settings)
        return cls(
            registry=settings.registry,
            credential=credential,
            work_dir=settings.work_dir,
            platform=Platform.parse(settings.platform),
            revision=settings.revision,
            date_tag=settings.date_tag,
            failure_policy=FailurePolicy(settings.failure_policy),
            max_concurrent=settings.max_concurrent_builds,
        )


class ReleaseOrchestrator:
    """Builds, packages and publishes every service of a catalog.

    Args:
        config: Run configuration.
        source: Source tree snapshot shared read-only by all builders.
        substrate: Build substrate.
        caches: Cache registry (a fresh one if None).
        builders: Builder per strategy kind (defaults to ``BUILDERS``).
        on_transition: Called after every service state change.
    """

    def __init__(
        self,
        config: ReleaseConfig,
        source: SourceTree,
        substrate: Substrate,
        caches: CacheRegistry | None = None,
        builders: Mapping | None = None,
        on_transition: TransitionCallback | None = None,
    ) -> None:
        self.config = config
        self.source = source
        self.substrate = substrate
        self.caches = caches or CacheRegistry()
        self.builders: Mapping = builders or BUILDERS
        self.packager = ImagePackager(substrate=substrate, platform=config.platform)
        self.publisher = RegistryPublisher(substrate)
        self.on_transition = on_transition
        self.run_id = new_run_id()
        self._run_tags: ReleaseTags | None = None

    @property
    def revision(self) -> str:
        """Revision being released."""
        if self.config.revision is not None:
            return self.config.revision
        return self.source.revision

    @property
    def tags(self) -> ReleaseTags:
        """Tags every service of this run is published under."""
        return compute_tags(self.revision, self.config.date_tag or today_tag())

    def _builder(self, descriptor: ServiceDescriptor) -> ProjectBuilder:
        builder = self.builders.get(descriptor.kind)
        if builder is None:
            raise ConfigurationError(
                f"Service '{descriptor.name}': unsupported kind '{descriptor.kind}'"
            )
        return builder

    def _platform(self, descriptor: ServiceDescriptor) -> Platform:
        if descriptor.platform:
            return Platform.parse(descriptor.platform)
        return self.config.platform

    def preflight(self, catalog: ServiceCatalog) -> None:
        """Validate every descriptor before any build starts.

        Raises:
            ConfigurationError: Listing every problem found.
        """
        problems: list[str] = []
        if not self.config.registry:
            problems.append("No registry configured (set MONOSHIP_REGISTRY)")
        if self.config.credential is None:
            problems.append(
                "No registry credential configured (set MONOSHIP_REGISTRY_PASSWORD)"
            )
        try:
            compute_tags(self.revision, self.config.date_tag or today_tag())
        except ConfigurationError as e:
            problems.append(str(e))
        for descriptor in catalog.services:
            try:
                self._builder(descriptor).preflight(descriptor, self.source)
            except ConfigurationError as e:
                problems.extend(f"{descriptor.name}: {p}" for p in e.problems)
        if problems:
            raise ConfigurationError(
                f"Release configuration has {len(problems)} problem(s)",
                problems=problems,
            )

    def _transition(self, release: ServiceRelease, state: ReleaseState) -> None:
        release.transition(state)
        logger.info("%s: %s", release.name, state.value)
        if self.on_transition is not None:
            self.on_transition(release)

    def _params(self, descriptor: ServiceDescriptor) -> BuildParameters:
        return BuildParameters(
            source=self.source,
            caches=self.caches,
            substrate=self.substrate,
            platform=self.config.platform,
            output_dir=self.config.work_dir / self.run_id / descriptor.name,
        )

    async def _materialize(
        self, descriptor: ServiceDescriptor, output: Artifact | Image
    ) -> BuiltImage:
        if isinstance(output, Artifact):
            image = self.packager.package(
                output,
                entrypoint=descriptor.entrypoint,
                label=descriptor.name,
                platform=self._platform(descriptor),
            )
        else:
            image = output
        return await self.substrate.load(image)

    async def _pipeline(self, release: ServiceRelease) -> PublishResult:
        descriptor = release.descriptor
        builder = self._builder(descriptor)

        self._transition(release, ReleaseState.BUILDING)
        output = await builder.build(descriptor, self._params(descriptor))
        if isinstance(output, Artifact):
            release.artifact = output

        self._transition(release, ReleaseState.PACKAGING)
        release.built_image = await self._materialize(descriptor, output)

        self._transition(release, ReleaseState.PUBLISHING)
        if self.config.credential is None:
            raise ConfigurationError("No registry credential configured")
        references = await self.publisher.publish(
            release.built_image,
            self.config.registry,
            self.config.credential,
            descriptor.image,
            (self._run_tags or self.tags).as_list(),
        )
        result = release.succeed(references)
        logger.info("%s: published %d tag(s)", release.name, len(references))
        if self.on_transition is not None:
            self.on_transition(release)
        return result

    def _record_failure(
        self, release: ServiceRelease, kind: str, message: str, log_path: str | None = None
    ) -> PublishResult:
        result = release.fail(kind, message, log_path=log_path)
        if self.on_transition is not None:
            self.on_transition(release)
        return result

    async def _run_service(
        self, release: ServiceRelease, semaphore: asyncio.Semaphore
    ) -> PublishResult:
        try:
            async with semaphore:
                return await self._pipeline(release)
        except (BuildExecutionError, PublishError) as e:
            logger.error("%s failed (%s): %s", release.name, e.code, e)
            message = f"{e}\n{e.output}" if e.output else str(e)
            log_path = str(e.log_path) if e.log_path else None
            return self._record_failure(release, e.code, message, log_path)
        except MonoshipError as e:
            logger.error("%s failed (%s): %s", release.name, e.code, e)
            return self._record_failure(release, e.code, str(e))
        except asyncio.CancelledError:
            logger.warning("%s cancelled while %s", release.name, release.state.value)
            self._record_failure(release, CANCELLED, "Cancelled before completion")
            raise
        except Exception as e:
            logger.exception("%s failed unexpectedly", release.name)
            return self._record_failure(
                release, INTERNAL_ERROR, f"{type(e).__name__}: {e}"
            )

    async def _gather_isolated(self, tasks: list[asyncio.Task[PublishResult]]) -> None:
        await asyncio.gather(*tasks)

    async def _gather_fail_fast(self, tasks: list[asyncio.Task[PublishResult]]) -> None:
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            if any(not t.cancelled() and not t.result().succeeded for t in done):
                logger.warning("Failure detected, cancelling %d service(s)", len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                return

    async def run(
        self, catalog: ServiceCatalog, tags: ReleaseTags | None = None
    ) -> ReleaseReport:
        """Release every service of the catalog.

        Args:
            catalog: Ordered service catalog.
            tags: Tags to publish under; computed now when None.

        Returns:
            ReleaseReport with exactly one result per service, in catalog
            order.

        Raises:
            ConfigurationError: If preflight validation fails; nothing is
                built in that case.
            asyncio.CancelledError: If the run itself is cancelled; every
                in-flight service is cancelled too.
        """
        self.preflight(catalog)
        started_at = datetime.now(timezone.utc)
        self.run_id = new_run_id(started_at)
        tags = self._run_tags = tags or self.tags
        logger.info(
            "Release %s: %d service(s), tags %s",
            self.run_id,
            len(catalog.services),
            ", ".join(tags.as_list()),
        )

        releases = [ServiceRelease(descriptor=d) for d in catalog.services]
        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        tasks = [
            asyncio.create_task(self._run_service(r, semaphore), name=f"release:{r.name}")
            for r in releases
        ]
        try:
            if self.config.failure_policy == FailurePolicy.FAIL_FAST:
                await self._gather_fail_fast(tasks)
            else:
                await self._gather_isolated(tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        results: list[PublishResult] = []
        for release in releases:
            if release.result is None:
                # Task was cancelled before it started running
                release.fail(CANCELLED, "Cancelled before start")
            if release.result is not None:
                results.append(release.result)

        report = ReleaseReport(
            run_id=self.run_id,
            revision=self.revision,
            versioned_tag=tags.versioned,
            results=results,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Release %s finished: %d succeeded, %d failed",
            self.run_id,
            len(report.succeeded),
            len(report.failed),
        )
        return report

    async def release_service(self, descriptor: ServiceDescriptor) -> PublishResult:
        """Run the full pipeline for a single service.

        Raises:
            ConfigurationError: If the service fails preflight.
        """
        report = await self.run(ServiceCatalog(services=[descriptor]))
        return report.results[0]

    async def build_service(
        self, descriptor: ServiceDescriptor, output_dir: Path | None = None
    ) -> Artifact | BuiltImage:
        """Build a single service without publishing it.

        Compiled and bundled services return their artifact; passthrough
        services are loaded into the substrate and returned as an image.

        Raises:
            ConfigurationError: If the service fails preflight.
            BuildExecutionError: If the build fails.
        """
        builder = self._builder(descriptor)
        builder.preflight(descriptor, self.source)
        params = self._params(descriptor)
        if output_dir is not None:
            params = BuildParameters(
                source=params.source,
                caches=params.caches,
                substrate=params.substrate,
                platform=params.platform,
                output_dir=output_dir,
            )
        output = await builder.build(descriptor, params)
        if isinstance(output, Image):
            return await self.substrate.load(output)
        return output


__all__ = ["ReleaseConfig", "ReleaseOrchestrator", "new_run_id"]
