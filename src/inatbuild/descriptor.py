"""Build descriptor: named outputs over a single shared configuration."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from inatbuild.backends import BuildBackend, CargoBackend
from inatbuild.cache import EvaluationCache
from inatbuild.container import ContainerPackager
from inatbuild.devshell import DevEnvironmentComposer
from inatbuild.errors import InatBuildError, ValidationError
from inatbuild.executor import BuildExecutor
from inatbuild.lockfile import CRATES_IO, CrateVendor
from inatbuild.models import (
    BuildArtifact,
    BuildConfig,
    ContainerImage,
    DependencySet,
    DevEnvironment,
    EvaluationState,
    OutputName,
    Revision,
)
from inatbuild.observability import StructuredLogger
from inatbuild.platforms import normalize_platform
from inatbuild.policy import Policy
from inatbuild.realiser import DependencyRealiser
from inatbuild.resolver import DEFAULT_CATALOG, CatalogEntry, DependencyResolver
from inatbuild.toolchain import DEFAULT_PIN, ToolchainPin, ToolchainProvider

T = TypeVar("T")

OUTPUTS_BY_REVISION: dict[Revision, tuple[OutputName, ...]] = {
    Revision.BUILD: ("default", "devShell"),
    Revision.DEV_LIBRARY_PATH: ("default", "devShell"),
    Revision.CONTAINER: ("default", "devShell", "image"),
}


@dataclass(slots=True)
class Descriptor:
    """Evaluate the ``default``, ``devShell`` and ``image`` outputs.

    Every component receives the same resolver, so all of them see one
    ``DependencySet`` object per platform. Any error moves the descriptor to
    ``FAILED``; a failed descriptor refuses further evaluation.
    """

    config: BuildConfig
    cache_dir: Path
    out_dir: Path
    backend: BuildBackend = field(default_factory=CargoBackend)
    policy: Policy = field(default_factory=Policy)
    pin: ToolchainPin = DEFAULT_PIN
    catalog: Mapping[str, CatalogEntry] = field(default_factory=lambda: dict(DEFAULT_CATALOG))
    crate_registry: str = CRATES_IO
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    cache: EvaluationCache = field(default_factory=EvaluationCache)
    state: EvaluationState = field(init=False, default=EvaluationState.UNINITIALIZED)
    resolver: DependencyResolver = field(init=False, repr=False)
    toolchains: ToolchainProvider = field(init=False, repr=False)
    realiser: DependencyRealiser = field(init=False, repr=False)
    vendor: CrateVendor = field(init=False, repr=False)
    executor: BuildExecutor = field(init=False, repr=False)
    composer: DevEnvironmentComposer = field(init=False, repr=False)
    packager: ContainerPackager = field(init=False, repr=False)
    _failure: InatBuildError | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        self.resolver = DependencyResolver.from_config(
            self.config,
            cache=self.cache,
            catalog=self.catalog,
        )
        self.toolchains = ToolchainProvider(
            cache_dir=self.cache_dir,
            pin=self.pin,
            policy=self.policy,
            cache=self.cache,
            logger=self.logger,
        )
        self.realiser = DependencyRealiser(
            resolver=self.resolver,
            cache_dir=self.cache_dir,
            policy=self.policy,
            cache=self.cache,
            logger=self.logger,
        )
        self.vendor = CrateVendor(
            cache_dir=self.cache_dir,
            registry=self.crate_registry,
            policy=self.policy,
            cache=self.cache,
            logger=self.logger,
        )
        self.executor = BuildExecutor(
            resolver=self.resolver,
            toolchains=self.toolchains,
            realiser=self.realiser,
            vendor=self.vendor,
            backend=self.backend,
            logger=self.logger,
        )
        self.composer = DevEnvironmentComposer(
            resolver=self.resolver,
            toolchains=self.toolchains,
            realiser=self.realiser,
            logger=self.logger,
        )
        self.packager = ContainerPackager(
            resolver=self.resolver,
            realiser=self.realiser,
            output_dir=self.out_dir,
            logger=self.logger,
        )

    @classmethod
    def create(
        cls,
        *,
        platform: str,
        source: str | Path,
        store_dir: str | Path,
        cache_dir: str | Path,
        out_dir: str | Path,
        revision: Revision = Revision.CONTAINER,
        backend: BuildBackend | None = None,
        policy: Policy | None = None,
        pin: ToolchainPin = DEFAULT_PIN,
        catalog: Mapping[str, CatalogEntry] | None = None,
        crate_registry: str = CRATES_IO,
        logger: StructuredLogger | None = None,
    ) -> Descriptor:
        config = BuildConfig(
            platform=normalize_platform(platform),
            source=Path(source),
            store_dir=Path(store_dir),
            revision=revision,
        )
        policy = policy or Policy()
        return cls(
            config=config,
            cache_dir=Path(cache_dir),
            out_dir=Path(out_dir),
            backend=backend or CargoBackend(policy=policy),
            policy=policy,
            pin=pin,
            catalog=dict(DEFAULT_CATALOG if catalog is None else catalog),
            crate_registry=crate_registry,
            logger=logger or StructuredLogger(),
        )

    def outputs(self) -> tuple[OutputName, ...]:
        return OUTPUTS_BY_REVISION[self.config.revision]

    def dependencies(self) -> DependencySet:
        return self._guard(self._resolve_inputs)

    def build(self) -> BuildArtifact:
        return self._guard(self._build)

    def check_rebuild(self) -> BuildArtifact:
        def run() -> BuildArtifact:
            self._resolve_inputs()
            artifact = self.executor.check_rebuild(self.config)
            self._advance(EvaluationState.ARTIFACT_BUILT)
            return artifact

        return self._guard(run)

    def dev_shell(self) -> DevEnvironment:
        def run() -> DevEnvironment:
            self._build()
            environment = self.composer.compose(self.config)
            self._advance(EvaluationState.DEV_ENVIRONMENT_READY)
            return environment

        return self._guard(run)

    def image(self) -> ContainerImage:
        self._require_output("image")

        def run() -> ContainerImage:
            dependencies = self._resolve_inputs()
            artifact = self._build()
            image = self.packager.package(artifact, dependencies)
            self._advance(EvaluationState.IMAGE_PACKAGED)
            return image

        return self._guard(run)

    def evaluate(self, output: str) -> BuildArtifact | DevEnvironment | ContainerImage:
        self._require_output(output)
        if output == "default":
            return self.build()
        if output == "devShell":
            return self.dev_shell()
        return self.image()

    def _resolve_inputs(self) -> DependencySet:
        dependencies = self.resolver.resolve(self.config.platform)
        self.toolchains.resolve(self.config.platform)
        self._advance(EvaluationState.INPUTS_RESOLVED)
        return dependencies

    def _build(self) -> BuildArtifact:
        self._resolve_inputs()
        artifact = self.executor.build(self.config)
        self._advance(EvaluationState.ARTIFACT_BUILT)
        return artifact

    def _require_output(self, output: str) -> None:
        if output not in self.outputs():
            raise ValidationError(
                f"Output `{output}` is not provided by revision {int(self.config.revision)}.",
                hint=f"Available outputs: {', '.join(self.outputs())}.",
                context={"operation": "evaluate", "output": output},
            )

    def _advance(self, state: EvaluationState) -> None:
        # Terminal states stay put when an earlier step is re-evaluated.
        if self.state in (EvaluationState.DEV_ENVIRONMENT_READY, EvaluationState.IMAGE_PACKAGED):
            if state in (EvaluationState.INPUTS_RESOLVED, EvaluationState.ARTIFACT_BUILT):
                return
        self.state = state

    def _guard(self, run: Callable[[], T]) -> T:
        if self._failure is not None:
            raise ValidationError(
                "Descriptor evaluation already failed; create a new descriptor.",
                context={"operation": "evaluate", "cause": self._failure.code},
            ) from self._failure
        try:
            return run()
        except InatBuildError as exc:
            self.state = EvaluationState.FAILED
            self._failure = exc
            self.logger.log(
                operation="evaluation_failed",
                platform=self.config.platform,
                component="descriptor",
                message=str(exc),
                level="error",
                extra={"code": exc.code},
            )
            raise
