"""Build executor: lockfile validation, pinned compilation, content-addressed output."""

from __future__ import annotations

import hashlib
import json
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from inatbuild.backends import BuildBackend, BuildRequest, CargoBackend
from inatbuild.cache import ArtifactStore, BuildCacheInput, cache_key
from inatbuild.errors import BuildError, LockfileError, ReproducibilityError
from inatbuild.lockfile import (
    CrateVendor,
    Lockfile,
    read_lockfile,
    read_manifest,
    verify_lockfile,
)
from inatbuild.models import MAIN_PROGRAM, BuildArtifact, BuildConfig, DependencySet, Toolchain
from inatbuild.observability import StructuredLogger
from inatbuild.realiser import DependencyRealiser
from inatbuild.resolver import DependencyResolver
from inatbuild.source import copy_clean, hash_output, hash_tree
from inatbuild.toolchain import ToolchainProvider


@dataclass(frozen=True, slots=True)
class _Plan:
    dependencies: DependencySet
    toolchain: Toolchain
    lockfile: Lockfile
    inputs: BuildCacheInput
    key: str


@dataclass(slots=True)
class BuildExecutor:
    """Turn a ``BuildConfig`` into a stored ``BuildArtifact``.

    Order matters: inputs are resolved first, then the lockfile is checked and
    the dependency set realised. Only on a store miss are crates vendored and
    the toolchain installed and invoked. Any failure propagates and leaves the
    artifact store untouched.
    """

    resolver: DependencyResolver
    toolchains: ToolchainProvider
    realiser: DependencyRealiser
    vendor: CrateVendor
    backend: BuildBackend = field(default_factory=CargoBackend)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def build(self, config: BuildConfig) -> BuildArtifact:
        plan = self._plan(config)
        store = ArtifactStore(config.store_dir)

        cached = store.load(key=plan.key, expected_inputs=plan.inputs)
        if cached is not None:
            self.logger.log(
                operation="build_cache_hit",
                platform=config.platform,
                component="executor",
                message="Reusing stored artifact.",
                extra={"key": plan.key, "path": str(cached)},
            )
            return self._artifact(config, store_path=cached, key=plan.key)

        with tempfile.TemporaryDirectory(prefix=".build-", dir=store.root) as scratch:
            staged = self._run_backend(config, plan, Path(scratch))
            _, entry = store.save(inputs=plan.inputs, staged=staged)

        artifact = self._artifact(config, store_path=entry, key=plan.key)
        self._write_metadata(artifact, plan.inputs)
        self.logger.log(
            operation="build_complete",
            platform=config.platform,
            component="executor",
            message="Stored build artifact.",
            extra={"key": plan.key, "path": str(entry), "sha256": artifact.sha256},
        )
        return artifact

    def check_rebuild(self, config: BuildConfig) -> BuildArtifact:
        """Build (or reuse) the artifact, rebuild it from scratch, and compare outputs."""
        artifact = self.build(config)
        plan = self._plan(config)
        with tempfile.TemporaryDirectory(prefix=".rebuild-", dir=config.store_dir) as scratch:
            staged = self._run_backend(config, plan, Path(scratch))
            expected = hash_output(artifact.store_path)
            actual = hash_output(staged)
        if expected != actual:
            raise ReproducibilityError(
                "Rebuild produced a different output than the stored artifact.",
                hint="Look for timestamps, absolute paths, or unpinned inputs in the build.",
                context={
                    "operation": "check_rebuild",
                    "path": str(artifact.store_path),
                    "expected": expected,
                    "actual": actual,
                },
            )
        self.logger.log(
            operation="rebuild_verified",
            platform=config.platform,
            component="executor",
            message="Rebuild is bit-identical to the stored artifact.",
            extra={"key": plan.key},
        )
        return artifact

    def _plan(self, config: BuildConfig) -> _Plan:
        dependencies = self.resolver.resolve(config.platform)
        toolchain = self.toolchains.resolve(config.platform)
        self.logger.log(
            operation="inputs_resolved",
            platform=config.platform,
            component="executor",
            message="Resolved toolchain and dependency set.",
            extra={"toolchain": toolchain.identity, "dependencies": list(dependencies.names())},
        )
        lockfile = self._validated_lockfile(config)
        self.realiser.realise(dependencies)
        inputs = BuildCacheInput(
            source_hash=hash_tree(config.source),
            lockfile_digest=lockfile.digest,
            toolchain=toolchain.identity,
            platform=config.platform,
            pname=config.pname,
            version=config.version,
            flags=config.flags,
            dependencies=dependencies.store_paths(),
            env={"backend": self.backend.name},
        )
        return _Plan(
            dependencies=dependencies,
            toolchain=toolchain,
            lockfile=lockfile,
            inputs=inputs,
            key=cache_key(inputs),
        )

    def _run_backend(self, config: BuildConfig, plan: _Plan, scratch: Path) -> Path:
        vendor_dir = self.vendor.vendor(plan.lockfile)
        installed = self.toolchains.install(plan.toolchain)
        request = BuildRequest(
            pname=config.pname,
            version=config.version,
            platform=config.platform,
            target=plan.toolchain.target,
            source_dir=copy_clean(config.source, scratch / "source"),
            output_dir=scratch / "out",
            work_dir=scratch,
            toolchain=installed,
            dependencies=plan.dependencies,
            source_hash=plan.inputs.source_hash,
            lockfile_digest=plan.inputs.lockfile_digest,
            flags=config.flags,
            vendor_dir=vendor_dir,
        )
        self.logger.log(
            operation="build_start",
            platform=config.platform,
            component="executor",
            message="Invoking build backend.",
            extra={"backend": self.backend.name, "key": plan.key},
        )
        executable = self.backend.execute(request)
        if executable != request.executable_path or not executable.is_file():
            raise BuildError(
                "Backend did not produce the expected executable.",
                context={"operation": "build", "expected": str(request.executable_path)},
            )
        return request.output_dir

    def _validated_lockfile(self, config: BuildConfig) -> Lockfile:
        manifest = read_manifest(config.manifest_path)
        lockfile = read_lockfile(config.lockfile_path)
        if manifest.name != config.pname or manifest.version != config.version:
            raise LockfileError(
                "Cargo manifest does not describe the configured package.",
                context={
                    "operation": "verify_lockfile",
                    "expected": f"{config.pname} {config.version}",
                    "actual": f"{manifest.name} {manifest.version}",
                },
            )
        verify_lockfile(manifest, lockfile)
        return lockfile

    def _artifact(self, config: BuildConfig, *, store_path: Path, key: str) -> BuildArtifact:
        executable = store_path / MAIN_PROGRAM
        return BuildArtifact(
            name=config.pname,
            version=config.version,
            platform=config.platform,
            store_path=store_path,
            sha256=hashlib.sha256(executable.read_bytes()).hexdigest(),
            cache_key=key,
            main_program=MAIN_PROGRAM,
            metadata_path=config.store_dir / ".manifests" / f"{key}.artifact.json",
        )

    def _write_metadata(self, artifact: BuildArtifact, inputs: BuildCacheInput) -> None:
        if artifact.metadata_path is None:
            return
        metadata = {
            "name": artifact.name,
            "version": artifact.version,
            "platform": artifact.platform,
            "main_program": artifact.main_program,
            "store_path": str(artifact.store_path),
            "sha256": artifact.sha256,
            "backend": self.backend.name,
            "toolchain": inputs.toolchain,
            "dependencies": list(inputs.dependencies),
            "lockfile_digest": inputs.lockfile_digest,
            "source_hash": inputs.source_hash,
        }
        artifact.metadata_path.write_text(
            json.dumps(metadata, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
