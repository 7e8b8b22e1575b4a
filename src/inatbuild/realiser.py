"""Populate dependency store paths from pinned package sources."""

from __future__ import annotations

import os
import shutil
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from inatbuild.cache import EvaluationCache, input_digest
from inatbuild.errors import ReproducibilityError, ResolutionError
from inatbuild.fetch import fetch
from inatbuild.models import DependencySet, LibraryRef
from inatbuild.observability import StructuredLogger
from inatbuild.policy import Policy
from inatbuild.resolver import DependencyResolver, PackageSource


@dataclass(slots=True)
class DependencyRealiser:
    """Fetch, verify, and unpack each ``LibraryRef`` into its store path.

    A present store path is trusted as-is and costs no network access; new
    trees are staged next to their final location and moved in atomically.
    """

    resolver: DependencyResolver
    cache_dir: Path
    policy: Policy = field(default_factory=Policy)
    cache: EvaluationCache = field(default_factory=EvaluationCache)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def realise(self, dependencies: DependencySet) -> DependencySet:
        for ref in dependencies.all:
            self.realise_package(ref)
        return dependencies

    def realise_package(self, ref: LibraryRef) -> Path:
        digest = input_digest({"store_path": str(ref.store_path)})
        return self.cache.get_or_compute("realise", digest, lambda: self._realise(ref))

    def _realise(self, ref: LibraryRef) -> Path:
        if ref.store_path.is_dir():
            self.logger.log(
                operation="package_store_hit",
                platform=ref.platform,
                component="realiser",
                message=f"Using realised {ref.name} {ref.version}.",
                extra={"path": str(ref.store_path)},
            )
            return ref.store_path

        source = self.resolver.entry(ref.name).source_for(ref.platform)
        if source is None:
            raise ResolutionError(
                f"No pinned source for `{ref.name}` on `{ref.platform}`.",
                hint="Pin a prebuilt archive for the package with --package-pin.",
                context={
                    "operation": "realise_dependencies",
                    "package": ref.name,
                    "platform": ref.platform,
                },
            )

        self.logger.log(
            operation="package_fetch",
            platform=ref.platform,
            component="realiser",
            message=f"Fetching {ref.name} {ref.version}.",
            extra={"url": source.url},
        )
        try:
            blob = fetch(
                source.url,
                sha256=source.sha256,
                cache_dir=self.cache_dir / "downloads",
                policy=self.policy,
            )
        except ReproducibilityError as exc:
            raise ResolutionError(
                f"Pinned source for `{ref.name}` failed integrity verification.",
                hint="Refresh the package pin from a trusted upstream artifact.",
                context={"operation": "realise_dependencies", "url": source.url},
            ) from exc

        ref.store_path.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=ref.store_path.parent))
        try:
            if source.install_as is not None:
                target = staging / source.install_as
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(blob, target)
                target.chmod(0o444)
            else:
                _unpack(blob, staging, source=source)
            os.replace(staging, ref.store_path)
        finally:
            if staging.exists():
                shutil.rmtree(staging)
        return ref.store_path


def _unpack(archive: Path, destination: Path, *, source: PackageSource) -> None:
    with tempfile.TemporaryDirectory() as scratch:
        root = Path(scratch)
        try:
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(root, filter="data")
        except tarfile.TarError as exc:
            raise ResolutionError(
                "Package archive could not be unpacked.",
                context={"operation": "realise_dependencies", "url": source.url},
            ) from exc

        for _ in range(source.strip_components):
            entries = list(root.iterdir())
            if len(entries) != 1 or not entries[0].is_dir():
                raise ResolutionError(
                    "Package archive has an unexpected layout.",
                    hint="Check strip_components in the package pin.",
                    context={"operation": "realise_dependencies", "url": source.url},
                )
            root = entries[0]
        shutil.copytree(root, destination, symlinks=True, dirs_exist_ok=True)
