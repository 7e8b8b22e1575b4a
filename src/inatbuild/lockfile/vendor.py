"""Offline crate sources vendored from lockfile checksums."""

from __future__ import annotations

import json
import os
import shutil
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from inatbuild.cache import EvaluationCache, input_digest
from inatbuild.errors import LockfileError, ResolutionError
from inatbuild.fetch import fetch
from inatbuild.lockfile.model import LockedPackage, Lockfile
from inatbuild.observability import StructuredLogger
from inatbuild.policy import Policy

CRATES_IO = "https://static.crates.io/crates"
CRATES_IO_SOURCES = frozenset(
    {
        "registry+https://github.com/rust-lang/crates.io-index",
        "sparse+https://index.crates.io/",
    }
)
CHECKSUM_FILE = ".cargo-checksum.json"


@dataclass(slots=True)
class CrateVendor:
    """Materialise a cargo directory source for every registry crate in a lockfile.

    Each ``.crate`` is fetched with its lockfile checksum as the sha256 pin.
    The vendor tree is keyed by the lockfile digest, so a second build of the
    same lockfile needs no network at all.
    """

    cache_dir: Path
    registry: str = CRATES_IO
    policy: Policy = field(default_factory=Policy)
    cache: EvaluationCache = field(default_factory=EvaluationCache)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def vendor(self, lockfile: Lockfile) -> Path:
        digest = input_digest({"lockfile": lockfile.digest, "registry": self.registry})
        return self.cache.get_or_compute("vendor", digest, lambda: self._vendor(lockfile))

    def crate_url(self, package: LockedPackage) -> str:
        base = self.registry.rstrip("/")
        return f"{base}/{package.name}/{package.name}-{package.version}.crate"

    def _vendor(self, lockfile: Lockfile) -> Path:
        root = self.cache_dir / "vendor" / lockfile.digest[:32]
        if root.is_dir():
            self.logger.log(
                operation="vendor_cache_hit",
                platform="any",
                component="vendor",
                message="Using vendored crate sources.",
                extra={"path": str(root)},
            )
            return root

        crates = _registry_crates(lockfile)
        root.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=root.parent))
        try:
            for package in crates:
                archive = fetch(
                    self.crate_url(package),
                    sha256=package.checksum or "",
                    cache_dir=self.cache_dir / "downloads",
                    policy=self.policy,
                )
                _unpack_crate(archive, staging, package=package)
            os.replace(staging, root)
        finally:
            if staging.exists():
                shutil.rmtree(staging)

        self.logger.log(
            operation="crates_vendored",
            platform="any",
            component="vendor",
            message="Vendored crate sources from the lockfile.",
            extra={"path": str(root), "crates": len(crates)},
        )
        return root


def cargo_source_config(vendor_dir: Path) -> str:
    """``config.toml`` that points crates.io at the vendored directory."""
    return (
        "[source.crates-io]\n"
        'replace-with = "vendored-sources"\n'
        "\n"
        "[source.vendored-sources]\n"
        f"directory = {json.dumps(str(vendor_dir))}\n"
    )


def _registry_crates(lockfile: Lockfile) -> list[LockedPackage]:
    crates: list[LockedPackage] = []
    for package in lockfile.packages:
        if package.source is None:
            continue
        if package.source not in CRATES_IO_SOURCES:
            raise LockfileError(
                f"Locked package `{package.name}` comes from an unsupported source.",
                hint="Only crates.io registry dependencies can be vendored.",
                context={
                    "operation": "vendor_crates",
                    "package": f"{package.name} {package.version}",
                    "source": package.source,
                },
            )
        if not package.checksum:
            raise LockfileError(
                f"Locked package `{package.name}` has no checksum to vendor against.",
                context={"operation": "vendor_crates", "path": str(lockfile.path)},
            )
        crates.append(package)
    return sorted(crates, key=lambda package: (package.name, package.version))


def _unpack_crate(archive: Path, destination: Path, *, package: LockedPackage) -> None:
    prefix = f"{package.name}-{package.version}"
    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = tar.getmembers()
            if not all(
                member.name == prefix or member.name.startswith(f"{prefix}/")
                for member in members
            ):
                raise ResolutionError(
                    "Crate archive has an unexpected layout.",
                    context={"operation": "vendor_crates", "package": prefix},
                )
            tar.extractall(destination, members=members, filter="data")
    except tarfile.TarError as exc:
        raise ResolutionError(
            "Crate archive could not be unpacked.",
            context={"operation": "vendor_crates", "package": prefix},
        ) from exc

    checksum = {"files": {}, "package": package.checksum}
    (destination / prefix / CHECKSUM_FILE).write_text(
        json.dumps(checksum, sort_keys=True) + "\n",
        encoding="utf-8",
    )
