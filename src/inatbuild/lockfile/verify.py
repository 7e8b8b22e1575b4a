"""Consistency check between the declared manifest and the lockfile."""

from __future__ import annotations

from inatbuild.errors import LockfileError
from inatbuild.lockfile.model import Lockfile, Manifest


def verify_lockfile(manifest: Manifest, lockfile: Lockfile) -> None:
    """Raise ``LockfileError`` unless every declared dependency is locked.

    Registry dependencies additionally need a checksum. The root package
    must be locked at the manifest's name and version.
    """
    problems: list[str] = []

    roots = lockfile.find(manifest.name)
    if not any(package.version == manifest.version for package in roots):
        problems.append(f"root package {manifest.name} {manifest.version} is not locked")

    for dependency in manifest.dependencies:
        locked = lockfile.find(dependency.name)
        if not locked:
            problems.append(f"{dependency.kind} dependency `{dependency.name}` is not locked")
            continue
        if dependency.registry and not any(
            package.is_registry and package.checksum for package in locked
        ):
            problems.append(f"dependency `{dependency.name}` has no checksummed registry entry")

    for package in lockfile.packages:
        if package.is_registry and not package.checksum:
            problems.append(f"locked package `{package.name} {package.version}` lacks a checksum")

    if problems:
        raise LockfileError(
            "Lockfile is inconsistent with the declared dependencies.",
            hint="Regenerate Cargo.lock with `cargo update -w` and commit it.",
            context={
                "operation": "verify_lockfile",
                "path": str(lockfile.path),
                "problems": "; ".join(problems),
            },
        )
