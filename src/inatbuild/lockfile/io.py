"""Cargo manifest and lockfile readers."""

from __future__ import annotations

import hashlib
import tomllib
from pathlib import Path
from typing import Any

from inatbuild.errors import LockfileError
from inatbuild.lockfile.model import (
    DeclaredDependency,
    DependencyKind,
    LockedPackage,
    Lockfile,
    Manifest,
)

DEPENDENCY_TABLES: dict[str, DependencyKind] = {
    "dependencies": "normal",
    "build-dependencies": "build",
    "dev-dependencies": "dev",
}


def parse_lockfile(raw: bytes, *, path: Path) -> Lockfile:
    payload = _load_toml(raw, path=path, what="lockfile")
    version = payload.get("version")
    if version is not None and not isinstance(version, int):
        raise LockfileError("Invalid lockfile `version` value.", context={"path": str(path)})
    packages_raw = payload.get("package", [])
    if not isinstance(packages_raw, list):
        raise LockfileError("Invalid lockfile `package` value.", context={"path": str(path)})
    return Lockfile(
        path=path,
        digest=hashlib.sha256(raw).hexdigest(),
        version=version,
        packages=tuple(_parse_locked_package(item, path=path) for item in packages_raw),
    )


def read_lockfile(path: str | Path) -> Lockfile:
    lock_path = Path(path)
    try:
        raw = lock_path.read_bytes()
    except FileNotFoundError as exc:
        raise LockfileError(
            "Lockfile does not exist.",
            hint="Run `cargo generate-lockfile` and commit Cargo.lock.",
            context={"operation": "read_lockfile", "path": str(lock_path)},
        ) from exc
    return parse_lockfile(raw, path=lock_path)


def read_manifest(path: str | Path) -> Manifest:
    manifest_path = Path(path)
    try:
        raw = manifest_path.read_bytes()
    except FileNotFoundError as exc:
        raise LockfileError(
            "Cargo manifest does not exist.",
            context={"operation": "read_manifest", "path": str(manifest_path)},
        ) from exc
    payload = _load_toml(raw, path=manifest_path, what="manifest")
    package = payload.get("package")
    if not isinstance(package, dict):
        raise LockfileError(
            "Cargo manifest has no [package] table.",
            context={"path": str(manifest_path)},
        )

    declared: list[DeclaredDependency] = []
    tables: list[dict[str, Any]] = [payload]
    targets = payload.get("target", {})
    if isinstance(targets, dict):
        tables.extend(table for table in targets.values() if isinstance(table, dict))
    for table in tables:
        for table_name, kind in DEPENDENCY_TABLES.items():
            entries = table.get(table_name, {})
            if isinstance(entries, dict):
                declared.extend(
                    _declared(key, requirement, kind) for key, requirement in entries.items()
                )

    unique = {(dep.name, dep.kind): dep for dep in declared}
    return Manifest(
        path=manifest_path,
        name=_required_str(package, "name", path=manifest_path),
        version=_required_str(package, "version", path=manifest_path),
        dependencies=tuple(unique[key] for key in sorted(unique)),
    )


def _declared(key: str, requirement: Any, kind: DependencyKind) -> DeclaredDependency:
    if isinstance(requirement, dict):
        name = requirement.get("package", key)
        registry = "path" not in requirement and "git" not in requirement
        return DeclaredDependency(name=str(name), kind=kind, registry=registry)
    return DeclaredDependency(name=key, kind=kind, registry=True)


def _parse_locked_package(item: Any, *, path: Path) -> LockedPackage:
    if not isinstance(item, dict):
        raise LockfileError("Invalid package entry in lockfile.", context={"path": str(path)})
    source = item.get("source")
    checksum = item.get("checksum")
    return LockedPackage(
        name=_required_str(item, "name", path=path),
        version=_required_str(item, "version", path=path),
        source=source if isinstance(source, str) else None,
        checksum=checksum if isinstance(checksum, str) else None,
    )


def _load_toml(raw: bytes, *, path: Path, what: str) -> dict[str, Any]:
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise LockfileError(
            f"Invalid {what} TOML.",
            hint=str(exc),
            context={"path": str(path)},
        ) from exc


def _required_str(payload: dict[str, Any], key: str, *, path: Path) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise LockfileError(f"Invalid `{key}` value.", context={"path": str(path)})
    return value
