"""Cargo manifest and lockfile typed model."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

DependencyKind = Literal["normal", "build", "dev"]


@dataclass(frozen=True, slots=True)
class LockedPackage:
    name: str
    version: str
    source: str | None = None
    checksum: str | None = None

    @property
    def is_registry(self) -> bool:
        return self.source is not None and self.source.startswith(("registry+", "sparse+"))


@dataclass(frozen=True, slots=True)
class Lockfile:
    path: Path
    digest: str
    version: int | None
    packages: tuple[LockedPackage, ...]

    def find(self, name: str) -> tuple[LockedPackage, ...]:
        return tuple(package for package in self.packages if package.name == name)


@dataclass(frozen=True, slots=True)
class DeclaredDependency:
    name: str
    kind: DependencyKind = "normal"
    registry: bool = True


@dataclass(frozen=True, slots=True)
class Manifest:
    path: Path
    name: str
    version: str
    dependencies: tuple[DeclaredDependency, ...] = ()
