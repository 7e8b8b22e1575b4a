"""Lockfile APIs."""

from .io import parse_lockfile, read_lockfile, read_manifest
from .model import DeclaredDependency, LockedPackage, Lockfile, Manifest
from .vendor import CRATES_IO, CrateVendor, cargo_source_config
from .verify import verify_lockfile

__all__ = [
    "CRATES_IO",
    "CrateVendor",
    "DeclaredDependency",
    "LockedPackage",
    "Lockfile",
    "Manifest",
    "cargo_source_config",
    "parse_lockfile",
    "read_lockfile",
    "read_manifest",
    "verify_lockfile",
]
