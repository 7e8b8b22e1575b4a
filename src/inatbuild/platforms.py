"""Supported target platforms."""

from __future__ import annotations

import platform as py_platform
import sys

from inatbuild.errors import ResolutionError
from inatbuild.models import Platform

# Canonical identifiers mapped to the Rust target triple built for them.
TARGET_TRIPLES: dict[Platform, str] = {
    "linux-x86_64": "x86_64-unknown-linux-gnu",
    "linux-aarch64": "aarch64-unknown-linux-gnu",
    "darwin-x86_64": "x86_64-apple-darwin",
    "darwin-aarch64": "aarch64-apple-darwin",
}

SUPPORTED_PLATFORMS: tuple[Platform, ...] = tuple(TARGET_TRIPLES)


def normalize_platform(value: str) -> Platform:
    """Return the canonical ``<os>-<arch>`` id, accepting ``<arch>-<os>`` too."""
    candidate = value.strip().lower()
    if candidate in TARGET_TRIPLES:
        return candidate  # type: ignore[return-value]
    arch, _, os_name = candidate.partition("-")
    swapped = f"{os_name}-{arch}"
    if swapped in TARGET_TRIPLES:
        return swapped  # type: ignore[return-value]
    raise ResolutionError(
        f"Unsupported target platform `{value}`.",
        hint=f"Use one of: {', '.join(SUPPORTED_PLATFORMS)}.",
        context={"operation": "resolve_platform", "platform": value},
    )


def target_triple(platform: Platform) -> str:
    return TARGET_TRIPLES[platform]


def is_linux(platform: Platform) -> bool:
    return platform.startswith("linux-")


def host_platform() -> Platform:
    machine = py_platform.machine().lower()
    arch = {"amd64": "x86_64", "arm64": "aarch64"}.get(machine, machine)
    os_name = "darwin" if sys.platform == "darwin" else sys.platform.split("-")[0]
    return normalize_platform(f"{os_name}-{arch}")
