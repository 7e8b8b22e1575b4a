"""Core typed dataclasses shared by the resolver, executor, and packagers."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from pathlib import Path
from typing import Literal

Platform = Literal["linux-x86_64", "linux-aarch64", "darwin-x86_64", "darwin-aarch64"]
OutputName = Literal["default", "devShell", "image"]

PNAME = "inat"
VERSION = "0.1.0"
MAIN_PROGRAM = f"bin/{PNAME}"
IMAGE_TAG = "latest"


class Revision(IntEnum):
    """Descriptor revisions, each a strict superset of the previous one."""

    BUILD = 1
    DEV_LIBRARY_PATH = 2
    CONTAINER = 3


class EvaluationState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INPUTS_RESOLVED = "inputs_resolved"
    ARTIFACT_BUILT = "artifact_built"
    DEV_ENVIRONMENT_READY = "dev_environment_ready"
    IMAGE_PACKAGED = "image_packaged"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class LibraryRef:
    """A native package pinned to a content-addressed store path."""

    name: str
    version: str
    platform: Platform
    store_path: Path

    @property
    def lib_dir(self) -> Path:
        return self.store_path / "lib"

    @property
    def bin_dir(self) -> Path:
        return self.store_path / "bin"

    @property
    def pkgconfig_dir(self) -> Path:
        return self.store_path / "lib" / "pkgconfig"


@dataclass(frozen=True, slots=True)
class DependencySet:
    """Runtime libraries plus build-only tools for one platform.

    ``runtime`` is linked into and shipped with the artifact; ``build_tools``
    are only placed on ``PATH`` while building and never packaged.
    """

    platform: Platform
    runtime: tuple[LibraryRef, ...]
    build_tools: tuple[LibraryRef, ...] = ()

    @property
    def all(self) -> tuple[LibraryRef, ...]:
        return self.runtime + self.build_tools

    def names(self) -> tuple[str, ...]:
        return tuple(ref.name for ref in self.all)

    def store_paths(self) -> tuple[str, ...]:
        return tuple(str(ref.store_path) for ref in self.all)


@dataclass(frozen=True, slots=True)
class Toolchain:
    """Pinned compiler/linker bundle; opaque to everything but the executor."""

    channel: str
    rev: str
    platform: Platform
    target: str
    url: str
    sha256: str

    @property
    def identity(self) -> str:
        return f"{self.channel}@{self.rev}:{self.target}:{self.sha256}"


@dataclass(frozen=True, slots=True)
class InstalledToolchain:
    toolchain: Toolchain
    root: Path

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def cargo(self) -> Path:
        return self.bin_dir / "cargo"

    @property
    def rustc(self) -> Path:
        return self.bin_dir / "rustc"


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """Versioned configuration threaded through every component."""

    platform: Platform
    source: Path
    store_dir: Path
    runtime_packages: tuple[str, ...] = ("openssl",)
    build_tools: tuple[str, ...] = ("pkg-config",)
    toolchain_channel: str = "minimal"
    lockfile_name: str = "Cargo.lock"
    manifest_name: str = "Cargo.toml"
    revision: Revision = Revision.CONTAINER
    flags: tuple[str, ...] = ()
    pname: str = PNAME
    version: str = VERSION

    @property
    def lockfile_path(self) -> Path:
        return self.source / self.lockfile_name

    @property
    def manifest_path(self) -> Path:
        return self.source / self.manifest_name

    def digest(self) -> str:
        payload = {
            "platform": self.platform,
            "source": str(self.source),
            "store_dir": str(self.store_dir),
            "runtime_packages": list(self.runtime_packages),
            "build_tools": list(self.build_tools),
            "toolchain_channel": self.toolchain_channel,
            "lockfile_name": self.lockfile_name,
            "manifest_name": self.manifest_name,
            "revision": int(self.revision),
            "flags": list(self.flags),
            "pname": self.pname,
            "version": self.version,
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    name: str
    version: str
    platform: Platform
    store_path: Path
    sha256: str
    cache_key: str
    main_program: str | None = MAIN_PROGRAM
    metadata_path: Path | None = None

    @property
    def executable(self) -> Path:
        if self.main_program is None:
            return self.store_path / "bin" / self.name
        return self.store_path / self.main_program


@dataclass(frozen=True, slots=True)
class RuntimeEnvironment:
    library_path: tuple[str, ...]
    variables: Mapping[str, str] = field(default_factory=dict)

    @property
    def ld_library_path(self) -> str:
        return ":".join(self.library_path)

    def as_env(self) -> dict[str, str]:
        env = dict(sorted(self.variables.items()))
        if self.library_path:
            env["LD_LIBRARY_PATH"] = self.ld_library_path
        return env

    def as_config_env(self) -> list[str]:
        return [f"{key}={value}" for key, value in sorted(self.as_env().items())]


@dataclass(frozen=True, slots=True)
class DevEnvironment:
    platform: Platform
    packages: tuple[LibraryRef, ...]
    toolchain: Toolchain
    path: tuple[str, ...]
    variables: Mapping[str, str]
    runtime: RuntimeEnvironment | None = None

    def as_env(self) -> dict[str, str]:
        env = dict(self.variables)
        if self.runtime is not None:
            env.update(self.runtime.as_env())
        return dict(sorted(env.items()))


@dataclass(frozen=True, slots=True)
class ImageLayer:
    name: str
    digest: str
    size: int
    paths: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContainerImage:
    name: str
    tag: str
    entrypoint: tuple[str, ...]
    env: tuple[str, ...]
    layers: tuple[ImageLayer, ...]
    config_digest: str
    archive_path: Path

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"

    def env_value(self, key: str) -> str | None:
        prefix = f"{key}="
        for item in self.env:
            if item.startswith(prefix):
                return item[len(prefix):]
        return None
