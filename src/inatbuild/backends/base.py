"""Protocol for build execution backends."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from inatbuild.models import DependencySet, InstalledToolchain, Platform


@dataclass(frozen=True, slots=True)
class BuildRequest:
    pname: str
    version: str
    platform: Platform
    target: str
    source_dir: Path
    output_dir: Path
    work_dir: Path
    toolchain: InstalledToolchain
    dependencies: DependencySet
    source_hash: str
    lockfile_digest: str
    flags: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    vendor_dir: Path | None = None

    @property
    def executable_path(self) -> Path:
        return self.output_dir / "bin" / self.pname

    @property
    def cargo_home(self) -> Path:
        return self.work_dir / "cargo-home"


class BuildBackend(Protocol):
    name: str

    def execute(self, request: BuildRequest) -> Path:
        """Compile the request and return the path of the produced executable."""


def remap_prefixes(request: BuildRequest) -> list[tuple[Path, str]]:
    """Host paths rewritten in debug info and panic locations, least specific first.

    rustc applies the last matching prefix, and the source and cargo home
    both live under the scratch work directory.
    """
    prefixes = [(request.work_dir, "/build"), (request.cargo_home, "/cargo")]
    if request.vendor_dir is not None:
        prefixes.append((request.vendor_dir, "/vendor"))
    prefixes.append((request.source_dir, "/build/source"))
    return prefixes


def build_env(request: BuildRequest) -> dict[str, str]:
    """Environment for a build: pinned toolchain and build tools, libraries via pkg-config.

    Tools are addressed by their store paths and pkg-config only searches the
    runtime libraries, so nothing on the host can stand in for them.
    """
    deps = request.dependencies
    path_entries = [str(request.toolchain.bin_dir)]
    path_entries.extend(str(ref.bin_dir) for ref in deps.build_tools)
    pkg_config_path = ":".join(str(ref.pkgconfig_dir) for ref in deps.runtime)
    rustflags = [f"--remap-path-prefix={path}={target}" for path, target in remap_prefixes(request)]
    env = {
        "PATH": ":".join(path_entries),
        "PKG_CONFIG_PATH": pkg_config_path,
        "PKG_CONFIG_LIBDIR": pkg_config_path,
        "RUSTC": str(request.toolchain.rustc),
        "CARGO_HOME": str(request.cargo_home),
        "SOURCE_DATE_EPOCH": "1",
        "CARGO_ENCODED_RUSTFLAGS": "\x1f".join(rustflags),
    }
    for ref in deps.build_tools:
        if ref.name == "pkg-config":
            env["PKG_CONFIG"] = str(ref.bin_dir / "pkg-config")
    for ref in deps.runtime:
        if ref.name == "openssl":
            env["OPENSSL_DIR"] = str(ref.store_path)
    env.update(request.env)
    return env
