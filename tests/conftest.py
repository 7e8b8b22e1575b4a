"""Shared test fixtures."""

from __future__ import annotations

import dataclasses
import hashlib
import io
import tarfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from inatbuild import Descriptor
from inatbuild.backends import InProcessBackend
from inatbuild.fetch import FetchRequest
from inatbuild.resolver import DEFAULT_CATALOG, CatalogEntry, PackageSource
from inatbuild.toolchain import ToolchainPin

CARGO_TOML = """\
[package]
name = "inat"
version = "0.1.0"
edition = "2021"

[dependencies]
clap = { version = "4.5", features = ["derive", "env"] }
reqwest = { version = "0.12", features = ["json"] }
serde = { version = "1", features = ["derive"] }
thiserror = "1"
"""

CRATES: Mapping[str, str] = {
    "clap": "4.5.20",
    "reqwest": "0.12.8",
    "serde": "1.0.210",
    "thiserror": "1.0.64",
}

REGISTRY_SOURCE = "registry+https://github.com/rust-lang/crates.io-index"

TRIPLE = "x86_64-unknown-linux-gnu"


def cargo_lock(checksums: Mapping[str, str]) -> str:
    packages = {
        "inat": 'version = "0.1.0"\ndependencies = [\n'
        + "".join(f' "{name}",\n' for name in sorted(CRATES))
        + "]\n",
    }
    for name, version in CRATES.items():
        packages[name] = (
            f'version = "{version}"\n'
            f'source = "{REGISTRY_SOURCE}"\nchecksum = "{checksums[name]}"\n'
        )
    blocks = [f'[[package]]\nname = "{name}"\n{body}' for name, body in sorted(packages.items())]
    header = "# This file is automatically @generated by Cargo.\nversion = 3\n"
    return "\n".join([header, *blocks])


def write_archive(path: Path, members: Mapping[str, str]) -> str:
    """Write a gzipped tarball and return its sha256."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tar:
        for name, content in sorted(members.items()):
            payload = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(payload)
            info.mode = 0o755 if "bin/" in name else 0o644
            tar.addfile(info, io.BytesIO(payload))
    return hashlib.sha256(path.read_bytes()).hexdigest()


@dataclasses.dataclass(frozen=True)
class CrateRegistry:
    root: Path
    checksums: Mapping[str, str]

    @property
    def url(self) -> str:
        return self.root.as_uri()


@dataclasses.dataclass(frozen=True)
class PackageArchives:
    root: Path
    catalog: Mapping[str, CatalogEntry]

    def pin_document(self) -> dict[str, Any]:
        return {
            "packages": {
                name: {
                    "version": entry.version,
                    "platforms": list(entry.platforms),
                    "sources": {
                        platform: dataclasses.asdict(source)
                        for platform, source in entry.sources.items()
                    },
                }
                for name, entry in self.catalog.items()
            }
        }


@pytest.fixture
def crate_registry(tmp_path: Path) -> CrateRegistry:
    root = tmp_path / "registry"
    checksums = {}
    for name, version in CRATES.items():
        top = f"{name}-{version}"
        checksums[name] = write_archive(
            root / name / f"{top}.crate",
            {
                f"{top}/Cargo.toml": f'[package]\nname = "{name}"\nversion = "{version}"\n',
                f"{top}/src/lib.rs": f"//! {name}\n",
            },
        )
    return CrateRegistry(root=root, checksums=checksums)


@pytest.fixture
def package_archives(tmp_path: Path) -> PackageArchives:
    root = tmp_path / "packages"
    openssl = root / "openssl-3.3.2-linux-x86_64.tar.gz"
    openssl_sha = write_archive(
        openssl,
        {
            "openssl-3.3.2/include/openssl/ssl.h": "/* ssl */\n",
            "openssl-3.3.2/lib/libcrypto.so.3": "\x7fELF crypto\n",
            "openssl-3.3.2/lib/libssl.so.3": "\x7fELF ssl\n",
            "openssl-3.3.2/lib/pkgconfig/openssl.pc": "Name: OpenSSL\nVersion: 3.3.2\n",
        },
    )
    pkg_config = root / "pkg-config-0.29.2-linux-x86_64.tar.gz"
    pkg_config_sha = write_archive(
        pkg_config,
        {"bin/pkg-config": "#!/bin/sh\necho 0.29.2\n"},
    )
    cacert = root / "cacert-2024-09-24.pem"
    cacert.write_text(
        "-----BEGIN CERTIFICATE-----\nfixture\n-----END CERTIFICATE-----\n",
        encoding="utf-8",
    )
    sources = {
        "openssl": PackageSource(
            url=openssl.as_uri(),
            sha256=openssl_sha,
            strip_components=1,
        ),
        "pkg-config": PackageSource(url=pkg_config.as_uri(), sha256=pkg_config_sha),
        "cacert": PackageSource(
            url=cacert.as_uri(),
            sha256=hashlib.sha256(cacert.read_bytes()).hexdigest(),
            install_as="etc/ssl/certs/ca-bundle.crt",
        ),
    }
    catalog = {
        name: dataclasses.replace(DEFAULT_CATALOG[name], sources={"linux-x86_64": source})
        for name, source in sources.items()
    }
    return PackageArchives(root=root, catalog=catalog)


@pytest.fixture
def source_tree(tmp_path: Path, crate_registry: CrateRegistry) -> Path:
    root = tmp_path / "inat"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(CARGO_TOML, encoding="utf-8")
    (root / "Cargo.lock").write_text(cargo_lock(crate_registry.checksums), encoding="utf-8")
    (root / "src" / "main.rs").write_text('fn main() { println!("inat"); }\n', encoding="utf-8")
    return root


@pytest.fixture
def toolchain_archive(tmp_path: Path) -> tuple[Path, str]:
    archive = tmp_path / "dist" / f"rust-1.82.0-{TRIPLE}.tar.gz"
    top = f"rust-1.82.0-{TRIPLE}"
    digest = write_archive(
        archive,
        {
            f"{top}/components": f"rustc\ncargo\nrust-std-{TRIPLE}\nrust-docs\n",
            f"{top}/rustc/bin/rustc": "#!/bin/sh\necho rustc 1.82.0\n",
            f"{top}/rustc/manifest.in": "file:bin/rustc\n",
            f"{top}/cargo/bin/cargo": "#!/bin/sh\necho cargo 1.82.0\n",
            f"{top}/rust-std-{TRIPLE}/lib/rustlib/{TRIPLE}/lib/libstd.rlib": "std\n",
            f"{top}/rust-docs/share/doc/rust/index.html": "<html></html>\n",
        },
    )
    return archive, digest


@pytest.fixture
def toolchain_pin(toolchain_archive: tuple[Path, str]) -> ToolchainPin:
    archive, digest = toolchain_archive
    return ToolchainPin(
        channel="minimal",
        rev="1.82.0",
        sources={"linux-x86_64": FetchRequest(url=archive.as_uri(), sha256=digest)},
    )


@pytest.fixture
def inprocess_backend() -> InProcessBackend:
    return InProcessBackend()


@pytest.fixture
def make_descriptor(
    tmp_path: Path,
    source_tree: Path,
    toolchain_pin: ToolchainPin,
    package_archives: PackageArchives,
    crate_registry: CrateRegistry,
) -> Callable[..., Descriptor]:
    def make(**overrides: Any) -> Descriptor:
        options: dict[str, Any] = {
            "platform": "linux-x86_64",
            "source": source_tree,
            "store_dir": tmp_path / "store",
            "cache_dir": tmp_path / "cache",
            "out_dir": tmp_path / "result",
            "backend": InProcessBackend(),
            "pin": toolchain_pin,
            "catalog": package_archives.catalog,
            "crate_registry": crate_registry.url,
        }
        options.update(overrides)
        return Descriptor.create(**options)

    return make


@pytest.fixture
def descriptor(
    make_descriptor: Callable[..., Descriptor],
    inprocess_backend: InProcessBackend,
) -> Descriptor:
    return make_descriptor(backend=inprocess_backend)
