"""Dependency set resolution against a pinned native package catalog."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from inatbuild.cache import EvaluationCache, input_digest
from inatbuild.errors import ResolutionError
from inatbuild.models import BuildConfig, DependencySet, LibraryRef, Platform
from inatbuild.platforms import SUPPORTED_PLATFORMS, normalize_platform


@dataclass(frozen=True, slots=True)
class PackageSource:
    """A checksummed prebuilt archive, or a single file when ``install_as`` is set."""

    url: str
    sha256: str
    strip_components: int = 0
    install_as: str | None = None


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    name: str
    version: str
    platforms: tuple[Platform, ...] = SUPPORTED_PLATFORMS
    sources: Mapping[str, PackageSource] = field(default_factory=dict)

    def source_for(self, platform: Platform) -> PackageSource | None:
        return self.sources.get(platform)


# Versions are fixed here; per-platform sources come from a package pin file.
DEFAULT_CATALOG: Mapping[str, CatalogEntry] = {
    "openssl": CatalogEntry(name="openssl", version="3.3.2"),
    "pkg-config": CatalogEntry(name="pkg-config", version="0.29.2"),
    "cacert": CatalogEntry(
        name="cacert",
        version="2024-09-24",
        platforms=("linux-x86_64", "linux-aarch64"),
    ),
}

ALIASES: Mapping[str, str] = {"libssl": "openssl", "ssl": "openssl", "pkgconfig": "pkg-config"}


def load_catalog(raw: str) -> dict[str, CatalogEntry]:
    """Parse a package pin document into catalog entries.

    ``{"packages": {"<name>": {"version": ..., "sources": {"<platform>": {"url": ...,
    "sha256": ..., "strip_components": 0, "install_as": null}}}}}``
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ResolutionError(
            "Package pin is not valid JSON.",
            context={"operation": "load_package_pin", "reason": str(exc)},
        ) from exc
    try:
        entries: dict[str, CatalogEntry] = {}
        for name, item in payload["packages"].items():
            sources = {
                normalize_platform(platform): PackageSource(
                    url=source["url"],
                    sha256=source["sha256"],
                    strip_components=int(source.get("strip_components", 0)),
                    install_as=source.get("install_as"),
                )
                for platform, source in item["sources"].items()
            }
            platforms = item.get("platforms")
            entries[name] = CatalogEntry(
                name=name,
                version=item["version"],
                platforms=(
                    tuple(normalize_platform(p) for p in platforms)
                    if platforms is not None
                    else tuple(sorted(sources))
                ),
                sources=sources,
            )
        return entries
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise ResolutionError(
            "Package pin is missing required fields.",
            hint="Expected packages.<name>.{version, sources.<platform>.{url, sha256}}.",
            context={"operation": "load_package_pin", "missing": str(exc)},
        ) from exc


def store_path_for(entry: CatalogEntry, *, platform: Platform, store_dir: Path) -> Path:
    """Derive the content-addressed install path of *entry* on *platform*."""
    source = entry.source_for(platform)
    pinned = source.sha256 if source is not None else ""
    seed = f"{entry.name}\0{entry.version}\0{platform}\0{pinned}"
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:32]
    return store_dir / f"{digest}-{entry.name}-{entry.version}"


@dataclass(slots=True)
class DependencyResolver:
    """Resolve the declared package names to pinned ``LibraryRef`` values.

    Resolution is pure: paths are derived, never read from disk. Results are memoised
    in the shared evaluation cache, so every consumer asking for the same
    platform gets the very same ``DependencySet`` object.
    """

    store_dir: Path
    runtime_packages: tuple[str, ...] = ("openssl",)
    build_tools: tuple[str, ...] = ("pkg-config",)
    catalog: Mapping[str, CatalogEntry] = field(default_factory=lambda: dict(DEFAULT_CATALOG))
    cache: EvaluationCache = field(default_factory=EvaluationCache)

    @classmethod
    def from_config(
        cls,
        config: BuildConfig,
        *,
        cache: EvaluationCache,
        catalog: Mapping[str, CatalogEntry] | None = None,
    ) -> DependencyResolver:
        return cls(
            store_dir=config.store_dir,
            runtime_packages=config.runtime_packages,
            build_tools=config.build_tools,
            catalog=dict(DEFAULT_CATALOG if catalog is None else catalog),
            cache=cache,
        )

    def resolve(self, platform: str) -> DependencySet:
        canonical = normalize_platform(platform)
        digest = input_digest(
            {
                "platform": canonical,
                "store_dir": str(self.store_dir),
                "runtime": list(self.runtime_packages),
                "build": list(self.build_tools),
                "catalog": self._catalog_fingerprint(),
            }
        )
        return self.cache.get_or_compute(
            "dependency_set",
            digest,
            lambda: DependencySet(
                platform=canonical,
                runtime=tuple(self._ref(name, canonical) for name in self.runtime_packages),
                build_tools=tuple(self._ref(name, canonical) for name in self.build_tools),
            ),
        )

    def resolve_package(self, name: str, platform: str) -> LibraryRef:
        """Resolve a single auxiliary package such as the CA bundle."""
        canonical = normalize_platform(platform)
        digest = input_digest(
            {
                "platform": canonical,
                "store_dir": str(self.store_dir),
                "name": name,
                "catalog": self._catalog_fingerprint(),
            }
        )
        return self.cache.get_or_compute("package", digest, lambda: self._ref(name, canonical))

    def entry(self, name: str) -> CatalogEntry:
        entry = self.catalog.get(ALIASES.get(name, name))
        if entry is None:
            raise ResolutionError(
                f"Package `{name}` is not in the pinned catalog.",
                hint="Pin the package in the catalog before declaring it.",
                context={"operation": "resolve_dependencies", "package": name},
            )
        return entry

    def _ref(self, name: str, platform: Platform) -> LibraryRef:
        entry = self.entry(name)
        if platform not in entry.platforms:
            raise ResolutionError(
                f"Package `{entry.name}` is not available for `{platform}`.",
                context={
                    "operation": "resolve_dependencies",
                    "package": entry.name,
                    "platform": platform,
                },
            )
        return LibraryRef(
            name=entry.name,
            version=entry.version,
            platform=platform,
            store_path=store_path_for(entry, platform=platform, store_dir=self.store_dir),
        )

    def _catalog_fingerprint(self) -> list[list[str]]:
        return [
            [
                entry.name,
                entry.version,
                *(f"{key}={source.sha256}" for key, source in sorted(entry.sources.items())),
            ]
            for _, entry in sorted(self.catalog.items())
        ]
