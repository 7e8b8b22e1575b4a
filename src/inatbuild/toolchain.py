"""Pinned Rust toolchain resolution and installation."""

from __future__ import annotations

import json
import os
import shutil
import tarfile
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from inatbuild.cache import EvaluationCache, input_digest
from inatbuild.errors import ReproducibilityError, ResolutionError
from inatbuild.fetch import FetchRequest, fetch
from inatbuild.models import InstalledToolchain, Platform, Toolchain
from inatbuild.observability import StructuredLogger
from inatbuild.platforms import normalize_platform, target_triple
from inatbuild.policy import Policy

MINIMAL_COMPONENTS = ("rustc", "cargo", "rust-std-{target}")
DIST = "https://static.rust-lang.org/dist/2024-10-17"


@dataclass(frozen=True, slots=True)
class ToolchainPin:
    """Upstream revision plus one checksummed archive per platform."""

    channel: str
    rev: str
    sources: Mapping[str, FetchRequest]

    @classmethod
    def from_json(cls, raw: str) -> ToolchainPin:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ResolutionError("Toolchain pin must be a JSON object.")
        try:
            sources = {
                normalize_platform(platform): FetchRequest(url=item["url"], sha256=item["sha256"])
                for platform, item in payload["sources"].items()
            }
            return cls(channel=payload["channel"], rev=payload["rev"], sources=sources)
        except (KeyError, TypeError) as exc:
            raise ResolutionError(
                "Toolchain pin is missing required fields.",
                hint="Expected keys: channel, rev, sources.<platform>.{url,sha256}.",
                context={"operation": "load_toolchain_pin", "missing": str(exc)},
            ) from exc


DEFAULT_PIN = ToolchainPin(
    channel="minimal",
    rev="1.82.0",
    sources={
        "linux-x86_64": FetchRequest(
            url=f"{DIST}/rust-1.82.0-x86_64-unknown-linux-gnu.tar.xz",
            sha256="0265c08ae997c4de965048a244605fb1f24a600bbe35047b811c638b8fcf676b",
        ),
        "linux-aarch64": FetchRequest(
            url=f"{DIST}/rust-1.82.0-aarch64-unknown-linux-gnu.tar.xz",
            sha256="d7db04fce65b5f73282941f3f1df5893be9810af17eb7c65b2e614461fe31a48",
        ),
        "darwin-x86_64": FetchRequest(
            url=f"{DIST}/rust-1.82.0-x86_64-apple-darwin.tar.xz",
            sha256="b1a289cabc523f259f65116a41374ac159d72fbbf6c373bd5e545c8e835ceb6a",
        ),
        "darwin-aarch64": FetchRequest(
            url=f"{DIST}/rust-1.82.0-aarch64-apple-darwin.tar.xz",
            sha256="49b6d36b308addcfd21ae56c94957688338ba7b8985bff57fc626c8e1b32f62c",
        ),
    },
)


@dataclass(slots=True)
class ToolchainProvider:
    """Supply the pinned toolchain; the host's cargo/rustc are never consulted."""

    cache_dir: Path
    pin: ToolchainPin = DEFAULT_PIN
    policy: Policy = field(default_factory=Policy)
    cache: EvaluationCache = field(default_factory=EvaluationCache)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def resolve(self, platform: str) -> Toolchain:
        canonical = normalize_platform(platform)
        digest = input_digest({"platform": canonical, "pin": self._pin_payload()})
        return self.cache.get_or_compute("toolchain", digest, lambda: self._resolve(canonical))

    def install(self, toolchain: Toolchain) -> InstalledToolchain:
        digest = input_digest({"identity": toolchain.identity, "cache_dir": str(self.cache_dir)})
        return self.cache.get_or_compute(
            "toolchain_install",
            digest,
            lambda: self._install(toolchain),
        )

    def _resolve(self, platform: Platform) -> Toolchain:
        request = self.pin.sources.get(platform)
        if request is None:
            raise ResolutionError(
                f"No pinned toolchain for `{platform}`.",
                hint="Add the platform to the toolchain pin; system toolchains are not used.",
                context={"operation": "resolve_toolchain", "platform": platform},
            )
        return Toolchain(
            channel=self.pin.channel,
            rev=self.pin.rev,
            platform=platform,
            target=target_triple(platform),
            url=request.url,
            sha256=request.sha256,
        )

    def _install(self, toolchain: Toolchain) -> InstalledToolchain:
        root = self.cache_dir / "toolchains" / (
            f"{toolchain.sha256[:32]}-rust-{toolchain.channel}-{toolchain.rev}"
        )
        if root.is_dir():
            self.logger.log(
                operation="toolchain_cache_hit",
                platform=toolchain.platform,
                component="toolchain",
                message="Using installed toolchain.",
                extra={"path": str(root)},
            )
            return self._verified(toolchain, root)

        self.logger.log(
            operation="toolchain_fetch",
            platform=toolchain.platform,
            component="toolchain",
            message="Fetching pinned toolchain archive.",
            extra={"url": toolchain.url},
        )
        try:
            archive = fetch(
                toolchain.url,
                sha256=toolchain.sha256,
                cache_dir=self.cache_dir / "downloads",
                policy=self.policy,
            )
        except ReproducibilityError as exc:
            raise ResolutionError(
                "Pinned toolchain archive failed integrity verification.",
                hint="Refresh the toolchain pin from a trusted upstream release.",
                context={"operation": "install_toolchain", "url": toolchain.url},
            ) from exc

        root.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=root.parent))
        try:
            _unpack_components(archive, staging, target=toolchain.target, toolchain=toolchain)
            os.replace(staging, root)
        finally:
            if staging.exists():
                shutil.rmtree(staging)
        return self._verified(toolchain, root)

    def _verified(self, toolchain: Toolchain, root: Path) -> InstalledToolchain:
        installed = InstalledToolchain(toolchain=toolchain, root=root)
        for binary in (installed.cargo, installed.rustc):
            if not binary.is_file():
                raise ResolutionError(
                    f"Toolchain is missing `{binary.name}`.",
                    hint="Remove the toolchain cache entry and reinstall.",
                    context={"operation": "install_toolchain", "path": str(root)},
                )
        return installed

    def _pin_payload(self) -> dict[str, object]:
        return {
            "channel": self.pin.channel,
            "rev": self.pin.rev,
            "sources": {
                platform: [request.url, request.sha256]
                for platform, request in sorted(self.pin.sources.items())
            },
        }


def _unpack_components(
    archive: Path,
    destination: Path,
    *,
    target: str,
    toolchain: Toolchain,
) -> None:
    """Merge the minimal component set of a rust dist archive into *destination*."""
    wanted = {name.format(target=target) for name in MINIMAL_COMPONENTS}
    with tempfile.TemporaryDirectory() as scratch:
        scratch_path = Path(scratch)
        try:
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(scratch_path, filter="data")
        except tarfile.TarError as exc:
            raise ResolutionError(
                "Toolchain archive could not be unpacked.",
                context={"operation": "install_toolchain", "url": toolchain.url},
            ) from exc

        tops = [path for path in scratch_path.iterdir() if path.is_dir()]
        if len(tops) != 1 or not (tops[0] / "components").is_file():
            raise ResolutionError(
                "Toolchain archive has an unexpected layout.",
                hint="Expected a single top-level directory with a `components` file.",
                context={"operation": "install_toolchain", "url": toolchain.url},
            )
        top = tops[0]
        components = (top / "components").read_text(encoding="utf-8").split()
        missing = sorted(wanted - set(components))
        if missing:
            raise ResolutionError(
                "Toolchain archive lacks required components.",
                context={
                    "operation": "install_toolchain",
                    "url": toolchain.url,
                    "missing": ",".join(missing),
                },
            )
        for component in components:
            if component not in wanted:
                continue
            shutil.copytree(
                top / component,
                destination,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns("manifest.in"),
            )
