"""Layered container image packaging for the built artifact."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from inatbuild.container.archive import canonical_json, write_docker_archive
from inatbuild.container.layers import LayerBuilder, layer_digest
from inatbuild.errors import PackagingError
from inatbuild.models import (
    IMAGE_TAG,
    BuildArtifact,
    ContainerImage,
    DependencySet,
    ImageLayer,
    LibraryRef,
)
from inatbuild.observability import StructuredLogger
from inatbuild.platforms import is_linux
from inatbuild.realiser import DependencyRealiser
from inatbuild.resolver import DependencyResolver
from inatbuild.runtime import runtime_environment

CA_BUNDLE = "etc/ssl/certs/ca-bundle.crt"
CA_BUNDLE_ALIASES = ("etc/ssl/certs/ca-certificates.crt",)
OCI_ARCH = {"x86_64": "amd64", "aarch64": "arm64"}
CREATED = "1970-01-01T00:00:01Z"


@dataclass(slots=True)
class ContainerPackager:
    """Wrap an artifact and its runtime libraries into a two-layer image.

    The base layer carries the CA bundle and the runtime libraries, the top
    layer carries the artifact. The tag is always ``latest``; rebuilding
    replaces the previous archive in place.
    """

    resolver: DependencyResolver
    realiser: DependencyRealiser
    output_dir: Path
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    tag: str = IMAGE_TAG

    def package(self, artifact: BuildArtifact, dependencies: DependencySet) -> ContainerImage:
        if not is_linux(dependencies.platform):
            raise PackagingError(
                "Container images can only be packaged for Linux platforms.",
                context={"operation": "package_image", "platform": dependencies.platform},
            )
        if artifact.platform != dependencies.platform:
            raise PackagingError(
                "Artifact and dependency set target different platforms.",
                context={
                    "operation": "package_image",
                    "artifact": artifact.platform,
                    "dependencies": dependencies.platform,
                },
            )
        executable = artifact.executable
        if not executable.is_file():
            raise PackagingError(
                "Build artifact is missing; refusing to package a partial image.",
                context={"operation": "package_image", "path": str(executable)},
            )

        cacert = self.resolver.resolve_package("cacert", dependencies.platform)
        self.realiser.realise_package(cacert)
        base = LayerBuilder(name="base")
        self._add_ca_bundle(base, cacert)
        for ref in dependencies.runtime:
            self._add_store_tree(base, ref.store_path, package=ref.name)

        top = LayerBuilder(name=artifact.name)
        self._add_store_tree(top, artifact.store_path, package=artifact.name)

        runtime = runtime_environment(dependencies)
        layers = [(builder, builder.build()) for builder in (base, top)]
        digests = [layer_digest(payload) for _, payload in layers]
        entrypoint = (str(executable),)
        env = tuple(runtime.as_config_env())
        arch = dependencies.platform.split("-", 1)[1]
        config = canonical_json(
            {
                "architecture": OCI_ARCH.get(arch, arch),
                "os": "linux",
                "created": CREATED,
                "config": {"Entrypoint": list(entrypoint), "Env": list(env)},
                "rootfs": {"type": "layers", "diff_ids": digests},
            }
        )
        config_digest = layer_digest(config)
        reference = f"{artifact.name}:{self.tag}"
        archive_path = write_docker_archive(
            self.output_dir / f"{artifact.name}-{self.tag}.tar",
            repo_tag=reference,
            config=config,
            config_digest=config_digest,
            layers=list(zip(digests, (payload for _, payload in layers), strict=True)),
        )

        image = ContainerImage(
            name=artifact.name,
            tag=self.tag,
            entrypoint=entrypoint,
            env=env,
            layers=tuple(
                ImageLayer(
                    name=builder.name,
                    digest=digest,
                    size=len(payload),
                    paths=builder.paths(),
                )
                for (builder, payload), digest in zip(layers, digests, strict=True)
            ),
            config_digest=config_digest,
            archive_path=archive_path,
        )
        self.logger.log(
            operation="image_packaged",
            platform=dependencies.platform,
            component="container",
            output="image",
            message="Packaged container image.",
            extra={"reference": reference, "config_digest": config_digest},
        )
        return image

    def _add_ca_bundle(self, layer: LayerBuilder, cacert: LibraryRef) -> None:
        bundle = cacert.store_path / CA_BUNDLE
        if not bundle.is_file():
            raise PackagingError(
                "CA certificate bundle is missing.",
                hint="Realise the cacert package into the store before packaging.",
                context={"operation": "package_image", "path": str(bundle)},
            )
        self._add_store_tree(layer, cacert.store_path, package=cacert.name)
        layer.add_file(bundle, CA_BUNDLE, mode=0o444)
        for alias in CA_BUNDLE_ALIASES:
            layer.add_symlink(alias, Path(CA_BUNDLE).name)

    def _add_store_tree(self, layer: LayerBuilder, path: Path, *, package: str) -> None:
        if not path.is_dir():
            raise PackagingError(
                f"Store path for `{package}` is missing.",
                hint="Realise every runtime dependency before packaging the image.",
                context={"operation": "package_image", "path": str(path)},
            )
        layer.add_tree(path, str(path))
