"""Image provenance export."""

from __future__ import annotations

import json
from pathlib import Path

import cbor2

from inatbuild.models import BuildArtifact, ContainerImage

SCHEMA_VERSION = 1


def provenance_payload(image: ContainerImage, artifact: BuildArtifact) -> dict[str, object]:
    return {
        "schema_version": SCHEMA_VERSION,
        "reference": image.reference,
        "config_digest": image.config_digest,
        "entrypoint": list(image.entrypoint),
        "env": list(image.env),
        "layers": [
            {"name": layer.name, "digest": layer.digest, "size": layer.size}
            for layer in image.layers
        ],
        "artifact": {
            "name": artifact.name,
            "version": artifact.version,
            "platform": artifact.platform,
            "sha256": artifact.sha256,
            "cache_key": artifact.cache_key,
        },
    }


def to_json(image: ContainerImage, artifact: BuildArtifact, path: str | Path | None = None) -> str:
    encoded = json.dumps(provenance_payload(image, artifact), indent=2, sort_keys=True) + "\n"
    if path is not None:
        Path(path).write_text(encoded, encoding="utf-8")
    return encoded


def to_cbor(
    image: ContainerImage,
    artifact: BuildArtifact,
    path: str | Path | None = None,
) -> bytes:
    encoded = cbor2.dumps(provenance_payload(image, artifact), canonical=True)
    if path is not None:
        Path(path).write_bytes(encoded)
    return encoded
