"""``docker load`` compatible archive writer."""

from __future__ import annotations

import io
import json
import os
import tarfile
from pathlib import Path
from typing import Any

from inatbuild.container.layers import LAYER_MTIME


def canonical_json(payload: Any) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def write_docker_archive(
    path: Path,
    *,
    repo_tag: str,
    config: bytes,
    config_digest: str,
    layers: list[tuple[str, bytes]],
) -> Path:
    """Write the archive atomically; a failed write leaves no file behind."""
    config_name = f"{config_digest.removeprefix('sha256:')}.json"
    layer_names = [f"{digest.removeprefix('sha256:')}/layer.tar" for digest, _ in layers]
    repo, _, tag = repo_tag.rpartition(":")
    manifest = [{"Config": config_name, "RepoTags": [repo_tag], "Layers": layer_names}]
    repositories = {repo: {tag: layers[-1][0].removeprefix("sha256:")}} if layers else {}

    entries: list[tuple[str, bytes]] = [(config_name, config)]
    entries.extend(zip(layer_names, (payload for _, payload in layers), strict=True))
    entries.append(("manifest.json", canonical_json(manifest)))
    entries.append(("repositories", canonical_json(repositories)))

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with tarfile.open(temp_path, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for name, payload in entries:
                info = tarfile.TarInfo(name)
                info.size = len(payload)
                info.mtime = LAYER_MTIME
                info.mode = 0o444
                tar.addfile(info, io.BytesIO(payload))
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
    return path
