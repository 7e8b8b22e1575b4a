"""Content-addressed artifact store with manifest verification."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path

from inatbuild.cache.keys import BuildCacheInput, _to_payload, cache_key
from inatbuild.errors import ReproducibilityError
from inatbuild.source import hash_output

MANIFEST_DIR = ".manifests"


class ArtifactStore:
    """Store build outputs under ``<root>/<key32>-<pname>-<version>``.

    Manifests live beside the entries so an entry directory contains only
    the build output itself.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def entry_path(self, *, key: str, pname: str, version: str) -> Path:
        return self.root / f"{key[:32]}-{pname}-{version}"

    def manifest_path(self, key: str) -> Path:
        return self.root / MANIFEST_DIR / f"{key}.json"

    def load(self, *, key: str, expected_inputs: BuildCacheInput) -> Path | None:
        entry = self.entry_path(
            key=key,
            pname=expected_inputs.pname,
            version=expected_inputs.version,
        )
        manifest_path = self.manifest_path(key)
        if not entry.is_dir() or not manifest_path.exists():
            return None

        manifest = self._read_manifest(manifest_path)
        if manifest.get("inputs") != _to_payload(expected_inputs):
            raise ReproducibilityError(
                "Store manifest inputs do not match expected build inputs.",
                hint="Remove the store entry and rebuild.",
                context={"operation": "store_load", "key": key},
            )
        if manifest.get("key") != key:
            raise ReproducibilityError(
                "Store manifest key mismatch.",
                hint="Remove the store entry and rebuild.",
                context={"operation": "store_load", "key": key},
            )
        if manifest.get("output_sha256") != hash_output(entry):
            raise ReproducibilityError(
                "Store entry content does not match its recorded digest.",
                hint="Remove the store entry and rebuild.",
                context={"operation": "store_load", "key": key, "path": str(entry)},
            )
        return entry

    def save(self, *, inputs: BuildCacheInput, staged: Path) -> tuple[str, Path]:
        """Move *staged* into the store and record its manifest."""
        key = cache_key(inputs)
        entry = self.entry_path(key=key, pname=inputs.pname, version=inputs.version)
        if entry.exists():
            shutil.rmtree(entry)
        os.replace(staged, entry)

        manifest_path = self.manifest_path(key)
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        manifest = {
            "key": key,
            "inputs": _to_payload(inputs),
            "output_sha256": hash_output(entry),
            "path": entry.name,
        }
        manifest_path.write_text(
            json.dumps(manifest, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return key, entry

    def _read_manifest(self, path: Path) -> dict[str, object]:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ReproducibilityError(
                "Store manifest is not valid JSON.",
                hint="Remove the store entry and rebuild.",
                context={"operation": "store_load", "path": str(path)},
            ) from exc
        if not isinstance(parsed, dict):
            raise ReproducibilityError(
                "Store manifest has invalid structure.",
                hint="Remove the store entry and rebuild.",
                context={"operation": "store_load", "path": str(path)},
            )
        return parsed
