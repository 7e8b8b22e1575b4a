"""Cache key derivation."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class BuildCacheInput:
    source_hash: str
    lockfile_digest: str
    toolchain: str
    platform: str
    pname: str
    version: str
    flags: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)


def cache_key(inputs: BuildCacheInput) -> str:
    canonical = json.dumps(_to_payload(inputs), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def input_digest(payload: Any) -> str:
    """Digest arbitrary JSON-serialisable evaluation inputs."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(inputs: BuildCacheInput) -> dict[str, Any]:
    return {
        "source_hash": inputs.source_hash,
        "lockfile_digest": inputs.lockfile_digest,
        "toolchain": inputs.toolchain,
        "platform": inputs.platform,
        "pname": inputs.pname,
        "version": inputs.version,
        "flags": list(inputs.flags),
        "dependencies": list(inputs.dependencies),
        "env": dict(sorted(inputs.env.items())),
    }
