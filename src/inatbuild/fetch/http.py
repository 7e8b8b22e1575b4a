"""Integrity-enforced HTTP/file fetch implementation."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from inatbuild.errors import ReproducibilityError, ResolutionError, ValidationError
from inatbuild.policy import Policy, ensure_network_allowed


def fetch(
    url: str,
    *,
    sha256: str,
    cache_dir: str | Path,
    policy: Policy | None = None,
) -> Path:
    """Fetch content and return a content-addressed cached path.

    A verified cache hit never touches the network, so it is allowed even
    when the policy is offline.
    """
    if not sha256:
        raise ValidationError("fetch() requires a sha256 value.", context={"url": url})
    cache_path = Path(cache_dir)
    cache_path.mkdir(parents=True, exist_ok=True)
    artifact_path = cache_path / sha256

    if artifact_path.exists():
        _assert_hash_matches(artifact_path, expected_sha256=sha256)
        return artifact_path

    if policy is not None:
        ensure_network_allowed(policy=policy, operation="fetch")

    try:
        with urlopen(url) as response:  # noqa: S310 - integrity check is mandatory below
            payload = response.read()
    except (URLError, OSError) as exc:
        raise ResolutionError(
            "Upstream source is unreachable.",
            hint="Check connectivity or the pinned URL; no fallback source is used.",
            context={"operation": "fetch", "url": url, "reason": str(exc)},
        ) from exc

    actual_sha256 = hashlib.sha256(payload).hexdigest()
    if actual_sha256 != sha256:
        raise ReproducibilityError(
            "Fetched content hash mismatch.",
            hint="Update the expected hash or source URL to a trusted immutable artifact.",
            context={"operation": "fetch", "url": url, "expected": sha256, "actual": actual_sha256},
        )

    temp_path = artifact_path.with_suffix(".tmp")
    temp_path.write_bytes(payload)
    os.replace(temp_path, artifact_path)
    return artifact_path


def _assert_hash_matches(path: Path, *, expected_sha256: str) -> None:
    actual_sha256 = hashlib.sha256(path.read_bytes()).hexdigest()
    if actual_sha256 != expected_sha256:
        raise ReproducibilityError(
            "Cached artifact hash mismatch.",
            hint="Clear cache and refetch with trusted inputs.",
            context={
                "operation": "fetch",
                "path": str(path),
                "expected": expected_sha256,
                "actual": actual_sha256,
            },
        )
