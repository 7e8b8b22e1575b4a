"""Policy configuration and enforcement helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from inatbuild.errors import PolicyError

NetworkMode = Literal["online", "offline"]


@dataclass(frozen=True, slots=True)
class Policy:
    network_mode: NetworkMode = "online"


def ensure_network_allowed(*, policy: Policy, operation: str) -> None:
    if policy.network_mode == "offline":
        raise PolicyError(
            "Network operations are disabled by policy.",
            hint="Switch policy.network_mode to 'online' or pre-populate the fetch cache.",
            context={"operation": operation},
        )


def cargo_network_flags(policy: Policy) -> tuple[str, ...]:
    """Cargo flags that pin resolution to the lockfile for the given policy."""
    if policy.network_mode == "offline":
        return ("--frozen",)
    return ("--locked",)
