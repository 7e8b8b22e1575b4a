"""In-memory evaluation cache keyed by (component, input digest)."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class EvaluationCache:
    """Memoises pure component evaluations so repeated requests share results.

    Returning the stored object itself (not a copy) is what lets consumers
    compare results by identity.
    """

    _entries: dict[tuple[str, str], Any] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0

    def get_or_compute(self, component: str, digest: str, compute: Callable[[], T]) -> T:
        key = (component, digest)
        if key in self._entries:
            self.hits += 1
            return self._entries[key]
        value = compute()
        self._entries[key] = value
        self.misses += 1
        return value

    def contains(self, component: str, digest: str) -> bool:
        return (component, digest) in self._entries

    def __len__(self) -> int:
        return len(self._entries)
