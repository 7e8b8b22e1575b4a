"""Integrity-checked input retrieval."""

from __future__ import annotations

from dataclasses import dataclass

from .http import fetch


@dataclass(frozen=True, slots=True)
class FetchRequest:
    url: str
    sha256: str


__all__ = ["FetchRequest", "fetch"]
