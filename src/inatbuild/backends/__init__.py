"""Build execution backends."""

from .base import BuildBackend, BuildRequest, build_env, remap_prefixes
from .cargo import CargoBackend
from .inprocess import InProcessBackend

__all__ = [
    "BuildBackend",
    "BuildRequest",
    "CargoBackend",
    "InProcessBackend",
    "build_env",
    "remap_prefixes",
]
