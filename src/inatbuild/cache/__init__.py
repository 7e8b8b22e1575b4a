"""Content-addressed cache APIs."""

from .keys import BuildCacheInput, cache_key, input_digest
from .memo import EvaluationCache
from .store import ArtifactStore

__all__ = ["ArtifactStore", "BuildCacheInput", "EvaluationCache", "cache_key", "input_digest"]
