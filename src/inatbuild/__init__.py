"""Public package entrypoint for the inat build descriptor."""

from .descriptor import Descriptor
from .errors import (
    BuildError,
    InatBuildError,
    LockfileError,
    PackagingError,
    PolicyError,
    ReproducibilityError,
    ResolutionError,
    ValidationError,
)
from .models import (
    BuildArtifact,
    BuildConfig,
    ContainerImage,
    DependencySet,
    DevEnvironment,
    EvaluationState,
    LibraryRef,
    Revision,
    RuntimeEnvironment,
    Toolchain,
)
from .policy import Policy

__all__ = [
    "BuildArtifact",
    "BuildConfig",
    "BuildError",
    "ContainerImage",
    "DependencySet",
    "Descriptor",
    "DevEnvironment",
    "EvaluationState",
    "InatBuildError",
    "LibraryRef",
    "LockfileError",
    "PackagingError",
    "Policy",
    "PolicyError",
    "ReproducibilityError",
    "ResolutionError",
    "Revision",
    "RuntimeEnvironment",
    "Toolchain",
    "ValidationError",
]
