"""Runtime environment derivation shared by the dev shell and the image."""

from __future__ import annotations

from inatbuild.models import DependencySet, RuntimeEnvironment


def runtime_environment(dependencies: DependencySet) -> RuntimeEnvironment:
    """Library search path for the runtime libraries, in dependency-set order.

    Build tools never contribute: they are not present where the artifact runs.
    """
    return RuntimeEnvironment(
        library_path=tuple(str(ref.lib_dir) for ref in dependencies.runtime),
    )
