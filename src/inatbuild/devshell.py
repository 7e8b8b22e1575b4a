"""Development shell composition."""

from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from inatbuild.models import BuildConfig, DevEnvironment, Revision
from inatbuild.observability import StructuredLogger
from inatbuild.realiser import DependencyRealiser
from inatbuild.resolver import DependencyResolver
from inatbuild.runtime import runtime_environment
from inatbuild.toolchain import ToolchainProvider


@dataclass(slots=True)
class DevEnvironmentComposer:
    resolver: DependencyResolver
    toolchains: ToolchainProvider
    realiser: DependencyRealiser
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def compose(self, config: BuildConfig) -> DevEnvironment:
        dependencies = self.realiser.realise(self.resolver.resolve(config.platform))
        toolchain = self.toolchains.resolve(config.platform)
        installed = self.toolchains.install(toolchain)

        path = (str(installed.bin_dir), *(str(ref.bin_dir) for ref in dependencies.build_tools))
        variables = {
            "PKG_CONFIG_PATH": ":".join(str(ref.pkgconfig_dir) for ref in dependencies.runtime),
            "RUSTC": str(installed.rustc),
        }
        runtime = None
        if config.revision >= Revision.DEV_LIBRARY_PATH:
            runtime = runtime_environment(dependencies)

        environment = DevEnvironment(
            platform=config.platform,
            packages=dependencies.all,
            toolchain=toolchain,
            path=path,
            variables=variables,
            runtime=runtime,
        )
        self.logger.log(
            operation="dev_environment_ready",
            platform=config.platform,
            component="devshell",
            output="devShell",
            message="Composed development environment.",
            extra={"packages": list(dependencies.names()), "revision": int(config.revision)},
        )
        return environment


def activation_script(environment: DevEnvironment) -> str:
    """POSIX shell snippet that enters *environment* when sourced."""
    lines = [
        f"# inat dev shell ({environment.platform}, {environment.toolchain.identity})",
        f'export PATH={shlex.quote(":".join(environment.path))}"${{PATH:+:$PATH}}"',
    ]
    for key, value in environment.as_env().items():
        lines.append(f"export {key}={shlex.quote(value)}")
    return "\n".join(lines) + "\n"


def shell_env(
    environment: DevEnvironment,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    host_path = env.get("PATH")
    env["PATH"] = ":".join(environment.path) + (f":{host_path}" if host_path else "")
    env.update(environment.as_env())
    return env


def run_in(environment: DevEnvironment, argv: Sequence[str]) -> int:
    """Run *argv* inside the environment and return its exit status."""
    completed = subprocess.run(list(argv), env=shell_env(environment), check=False)
    return completed.returncode
