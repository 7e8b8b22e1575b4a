"""Cargo build backend.

Invokes the pinned toolchain's ``cargo`` by absolute path. The only host
tool used is the C linker driver: it is passed to cargo by absolute path and
its directory is appended after the pinned directories so it can find its
assembler and ``ld``. pkg-config, openssl, cargo and rustc all come from the
store.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from inatbuild.backends.base import BuildRequest, build_env
from inatbuild.errors import BuildError
from inatbuild.lockfile import cargo_source_config
from inatbuild.policy import Policy, cargo_network_flags


@dataclass(slots=True)
class CargoBackend:
    name: str = "cargo"
    policy: Policy = field(default_factory=Policy)
    profile: str = "release"
    linker: str = "cc"

    def command(self, request: BuildRequest) -> list[str]:
        return [
            str(request.toolchain.cargo),
            "build",
            f"--profile={self.profile}",
            *cargo_network_flags(self.policy),
            "--target",
            request.target,
            "--target-dir",
            str(self._target_dir(request)),
            "--manifest-path",
            str(request.source_dir / "Cargo.toml"),
            "--bin",
            request.pname,
            *request.flags,
        ]

    def execute(self, request: BuildRequest) -> Path:
        self._check_build_tools(request)
        linker = self._host_linker(request)
        env = build_env(request)
        env["PATH"] = f"{env['PATH']}:{linker.parent}"
        env[_linker_variable(request.target)] = str(linker)
        self._write_cargo_config(request)

        result = subprocess.run(
            self.command(request),
            cwd=str(request.source_dir),
            env=env,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            raise BuildError(
                "cargo build failed.",
                hint="The compiler output is reproduced verbatim in `stderr`.",
                context={
                    "backend": self.name,
                    "operation": "execute",
                    "platform": request.platform,
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[-4000:] if result.stderr else "",
                },
            )

        built = self._target_dir(request) / request.target / self.profile / request.pname
        if not built.is_file():
            raise BuildError(
                "cargo reported success but produced no executable.",
                context={"backend": self.name, "operation": "execute", "path": str(built)},
            )
        executable = request.executable_path
        executable.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(built, executable)
        executable.chmod(0o755)
        return executable

    def _check_build_tools(self, request: BuildRequest) -> None:
        for ref in request.dependencies.build_tools:
            tool = ref.bin_dir / ref.name
            if not tool.is_file():
                raise BuildError(
                    f"Build tool `{ref.name}` is not realised in the store.",
                    hint="Realise the dependency set before invoking cargo.",
                    context={"backend": self.name, "operation": "execute", "path": str(tool)},
                )

    def _host_linker(self, request: BuildRequest) -> Path:
        found = shutil.which(self.linker)
        if found is None:
            raise BuildError(
                f"C linker driver `{self.linker}` was not found on the host.",
                hint="Install a C toolchain or set CargoBackend.linker.",
                context={
                    "backend": self.name,
                    "operation": "execute",
                    "platform": request.platform,
                },
            )
        return Path(found)

    def _write_cargo_config(self, request: BuildRequest) -> None:
        if request.vendor_dir is None:
            return
        request.cargo_home.mkdir(parents=True, exist_ok=True)
        (request.cargo_home / "config.toml").write_text(
            cargo_source_config(request.vendor_dir),
            encoding="utf-8",
        )

    @staticmethod
    def _target_dir(request: BuildRequest) -> Path:
        return request.work_dir / "target"


def _linker_variable(target: str) -> str:
    return f"CARGO_TARGET_{target.upper().replace('-', '_')}_LINKER"
