"""In-process build backend for testing and dry runs.

Produces a deterministic placeholder executable derived only from the build
inputs, without invoking cargo. Two requests with the same inputs always
yield byte-identical output.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from inatbuild.backends.base import BuildRequest
from inatbuild.errors import BuildError


@dataclass(slots=True)
class InProcessBackend:
    name: str = "inprocess"
    fail_with: str | None = None
    invocations: int = 0

    def execute(self, request: BuildRequest) -> Path:
        self.invocations += 1
        if self.fail_with is not None:
            raise BuildError(
                "Build failed in in-process backend.",
                context={
                    "backend": self.name,
                    "operation": "execute",
                    "platform": request.platform,
                    "stderr": self.fail_with,
                },
            )
        executable = request.executable_path
        executable.parent.mkdir(parents=True, exist_ok=True)
        libraries = " ".join(str(ref.lib_dir) for ref in request.dependencies.runtime)
        executable.write_text(
            (
                "#!/bin/sh\n"
                f"# {request.pname} {request.version} ({request.target})\n"
                f"# source={request.source_hash}\n"
                f"# lockfile={request.lockfile_digest}\n"
                f"# toolchain={request.toolchain.toolchain.identity}\n"
                f"# needed={libraries}\n"
                f"# flags={' '.join(request.flags)}\n"
                f'echo "{request.pname} {request.version}"\n'
            ),
            encoding="utf-8",
        )
        executable.chmod(0o755)
        return executable
