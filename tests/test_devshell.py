import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from inatbuild import Descriptor, Revision
from inatbuild.devshell import activation_script, run_in, shell_env


def test_dev_shell_exposes_runtime_libraries_and_build_tools(descriptor: Descriptor) -> None:
    environment = descriptor.dev_shell()

    assert [ref.name for ref in environment.packages] == ["openssl", "pkg-config"]
    deps = descriptor.dependencies()
    assert environment.packages == deps.all
    assert str(deps.build_tools[0].bin_dir) in environment.path
    assert (deps.build_tools[0].bin_dir / "pkg-config").is_file()
    assert environment.path[0].endswith("/bin")
    assert environment.variables["PKG_CONFIG_PATH"] == str(deps.runtime[0].pkgconfig_dir)


def test_first_revision_has_no_library_search_path(
    make_descriptor: Callable[..., Descriptor],
) -> None:
    descriptor = make_descriptor(revision=Revision.BUILD)

    environment = descriptor.dev_shell()

    assert environment.runtime is None
    assert "LD_LIBRARY_PATH" not in environment.as_env()


@pytest.mark.parametrize("revision", [Revision.DEV_LIBRARY_PATH, Revision.CONTAINER])
def test_later_revisions_set_library_search_path(
    make_descriptor: Callable[..., Descriptor],
    revision: Revision,
) -> None:
    descriptor = make_descriptor(revision=revision)

    environment = descriptor.dev_shell()

    lib_dir = descriptor.dependencies().runtime[0].lib_dir
    assert environment.as_env()["LD_LIBRARY_PATH"] == str(lib_dir)


def test_dev_shell_uses_the_same_dependency_set_as_the_build(descriptor: Descriptor) -> None:
    artifact = descriptor.build()
    environment = descriptor.dev_shell()

    assert environment.packages == descriptor.dependencies().all
    assert artifact.platform == environment.platform


def test_activation_script_exports_environment(descriptor: Descriptor) -> None:
    environment = descriptor.dev_shell()

    script = activation_script(environment)

    assert script.startswith("# inat dev shell (linux-x86_64, minimal@1.82.0")
    assert "export PATH=" in script
    assert "export LD_LIBRARY_PATH=" in script
    assert "export PKG_CONFIG_PATH=" in script


def test_shell_env_prepends_pinned_paths(descriptor: Descriptor) -> None:
    environment = descriptor.dev_shell()

    env = shell_env(environment, base={"PATH": "/usr/bin", "HOME": "/home/inat"})

    assert env["PATH"].endswith(":/usr/bin")
    assert env["PATH"].startswith(environment.path[0])
    assert env["HOME"] == "/home/inat"
    assert env["LD_LIBRARY_PATH"] == environment.as_env()["LD_LIBRARY_PATH"]


def test_run_in_executes_command_inside_environment(
    descriptor: Descriptor,
    tmp_path: Path,
) -> None:
    environment = descriptor.dev_shell()
    out = tmp_path / "env.txt"
    code = (
        "import os, pathlib; "
        f"pathlib.Path({str(out)!r}).write_text(os.environ['LD_LIBRARY_PATH'])"
    )

    status = run_in(environment, [sys.executable, "-c", code])

    assert status == 0
    assert out.read_text() == environment.as_env()["LD_LIBRARY_PATH"]
