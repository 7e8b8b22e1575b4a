from pathlib import Path

import pytest

from inatbuild.backends import BuildRequest, CargoBackend, build_env, remap_prefixes
from inatbuild.errors import BuildError
from inatbuild.models import InstalledToolchain, Toolchain
from inatbuild.policy import Policy
from inatbuild.resolver import DependencyResolver


def _request(tmp_path: Path, *, vendor_dir: Path | None = None) -> BuildRequest:
    deps = DependencyResolver(store_dir=tmp_path / "store").resolve("linux-x86_64")
    toolchain = Toolchain(
        channel="minimal",
        rev="1.82.0",
        platform="linux-x86_64",
        target="x86_64-unknown-linux-gnu",
        url="file:///dev/null",
        sha256="0" * 64,
    )
    work_dir = tmp_path / "work"
    (work_dir / "source").mkdir(parents=True)
    return BuildRequest(
        pname="inat",
        version="0.1.0",
        platform="linux-x86_64",
        target=toolchain.target,
        source_dir=work_dir / "source",
        output_dir=work_dir / "out",
        work_dir=work_dir,
        toolchain=InstalledToolchain(toolchain=toolchain, root=tmp_path / "toolchain"),
        dependencies=deps,
        source_hash="src",
        lockfile_digest="lock",
        vendor_dir=vendor_dir,
    )


def _script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\n{body}", encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.fixture
def host_bin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A host PATH with a linker driver and a decoy pkg-config."""
    root = tmp_path / "host-bin"
    _script(root / "cc", "exit 0\n")
    _script(root / "pkg-config", "echo host\n")
    monkeypatch.setenv("PATH", str(root))
    return root


def _realise_build_tools(request: BuildRequest) -> None:
    for ref in request.dependencies.build_tools:
        _script(ref.bin_dir / ref.name, "echo pinned\n")


def _built(request: BuildRequest) -> Path:
    built = request.work_dir / "target" / request.target / "release" / "inat"
    built.parent.mkdir(parents=True)
    return built


def test_build_env_puts_build_tools_on_path_only(tmp_path: Path) -> None:
    request = _request(tmp_path)

    env = build_env(request)

    runtime, tool = request.dependencies.runtime[0], request.dependencies.build_tools[0]
    assert env["PATH"].split(":") == [str(tmp_path / "toolchain" / "bin"), str(tool.bin_dir)]
    assert env["PKG_CONFIG_PATH"] == str(runtime.pkgconfig_dir)
    assert env["PKG_CONFIG_LIBDIR"] == str(runtime.pkgconfig_dir)
    assert env["PKG_CONFIG"] == str(tool.bin_dir / "pkg-config")
    assert env["OPENSSL_DIR"] == str(runtime.store_path)
    assert env["RUSTC"] == str(tmp_path / "toolchain" / "bin" / "rustc")


def test_remap_prefixes_cover_scratch_cargo_home_and_vendor(tmp_path: Path) -> None:
    vendor = tmp_path / "cache" / "vendor" / "abc"
    request = _request(tmp_path, vendor_dir=vendor)

    flags = build_env(request)["CARGO_ENCODED_RUSTFLAGS"].split("\x1f")

    work = tmp_path / "work"
    assert flags == [
        f"--remap-path-prefix={work}=/build",
        f"--remap-path-prefix={work / 'cargo-home'}=/cargo",
        f"--remap-path-prefix={vendor}=/vendor",
        f"--remap-path-prefix={work / 'source'}=/build/source",
    ]


def test_remap_prefixes_without_vendor_dir(tmp_path: Path) -> None:
    request = _request(tmp_path)

    targets = [target for _, target in remap_prefixes(request)]

    assert targets == ["/build", "/cargo", "/build/source"]


def test_cargo_command_uses_pinned_cargo_and_lockfile(tmp_path: Path) -> None:
    request = _request(tmp_path)

    command = CargoBackend().command(request)

    assert command[0] == str(tmp_path / "toolchain" / "bin" / "cargo")
    assert "--locked" in command
    assert command[command.index("--target") + 1] == "x86_64-unknown-linux-gnu"
    assert command[command.index("--bin") + 1] == "inat"


def test_offline_cargo_command_is_frozen(tmp_path: Path) -> None:
    command = CargoBackend(policy=Policy(network_mode="offline")).command(_request(tmp_path))

    assert "--frozen" in command
    assert "--locked" not in command


def test_cargo_failure_surfaces_stderr(tmp_path: Path, host_bin: Path) -> None:
    request = _request(tmp_path)
    _realise_build_tools(request)
    _script(request.toolchain.cargo, "echo 'error: linking with `cc` failed' >&2\nexit 101\n")

    with pytest.raises(BuildError) as excinfo:
        CargoBackend().execute(request)

    assert excinfo.value.context["returncode"] == "101"
    assert "linking with `cc` failed" in excinfo.value.context["stderr"]


def test_cargo_success_copies_executable(tmp_path: Path, host_bin: Path) -> None:
    request = _request(tmp_path)
    _realise_build_tools(request)
    built = _built(request)
    _script(request.toolchain.cargo, f"printf ELF > {built}\n")

    executable = CargoBackend().execute(request)

    assert executable == request.executable_path
    assert executable.read_bytes() == b"ELF"


def test_cargo_sees_pinned_pkg_config_before_the_host(tmp_path: Path, host_bin: Path) -> None:
    request = _request(tmp_path)
    _realise_build_tools(request)
    built = _built(request)
    seen = tmp_path / "seen"
    _script(
        request.toolchain.cargo,
        f'command -v pkg-config > {seen}\necho "$PKG_CONFIG" >> {seen}\n'
        f'echo "$CARGO_TARGET_X86_64_UNKNOWN_LINUX_GNU_LINKER" >> {seen}\n'
        f"printf ELF > {built}\n",
    )

    CargoBackend().execute(request)

    pinned = str(request.dependencies.build_tools[0].bin_dir / "pkg-config")
    assert seen.read_text(encoding="utf-8").splitlines() == [
        pinned,
        pinned,
        str(host_bin / "cc"),
    ]


def test_cargo_reads_vendored_sources_config(tmp_path: Path, host_bin: Path) -> None:
    vendor = tmp_path / "vendor"
    vendor.mkdir()
    request = _request(tmp_path, vendor_dir=vendor)
    _realise_build_tools(request)
    built = _built(request)
    _script(request.toolchain.cargo, f"printf ELF > {built}\n")

    CargoBackend().execute(request)

    config = (request.cargo_home / "config.toml").read_text(encoding="utf-8")
    assert 'replace-with = "vendored-sources"' in config
    assert f'directory = "{vendor}"' in config


def test_unrealised_build_tool_fails_before_cargo_runs(tmp_path: Path, host_bin: Path) -> None:
    request = _request(tmp_path)
    marker = tmp_path / "ran"
    _script(request.toolchain.cargo, f"printf x > {marker}\n")

    with pytest.raises(BuildError) as excinfo:
        CargoBackend().execute(request)

    assert excinfo.value.context["path"].endswith("/bin/pkg-config")
    assert not marker.exists()


def test_missing_linker_is_a_build_error(tmp_path: Path, host_bin: Path) -> None:
    request = _request(tmp_path)
    _realise_build_tools(request)
    (host_bin / "cc").unlink()

    with pytest.raises(BuildError) as excinfo:
        CargoBackend().execute(request)

    assert "`cc`" in str(excinfo.value)
