import json
from pathlib import Path

import pytest
from conftest import CrateRegistry, PackageArchives

from inatbuild.cli import main
from inatbuild.toolchain import ToolchainPin


def _pin_file(tmp_path: Path, pin: ToolchainPin) -> Path:
    path = tmp_path / "pin.json"
    path.write_text(
        json.dumps(
            {
                "channel": pin.channel,
                "rev": pin.rev,
                "sources": {
                    platform: {"url": request.url, "sha256": request.sha256}
                    for platform, request in pin.sources.items()
                },
            }
        ),
        encoding="utf-8",
    )
    return path


def _package_pin_file(tmp_path: Path, packages: PackageArchives) -> Path:
    path = tmp_path / "packages.json"
    path.write_text(json.dumps(packages.pin_document()), encoding="utf-8")
    return path


@pytest.fixture
def base_args(tmp_path: Path, source_tree: Path, toolchain_pin: ToolchainPin) -> list[str]:
    return [
        "--platform",
        "linux-x86_64",
        "--source",
        str(source_tree),
        "--store",
        str(tmp_path / "store"),
        "--cache",
        str(tmp_path / "cache"),
        "--out",
        str(tmp_path / "result"),
        "--backend",
        "inprocess",
        "--toolchain-pin",
        str(_pin_file(tmp_path, toolchain_pin)),
    ]


@pytest.fixture
def args(
    tmp_path: Path,
    base_args: list[str],
    package_archives: PackageArchives,
    crate_registry: CrateRegistry,
) -> list[str]:
    return [
        *base_args,
        "--package-pin",
        str(_package_pin_file(tmp_path, package_archives)),
        "--crate-registry",
        crate_registry.url,
    ]


def test_build_prints_store_path(args: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    code = main([*args, "build"])

    out = capsys.readouterr().out.strip()
    assert code == 0
    assert out.endswith("-inat-0.1.0")
    assert (Path(out) / "bin" / "inat").is_file()


def test_build_check_verifies_rebuild(tmp_path: Path, args: list[str]) -> None:
    log = tmp_path / "log.jsonl"

    code = main([*args, "--log", str(log), "build", "--check"])

    operations = [json.loads(line)["operation"] for line in log.read_text().splitlines()]
    assert code == 0
    assert "rebuild_verified" in operations
    assert "crates_vendored" in operations


def test_develop_prints_activation_script(
    args: list[str],
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = main([*args, "develop"])

    out = capsys.readouterr().out
    assert code == 0
    assert "export LD_LIBRARY_PATH=" in out


def test_image_prints_reference_and_archive(
    tmp_path: Path,
    args: list[str],
    capsys: pytest.CaptureFixture[str],
) -> None:
    provenance = tmp_path / "provenance.json"

    code = main([*args, "image", "--provenance", str(provenance)])

    reference, archive = capsys.readouterr().out.split()
    assert code == 0
    assert reference == "inat:latest"
    assert Path(archive).is_file()
    assert json.loads(provenance.read_text(encoding="utf-8"))["reference"] == "inat:latest"


def test_missing_package_pins_fail_with_resolution_error(
    base_args: list[str],
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = main([*base_args, "build"])

    error = json.loads(capsys.readouterr().err)
    assert code == 1
    assert error["code"] == "E_RESOLUTION"
    assert "--package-pin" in error["hint"]


def test_malformed_package_pin_is_a_resolution_error(
    tmp_path: Path,
    base_args: list[str],
    capsys: pytest.CaptureFixture[str],
) -> None:
    pin = tmp_path / "packages.json"
    pin.write_text('{"packages": {"openssl": {"version": "3.3.2"}}}', encoding="utf-8")

    code = main([*base_args, "--package-pin", str(pin), "build"])

    assert code == 1
    assert json.loads(capsys.readouterr().err)["code"] == "E_RESOLUTION"


def test_missing_lockfile_exits_non_zero_with_error_json(
    source_tree: Path,
    args: list[str],
    capsys: pytest.CaptureFixture[str],
) -> None:
    (source_tree / "Cargo.lock").unlink()

    code = main([*args, "build"])

    captured = capsys.readouterr()
    assert code == 1
    assert captured.out == ""
    assert json.loads(captured.err)["code"] == "E_LOCKFILE"


def test_image_on_old_revision_is_rejected(
    args: list[str],
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = main([*args, "--revision", "2", "image"])

    assert code == 1
    assert json.loads(capsys.readouterr().err)["code"] == "E_VALIDATION"
