"""Command line entrypoint for the inat build descriptor.

Usage:
    inat-build build [--check]
    inat-build develop [-c CMD ...]
    inat-build image [--provenance PATH]
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from inatbuild.backends import BuildBackend, CargoBackend, InProcessBackend
from inatbuild.container import to_cbor, to_json
from inatbuild.descriptor import Descriptor
from inatbuild.devshell import activation_script, run_in
from inatbuild.errors import InatBuildError
from inatbuild.lockfile import CRATES_IO
from inatbuild.models import Revision
from inatbuild.observability import StructuredLogger
from inatbuild.platforms import host_platform
from inatbuild.policy import Policy
from inatbuild.resolver import DEFAULT_CATALOG, load_catalog
from inatbuild.toolchain import DEFAULT_PIN, ToolchainPin


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inat-build", description="Reproducible inat builds")
    parser.add_argument("--platform", default=None, help="Target platform (default: host)")
    parser.add_argument("--source", type=Path, default=Path("."), help="Cargo project root")
    parser.add_argument("--store", type=Path, default=Path(".inat/store"))
    parser.add_argument("--cache", type=Path, default=Path(".inat/cache"))
    parser.add_argument("--out", type=Path, default=Path("result"))
    parser.add_argument(
        "--revision",
        type=int,
        choices=[int(item) for item in Revision],
        default=int(Revision.CONTAINER),
    )
    parser.add_argument("--backend", choices=["cargo", "inprocess"], default="cargo")
    parser.add_argument("--offline", action="store_true", help="Forbid network access")
    parser.add_argument("--toolchain-pin", type=Path, default=None, help="JSON toolchain pin")
    parser.add_argument("--package-pin", type=Path, default=None, help="JSON package sources")
    parser.add_argument("--crate-registry", default=CRATES_IO, help="Crate download base URL")
    parser.add_argument("--log", type=Path, default=None, help="Write JSON-lines log here")

    sub = parser.add_subparsers(dest="command", required=True)
    build_p = sub.add_parser("build", help="Build the default artifact")
    build_p.add_argument("--check", action="store_true", help="Rebuild and compare outputs")

    develop_p = sub.add_parser("develop", help="Print or run inside the dev shell")
    develop_p.add_argument("-c", dest="run", nargs=argparse.REMAINDER, default=None)

    image_p = sub.add_parser("image", help="Package the container image")
    image_p.add_argument("--provenance", type=Path, default=None, help=".json or .cbor path")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = StructuredLogger()
    try:
        descriptor = _descriptor(args, logger)
        return _dispatch(args, descriptor)
    except InatBuildError as exc:
        print(json.dumps(exc.to_dict(), indent=2, sort_keys=True), file=sys.stderr)
        return 1
    finally:
        if args.log is not None:
            logger.to_json_lines(args.log)


def _descriptor(args: argparse.Namespace, logger: StructuredLogger) -> Descriptor:
    policy = Policy(network_mode="offline" if args.offline else "online")
    pin = DEFAULT_PIN
    if args.toolchain_pin is not None:
        pin = ToolchainPin.from_json(args.toolchain_pin.read_text(encoding="utf-8"))
    catalog = dict(DEFAULT_CATALOG)
    if args.package_pin is not None:
        catalog.update(load_catalog(args.package_pin.read_text(encoding="utf-8")))
    backend: BuildBackend
    if args.backend == "inprocess":
        backend = InProcessBackend()
    else:
        backend = CargoBackend(policy=policy)
    return Descriptor.create(
        platform=args.platform or host_platform(),
        source=args.source,
        store_dir=args.store.resolve(),
        cache_dir=args.cache.resolve(),
        out_dir=args.out,
        revision=Revision(args.revision),
        backend=backend,
        policy=policy,
        pin=pin,
        catalog=catalog,
        crate_registry=args.crate_registry,
        logger=logger,
    )


def _dispatch(args: argparse.Namespace, descriptor: Descriptor) -> int:
    if args.command == "build":
        artifact = descriptor.check_rebuild() if args.check else descriptor.build()
        print(artifact.store_path)
        return 0
    if args.command == "develop":
        environment = descriptor.dev_shell()
        if args.run:
            return run_in(environment, args.run)
        sys.stdout.write(activation_script(environment))
        return 0

    image = descriptor.image()
    if args.provenance is not None:
        artifact = descriptor.build()
        if args.provenance.suffix == ".cbor":
            to_cbor(image, artifact, args.provenance)
        else:
            to_json(image, artifact, args.provenance)
    print(f"{image.reference} {image.archive_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
