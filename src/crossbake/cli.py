"""Command line entry point.

Usage:
    crossbake build --system x86_64-linux --linkage static --profile release
    crossbake package --system aarch64-linux --linkage static
    crossbake matrix [--no-package]
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from crossbake.builders import CargoExecutor, InProcessExecutor
from crossbake.builders.base import BuildExecutor
from crossbake.errors import RUN_LEVEL_ERRORS, CrossbakeError
from crossbake.matrix import MatrixDriver, MatrixRequest, open_project
from crossbake.models import LINKAGES, PROFILES, OutputCatalog, VariantOutcome
from crossbake.observability import StructuredLogger
from crossbake.report import CatalogReport
from crossbake.settings import Settings, load_settings, parse_platform
from crossbake.toolchain import (
    ComponentFetcher,
    InProcessFetcher,
    RustupFetcher,
    ToolchainProvisioner,
    ToolchainStore,
)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_INVALID = 2
EXIT_FAILED = 3
EXIT_INTERRUPTED = 130

CATALOG_FILE = "catalog.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossbake",
        description="Build a Rust project across platforms, linkages, and profiles.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project", type=Path, default=Path("."), help="Project root")
    common.add_argument("--config", type=Path, help="Configuration file (crossbake.toml)")
    common.add_argument("--jobs", type=int, help="Combinations built in parallel")
    common.add_argument("--channel", help="Toolchain channel, e.g. stable or 1.78.0")
    common.add_argument("--out-dir", type=Path, help="Output directory")
    common.add_argument(
        "--backend",
        choices=("cargo", "inprocess"),
        default="cargo",
        help="Build backend; inprocess writes placeholder outputs without cargo",
    )
    common.add_argument("--log-json", type=Path, help="Write structured log records here")

    sub = parser.add_subparsers(dest="command", required=True)
    for command, help_text in (
        ("build", "Build one combination"),
        ("package", "Build one combination and package it as an image"),
    ):
        single = sub.add_parser(command, parents=[common], help=help_text)
        single.add_argument("--system", required=True, help="System name or target identifier")
        single.add_argument("--linkage", choices=LINKAGES, default="native")
        single.add_argument("--profile", choices=PROFILES, default="release")

    matrix = sub.add_parser("matrix", parents=[common], help="Build every combination")
    matrix.add_argument(
        "--system",
        action="append",
        dest="systems",
        help="Restrict to this system; repeatable",
    )
    matrix.add_argument("--no-package", action="store_true", help="Skip image packaging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = StructuredLogger()
    try:
        return _dispatch(args, logger)
    except RUN_LEVEL_ERRORS as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INVALID
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    finally:
        if args.log_json is not None:
            logger.to_json_lines(args.log_json)


def _dispatch(args: argparse.Namespace, logger: StructuredLogger) -> int:
    settings = load_settings(args.project, args.config).with_overrides(
        jobs=args.jobs,
        channel=args.channel,
        out_dir=args.out_dir,
    )
    driver = _driver(settings, backend=args.backend, logger=logger)

    if args.command == "matrix":
        platforms = settings.platforms
        if args.systems:
            platforms = tuple(parse_platform(system) for system in args.systems)
        request = MatrixRequest(
            platforms=platforms,
            linkages=settings.linkages,
            profiles=settings.profiles,
            package=settings.package and not args.no_package,
        )
        catalog = driver.run(request)
        _write_report(catalog, settings.out_path)
        for outcome in catalog.by_attribute().values():
            _print_outcome(catalog.attribute_name(outcome.key), outcome)
        if catalog.status == "success":
            return EXIT_OK
        return EXIT_PARTIAL

    try:
        outcome = driver.run_one(
            parse_platform(args.system),
            args.linkage,
            args.profile,
            package=args.command == "package",
        )
    except RUN_LEVEL_ERRORS:
        raise
    except CrossbakeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    _print_outcome(outcome.key.attribute_name(driver.manifest.name), outcome)
    return EXIT_OK


def _driver(settings: Settings, *, backend: str, logger: StructuredLogger) -> MatrixDriver:
    source, manifest = open_project(
        settings.project_dir,
        excludes=settings.source_excludes(),
        manifest=settings.manifest,
        honor_gitignore=settings.honor_gitignore,
    )
    fetcher: ComponentFetcher
    executor: BuildExecutor
    if backend == "inprocess":
        fetcher, executor = InProcessFetcher(), InProcessExecutor()
    else:
        fetcher = RustupFetcher()
        executor = CargoExecutor(timeout=settings.compile_timeout)
    provisioner = ToolchainProvisioner(
        store=ToolchainStore(settings.cache_path),
        fetcher=fetcher,
        timeout=settings.provision_timeout,
        logger=logger,
    )
    return MatrixDriver(
        source=source,
        manifest=manifest,
        provisioner=provisioner,
        executor=executor,
        out_dir=settings.out_path,
        channel=settings.channel,
        jobs=settings.jobs,
        runtime_deps=settings.runtime_deps,
        native_build_deps=settings.native_build_deps,
        logger=logger,
    )


def _write_report(catalog: OutputCatalog, out_dir: Path) -> None:
    CatalogReport.from_catalog(catalog).to_json(out_dir / CATALOG_FILE)


def _print_outcome(attribute: str, outcome: VariantOutcome) -> None:
    if outcome.image is not None:
        print(f"{attribute}: {outcome.image.reference} ({outcome.image.archive_path})")
    elif outcome.artifact is not None and outcome.ok:
        print(f"{attribute}: {outcome.artifact.path}")
    else:
        failure = outcome.error or outcome.packaging_error
        code = failure.code if failure is not None else "unknown"
        print(f"{attribute}: FAILED [{code}]")


if __name__ == "__main__":
    raise SystemExit(main())
