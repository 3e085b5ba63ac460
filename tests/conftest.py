"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from crossbake.builders import InProcessExecutor
from crossbake.matrix import MatrixDriver, open_project
from crossbake.toolchain import InProcessFetcher, ToolchainProvisioner, ToolchainStore

CARGO_TOML = """\
[package]
name = "benefice"
version = "1.2.0"
edition = "2021"

[dependencies]
"""


def write_project(root: Path, *, cargo_toml: str = CARGO_TOML) -> Path:
    """Write a minimal cargo project tree with a few files that must be filtered out."""
    (root / "src").mkdir(parents=True, exist_ok=True)
    (root / "Cargo.toml").write_text(cargo_toml, encoding="utf-8")
    (root / "Cargo.lock").write_text("# lockfile\nversion = 3\n", encoding="utf-8")
    (root / "src" / "main.rs").write_text('fn main() { println!("hi"); }\n', encoding="utf-8")
    (root / "README.md").write_text("# benefice\n", encoding="utf-8")
    (root / "flake.nix").write_text("{ }\n", encoding="utf-8")
    (root / "flake.lock").write_text("{}\n", encoding="utf-8")
    (root / "rustfmt.toml").write_text("edition = \"2021\"\n", encoding="utf-8")
    return root


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    return write_project(tmp_path / "project")


@pytest.fixture
def inprocess_provisioner(tmp_path: Path) -> ToolchainProvisioner:
    """Provide a provisioner backed by the in-process fetcher."""
    return ToolchainProvisioner(
        store=ToolchainStore(tmp_path / "toolchains"),
        fetcher=InProcessFetcher(),
    )


@pytest.fixture
def make_driver(
    tmp_path: Path,
    project_dir: Path,
) -> Callable[..., MatrixDriver]:
    """Build a MatrixDriver over the sample project with in-process backends."""

    def factory(
        *,
        fetcher: object | None = None,
        executor: object | None = None,
        jobs: int = 2,
        out_dir: Path | None = None,
    ) -> MatrixDriver:
        source, manifest = open_project(project_dir)
        provisioner = ToolchainProvisioner(
            store=ToolchainStore(tmp_path / "toolchains"),
            fetcher=fetcher or InProcessFetcher(),
        )
        return MatrixDriver(
            source=source,
            manifest=manifest,
            provisioner=provisioner,
            executor=executor or InProcessExecutor(),
            out_dir=out_dir or tmp_path / "out",
            jobs=jobs,
        )

    return factory


@pytest.fixture
def make_project() -> Callable[..., Path]:
    return write_project
