import json
import os
import sys
import threading
import time
from pathlib import Path

import pytest

from crossbake.builders import (
    HOST_CC,
    PKG_CONFIG,
    STATIC_RUSTFLAGS,
    BuildRequest,
    CargoExecutor,
    InProcessExecutor,
    build_config,
    cargo_env,
    cargo_profile,
)
from crossbake.builders.closure import parse_ldd_output
from crossbake.builders.process import run_cancellable
from crossbake.errors import (
    BuildTimeout,
    CompileError,
    ConfigurationError,
    PackagingError,
    ToolchainMismatch,
    ToolchainUnavailable,
)
from crossbake.models import (
    ManifestInfo,
    SourceTree,
    TargetId,
    ToolchainBundle,
    ToolchainComponent,
)
from crossbake.packaging import package_artifact
from crossbake.source import filter_source
from crossbake.toolchain import ToolchainProvisioner, combine

MUSL = TargetId("x86_64-unknown-linux-musl")
RISCV = TargetId("riscv64gc-unknown-linux-gnu")
HOST = TargetId("x86_64-unknown-linux-gnu")
MANIFEST = ManifestInfo(name="benefice", version="1.2.0")

needs_posix = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh scripts")

FAKE_CARGO = """\
#!/bin/sh
while [ $# -gt 0 ]; do
  case "$1" in
    --target-dir) dir="$2"; shift ;;
    --target) triple="$2"; shift ;;
    --profile) profile="$2"; shift ;;
  esac
  shift
done
if [ "$profile" = dev ]; then profile=debug; fi
mkdir -p "$dir/$triple/$profile"
printf 'built for %s\\n' "$CARGO_BUILD_TARGET" > "$dir/$triple/$profile/benefice"
"""


def _request(
    tmp_path: Path,
    source: SourceTree,
    toolchain: ToolchainBundle,
    *,
    target: TargetId = MUSL,
    linkage: str = "static",
    profile: str = "release",
    cancel: threading.Event | None = None,
    runtime_deps: tuple[str, ...] = (),
    native_build_deps: tuple[str, ...] = (),
) -> BuildRequest:
    config = build_config(
        target,
        linkage,
        profile,
        host=HOST,
        runtime_deps=runtime_deps,
        native_build_deps=native_build_deps,
    )
    return BuildRequest(
        source=source,
        toolchain=toolchain,
        config=config,
        manifest=MANIFEST,
        output_dir=tmp_path / "out" / f"{linkage}-{profile}",
        cancel=cancel or threading.Event(),
    )


def _script_toolchain(tmp_path: Path, script: str, *, target: TargetId) -> ToolchainBundle:
    driver = tmp_path / "bin" / "cargo"
    driver.parent.mkdir(parents=True, exist_ok=True)
    driver.write_text(script, encoding="utf-8")
    driver.chmod(0o755)

    def component(name: str, path: Path, component_target: TargetId | None) -> ToolchainComponent:
        return ToolchainComponent(
            name=name,
            channel="stable",
            version="rustc 1.78.0",
            path=path,
            digest=f"{name}-digest",
            target=component_target,
        )

    return combine(
        component("rustc", tmp_path / "bin" / "rustc", None),
        component("cargo", driver, None),
        component("rust-std", tmp_path / "lib", target),
        channel="stable",
        target=target,
    )


def test_static_config_adds_flags_and_host_compiler() -> None:
    config = build_config(MUSL, "static", "release", host=HOST)
    assert config.rustflags == STATIC_RUSTFLAGS
    assert [(dep.name, dep.host) for dep in config.build_deps] == [(HOST_CC, HOST)]


def test_static_config_keeps_host_compiler_when_target_is_host() -> None:
    config = build_config(HOST, "static", "release", host=HOST)
    assert [dep.name for dep in config.build_deps] == [HOST_CC]


def test_native_config_has_no_static_inputs() -> None:
    config = build_config(HOST, "native", "debug", host=HOST)
    assert config.rustflags is None
    assert config.build_deps == ()


def test_declared_dependencies_become_host_tools() -> None:
    config = build_config(
        MUSL,
        "static",
        "release",
        host=HOST,
        runtime_deps=["openssl"],
        native_build_deps=["pkg-config", "protoc"],
    )
    assert [(dep.name, dep.host) for dep in config.build_deps] == [
        (HOST_CC, HOST),
        ("pkg-config", HOST),
        ("protoc", HOST),
    ]
    assert config.runtime_deps == ("openssl",)
    assert cargo_env(config)["PKG_CONFIG_ALL_STATIC"] == "1"

    native = build_config(HOST, "native", "release", host=HOST, runtime_deps=["openssl"])
    assert [(dep.name, dep.host) for dep in native.build_deps] == [(PKG_CONFIG, HOST)]
    assert "PKG_CONFIG_ALL_STATIC" not in cargo_env(native)


def test_build_config_rejects_unknown_modes() -> None:
    with pytest.raises(ConfigurationError):
        build_config(HOST, "dynamic", "release")
    with pytest.raises(ConfigurationError):
        build_config(HOST, "native", "profiling")


def test_cargo_env_is_a_pure_function_of_the_config() -> None:
    config = build_config(MUSL, "static", "release", host=HOST)
    env = cargo_env(config)
    assert env == cargo_env(build_config(MUSL, "static", "release", host=HOST))
    assert env == {
        "CARGO_BUILD_TARGET": "x86_64-unknown-linux-musl",
        "CARGO_BUILD_RUSTFLAGS": STATIC_RUSTFLAGS,
        "CARGO_INCREMENTAL": "0",
        "HOST_CC": HOST_CC,
    }
    darwin = build_config(TargetId("aarch64-apple-darwin-unknown"), "native", "release")
    assert cargo_env(darwin)["CARGO_BUILD_TARGET"] == "aarch64-apple-darwin"


def test_cargo_profile_mapping() -> None:
    assert cargo_profile(build_config(HOST, "native", "release")) == ("release", "release")
    assert cargo_profile(build_config(HOST, "native", "debug")) == ("dev", "debug")


def test_inprocess_build_is_deterministic(
    tmp_path: Path,
    project_dir: Path,
    inprocess_provisioner: ToolchainProvisioner,
) -> None:
    source = filter_source(project_dir)
    toolchain = inprocess_provisioner.provision("stable", MUSL)
    executor = InProcessExecutor()

    first = executor.build(_request(tmp_path / "a", source, toolchain))
    second = executor.build(_request(tmp_path / "b", source, toolchain))
    assert first.sha256 == second.sha256
    assert first.path.name == "benefice"
    assert first.target == MUSL
    assert first.linkage == "static"

    metadata = json.loads(first.metadata_path.read_text(encoding="utf-8"))
    assert metadata["source_hash"] == source.content_hash
    assert metadata["toolchain"] == toolchain.identity
    assert metadata["rustflags"] == STATIC_RUSTFLAGS

    debug = executor.build(_request(tmp_path / "c", source, toolchain, profile="debug"))
    assert debug.sha256 != first.sha256


def test_inprocess_build_reports_compile_failures(
    tmp_path: Path,
    project_dir: Path,
    inprocess_provisioner: ToolchainProvisioner,
) -> None:
    source = filter_source(project_dir)
    toolchain = inprocess_provisioner.provision("stable", MUSL)
    executor = InProcessExecutor(failures={MUSL: "error: linker `cc` not found\n"})

    with pytest.raises(CompileError) as excinfo:
        executor.build(_request(tmp_path, source, toolchain))
    assert excinfo.value.diagnostics == "error: linker `cc` not found\n"


def test_build_rejects_toolchain_for_another_target(
    tmp_path: Path,
    project_dir: Path,
    inprocess_provisioner: ToolchainProvisioner,
) -> None:
    source = filter_source(project_dir)
    toolchain = inprocess_provisioner.provision("stable", HOST)
    with pytest.raises(ToolchainMismatch):
        InProcessExecutor().build(_request(tmp_path, source, toolchain, target=MUSL))


def test_cancelled_build_raises_timeout(
    tmp_path: Path,
    project_dir: Path,
    inprocess_provisioner: ToolchainProvisioner,
) -> None:
    source = filter_source(project_dir)
    toolchain = inprocess_provisioner.provision("stable", MUSL)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(BuildTimeout):
        InProcessExecutor().build(_request(tmp_path, source, toolchain, cancel=cancel))


@needs_posix
def test_cargo_executor_runs_the_bundle_driver(tmp_path: Path, project_dir: Path) -> None:
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, FAKE_CARGO, target=RISCV)
    request = _request(tmp_path, source, toolchain, target=RISCV, linkage="native")

    artifact = CargoExecutor().build(request)

    assert artifact.path == request.output_dir / "bin" / "benefice"
    assert artifact.path.read_text(encoding="utf-8") == "built for riscv64gc-unknown-linux-gnu\n"
    metadata = json.loads(artifact.metadata_path.read_text(encoding="utf-8"))
    assert "--locked" in metadata["command"]
    assert not artifact.closure_resolved
    assert metadata["runtime_closure"] is None
    assert metadata["command"][1:4] == ["build", "--profile", "release"]


@needs_posix
def test_cargo_executor_maps_debug_to_dev_profile(tmp_path: Path, project_dir: Path) -> None:
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, FAKE_CARGO, target=RISCV)
    request = _request(
        tmp_path,
        source,
        toolchain,
        target=RISCV,
        linkage="native",
        profile="debug",
    )
    artifact = CargoExecutor().build(request)
    assert artifact.profile == "debug"


@needs_posix
def test_cargo_executor_keeps_compiler_diagnostics(tmp_path: Path, project_dir: Path) -> None:
    script = "#!/bin/sh\necho 'error[E0425]: cannot find value `x`' >&2\nexit 101\n"
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, script, target=RISCV)

    with pytest.raises(CompileError) as excinfo:
        CargoExecutor().build(_request(tmp_path, source, toolchain, target=RISCV, linkage="native"))
    assert excinfo.value.diagnostics == "error[E0425]: cannot find value `x`\n"
    assert excinfo.value.context["returncode"] == "101"
    assert not isinstance(excinfo.value, BuildTimeout)


@needs_posix
def test_cargo_executor_requires_the_binary(tmp_path: Path, project_dir: Path) -> None:
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, "#!/bin/sh\nexit 0\n", target=RISCV)
    with pytest.raises(CompileError) as excinfo:
        CargoExecutor().build(_request(tmp_path, source, toolchain, target=RISCV, linkage="native"))
    assert "expected binary" in excinfo.value.message


@needs_posix
def test_cargo_executor_times_out(tmp_path: Path, project_dir: Path) -> None:
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, "#!/bin/sh\nsleep 30\n", target=RISCV)
    started = time.monotonic()
    with pytest.raises(BuildTimeout):
        CargoExecutor(timeout=0.5).build(
            _request(tmp_path, source, toolchain, target=RISCV, linkage="native"),
        )
    assert time.monotonic() - started < 10


def test_static_build_needs_host_compiler(
    tmp_path: Path,
    project_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, FAKE_CARGO, target=MUSL)
    monkeypatch.setattr("crossbake.builders.cargo.shutil.which", lambda name: None)
    with pytest.raises(ToolchainUnavailable) as excinfo:
        CargoExecutor().build(_request(tmp_path, source, toolchain))
    assert excinfo.value.context["dependency"] == HOST_CC


@needs_posix
def test_run_cancellable_kills_on_timeout(tmp_path: Path) -> None:
    result = run_cancellable(
        ["sleep", "30"],
        cwd=tmp_path,
        env={"PATH": "/bin:/usr/bin"},
        timeout=0.3,
    )
    assert result.terminated
    assert result.reason == "timeout"
    assert result.returncode != 0


@needs_posix
def test_run_cancellable_stops_on_cancel(tmp_path: Path) -> None:
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        result = run_cancellable(
            ["sleep", "30"],
            cwd=tmp_path,
            env={"PATH": "/bin:/usr/bin"},
            cancel=cancel,
        )
    finally:
        timer.cancel()
    assert result.terminated
    assert result.reason == "cancelled"


@needs_posix
def test_run_cancellable_captures_output(tmp_path: Path) -> None:
    result = run_cancellable(
        ["sh", "-c", "echo out; echo err >&2; exit 3"],
        cwd=tmp_path,
        env={"PATH": "/bin:/usr/bin"},
    )
    assert (result.returncode, result.stdout, result.stderr) == (3, "out\n", "err\n")
    assert not result.terminated


def test_parse_ldd_output() -> None:
    output = """\
\tlinux-vdso.so.1 (0x00007ffd4b5f2000)
\tlibssl.so.3 => /lib/x86_64-linux-gnu/libssl.so.3 (0x00007f0e1c8a0000)
\tlibc.so.6 => /lib/x86_64-linux-gnu/libc.so.6 (0x00007f0e1c600000)
\t/lib64/ld-linux-x86-64.so.2 (0x00007f0e1cb5e000)
"""
    assert parse_ldd_output(output) == (
        Path("/lib/x86_64-linux-gnu/libc.so.6"),
        Path("/lib/x86_64-linux-gnu/libssl.so.3"),
        Path("/lib64/ld-linux-x86-64.so.2"),
    )


@needs_posix
def test_cross_native_artifact_cannot_be_packaged(tmp_path: Path, project_dir: Path) -> None:
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, FAKE_CARGO, target=RISCV)
    artifact = CargoExecutor().build(
        _request(tmp_path, source, toolchain, target=RISCV, linkage="native"),
    )
    with pytest.raises(PackagingError) as excinfo:
        package_artifact(artifact, MANIFEST)
    assert excinfo.value.context["target"] == RISCV


def test_native_build_deps_are_checked_on_the_host(
    tmp_path: Path,
    project_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, FAKE_CARGO, target=RISCV)
    monkeypatch.setattr(
        "crossbake.builders.cargo.shutil.which",
        lambda name: None if name == "protoc" else f"/usr/bin/{name}",
    )
    request = _request(
        tmp_path,
        source,
        toolchain,
        target=RISCV,
        linkage="native",
        native_build_deps=("protoc",),
    )
    with pytest.raises(ToolchainUnavailable) as excinfo:
        CargoExecutor().build(request)
    assert excinfo.value.context["dependency"] == "protoc"


FAKE_PKG_CONFIG = """\
#!/bin/sh
echo "$@" >> "$(dirname "$0")/calls"
for arg; do last="$arg"; done
[ "$last" = zlib ]
"""


def _fake_pkg_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    tools = tmp_path / "tools"
    tools.mkdir()
    script = tools / "pkg-config"
    script.write_text(FAKE_PKG_CONFIG, encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("PATH", f"{tools}{os.pathsep}{os.environ.get('PATH', '')}")
    return tools / "calls"


@needs_posix
def test_missing_runtime_dependency_fails_before_compiling(
    tmp_path: Path,
    project_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls = _fake_pkg_config(tmp_path, monkeypatch)
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, FAKE_CARGO, target=RISCV)
    request = _request(
        tmp_path,
        source,
        toolchain,
        target=RISCV,
        linkage="native",
        runtime_deps=("openssl",),
    )
    with pytest.raises(ToolchainUnavailable) as excinfo:
        CargoExecutor().build(request)
    assert excinfo.value.context["dependency"] == "openssl"
    assert calls.read_text(encoding="utf-8") == "--exists openssl\n"
    assert not (request.output_dir / "target").exists()


@needs_posix
def test_runtime_dependency_found_by_pkg_config(
    tmp_path: Path,
    project_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls = _fake_pkg_config(tmp_path, monkeypatch)
    source = filter_source(project_dir)
    toolchain = _script_toolchain(tmp_path, FAKE_CARGO, target=RISCV)
    request = _request(
        tmp_path,
        source,
        toolchain,
        target=RISCV,
        linkage="native",
        runtime_deps=("zlib",),
    )
    artifact = CargoExecutor().build(request)
    assert artifact.path.is_file()
    assert calls.read_text(encoding="utf-8") == "--exists zlib\n"
