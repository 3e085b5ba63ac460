import io
import json
import tarfile
from pathlib import Path

import pytest

from crossbake.errors import PackagingError
from crossbake.models import Artifact, ManifestInfo, TargetId
from crossbake.packaging import (
    DockerArchiveWriter,
    ImageConfig,
    package_artifact,
    rootfs_entries,
)

MUSL = TargetId("aarch64-unknown-linux-musl")


def _artifact(
    tmp_path: Path,
    *,
    closure: tuple[Path, ...] = (),
    name: str = "benefice",
    linkage: str = "static",
    closure_resolved: bool = True,
) -> Artifact:
    binary = tmp_path / "bin" / name
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_bytes(b"\x7fELF placeholder")
    binary.chmod(0o755)
    return Artifact(
        path=binary,
        target=MUSL,
        profile="release",
        linkage=linkage,
        name=name,
        version="1.2.0",
        sha256="0" * 64,
        runtime_closure=closure,
        closure_resolved=closure_resolved,
    )


def _members(archive: Path) -> dict[str, bytes]:
    with tarfile.open(archive) as outer:
        return {
            member.name: outer.extractfile(member).read()
            for member in outer.getmembers()
            if member.isfile()
        }


def test_image_uses_manifest_name_tag_and_command(tmp_path: Path) -> None:
    manifest = ManifestInfo(name="benefice", version="1.2.0")
    image = package_artifact(_artifact(tmp_path), manifest)

    assert image.reference == "benefice:1.2.0"
    assert image.command == ("benefice",)
    assert image.env == {"PATH": "/bin"}
    assert image.files == ("/bin/benefice",)
    assert image.archive_path is None


def test_versions_share_name_and_differ_by_tag(tmp_path: Path) -> None:
    artifact = _artifact(tmp_path)
    first = package_artifact(artifact, ManifestInfo(name="benefice", version="1.2.0"))
    second = package_artifact(artifact, ManifestInfo(name="benefice", version="1.3.0"))
    assert first.name == second.name
    assert first.tag != second.tag


def test_missing_artifact_is_a_packaging_error(tmp_path: Path) -> None:
    manifest = ManifestInfo(name="benefice", version="1.2.0")
    with pytest.raises(PackagingError):
        package_artifact(None, manifest)

    artifact = _artifact(tmp_path)
    artifact.path.unlink()
    with pytest.raises(PackagingError):
        package_artifact(artifact, manifest)


def test_runtime_closure_enters_the_image(tmp_path: Path) -> None:
    library = tmp_path / "lib" / "libssl.so.3"
    library.parent.mkdir()
    library.write_bytes(b"ssl")
    artifact = _artifact(tmp_path, closure=(library,))

    entries = rootfs_entries(artifact, ManifestInfo(name="benefice", version="1.2.0"))
    assert [entry.path for entry in entries] == ["/bin/benefice", library.as_posix()]

    library.unlink()
    with pytest.raises(PackagingError):
        rootfs_entries(artifact, ManifestInfo(name="benefice", version="1.2.0"))


def test_writer_is_required_to_have_an_output_dir(tmp_path: Path) -> None:
    with pytest.raises(PackagingError):
        package_artifact(
            _artifact(tmp_path),
            ManifestInfo(name="benefice", version="1.2.0"),
            writer=DockerArchiveWriter(),
        )


def test_docker_archive_contains_only_binary_and_config(tmp_path: Path) -> None:
    manifest = ManifestInfo(name="benefice", version="1.2.0")
    image = package_artifact(
        _artifact(tmp_path),
        manifest,
        writer=DockerArchiveWriter(),
        output_dir=tmp_path / "image",
    )
    assert image.archive_path == tmp_path / "image" / "image.tar"

    members = _members(image.archive_path)
    index = json.loads(members["manifest.json"])
    assert index[0]["RepoTags"] == ["benefice:1.2.0"]

    config = json.loads(members[index[0]["Config"]])
    assert config["config"]["Cmd"] == ["benefice"]
    assert config["config"]["Env"] == ["PATH=/bin"]
    assert config["architecture"] == "arm64"
    assert config["os"] == "linux"

    with tarfile.open(fileobj=io.BytesIO(members[index[0]["Layers"][0]])) as layer:
        names = sorted(member.name for member in layer.getmembers())
        binary = layer.getmember("bin/benefice")
        assert names == ["bin", "bin/benefice"]
        assert binary.mode == 0o755
        assert layer.extractfile(binary).read() == b"\x7fELF placeholder"


def test_docker_archive_is_reproducible(tmp_path: Path) -> None:
    manifest = ManifestInfo(name="benefice", version="1.2.0")
    artifact = _artifact(tmp_path)
    writer = DockerArchiveWriter()
    first = package_artifact(artifact, manifest, writer=writer, output_dir=tmp_path / "a")
    second = package_artifact(artifact, manifest, writer=writer, output_dir=tmp_path / "b")
    assert first.archive_path.read_bytes() == second.archive_path.read_bytes()
    assert not (tmp_path / "a" / "image.tar.tmp").exists()


def test_image_config_maps_architectures() -> None:
    config = ImageConfig.for_target(
        "x86_64-apple-darwin-unknown",
        name="benefice",
        tag="1.2.0",
        command=("benefice",),
        env={},
    )
    assert (config.architecture, config.os) == ("amd64", "darwin")


def test_native_artifact_with_unknown_closure_is_rejected(tmp_path: Path) -> None:
    manifest = ManifestInfo(name="benefice", version="1.2.0")
    artifact = _artifact(tmp_path, linkage="native", closure_resolved=False)
    with pytest.raises(PackagingError) as excinfo:
        package_artifact(artifact, manifest, writer=DockerArchiveWriter(), output_dir=tmp_path)
    assert excinfo.value.context["linkage"] == "native"
    assert not (tmp_path / "image.tar").exists()
