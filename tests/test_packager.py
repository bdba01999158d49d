"""
Tests for the release packager decision logic, using fake build steps.
"""

from dataclasses import dataclass, field
import lzma
from pathlib import Path
import tarfile

import pytest

from nimrelease import packager as packager_mod
from nimrelease.backends.archive import TarXzArchiver
from nimrelease.context import ReleaseContext
from nimrelease.packager import (
    Packager,
    artifact_name,
    is_pruned,
    link_release_dir,
    prune_source_tree,
    publish_artifact,
    windows_suffix,
)
from nimrelease.pipeline import EnvironmentFileBackend
from nimrelease.types import BuildMetadata, HostOS, HostPlatform, StepError


def _meta(version="2.0.0", os_name="linux", cpu="amd64"):
    return BuildMetadata(
        version=version,
        host_os=os_name,
        host_cpu=cpu,
        archive_suffix=f"-{os_name}_{cpu}",
    )


@dataclass
class FakeBuilder:
    calls: list = field(default_factory=list)
    fail_with: int | None = None

    def run(self, context):
        self.calls.append("build")
        if self.fail_with is not None:
            raise StepError("Build compiler", returncode=self.fail_with)
        # What a real build leaves behind in the tree.
        context.build_dir.mkdir(parents=True, exist_ok=True)
        (context.build_dir / "nimcache").mkdir(exist_ok=True)


@dataclass
class FakeDocs:
    calls: list = field(default_factory=list)

    def run(self, context):
        self.calls.append("docs")


@dataclass
class FakeProbe:
    metadata: BuildMetadata

    def run(self, context):
        return self.metadata


@dataclass
class FakeWinRelease:
    """Writes the zip winrelease would have produced."""

    zip_suffix: str
    calls: list = field(default_factory=list)

    def run(self, context):
        self.calls.append("winrelease")
        upload = context.source_dir / "web" / "upload" / "download"
        upload.mkdir(parents=True, exist_ok=True)
        (upload / f"nim-2.0.0{self.zip_suffix}.zip").write_bytes(b"PK\x05\x06" + b"\0" * 18)
        return upload


@pytest.fixture
def source_tree(tmp_path):
    src = tmp_path / "nim-src"
    for rel in (
        "bin/nim",
        "compiler/nim",
        "compiler/nim1",
        "compiler/nim.nim",
        "compiler/ast.nim",
        "lib/system.nim",
        "lib/pure/os.o",
        "c_code/1_1/stdlib_system.c",
        ".git/HEAD",
        "build.sh",
        "build_all.bat",
        "makefile",
        "Makefile",
        "koch.nim",
        "doc/html/index.html",
    ):
        path = src / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rel)
    return src


def _context(tmp_path, source, host_os):
    return ReleaseContext(
        source_dir=source,
        output_dir=tmp_path / "output",
        deps_dir=tmp_path / "external",
        cc="gcc",
        host=HostPlatform(os=host_os),
        jobs=2,
        env={},
        backend=EnvironmentFileBackend(path=tmp_path / "environment"),
    )


def _packager(ctx, metadata, release_tool=None, builder=None, docs=None):
    return Packager(
        ctx,
        builder=builder or FakeBuilder(),
        doc_generator=docs or FakeDocs(),
        probe=FakeProbe(metadata),
        archiver=TarXzArchiver(preset=1),
        release_tool=release_tool or FakeWinRelease(zip_suffix="_x64"),
    )


# --- pruning ---------------------------------------------------------------


@pytest.mark.parametrize(
    "rel",
    [
        ".git",
        "c_code",
        "nimcache",
        "tools/nimcache",
        "build.sh",
        "build_all.bat",
        "makefile",
        "lib/pure/os.o",
        "compiler/nim",
        "compiler/nim1",
    ],
)
def test_is_pruned(rel):
    assert is_pruned(rel)


@pytest.mark.parametrize(
    "rel",
    ["Makefile", "compiler/nim.nim", "compiler/ast.nim", "bin/nim", "koch.nim", "lib"],
)
def test_is_not_pruned(rel):
    assert not is_pruned(rel)


def test_prune_source_tree(source_tree):
    prune_source_tree(source_tree)

    remaining = sorted(
        p.relative_to(source_tree).as_posix() for p in source_tree.rglob("*") if p.is_file()
    )
    assert remaining == [
        "Makefile",
        "bin/nim",
        "compiler/ast.nim",
        "compiler/nim.nim",
        "doc/html/index.html",
        "koch.nim",
        "lib/system.nim",
    ]
    assert not (source_tree / "c_code").exists()
    assert not (source_tree / ".git").exists()


# --- naming ----------------------------------------------------------------


def test_artifact_name_non_windows():
    for host_os in (HostOS.LINUX, HostOS.DARWIN, HostOS.OTHER):
        assert artifact_name(host_os, _meta()) == "nim-2.0.0.tar.xz"


@pytest.mark.parametrize("cpu,suffix", [("amd64", "_x64"), ("i386", "_x32")])
def test_windows_suffix_known_cpus(cpu, suffix):
    assert windows_suffix(_meta(os_name="windows", cpu=cpu)) == suffix
    assert artifact_name(HostOS.WINDOWS, _meta(os_name="windows", cpu=cpu)) == (
        f"nim-2.0.0{suffix}.zip"
    )


def test_windows_suffix_unknown_cpu_warns(caplog):
    meta = _meta(os_name="windows", cpu="arm64")
    with caplog.at_level("WARNING", logger="nimrelease"):
        assert windows_suffix(meta) == "-windows_arm64"
    assert "unsupported cpu: 'arm64', using standard suffix: -windows_arm64" in caplog.text


# --- release directory ---------------------------------------------------


def test_link_release_dir_creates_symlink(tmp_path):
    src = tmp_path / "checkout"
    src.mkdir()

    link = link_release_dir(src, "2.0.0")

    assert link == tmp_path / "nim-2.0.0"
    assert link.is_symlink()
    assert link.resolve() == src.resolve()
    assert src.is_dir()


def test_link_release_dir_already_named(tmp_path):
    src = tmp_path / "nim-2.0.0"
    src.mkdir()
    assert link_release_dir(src, "2.0.0") == src
    assert not src.is_symlink()


def test_link_release_dir_replaces_stale_link(tmp_path):
    old = tmp_path / "old"
    old.mkdir()
    src = tmp_path / "checkout"
    src.mkdir()
    (tmp_path / "nim-2.0.0").symlink_to("old")

    link = link_release_dir(src, "2.0.0")

    assert link.resolve() == src.resolve()


def test_link_release_dir_refuses_real_directory(tmp_path):
    src = tmp_path / "checkout"
    src.mkdir()
    (tmp_path / "nim-2.0.0").mkdir()
    with pytest.raises(StepError, match="not a symlink"):
        link_release_dir(src, "2.0.0")


def test_publish_artifact(tmp_path, capsys):
    artifact = tmp_path / "nim-2.0.0.tar.xz"
    result = publish_artifact(tmp_path, artifact)
    assert result.read_text() == f"{artifact}\n"
    assert f"Generated release artifact at {artifact}" in capsys.readouterr().out


# --- end to end ------------------------------------------------------------


def test_packager_linux_produces_tarball(tmp_path, source_tree, capsys):
    ctx = _context(tmp_path, source_tree, HostOS.LINUX)
    docs = FakeDocs()
    win = FakeWinRelease(zip_suffix="_x64")

    result = _packager(ctx, _meta(), release_tool=win, docs=docs).run()

    expected = tmp_path / "output" / "nim-2.0.0.tar.xz"
    assert result.file_path == expected
    assert result.file_name == "nim-2.0.0.tar.xz"
    assert expected.is_file()
    assert not (tmp_path / "output" / "nim-2.0.0.tar").exists()
    assert (tmp_path / "output" / "nim.txt").read_text() == f"{expected}\n"
    assert str(expected) in capsys.readouterr().out
    assert docs.calls == ["docs"]
    assert win.calls == []

    # The build directory and pruned entries are gone; the checkout is linked.
    assert not ctx.build_dir.exists()
    assert (tmp_path / "nim-2.0.0").is_symlink()

    with tarfile.open(expected, "r:xz") as tar:
        names = set(tar.getnames())
    assert "nim-2.0.0/lib/system.nim" in names
    assert "nim-2.0.0/compiler/nim" not in names
    assert not any(name.startswith("nim-2.0.0/c_code") for name in names)


def test_packager_darwin_also_uses_tarball(tmp_path, source_tree):
    ctx = _context(tmp_path, source_tree, HostOS.DARWIN)
    result = _packager(ctx, _meta(os_name="macosx", cpu="arm64")).run()
    assert result.file_name == "nim-2.0.0.tar.xz"
    with lzma.open(result.file_path) as f:
        assert f.read(1)


@pytest.mark.parametrize(
    "cpu,suffix",
    [("amd64", "_x64"), ("i386", "_x32"), ("arm64", "-windows_arm64")],
)
def test_packager_windows_zip_names(tmp_path, source_tree, cpu, suffix):
    ctx = _context(tmp_path, source_tree, HostOS.WINDOWS)
    docs = FakeDocs()
    win = FakeWinRelease(zip_suffix=suffix)

    result = _packager(ctx, _meta(os_name="windows", cpu=cpu), release_tool=win, docs=docs).run()

    expected = tmp_path / "output" / f"nim-2.0.0{suffix}.zip"
    assert result.file_path == expected
    assert expected.is_file()
    assert (tmp_path / "output" / "nim.txt").read_text() == f"{expected}\n"
    assert win.calls == ["winrelease"]
    # Windows keeps the tree as is and builds no docs.
    assert docs.calls == []
    assert (source_tree / ".git").exists()


def test_packager_windows_unsupported_cpu_still_succeeds(tmp_path, source_tree, caplog):
    ctx = _context(tmp_path, source_tree, HostOS.WINDOWS)
    win = FakeWinRelease(zip_suffix="-windows_arm64")

    with caplog.at_level("WARNING", logger="nimrelease"):
        result = _packager(ctx, _meta(os_name="windows", cpu="arm64"), release_tool=win).run()

    assert result.file_name == "nim-2.0.0-windows_arm64.zip"
    assert "unsupported cpu" in caplog.text


def test_packager_windows_missing_zip_fails(tmp_path, source_tree):
    ctx = _context(tmp_path, source_tree, HostOS.WINDOWS)
    # winrelease produced the x64 zip but the build reports i386.
    win = FakeWinRelease(zip_suffix="_x64")

    with pytest.raises(StepError, match="was not generated"):
        _packager(ctx, _meta(os_name="windows", cpu="i386"), release_tool=win).run()
    assert not (tmp_path / "output" / "nim.txt").exists()


def test_packager_build_failure_is_fatal(tmp_path, source_tree):
    ctx = _context(tmp_path, source_tree, HostOS.LINUX)
    docs = FakeDocs()

    with pytest.raises(StepError) as exc_info:
        _packager(ctx, _meta(), builder=FakeBuilder(fail_with=2), docs=docs).run()

    assert exc_info.value.returncode == 2
    assert docs.calls == []
    assert not (tmp_path / "output" / "nim.txt").exists()
    # No cleanup: the tree is left exactly as the failed build left it.
    assert (source_tree / ".git" / "HEAD").exists()


def test_packager_build_dir_removal_failure_is_fatal(tmp_path, source_tree, monkeypatch):
    ctx = _context(tmp_path, source_tree, HostOS.LINUX)

    def refuse(path, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(packager_mod.shutil, "rmtree", refuse)

    with pytest.raises(StepError, match="cannot remove") as exc_info:
        _packager(ctx, _meta()).run()

    assert exc_info.value.step == "Generate release"
    assert not (tmp_path / "output" / "nim.txt").exists()
    assert not (tmp_path / "output" / "nim-2.0.0.tar.xz").exists()
