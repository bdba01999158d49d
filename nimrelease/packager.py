"""
Release packager - builds a Nim source tree and turns it into a release archive.

The archive format follows the host: Windows gets the zip produced by
``winrelease``, every other OS gets ``nim-<version>.tar.xz`` made from the
pruned source tree.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
import shutil

from nimrelease.context import ReleaseContext
from nimrelease.pipeline import fold
from nimrelease.types import (
    ArtifactSpec,
    Archiver,
    Builder,
    BuildMetadata,
    DocGenerator,
    HostOS,
    MetadataProbe,
    ReleaseTool,
    StepError,
)

logger = logging.getLogger(__name__)

RESULT_FILE = "nim.txt"

# Removed from the source tree before it is archived. Names match any entry,
# paths are matched against "./<relative path>".
PRUNED_NAMES = (
    ".git",
    "c_code",
    "nimcache",
    "build.sh",
    "build*.bat",
    "makefile",
    "*.o",
)
PRUNED_PATHS = (
    "*/compiler/nim",
    "*/compiler/nim?",
)

WINDOWS_CPU_SUFFIXES = {
    "amd64": "_x64",
    "i386": "_x32",
}

_NON_WINDOWS = (HostOS.DARWIN, HostOS.LINUX, HostOS.OTHER)


def is_pruned(relative_path: str) -> bool:
    """Whether an entry of the source tree is left out of the release."""
    name = relative_path.rsplit("/", 1)[-1]
    if any(fnmatch.fnmatchcase(name, pattern) for pattern in PRUNED_NAMES):
        return True
    find_path = f"./{relative_path}"
    return any(fnmatch.fnmatchcase(find_path, pattern) for pattern in PRUNED_PATHS)


def prune_source_tree(root: Path) -> list[Path]:
    """Delete build leftovers and VCS metadata from ``root``.

    Matching directories are removed whole without being descended into.
    Returns the removed paths in walk order.
    """
    removed: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        rel_base = base.relative_to(root).as_posix()

        def _rel(name: str) -> str:
            return name if rel_base == "." else f"{rel_base}/{name}"

        for name in list(dirnames):
            if not is_pruned(_rel(name)):
                continue
            target = base / name
            if target.is_symlink():
                target.unlink()
            else:
                shutil.rmtree(target)
            dirnames.remove(name)
            removed.append(target)

        for name in filenames:
            if is_pruned(_rel(name)):
                target = base / name
                target.unlink()
                removed.append(target)

    logger.debug(f"Pruned {len(removed)} entries from {root}")
    return removed


def windows_suffix(metadata: BuildMetadata) -> str:
    """Pick the zip suffix winrelease uses for the built CPU.

    Unknown CPUs keep the compiler's own suffix; this only warns.
    """
    suffix = WINDOWS_CPU_SUFFIXES.get(metadata.host_cpu)
    if suffix is None:
        suffix = metadata.archive_suffix
        logger.warning(
            f"unsupported cpu: '{metadata.host_cpu}', using standard suffix: {suffix}"
        )
    return suffix


def artifact_name(host_os: HostOS, metadata: BuildMetadata) -> str:
    """File name of the release artifact for ``host_os``."""
    if host_os is HostOS.WINDOWS:
        return f"nim-{metadata.version}{windows_suffix(metadata)}.zip"
    if host_os in _NON_WINDOWS:
        return f"nim-{metadata.version}.tar.xz"
    raise ValueError(f"Unhandled host OS: {host_os!r}")


def link_release_dir(source_dir: Path, version: str) -> Path:
    """Return ``<parent>/nim-<version>``, symlinking it to ``source_dir`` if needed.

    The source directory itself is never renamed.

    Raises:
        StepError: If a real directory or file already occupies that name.
    """
    release_name = f"nim-{version}"
    if source_dir.name == release_name:
        return source_dir

    link = source_dir.parent / release_name
    if link.is_symlink():
        link.unlink()
    elif link.exists():
        raise StepError(
            "Link release directory",
            reason=f"{link} already exists and is not a symlink",
        )
    link.symlink_to(source_dir.name, target_is_directory=True)
    return link


def remove_build_dir(build_dir: Path) -> None:
    """Delete the build scratch directory so it never reaches the archive."""
    if not build_dir.exists():
        return
    try:
        shutil.rmtree(build_dir)
    except OSError as e:
        raise StepError(
            "Generate release", reason=f"cannot remove {build_dir}: {e}"
        ) from e


def publish_artifact(output_dir: Path, artifact: Path) -> Path:
    """Announce the artifact and record its path in ``<output>/nim.txt``."""
    print(f"Generated release artifact at {artifact}", flush=True)
    result_file = output_dir / RESULT_FILE
    result_file.write_text(f"{artifact}\n", encoding="utf-8")
    return result_file


class Packager:
    """Runs a release build from start to finish.

    Every step is injected so the decision logic can run against fakes.
    Any StepError raised by a step ends the run; nothing is cleaned up.
    """

    def __init__(
        self,
        context: ReleaseContext,
        builder: Builder,
        doc_generator: DocGenerator,
        probe: MetadataProbe,
        archiver: Archiver,
        release_tool: ReleaseTool,
    ):
        self.context = context
        self.builder = builder
        self.doc_generator = doc_generator
        self.probe = probe
        self.archiver = archiver
        self.release_tool = release_tool
        self.result = ArtifactSpec(
            output_dir=context.output_dir,
            deps_dir=context.deps_dir,
            source_dir=context.source_dir,
        )

    def run(self) -> ArtifactSpec:
        context = self.context
        context.output_dir.mkdir(parents=True, exist_ok=True)

        self.builder.run(context)
        metadata = self.probe.run(context)

        if context.host.os is HostOS.WINDOWS:
            artifact = self._package_windows(metadata)
        elif context.host.os in _NON_WINDOWS:
            self.doc_generator.run(context)
            artifact = self._package_tarball(metadata)
        else:
            raise ValueError(f"Unhandled host OS: {context.host.os!r}")

        self.result.file_name = artifact.name
        self.result.file_path = artifact
        return self.result

    def _package_windows(self, metadata: BuildMetadata) -> Path:
        context = self.context
        with fold("Generate release", context.backend):
            upload_dir = self.release_tool.run(context)
            name = artifact_name(HostOS.WINDOWS, metadata)
            produced = upload_dir / name
            if not produced.is_file():
                raise StepError(
                    "Generate release", reason=f"{produced} was not generated"
                )
            artifact = context.output_dir / name
            shutil.copy2(produced, artifact)
            publish_artifact(context.output_dir, artifact)
        return artifact

    def _package_tarball(self, metadata: BuildMetadata) -> Path:
        context = self.context
        with fold("Generate release", context.backend):
            remove_build_dir(context.build_dir)
            prune_source_tree(context.source_dir)

            release_dir = link_release_dir(context.source_dir, metadata.version)
            tarball = context.output_dir / f"nim-{metadata.version}.tar"
            artifact = self.archiver.run(context, release_dir, tarball)

            expected = context.output_dir / artifact_name(context.host.os, metadata)
            if artifact != expected or not artifact.is_file():
                raise StepError(
                    "Generate release",
                    reason=f"archiver produced {artifact}, expected {expected}",
                )
            publish_artifact(context.output_dir, artifact)
        return artifact
