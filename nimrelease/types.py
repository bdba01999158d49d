"""
Core types for the release tooling.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from nimrelease.context import ReleaseContext


class InvalidArgument(ValueError):
    """Raised when a utility is given an argument it cannot work with."""


class StepError(RuntimeError):
    """Raised when an external build or packaging step fails.

    ``returncode`` is the exit status the whole run should end with.
    """

    def __init__(
        self,
        step: str,
        returncode: int = 1,
        command: Sequence[str] | None = None,
        reason: str | None = None,
    ):
        self.step = step
        self.returncode = returncode if returncode > 0 else 1
        self.command = list(command) if command else None
        self.reason = reason
        message = f"{step} failed"
        if command:
            message += f" (exit status {returncode}): {' '.join(self.command)}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class HostOS(enum.Enum):
    """Operating system families the packager knows how to handle."""

    WINDOWS = "windows"
    DARWIN = "darwin"
    LINUX = "linux"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: str) -> HostOS:
        """Map an OS name (``detect_os()`` or Nim's ``hostOS``) to a family."""
        name = name.strip().lower()
        if name == "macosx":
            return cls.DARWIN
        for member in cls:
            if member.value == name:
                return member
        return cls.OTHER


@dataclass(frozen=True)
class HostPlatform:
    os: HostOS


@dataclass(frozen=True)
class BuildMetadata:
    """What the freshly built compiler reports about itself."""

    version: str
    host_os: str
    host_cpu: str
    archive_suffix: str

    def __post_init__(self):
        if not self.version:
            raise ValueError("BuildMetadata.version must not be empty")


@dataclass
class ArtifactSpec:
    output_dir: Path
    deps_dir: Path
    source_dir: Path
    file_name: str | None = None
    file_path: Path | None = None


class Builder(Protocol):
    """Bootstraps and builds the compiler and its tools inside ``context.source_dir``."""

    def run(self, context: ReleaseContext) -> None: ...


class DocGenerator(Protocol):
    def run(self, context: ReleaseContext) -> None: ...


class MetadataProbe(Protocol):
    """Asks the built compiler for its version, host OS/CPU and name suffix."""

    def run(self, context: ReleaseContext) -> BuildMetadata: ...


class ReleaseTool(Protocol):
    """Produces the Windows release zip.

    Returns the directory the tool writes its zip files into.
    """

    def run(self, context: ReleaseContext) -> Path: ...


class Archiver(Protocol):
    def run(self, context: ReleaseContext, directory: Path, destination: Path) -> Path:
        """Archive ``directory`` into ``destination`` and return the final file.

        The returned path may differ from ``destination`` when the archiver
        compresses in place (``x.tar`` -> ``x.tar.xz``).
        """
        ...
