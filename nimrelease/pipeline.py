"""
Pipeline side channels: pass environment variables and PATH entries to the
next step of a CI job, and fold log output into collapsible sections.

Two backends exist. Under GitHub Actions everything is a workflow command on
stdout; anywhere else settings are appended to an ``environment`` shell
snippet that the next step sources.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
import contextlib
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import shlex
import sys
from typing import Protocol, TextIO

from nimrelease.host import native_path
from nimrelease.types import InvalidArgument

logger = logging.getLogger(__name__)

CI_MARKER = "GITHUB_ACTIONS"
ENVIRONMENT_FILE = "environment"


class PipelineBackend(Protocol):
    def push_env(self, pairs: Sequence[tuple[str, str]]) -> None: ...

    def push_path(self, paths: Sequence[str]) -> None: ...

    def begin_fold(self, label: str) -> None: ...

    def end_fold(self) -> None: ...


@dataclass
class GitHubActionsBackend:
    """Emit workflow commands read by the Actions runner."""

    stream: TextIO | None = None

    def _emit(self, line: str) -> None:
        print(line, file=self.stream or sys.stdout, flush=True)

    def push_env(self, pairs: Sequence[tuple[str, str]]) -> None:
        for name, value in pairs:
            self._emit(f"::set-env name={name}::{value}")

    def push_path(self, paths: Sequence[str]) -> None:
        for path in paths:
            self._emit(f"::add-path::{path}")

    def begin_fold(self, label: str) -> None:
        self._emit(f"::group::{label}")

    def end_fold(self) -> None:
        self._emit("::endgroup::")


@dataclass
class EnvironmentFileBackend:
    """Append ``export`` statements to a shell snippet for the next step."""

    path: Path = field(default_factory=lambda: Path.cwd() / ENVIRONMENT_FILE)
    stream: TextIO | None = None

    def _notice(self) -> None:
        print(
            f"Environmental settings are appended to {self.path}",
            file=self.stream or sys.stdout,
        )

    def _append(self, lines: list[str]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")

    def push_env(self, pairs: Sequence[tuple[str, str]]) -> None:
        if not pairs:
            return
        self._notice()
        self._append([f"export {name}={shlex.quote(value)}" for name, value in pairs])

    def push_path(self, paths: Sequence[str]) -> None:
        if not paths:
            return
        # Each path is prepended in turn, so the last one given ends up first.
        prefix = ":".join(shlex.quote(p) for p in reversed(paths))
        self._notice()
        self._append([f'export PATH={prefix}"${{PATH:+:$PATH}}"'])

    def begin_fold(self, label: str) -> None:
        pass

    def end_fold(self) -> None:
        pass


def running_in_ci(env: Mapping[str, str] | None = None) -> bool:
    if env is None:
        env = os.environ
    return CI_MARKER in env


def select_backend(
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> PipelineBackend:
    """Pick the backend for this process based on the CI marker."""
    if running_in_ci(env):
        return GitHubActionsBackend()
    base = cwd if cwd is not None else Path.cwd()
    return EnvironmentFileBackend(path=base / ENVIRONMENT_FILE)


def propagate_env(
    pairs: Sequence[tuple[str, str]],
    backend: PipelineBackend | None = None,
) -> None:
    """Push environment variables to the next step of the pipeline.

    All values are checked before anything is written.

    Raises:
        InvalidArgument: If no pair is given, a name is empty, or a value
            contains a newline.
    """
    if not pairs:
        raise InvalidArgument("a variable name must be passed")
    for name, value in pairs:
        if not name:
            raise InvalidArgument("variable name must not be empty")
        if "\n" in value:
            raise InvalidArgument("variable value must not contain newline")

    if backend is None:
        backend = select_backend()
    logger.debug("Propagating %s", ", ".join(name for name, _ in pairs))
    backend.push_env(list(pairs))


def propagate_path_prefix(
    paths: Sequence[str],
    backend: PipelineBackend | None = None,
) -> None:
    """Prepend the given paths to PATH for the next step of the pipeline.

    Raises:
        InvalidArgument: If no path is given, a path is empty, or its resolved
            form contains a newline.
    """
    if not paths:
        raise InvalidArgument("a path must be passed")

    resolved: list[str] = []
    for raw in paths:
        if not raw:
            raise InvalidArgument("path must not be empty")
        path = native_path(os.path.realpath(raw))
        if "\n" in path:
            raise InvalidArgument("variable value must not contain newline")
        resolved.append(path)

    if backend is None:
        backend = select_backend()
    backend.push_path(resolved)


def begin_fold(label: str, backend: PipelineBackend | None = None) -> None:
    """Start an output fold with description ``label``."""
    if backend is None:
        backend = select_backend()
    backend.begin_fold(label)


def end_fold(backend: PipelineBackend | None = None) -> None:
    """End the last output fold."""
    if backend is None:
        backend = select_backend()
    backend.end_fold()


@contextlib.contextmanager
def fold(label: str, backend: PipelineBackend | None = None) -> Iterator[None]:
    """Wrap a block in a fold.

    The fold is closed only when the block completes; a failing step leaves
    it open, as an aborted run would.
    """
    if backend is None:
        backend = select_backend()
    logger.info(label)
    backend.begin_fold(label)
    yield
    backend.end_fold()
