"""
Run context for a release build.

Everything a step needs (directories, toolchain, host facts and the
environment handed to child processes) lives on ``ReleaseContext`` so steps
never read or write ``os.environ`` directly.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
import subprocess
import sys

from nimrelease.core import ToolConfig
from nimrelease.host import cpu_count, detect_host_platform, detect_os
from nimrelease.pipeline import PipelineBackend, select_backend
from nimrelease.types import HostPlatform, StepError

logger = logging.getLogger(__name__)

DEPS_ENVIRONMENT_FILE = "environment"

# Sources the snippet in bash with allexport on, so plain `CC=clang` lines count
# as well as exports, then dumps the environment as JSON with this interpreter.
_SOURCE_SCRIPT = 'set -a; . "$1" >/dev/null && exec "$2" -c "$3"'
_DUMP_ENV = "import json, os; print(json.dumps(dict(os.environ)))"


@dataclass
class ReleaseContext:
    """Resolved settings for one packaging run."""

    source_dir: Path
    output_dir: Path
    deps_dir: Path
    cc: str
    host: HostPlatform
    jobs: int
    env: dict[str, str]
    backend: PipelineBackend
    cflags: str = ""
    ldflags: str = ""

    @property
    def build_dir(self) -> Path:
        """Scratch directory for nimcache and the generated nim.cfg."""
        return self.source_dir / "build"

    def prepend_path(self, directory: Path) -> None:
        current = self.env.get("PATH")
        self.env["PATH"] = (
            f"{directory}{os.pathsep}{current}" if current else str(directory)
        )


def default_cc(os_name: str) -> str:
    """Compiler used to build csources when CC is not set."""
    if os_name == "darwin":
        return "clang"
    return "gcc"


def source_environment_file(
    path: Path,
    env: Mapping[str, str],
) -> dict[str, str]:
    """Source a shell snippet and return the environment it leaves behind.

    Raises:
        StepError: If bash cannot be run or the snippet fails.
    """
    cmd = ["bash", "-c", _SOURCE_SCRIPT, "bash", str(path), sys.executable, _DUMP_ENV]
    try:
        result = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            env=dict(env),
        )
    except OSError as e:
        raise StepError("Sourcing dependencies environment", reason=str(e)) from e

    if result.returncode != 0:
        logger.error(f"Sourcing {path} failed: {result.stderr.strip()}")
        raise StepError(
            "Sourcing dependencies environment",
            returncode=result.returncode,
            command=cmd[:2] + [f". {path}"],
        )
    return json.loads(result.stdout)


def import_deps_environment(deps_dir: Path, env: dict[str, str]) -> bool:
    """Merge ``<deps>/environment`` into ``env`` if the file exists.

    Every variable the file assigns is taken, exported or not.
    """
    env_file = deps_dir / DEPS_ENVIRONMENT_FILE
    if not env_file.exists():
        return False
    logger.info("Sourcing dependencies environment")
    sourced = source_environment_file(env_file, env)
    env.clear()
    env.update(sourced)
    return True


def build_context(
    source: Path,
    output: Path | None = None,
    deps: Path | None = None,
    config: ToolConfig | None = None,
    env: Mapping[str, str] | None = None,
    backend: PipelineBackend | None = None,
) -> ReleaseContext:
    """Resolve options into a context.

    Precedence is CLI option, then environment, then tool config, then the
    built-in default. The dependency environment is imported before the
    toolchain is chosen, so a previous step may set CC.
    """
    if config is None:
        config = ToolConfig()
    child_env = dict(os.environ if env is None else env)
    cwd = Path.cwd()

    output_dir = (output or config.output_dir or cwd / "output").resolve()
    deps_dir = (deps or config.deps_dir or cwd / "external").resolve()

    import_deps_environment(deps_dir, child_env)

    os_name = detect_os(child_env)
    cc = child_env.get("CC") or config.cc or default_cc(os_name)
    cflags = child_env.get("CFLAGS") or config.cflags or ""
    ldflags = child_env.get("LDFLAGS") or config.ldflags or ""
    child_env["CC"] = cc

    return ReleaseContext(
        source_dir=source.resolve(),
        output_dir=output_dir,
        deps_dir=deps_dir,
        cc=cc,
        host=detect_host_platform(child_env),
        jobs=cpu_count(child_env, os_name),
        env=child_env,
        backend=backend or select_backend(child_env),
        cflags=cflags,
        ldflags=ldflags,
    )
