"""
Shell backends - the build steps that run external tools (make, nim, koch).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shlex
import shutil
import subprocess

from nimrelease.context import ReleaseContext
from nimrelease.host import arch_from_triple
from nimrelease.pipeline import fold
from nimrelease.types import BuildMetadata, StepError

logger = logging.getLogger(__name__)

# Fed to `nim secret`; each echo prints one key=value line.
METADATA_SCRIPT = """\
echo "version=", NimVersion
echo "os=", hostOS
echo "cpu=", hostCPU
echo "suffix=-", hostOS, "_", hostCPU
quit 0
"""

METADATA_KEYS = ("version", "os", "cpu", "suffix")


def resolve_program(program: str, env: dict[str, str]) -> str:
    """Look a bare program name up on the child's PATH.

    On Windows the child environment does not affect how the executable is
    found, so a freshly built ``bin/nim`` must be passed as a full path.
    """
    if os.path.dirname(program):
        return program
    return shutil.which(program, path=env.get("PATH")) or program


def run_step(
    step: str,
    cmd: list[str],
    context: ReleaseContext,
    cwd: Path | None = None,
    input_text: str | None = None,
    capture: bool = False,
) -> str:
    """Run one external command inside the source tree.

    Output streams straight to the console unless ``capture`` is set, in
    which case stdout is returned and stderr discarded.

    Raises:
        StepError: If the command cannot be started or exits non-zero.
    """
    workdir = cwd or context.source_dir
    cmd = [resolve_program(cmd[0], context.env), *cmd[1:]]
    logger.debug(f"[{step}] {' '.join(cmd)} (cwd={workdir})")
    # NOTE: check=False so the exit status ends up on StepError rather than
    # CalledProcessError.
    try:
        result = subprocess.run(
            cmd,
            check=False,
            cwd=workdir,
            env=context.env,
            input=input_text,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.DEVNULL if capture else None,
            text=True,
        )
    except OSError as e:
        raise StepError(step, returncode=127, command=cmd, reason=str(e)) from e

    if result.returncode != 0:
        raise StepError(step, returncode=result.returncode, command=cmd)
    return result.stdout if capture else ""


def _koch(context: ReleaseContext) -> str:
    return str(context.source_dir / "koch")


def write_nim_cfg(context: ReleaseContext) -> Path:
    """Write the build-local nim.cfg and point XDG_CONFIG_HOME at it."""
    build_dir = context.build_dir
    cfg_path = build_dir / "nim" / "nim.cfg"
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    lines = [f'nimcache="{build_dir / "nimcache"}"']
    if context.cflags:
        lines.append('passC%="$CFLAGS"')
        context.env["CFLAGS"] = context.cflags
    if context.ldflags:
        lines.append('passL%="$LDFLAGS"')
        context.env["LDFLAGS"] = context.ldflags
    content = "\n".join(lines) + "\n"

    deps_cfg = context.deps_dir / "nim.cfg"
    if deps_cfg.exists():
        logger.info(f"Importing configuration from {deps_cfg}")
        content += deps_cfg.read_text(encoding="utf-8")

    cfg_path.write_text(content, encoding="utf-8")
    context.env["XDG_CONFIG_HOME"] = str(build_dir)
    return cfg_path


@dataclass
class CsourcesBuilder:
    """Bootstrap from csources with make, then build the compiler and tools with koch."""

    nim: str = "nim"

    def target_cpu(self, context: ReleaseContext) -> str:
        triple = run_step(
            "Query C compiler target",
            [*shlex.split(context.cc), "-dumpmachine"],
            context,
            capture=True,
        )
        return arch_from_triple(triple)

    def run(self, context: ReleaseContext) -> None:
        context.prepend_path(context.source_dir / "bin")
        cpu = self.target_cpu(context)

        with fold("Build 1-stage csources compiler", context.backend):
            run_step(
                "Build 1-stage csources compiler",
                ["make", f"-j{context.jobs}", f"ucpu={cpu}", f"CC={context.cc}"],
                context,
            )

        write_nim_cfg(context)

        with fold("Build koch", context.backend):
            run_step("Build koch", [self.nim, "c", "koch"], context)

        with fold("Build compiler", context.backend):
            run_step("Build compiler", [_koch(context), "boot", "-d:release"], context)

        with fold("Build tools", context.backend):
            run_step("Build tools", [_koch(context), "tools", "-d:release"], context)


@dataclass
class KochDocGenerator:
    def run(self, context: ReleaseContext) -> None:
        with fold("Build docs", context.backend):
            run_step("Build docs", [_koch(context), "doc0", "-d:release"], context)


def parse_metadata(output: str) -> BuildMetadata:
    """Parse the key=value lines printed by METADATA_SCRIPT.

    Raises:
        StepError: If any expected key is missing.
    """
    values: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() in METADATA_KEYS:
            values[key.strip()] = value.strip()

    missing = [key for key in METADATA_KEYS if not values.get(key)]
    if missing:
        raise StepError(
            "Query compiler metadata",
            reason=f"missing {', '.join(missing)} in compiler output",
        )
    return BuildMetadata(
        version=values["version"],
        host_os=values["os"],
        host_cpu=values["cpu"],
        archive_suffix=values["suffix"],
    )


@dataclass
class NimMetadataProbe:
    nim: str = "nim"

    def run(self, context: ReleaseContext) -> BuildMetadata:
        output = run_step(
            "Query compiler metadata",
            [self.nim, "secret", "--hints:off"],
            context,
            input_text=METADATA_SCRIPT,
            capture=True,
        )
        metadata = parse_metadata(output)
        logger.info(
            f"Built Nim {metadata.version} for {metadata.host_os}/{metadata.host_cpu}"
        )
        return metadata


@dataclass
class WinReleaseTool:
    """Build and run tools/winrelease, which zips the release under web/upload."""

    nim: str = "nim"

    def run(self, context: ReleaseContext) -> Path:
        run_step(
            "Build winrelease",
            [self.nim, "c", "--outdir:.", "tools/winrelease"],
            context,
        )
        run_step("Run winrelease", [str(context.source_dir / "winrelease")], context)
        return context.source_dir / "web" / "upload" / "download"
